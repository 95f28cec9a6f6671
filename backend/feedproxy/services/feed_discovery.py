from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

import httpx
from bs4 import BeautifulSoup

from backend.feedproxy.config import COMMON_FEED_PATHS, FEED_ACCEPT, PROBE_BATCH_SIZE
from backend.feedproxy.errors import ProxyError
from backend.feedproxy.services.http_fetcher import fetch_limited
from backend.feedproxy.services.page_metadata import resolve_url
from backend.feedproxy.services.url_safety import validate_url
from backend.feedproxy.telemetry import TelemetryClient

LOGGER = logging.getLogger("feed_proxy.discovery")

FeedKind = Literal["rss", "atom", "unknown"]
FEED_CONTENT_TYPE_MARKERS: tuple[str, ...] = ("xml", "rss", "atom")


@dataclass(frozen=True)
class FeedCandidate:
    url: str
    title: str | None = None
    kind: FeedKind = "unknown"


def discover_feeds_from_html(document: BeautifulSoup, base_url: str) -> list[FeedCandidate]:
    candidates: list[FeedCandidate] = []
    for link in document.select('link[rel~="alternate"]'):
        declared_type = str(link.get("type") or "").lower()
        href = str(link.get("href") or "").strip()
        if not href:
            continue
        if "rss" in declared_type:
            kind: FeedKind = "rss"
        elif "atom" in declared_type:
            kind = "atom"
        else:
            continue
        title = str(link.get("title") or "").strip() or None
        candidates.append(FeedCandidate(url=resolve_url(href, base_url), title=title, kind=kind))
    return candidates


class FeedDiscoveryEngine:
    """Finds feeds declared by a page, falling back to probing well-known paths.

    Probing runs `PROBE_BATCH_SIZE` paths at a time and stops after the
    first batch that produces a hit.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        user_agent: str,
        telemetry: TelemetryClient,
        probe_paths: Sequence[str] = COMMON_FEED_PATHS,
        batch_size: int = PROBE_BATCH_SIZE,
    ) -> None:
        self._client = client
        self._user_agent = user_agent
        self._telemetry = telemetry
        self._probe_paths = tuple(probe_paths)
        self._batch_size = batch_size

    async def discover(
        self,
        document: BeautifulSoup,
        *,
        base_url: str,
        origin: str,
        batch_timeout_seconds: float,
    ) -> list[FeedCandidate]:
        declared = discover_feeds_from_html(document, base_url)
        if declared:
            return declared
        return await self.probe_feed_paths(origin, batch_timeout_seconds=batch_timeout_seconds)

    async def probe_feed_paths(
        self,
        origin: str,
        *,
        batch_timeout_seconds: float,
    ) -> list[FeedCandidate]:
        base = origin.rstrip("/")
        for batch_index, start in enumerate(range(0, len(self._probe_paths), self._batch_size)):
            batch = self._probe_paths[start : start + self._batch_size]
            results = await asyncio.gather(
                *(self._probe(f"{base}{path}", batch_timeout_seconds) for path in batch)
            )
            hits = [candidate for candidate in results if candidate is not None]
            self._telemetry.emit(
                "probe.batch",
                batch_index=batch_index,
                probed=len(batch),
                hits=len(hits),
            )
            if hits:
                return hits
        return []

    async def _probe(self, url: str, timeout_seconds: float) -> FeedCandidate | None:
        if not validate_url(url).valid:
            LOGGER.debug("probe skipped unsafe url=%s", url)
            return None
        try:
            response = await fetch_limited(
                self._client,
                url,
                method="HEAD",
                timeout_seconds=timeout_seconds,
                max_bytes=0,
                headers={
                    "User-Agent": f"{self._user_agent} (Feed Discovery)",
                    "Accept": FEED_ACCEPT,
                },
            )
        except ProxyError as exc:
            LOGGER.debug("probe failed url=%s code=%s", url, exc.code)
            return None

        content_type = response.content_type
        if not response.is_success:
            return None
        if not any(marker in content_type for marker in FEED_CONTENT_TYPE_MARKERS):
            return None
        kind: FeedKind = "atom" if "atom" in content_type else "rss"
        return FeedCandidate(url=url, kind=kind)
