from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from backend.feedproxy.config import (
    ALLOWED_FORWARD_HEADERS,
    FEED_ACCEPT_ANY,
    HEADERS_TO_EXTRACT,
    ProxySettings,
)
from backend.feedproxy.errors import ProxyError
from backend.feedproxy.services.http_fetcher import fetch_limited
from backend.feedproxy.services.url_safety import ensure_safe_url
from backend.feedproxy.telemetry import TelemetryClient

LOGGER = logging.getLogger("feed_proxy.fetch")


@dataclass(frozen=True)
class FetchProxyResult:
    status: int
    headers: dict[str, str]
    body: str | None


def filter_forward_headers(client_headers: Mapping[str, str] | None) -> dict[str, str]:
    if not client_headers:
        return {}
    return {
        name: value
        for name, value in client_headers.items()
        if name.lower() in ALLOWED_FORWARD_HEADERS
    }


def extract_headers(response_headers: httpx.Headers) -> dict[str, str]:
    extracted: dict[str, str] = {}
    for name in HEADERS_TO_EXTRACT:
        value = response_headers.get(name)
        if value is not None:
            extracted[name] = value
    return extracted


class FeedFetchProxy:
    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        settings: ProxySettings,
        telemetry: TelemetryClient,
    ) -> None:
        self._client = client
        self._settings = settings
        self._telemetry = telemetry

    async def fetch(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_ms: float | None = None,
    ) -> FetchProxyResult:
        target = ensure_safe_url(url)
        timeout_seconds = self._settings.resolve_timeout_seconds(
            timeout_ms,
            default_ms=self._settings.default_fetch_timeout_ms,
            max_ms=self._settings.max_timeout_ms,
        )
        request_headers = {
            "User-Agent": f"{self._settings.user_agent} (CORS Proxy)",
            "Accept": FEED_ACCEPT_ANY,
            **filter_forward_headers(headers),
        }

        started_at = time.perf_counter()
        try:
            response = await fetch_limited(
                self._client,
                target,
                timeout_seconds=timeout_seconds,
                max_bytes=self._settings.max_response_bytes,
                headers=request_headers,
            )
        except ProxyError as exc:
            LOGGER.info("feed fetch failed code=%s status=%s", exc.code, exc.status)
            self._telemetry.emit(
                "fetch.finish",
                outcome="error",
                error_code=exc.code,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
            )
            raise

        self._telemetry.emit(
            "fetch.finish",
            outcome="ok",
            upstream_status=response.status_code,
            duration_ms=int((time.perf_counter() - started_at) * 1000),
        )
        return FetchProxyResult(
            status=response.status_code,
            headers=extract_headers(response.headers),
            body=None if response.status_code == 304 else response.text(),
        )
