from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Literal

import httpx

from backend.feedproxy.config import FEED_ACCEPT_ANY, HTML_ACCEPT, PROBE_BATCH_SIZE, ProxySettings
from backend.feedproxy.errors import ProxyError
from backend.feedproxy.services.feed_analyzer import FeedAnalysis, FeedAnalyzer
from backend.feedproxy.services.feed_discovery import FeedCandidate, FeedDiscoveryEngine
from backend.feedproxy.services.http_fetcher import fetch_limited
from backend.feedproxy.services.input_classifier import (
    ArticleInput,
    FeedInput,
    classify,
    is_username,
    normalize_url,
    url_origin,
)
from backend.feedproxy.services.page_metadata import (
    extract_favicon,
    extract_og_image,
    parse_html_document,
)
from backend.feedproxy.services.url_safety import ensure_safe_url
from backend.feedproxy.telemetry import TelemetryClient

LOGGER = logging.getLogger("feed_proxy.discovery")

HOMEPAGE_BUDGET_SHARE = 0.3
PROBE_BUDGET_SHARE = 0.4
PARSE_BUDGET_SHARE = 0.2
FEED_MARKERS: tuple[str, ...] = ("<rss", "<feed", "<channel")
NO_FEEDS_MESSAGE = "No RSS or Atom feeds found for this URL"

DiscoveredInputType = Literal["homepage", "article", "feed"]


@dataclass(frozen=True)
class PlatformSuggestion:
    platform: str
    url: str
    label: str


@dataclass(frozen=True)
class PlatformHint:
    username: str
    suggestions: list[PlatformSuggestion]


@dataclass(frozen=True)
class SiteImages:
    site_icon: str | None = None
    og_image: str | None = None


@dataclass(frozen=True)
class DiscoveryResult:
    input_type: DiscoveredInputType
    normalized_url: str
    feeds: list[FeedCandidate]
    images: SiteImages = field(default_factory=SiteImages)
    analysis: FeedAnalysis | None = None
    message: str | None = None

    @property
    def recommended_feed(self) -> str | None:
        if not self.feeds:
            return None
        return self.feeds[0].url


@dataclass(frozen=True)
class DiscoveryBudget:
    homepage_seconds: float
    probe_batch_seconds: float
    parse_seconds: float

    @classmethod
    def split(cls, total_seconds: float) -> DiscoveryBudget:
        return cls(
            homepage_seconds=total_seconds * HOMEPAGE_BUDGET_SHARE,
            probe_batch_seconds=total_seconds * PROBE_BUDGET_SHARE / PROBE_BATCH_SIZE,
            parse_seconds=total_seconds * PARSE_BUDGET_SHARE,
        )


def platform_suggestions(username: str) -> list[PlatformSuggestion]:
    return [
        PlatformSuggestion(platform="substack", url=f"https://{username}.substack.com", label="Substack"),
        PlatformSuggestion(platform="medium", url=f"https://medium.com/@{username}", label="Medium"),
        PlatformSuggestion(platform="ghost", url=f"https://{username}.ghost.io", label="Ghost"),
    ]


def looks_like_feed(text: str) -> bool:
    return any(marker in text for marker in FEED_MARKERS)


class DiscoveryOrchestrator:
    """Turns raw user input into feed candidates plus metadata for the first one.

    Hard failures (unsafe URL, homepage fetch errors, oversized pages) raise
    `ProxyError`. Missing feeds, failed probes and unreadable feeds only
    thin out the result.
    """

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
        self._engine = FeedDiscoveryEngine(
            client=client,
            user_agent=settings.user_agent,
            telemetry=telemetry,
        )
        self._analyzer = FeedAnalyzer(
            client=client,
            max_bytes=settings.max_response_bytes,
            user_agent=settings.user_agent,
        )

    async def discover(self, raw_input: str, *, timeout_ms: float | None = None) -> DiscoveryResult | PlatformHint:
        trimmed = raw_input.strip()
        if is_username(trimmed):
            username = trimmed.removeprefix("@")
            self._telemetry.emit("discover.finish", input_type="username", outcome="platform_hint")
            return PlatformHint(username=username, suggestions=platform_suggestions(username))

        normalized_url = ensure_safe_url(normalize_url(trimmed))
        budget = DiscoveryBudget.split(
            self._settings.resolve_timeout_seconds(
                timeout_ms,
                default_ms=self._settings.default_discover_timeout_ms,
                max_ms=self._settings.max_discover_timeout_ms,
            )
        )

        started_at = time.perf_counter()
        try:
            result = await self._discover_url(normalized_url, budget)
        except ProxyError as exc:
            LOGGER.info("discovery failed code=%s", exc.code)
            self._emit_finish(started_at, outcome="error", error_code=exc.code)
            raise
        except Exception as exc:
            LOGGER.warning("discovery failed unexpectedly", exc_info=True)
            self._emit_finish(started_at, outcome="error", error_code="DISCOVERY_FAILED")
            raise ProxyError("DISCOVERY_FAILED", "Could not complete feed discovery") from exc

        self._emit_finish(
            started_at,
            outcome="ok",
            input_type=result.input_type,
            feed_count=len(result.feeds),
            analyzed=result.analysis is not None,
        )
        return result

    async def _discover_url(self, normalized_url: str, budget: DiscoveryBudget) -> DiscoveryResult:
        classification = classify(normalized_url)
        input_type: DiscoveredInputType = "homepage"
        homepage_url = normalized_url

        if isinstance(classification, FeedInput):
            if await self._is_feed(normalized_url, budget.homepage_seconds):
                return await self._discover_direct_feed(normalized_url, budget)
            homepage_url = url_origin(normalized_url)
        elif isinstance(classification, ArticleInput):
            input_type = "article"
            homepage_url = classification.homepage_url

        return await self._discover_from_homepage(homepage_url, input_type, budget)

    async def _discover_direct_feed(self, feed_url: str, budget: DiscoveryBudget) -> DiscoveryResult:
        candidate = FeedCandidate(url=feed_url)
        analysis = await self._analyzer.fetch_and_analyze(feed_url, timeout_seconds=budget.parse_seconds)
        images = SiteImages()
        if analysis is not None:
            candidate = replace(candidate, title=analysis.summary.title)
            images = await self._discover_images(analysis.summary.link, budget.homepage_seconds)
        return DiscoveryResult(
            input_type="feed",
            normalized_url=feed_url,
            feeds=[candidate],
            images=images,
            analysis=analysis,
        )

    async def _discover_from_homepage(
        self,
        homepage_url: str,
        input_type: DiscoveredInputType,
        budget: DiscoveryBudget,
    ) -> DiscoveryResult:
        response = await fetch_limited(
            self._client,
            homepage_url,
            timeout_seconds=budget.homepage_seconds,
            max_bytes=self._settings.max_html_bytes,
            headers=self._html_headers(),
            require_success=True,
            size_subject="HTML",
        )
        document = parse_html_document(response.text())
        images = SiteImages(
            site_icon=extract_favicon(document, homepage_url),
            og_image=extract_og_image(document, homepage_url),
        )
        feeds = await self._engine.discover(
            document,
            base_url=homepage_url,
            origin=url_origin(homepage_url),
            batch_timeout_seconds=budget.probe_batch_seconds,
        )

        analysis = None
        if feeds:
            analysis = await self._analyzer.fetch_and_analyze(feeds[0].url, timeout_seconds=budget.parse_seconds)
            if analysis is not None and not feeds[0].title:
                feeds[0] = replace(feeds[0], title=analysis.summary.title)

        return DiscoveryResult(
            input_type=input_type,
            normalized_url=homepage_url,
            feeds=feeds,
            images=images,
            analysis=analysis,
            message=None if feeds else NO_FEEDS_MESSAGE,
        )

    async def _is_feed(self, url: str, timeout_seconds: float) -> bool:
        try:
            response = await fetch_limited(
                self._client,
                url,
                timeout_seconds=timeout_seconds,
                max_bytes=self._settings.max_response_bytes,
                headers={
                    "User-Agent": f"{self._settings.user_agent} (Feed Validation)",
                    "Accept": FEED_ACCEPT_ANY,
                },
                require_success=True,
            )
        except ProxyError as exc:
            LOGGER.debug("feed sniff failed url=%s code=%s", url, exc.code)
            return False
        return looks_like_feed(response.text())

    async def _discover_images(self, page_url: str, timeout_seconds: float) -> SiteImages:
        try:
            response = await fetch_limited(
                self._client,
                page_url,
                timeout_seconds=timeout_seconds,
                max_bytes=self._settings.max_html_bytes,
                headers=self._html_headers(),
                require_success=True,
                size_subject="HTML",
            )
        except ProxyError as exc:
            LOGGER.debug("image discovery failed url=%s code=%s", page_url, exc.code)
            return SiteImages()
        document = parse_html_document(response.text())
        return SiteImages(
            site_icon=extract_favicon(document, page_url),
            og_image=extract_og_image(document, page_url),
        )

    def _html_headers(self) -> dict[str, str]:
        return {
            "User-Agent": f"Mozilla/5.0 (compatible; {self._settings.user_agent})",
            "Accept": HTML_ACCEPT,
        }

    def _emit_finish(self, started_at: float, **attributes: object) -> None:
        self._telemetry.emit(
            "discover.finish",
            duration_ms=int((time.perf_counter() - started_at) * 1000),
            **attributes,
        )
