from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import feedparser
import httpx
from bs4 import BeautifulSoup

from backend.feedproxy.config import FEED_ACCEPT_ANY
from backend.feedproxy.errors import ProxyError
from backend.feedproxy.services.http_fetcher import fetch_limited

LOGGER = logging.getLogger("feed_proxy.feed_analyzer")

RECENT_POST_LIMIT = 3
CONTENT_SAMPLE_SIZE = 5
FULL_CONTENT_MIN_LENGTH = 500
FULL_CONTENT_SUMMARY_RATIO = 1.5
FULL_CONTENT_QUORUM = 0.6
UNTITLED = "Untitled"
_HTML_CONTENT_TYPES: frozenset[str] = frozenset({"text/html", "application/xhtml+xml"})


@dataclass(frozen=True)
class ParsedFeedItem:
    """One feed entry with its format-specific fallbacks already applied.

    `pub_date`: published, then updated (as written in the feed), then an
    ISO-8601 rendering of whichever date feedparser could parse.
    `content`: the HTML `<content>`/`content:encoded` body, then any other
    content value, then the raw description.
    `summary`: the description reduced to plain text, empty when the item
    has no description of its own.
    """

    title: str | None = None
    link: str | None = None
    pub_date: str | None = None
    content: str = ""
    summary: str = ""


@dataclass(frozen=True)
class FeedSummary:
    title: str
    link: str
    description: str | None = None
    language: str | None = None
    last_build_date: str | None = None


@dataclass(frozen=True)
class RecentPost:
    title: str
    link: str
    pub_date: str | None


@dataclass(frozen=True)
class ContentDepthSignal:
    has_full_content: bool
    average_content_length: int
    sample_size: int


@dataclass(frozen=True)
class ParsedFeed:
    summary: FeedSummary
    items: list[ParsedFeedItem] = field(default_factory=list)


@dataclass(frozen=True)
class FeedAnalysis:
    summary: FeedSummary
    posts: list[RecentPost]
    signal: ContentDepthSignal


def parse_feed(raw: bytes, *, feed_url: str) -> ParsedFeed | None:
    parsed = feedparser.parse(raw)
    if not parsed.get("version") and not parsed.get("entries"):
        return None

    channel: Mapping[str, Any] = parsed.get("feed", {})
    summary = FeedSummary(
        title=_text(channel.get("title")) or UNTITLED,
        link=_text(channel.get("link")) or feed_url,
        description=_text(channel.get("subtitle")) or _text(channel.get("description")),
        language=_text(channel.get("language")),
        last_build_date=_text(channel.get("updated")),
    )
    items = [item_from_entry(entry) for entry in parsed.get("entries", [])]
    return ParsedFeed(summary=summary, items=items)


def item_from_entry(entry: Mapping[str, Any]) -> ParsedFeedItem:
    content = _entry_content(entry)
    raw_description = _text(entry.get("summary")) or ""
    # feedparser copies the body into `summary` when an item has no description.
    if content is not None and _is_copied_body(raw_description, content):
        raw_description = ""
    return ParsedFeedItem(
        title=_text(entry.get("title")),
        link=_text(entry.get("link")),
        pub_date=(
            _text(entry.get("published"))
            or _text(entry.get("updated"))
            or _iso_date(entry.get("published_parsed") or entry.get("updated_parsed"))
        ),
        content=content or raw_description,
        summary=_plain_text(raw_description),
    )


def recent_posts(items: Sequence[ParsedFeedItem]) -> list[RecentPost]:
    return [
        RecentPost(
            title=item.title or UNTITLED,
            link=item.link or "",
            pub_date=item.pub_date,
        )
        for item in items[:RECENT_POST_LIMIT]
    ]


def analyze_content_depth(items: Sequence[ParsedFeedItem]) -> ContentDepthSignal:
    sample = items[:CONTENT_SAMPLE_SIZE]
    if not sample:
        return ContentDepthSignal(has_full_content=False, average_content_length=0, sample_size=0)

    full_content_count = 0
    total_content_length = 0
    for item in sample:
        content_length = len(item.content)
        total_content_length += content_length
        if (
            content_length > FULL_CONTENT_MIN_LENGTH
            and content_length > len(item.summary) * FULL_CONTENT_SUMMARY_RATIO
        ):
            full_content_count += 1

    return ContentDepthSignal(
        has_full_content=full_content_count / len(sample) >= FULL_CONTENT_QUORUM,
        average_content_length=int(total_content_length / len(sample) + 0.5),
        sample_size=len(sample),
    )


def analyze(feed: ParsedFeed) -> FeedAnalysis:
    return FeedAnalysis(
        summary=feed.summary,
        posts=recent_posts(feed.items),
        signal=analyze_content_depth(feed.items),
    )


class FeedAnalyzer:
    def __init__(self, *, client: httpx.AsyncClient, max_bytes: int, user_agent: str) -> None:
        self._client = client
        self._max_bytes = max_bytes
        self._user_agent = user_agent

    async def fetch_and_analyze(self, feed_url: str, *, timeout_seconds: float) -> FeedAnalysis | None:
        try:
            response = await fetch_limited(
                self._client,
                feed_url,
                timeout_seconds=timeout_seconds,
                max_bytes=self._max_bytes,
                headers={
                    "User-Agent": f"{self._user_agent} (Feed Parser)",
                    "Accept": FEED_ACCEPT_ANY,
                },
                require_success=True,
            )
        except ProxyError as exc:
            LOGGER.debug("feed metadata unavailable url=%s code=%s", feed_url, exc.code)
            return None

        feed = parse_feed(response.body or b"", feed_url=feed_url)
        if feed is None:
            LOGGER.debug("feed metadata unavailable url=%s code=PARSE_FAILED", feed_url)
            return None
        return analyze(feed)


def _entry_content(entry: Mapping[str, Any]) -> str | None:
    values: list[tuple[str, str]] = []
    for detail in entry.get("content") or []:
        value = _text(detail.get("value"))
        if value is not None:
            values.append((str(detail.get("type", "")).lower(), value))
    for content_type, value in values:
        if content_type in _HTML_CONTENT_TYPES:
            return value
    if values:
        return values[0][1]
    return None


def _plain_text(markup: str) -> str:
    if not markup:
        return ""
    text = BeautifulSoup(markup, "html.parser").get_text(" ")
    return " ".join(text.split())


def _iso_date(value: Any) -> str | None:
    if not isinstance(value, time.struct_time):
        return None
    return datetime(*value[:6], tzinfo=UTC).isoformat()


def _text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def _is_copied_body(description: str, content: str) -> bool:
    if not description:
        return False
    return description == content or _plain_text(description) == _plain_text(content)
