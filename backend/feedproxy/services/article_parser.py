from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Literal

import httpx
from lxml import etree
from lxml import html as lxml_html
from readability import Document
from readability.readability import Unparseable

from backend.feedproxy.config import HTML_ACCEPT, ProxySettings
from backend.feedproxy.errors import ProxyError
from backend.feedproxy.services.html_sanitizer import sanitize_html
from backend.feedproxy.services.http_fetcher import fetch_limited
from backend.feedproxy.services.page_metadata import (
    extract_meta_content,
    extract_og_image,
    extract_site_name,
    parse_html_document,
)
from backend.feedproxy.services.url_safety import ensure_safe_url
from backend.feedproxy.telemetry import TelemetryClient

LOGGER = logging.getLogger("feed_proxy.parse")

ParseFormat = Literal["html", "text", "both"]
BYLINE_SELECTORS: tuple[str, ...] = (
    'meta[name="author"]',
    'meta[property="article:author"]',
)
EXCERPT_SELECTORS: tuple[str, ...] = (
    'meta[name="description"]',
    'meta[property="og:description"]',
)


@dataclass(frozen=True)
class ExtractedArticle:
    title: str | None
    content_html: str
    text_content: str
    first_paragraph: str | None


@dataclass(frozen=True)
class ParsedArticle:
    title: str | None
    byline: str | None
    site_name: str | None
    excerpt: str | None
    length: int
    image: str | None
    html_content: str | None = None
    text_content: str | None = None


def extract_article(html_text: str, *, url: str) -> ExtractedArticle | None:
    """Run readability over a full page; `None` when no main content is found."""
    try:
        document = Document(html_text, url=url)
        content_html = document.summary(html_partial=True)
        title = document.short_title() or None
    except Unparseable:
        return None
    if not content_html.strip():
        return None

    try:
        tree = lxml_html.fromstring(content_html)
    except etree.ParserError:
        return None
    text_content = " ".join(tree.text_content().split())
    if not text_content:
        return None

    first_paragraph = None
    for paragraph in tree.iter("p"):
        paragraph_text = " ".join(paragraph.text_content().split())
        if paragraph_text:
            first_paragraph = paragraph_text
            break
    return ExtractedArticle(
        title=title,
        content_html=content_html,
        text_content=text_content,
        first_paragraph=first_paragraph,
    )


class ArticleParser:
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

    async def parse(
        self,
        url: str,
        *,
        output_format: ParseFormat = "both",
        timeout_ms: float | None = None,
    ) -> ParsedArticle:
        target = ensure_safe_url(url)
        timeout_seconds = self._settings.resolve_timeout_seconds(
            timeout_ms,
            default_ms=self._settings.default_parse_timeout_ms,
            max_ms=self._settings.max_timeout_ms,
        )

        started_at = time.perf_counter()
        try:
            response = await fetch_limited(
                self._client,
                target,
                timeout_seconds=timeout_seconds,
                max_bytes=self._settings.max_html_bytes,
                headers={
                    "User-Agent": f"Mozilla/5.0 (compatible; {self._settings.user_agent})",
                    "Accept": HTML_ACCEPT,
                },
                require_success=True,
                size_subject="HTML",
            )
            article = self._build_article(response.text(), url=target, output_format=output_format)
        except ProxyError as exc:
            LOGGER.info("article parse failed code=%s", exc.code)
            self._telemetry.emit(
                "parse.finish",
                outcome="error",
                error_code=exc.code,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
            )
            raise

        self._telemetry.emit(
            "parse.finish",
            outcome="ok",
            output_format=output_format,
            text_length=article.length,
            duration_ms=int((time.perf_counter() - started_at) * 1000),
        )
        return article

    def _build_article(self, html_text: str, *, url: str, output_format: ParseFormat) -> ParsedArticle:
        # Page metadata is read from the untouched document before extraction.
        document = parse_html_document(html_text)
        image = extract_og_image(document, url, include_article_image=True)
        site_name = extract_site_name(document)
        byline = extract_meta_content(document, *BYLINE_SELECTORS)
        description = extract_meta_content(document, *EXCERPT_SELECTORS)

        extracted = extract_article(html_text, url=url)
        if extracted is None:
            raise ProxyError("PARSE_FAILED", "Could not extract article content")

        sanitized_html = None
        if output_format in ("html", "both"):
            sanitized_html = sanitize_html(extracted.content_html, url)
        text_content = None
        if output_format in ("text", "both"):
            text_content = extracted.text_content

        return ParsedArticle(
            title=extracted.title,
            byline=byline,
            site_name=site_name,
            excerpt=description or extracted.first_paragraph,
            length=len(extracted.text_content),
            image=image,
            html_content=sanitized_html,
            text_content=text_content,
        )
