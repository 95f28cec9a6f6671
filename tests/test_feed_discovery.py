from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import httpx
from conftest import RSS_CONTENT_TYPE, FakeUpstream

from backend.feedproxy.services.feed_discovery import (
    FeedCandidate,
    FeedDiscoveryEngine,
    discover_feeds_from_html,
)
from backend.feedproxy.services.http_fetcher import build_http_client
from backend.feedproxy.services.page_metadata import parse_html_document
from backend.feedproxy.telemetry import TelemetryClient

ORIGIN = "https://blog.example.com"


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def _probe(
    upstream: FakeUpstream,
    *,
    sink: _CaptureSink | None = None,
    batch_timeout_seconds: float = 1.0,
) -> list[FeedCandidate]:
    telemetry = TelemetryClient(enabled=sink is not None, sink=sink or _CaptureSink())

    async def _run() -> list[FeedCandidate]:
        async with build_http_client(transport=upstream.transport()) as client:
            engine = FeedDiscoveryEngine(client=client, user_agent="TestAgent/1.0", telemetry=telemetry)
            return await engine.probe_feed_paths(ORIGIN, batch_timeout_seconds=batch_timeout_seconds)

    return asyncio.run(_run())


def test_declared_feeds_keep_document_order_and_skip_other_alternates() -> None:
    document = parse_html_document(
        """
        <html><head>
          <link rel="alternate" hreflang="fr" href="/fr/">
          <link rel="alternate" type="application/atom+xml" title="Atom" href="/atom.xml">
          <link rel="canonical" href="https://blog.example.com/">
          <link rel="alternate" type="application/rss+xml" title="Posts" href="https://feeds.example.com/rss">
          <link rel="alternate" type="application/rss+xml" href="">
          <link rel="alternate" type="application/json" href="/feed.json">
        </head><body></body></html>
        """
    )

    candidates = discover_feeds_from_html(document, f"{ORIGIN}/about")

    assert candidates == [
        FeedCandidate(url=f"{ORIGIN}/atom.xml", title="Atom", kind="atom"),
        FeedCandidate(url="https://feeds.example.com/rss", title="Posts", kind="rss"),
    ]


def test_probe_hit_on_feed_stops_further_batches() -> None:
    upstream = FakeUpstream()
    upstream.add_response(f"{ORIGIN}/feed", headers={"content-type": RSS_CONTENT_TYPE})
    sink = _CaptureSink()

    candidates = _probe(upstream, sink=sink)

    assert candidates == [FeedCandidate(url=f"{ORIGIN}/feed", kind="rss")]
    assert sorted(upstream.requested_urls("HEAD")) == sorted(
        [f"{ORIGIN}/feed", f"{ORIGIN}/rss", f"{ORIGIN}/atom.xml"]
    )
    assert [name for name, _ in sink.events] == ["probe.batch"]
    assert sink.events[0][1]["hits"] == 1


def test_probes_send_head_with_feed_accept_header() -> None:
    upstream = FakeUpstream()
    upstream.add_response(f"{ORIGIN}/rss", headers={"content-type": "application/atom+xml"})

    candidates = _probe(upstream)

    assert candidates == [FeedCandidate(url=f"{ORIGIN}/rss", kind="atom")]
    request = next(item for item in upstream.requests if str(item.url) == f"{ORIGIN}/rss")
    assert request.method == "HEAD"
    assert "application/rss+xml" in request.headers["accept"]
    assert request.headers["user-agent"] == "TestAgent/1.0 (Feed Discovery)"


def test_non_feed_content_types_and_errors_are_not_hits() -> None:
    upstream = FakeUpstream()
    upstream.add_response(f"{ORIGIN}/feed", headers={"content-type": "text/html"})
    upstream.add_response(f"{ORIGIN}/rss", status_code=404, headers={"content-type": "text/xml"})
    upstream.add_response(f"{ORIGIN}/feed.xml", headers={"content-type": "text/xml; charset=utf-8"})

    candidates = _probe(upstream)

    assert candidates == [FeedCandidate(url=f"{ORIGIN}/feed.xml", kind="rss")]
    assert f"{ORIGIN}/index.xml" in upstream.requested_urls()
    assert f"{ORIGIN}/feeds/posts/default" not in upstream.requested_urls()


def test_timed_out_batch_moves_to_next_batch() -> None:
    upstream = FakeUpstream()

    def _hang(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    for path in ("/feed", "/rss", "/atom.xml"):
        upstream.add(f"{ORIGIN}{path}", _hang)
    upstream.add_response(f"{ORIGIN}/rss.xml", headers={"content-type": RSS_CONTENT_TYPE})

    candidates = _probe(upstream)

    assert candidates == [FeedCandidate(url=f"{ORIGIN}/rss.xml", kind="rss")]


def test_slow_probe_is_cut_off_by_batch_timeout() -> None:
    async def _slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, headers={"content-type": RSS_CONTENT_TYPE}, request=request)

    async def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/feed":
            return await _slow(request)
        if request.url.path == "/feed.xml":
            return httpx.Response(200, headers={"content-type": RSS_CONTENT_TYPE}, request=request)
        raise httpx.ConnectError("refused", request=request)

    async def _run() -> list[FeedCandidate]:
        async with build_http_client(transport=httpx.MockTransport(_handler)) as client:
            engine = FeedDiscoveryEngine(
                client=client,
                user_agent="TestAgent/1.0",
                telemetry=TelemetryClient.disabled(),
            )
            return await engine.probe_feed_paths(ORIGIN, batch_timeout_seconds=0.05)

    candidates = asyncio.run(_run())

    assert candidates == [FeedCandidate(url=f"{ORIGIN}/feed.xml", kind="rss")]


def test_no_hits_anywhere_returns_empty() -> None:
    upstream = FakeUpstream()

    assert _probe(upstream) == []
    assert len(upstream.requests) == 10


def test_discover_skips_probing_when_page_declares_feeds() -> None:
    upstream = FakeUpstream()
    document = parse_html_document(
        '<link rel="alternate" type="application/rss+xml" href="/index.xml">'
    )

    async def _run() -> list[FeedCandidate]:
        async with build_http_client(transport=upstream.transport()) as client:
            engine = FeedDiscoveryEngine(
                client=client,
                user_agent="TestAgent/1.0",
                telemetry=TelemetryClient.disabled(),
            )
            return await engine.discover(
                document,
                base_url=f"{ORIGIN}/",
                origin=ORIGIN,
                batch_timeout_seconds=1.0,
            )

    candidates = asyncio.run(_run())

    assert candidates == [FeedCandidate(url=f"{ORIGIN}/index.xml", title=None, kind="rss")]
    assert upstream.requests == []
