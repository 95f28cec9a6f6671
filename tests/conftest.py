from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.feedproxy.dependencies import get_http_transport, reset_cached_dependencies
from backend.feedproxy.main import create_app

UpstreamHandler = Callable[[httpx.Request], httpx.Response]

RSS_CONTENT_TYPE = "application/rss+xml; charset=utf-8"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"


def route_key(url: str | httpx.URL) -> str:
    """`https://host` and `https://host/` name the same resource."""
    parsed = httpx.URL(url)
    return str(parsed.copy_with(path=parsed.path or "/"))


class FakeUpstream:
    """Routes outbound requests by absolute URL; anything unrouted fails to connect."""

    def __init__(self) -> None:
        self.routes: dict[str, UpstreamHandler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, url: str, handler: UpstreamHandler) -> None:
        self.routes[route_key(url)] = handler

    def add_response(
        self,
        url: str,
        *,
        status_code: int = 200,
        content: str | bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> None:
        body = content.encode("utf-8") if isinstance(content, str) else content

        def _respond(_: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, content=body, headers=headers)

        self.add(url, _respond)

    def requested_urls(self, method: str | None = None) -> list[str]:
        return [
            route_key(request.url)
            for request in self.requests
            if method is None or request.method == method
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(route_key(request.url))
        if handler is None:
            raise httpx.ConnectError("connection refused", request=request)
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def rss_document(*, title: str = "Example Blog", items: int = 3, body: str = "") -> str:
    entries = "".join(
        f"<item><title>Post {index}</title>"
        f"<link>https://example.com/posts/{index}</link>"
        f"<pubDate>Mon, 0{index} Jan 2024 10:00:00 GMT</pubDate>"
        f"<description>Summary {index}</description>{body}</item>"
        for index in range(1, items + 1)
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">'
        f"<channel><title>{title}</title><link>https://example.com</link>"
        "<description>Notes and essays</description><language>en</language>"
        f"{entries}</channel></rss>"
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def proxy_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log_dir = tmp_path / "logs"
    monkeypatch.setenv("FEED_PROXY_LOG_DIR", str(log_dir))
    monkeypatch.setenv("FEED_PROXY_TELEMETRY_ENABLED", "0")
    monkeypatch.delenv("FEED_PROXY_API_KEY", raising=False)
    monkeypatch.delenv("FEED_PROXY_ALLOWED_ORIGINS", raising=False)
    return log_dir


@pytest.fixture
def client(proxy_env: Path, upstream: FakeUpstream) -> Iterator[TestClient]:
    _ = proxy_env
    reset_cached_dependencies()

    app = create_app()
    app.dependency_overrides[get_http_transport] = upstream.transport
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
