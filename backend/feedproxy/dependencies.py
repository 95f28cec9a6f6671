from __future__ import annotations

import secrets
from collections.abc import AsyncIterator
from functools import lru_cache
from typing import Annotated

import httpx
from fastapi import Depends, Header, HTTPException

from backend.feedproxy.config import ProxySettings, load_settings
from backend.feedproxy.services.article_parser import ArticleParser
from backend.feedproxy.services.discovery_orchestrator import DiscoveryOrchestrator
from backend.feedproxy.services.fetch_proxy import FeedFetchProxy
from backend.feedproxy.services.http_fetcher import build_http_client
from backend.feedproxy.telemetry import TelemetryClient, build_telemetry_client

AUTH_ERROR_MESSAGE = "Invalid or missing API key"


@lru_cache(maxsize=1)
def get_settings() -> ProxySettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def get_http_transport() -> httpx.AsyncBaseTransport | None:
    # Overridden in tests with an `httpx.MockTransport`.
    return None


async def get_http_client(
    transport: Annotated[httpx.AsyncBaseTransport | None, Depends(get_http_transport)],
) -> AsyncIterator[httpx.AsyncClient]:
    async with build_http_client(transport=transport) as client:
        yield client


def require_api_key(
    settings: Annotated[ProxySettings, Depends(get_settings)],
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    if settings.api_key is None:
        return
    if x_api_key is None or not secrets.compare_digest(
        x_api_key.encode("utf-8"),
        settings.api_key.encode("utf-8"),
    ):
        raise HTTPException(status_code=401, detail=AUTH_ERROR_MESSAGE)


def get_discovery_orchestrator(
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> DiscoveryOrchestrator:
    return DiscoveryOrchestrator(client=client, settings=get_settings(), telemetry=get_telemetry())


def get_fetch_proxy(
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> FeedFetchProxy:
    return FeedFetchProxy(client=client, settings=get_settings(), telemetry=get_telemetry())


def get_article_parser(
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> ArticleParser:
    return ArticleParser(client=client, settings=get_settings(), telemetry=get_telemetry())


def reset_cached_dependencies() -> None:
    get_telemetry.cache_clear()
    get_settings.cache_clear()
