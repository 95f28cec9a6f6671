from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Literal

import httpx

from backend.feedproxy.errors import ProxyError
from backend.feedproxy.services.url_safety import ensure_safe_url

LOGGER = logging.getLogger("feed_proxy.http")

HttpMethod = Literal["GET", "HEAD"]


@dataclass(frozen=True)
class FetchedResponse:
    url: str
    status_code: int
    reason_phrase: str
    headers: httpx.Headers
    body: bytes | None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").lower()

    def text(self) -> str:
        if self.body is None:
            return ""
        return self.body.decode("utf-8", errors="replace")


def build_http_client(
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        follow_redirects=True,
        transport=transport,
        event_hooks={"request": [_guard_outbound_request]},
    )


async def _guard_outbound_request(request: httpx.Request) -> None:
    # Runs for the first request and for every redirect hop.
    try:
        ensure_safe_url(str(request.url))
    except ProxyError:
        LOGGER.info("outbound request blocked host=%s", request.url.host)
        raise


async def fetch_limited(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_seconds: float,
    max_bytes: int,
    headers: dict[str, str] | None = None,
    method: HttpMethod = "GET",
    require_success: bool = False,
    size_subject: str = "Response",
) -> FetchedResponse:
    """Fetch `url` with a hard deadline and a byte ceiling.

    Network failures become `FETCH_FAILED`, an expired deadline becomes
    `TIMEOUT`, and oversized bodies become `CONTENT_TOO_LARGE`, either from
    the declared `content-length` or from the bytes actually read.
    """
    try:
        async with asyncio.timeout(timeout_seconds):
            async with client.stream(
                method,
                url,
                headers=headers,
                timeout=timeout_seconds,
            ) as response:
                if require_success and not response.is_success:
                    raise ProxyError(
                        "FETCH_FAILED",
                        f"HTTP {response.status_code}: {response.reason_phrase}",
                        status=response.status_code,
                    )
                body: bytes | None = None
                if method != "HEAD" and response.status_code != 304:
                    _check_declared_length(response, max_bytes, size_subject)
                    body = await _read_capped(response, max_bytes, size_subject)
                return FetchedResponse(
                    url=str(response.url),
                    status_code=response.status_code,
                    reason_phrase=response.reason_phrase,
                    headers=response.headers,
                    body=body,
                )
    except (TimeoutError, httpx.TimeoutException) as exc:
        raise ProxyError("TIMEOUT", "Request timed out") from exc
    except httpx.HTTPError as exc:
        raise ProxyError("FETCH_FAILED", str(exc) or "Network error during fetch") from exc


def _check_declared_length(response: httpx.Response, max_bytes: int, subject: str) -> None:
    declared = response.headers.get("content-length")
    if declared is None:
        return
    try:
        declared_bytes = int(declared)
    except ValueError:
        return
    if declared_bytes > max_bytes:
        raise _too_large(subject, max_bytes, status=response.status_code)


async def _read_capped(response: httpx.Response, max_bytes: int, subject: str) -> bytes:
    chunks: list[bytes] = []
    total = 0
    async for chunk in response.aiter_bytes():
        total += len(chunk)
        if total > max_bytes:
            raise _too_large(subject, max_bytes, status=response.status_code)
        chunks.append(chunk)
    return b"".join(chunks)


def _too_large(subject: str, max_bytes: int, *, status: int) -> ProxyError:
    megabytes = max_bytes / 1024 / 1024
    return ProxyError(
        "CONTENT_TOO_LARGE",
        f"{subject} exceeds maximum size of {megabytes:g}MB",
        status=status,
    )
