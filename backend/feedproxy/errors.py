from __future__ import annotations

from typing import Literal

ErrorCode = Literal[
    "INVALID_URL",
    "BLOCKED_URL",
    "FETCH_FAILED",
    "TIMEOUT",
    "CONTENT_TOO_LARGE",
    "PARSE_FAILED",
    "UNSUPPORTED",
    "DISCOVERY_FAILED",
    "METHOD_NOT_ALLOWED",
]


class ProxyError(Exception):
    """A hard outcome that is reported to the caller as `success: false`.

    `status` carries the upstream HTTP status when one was received.
    """

    def __init__(self, code: ErrorCode, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.code: ErrorCode = code
        self.message = message
        self.status = status
