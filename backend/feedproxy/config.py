from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VERSION = "2.0.0"
PROVIDER = "fastapi"
DEFAULT_LOG_DIR = ".feed-proxy/logs"
MEGABYTE = 1024 * 1024

HEADERS_TO_EXTRACT: tuple[str, ...] = (
    "content-type",
    "etag",
    "last-modified",
    "cache-control",
    "content-length",
)
ALLOWED_FORWARD_HEADERS: frozenset[str] = frozenset({"if-none-match", "if-modified-since"})
COMMON_FEED_PATHS: tuple[str, ...] = (
    "/feed",
    "/rss",
    "/atom.xml",
    "/feed.xml",
    "/rss.xml",
    "/index.xml",
    "/feeds/posts/default",
    "/blog/feed",
    "/feed/rss",
    "/feed/atom",
)
PROBE_BATCH_SIZE = 3
FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml"
FEED_ACCEPT_ANY = f"{FEED_ACCEPT}, */*"
HTML_ACCEPT = "text/html, application/xhtml+xml, */*"

_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_POSITIVE_INT_FIELDS: tuple[str, ...] = (
    "max_response_size_mb",
    "max_html_size_mb",
    "default_fetch_timeout_ms",
    "default_parse_timeout_ms",
    "default_discover_timeout_ms",
    "max_timeout_ms",
    "max_discover_timeout_ms",
)


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class ProxySettings(BaseSettings):
    """
    Canonical runtime configuration.

    Built once at startup and shared read-only by every request. Each option
    comes from a `FEED_PROXY_*` environment variable or `.env`.
    """

    model_config = SettingsConfigDict(
        env_prefix="FEED_PROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Access control.
    api_key: str | None = Field(
        default=None,
        description="Shared secret expected in `X-API-Key`. Leave unset to disable auth.",
    )
    allowed_origins: str = Field(
        default="*",
        description="Value emitted as `Access-Control-Allow-Origin`.",
    )

    # Size ceilings.
    max_response_size_mb: int = Field(
        default=10,
        description="Maximum feed/body size returned by /fetch and read for feed parsing.",
    )
    max_html_size_mb: int = Field(
        default=5,
        description="Maximum HTML size read by /parse and /discover.",
    )

    # Timeouts.
    default_fetch_timeout_ms: int = Field(
        default=10_000,
        description="Timeout used by /fetch when the caller does not send one.",
    )
    default_parse_timeout_ms: int = Field(
        default=15_000,
        description="Timeout used by /parse when the caller does not send one.",
    )
    default_discover_timeout_ms: int = Field(
        default=20_000,
        description="Total budget used by /discover when the caller does not send one.",
    )
    max_timeout_ms: int = Field(
        default=30_000,
        description="Hard ceiling for /fetch and /parse timeouts.",
    )
    max_discover_timeout_ms: int = Field(
        default=45_000,
        description="Hard ceiling for the /discover total budget.",
    )

    user_agent: str = Field(
        default="FeedProxy/1.0",
        description="Product token used to build outbound User-Agent headers.",
    )

    # Logging.
    log_dir: Path = Field(
        default=Path(DEFAULT_LOG_DIR),
        description="Directory for backend log files.",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @property
    def max_response_bytes(self) -> int:
        return self.max_response_size_mb * MEGABYTE

    @property
    def max_html_bytes(self) -> int:
        return self.max_html_size_mb * MEGABYTE

    def resolve_timeout_seconds(
        self,
        requested_ms: float | None,
        *,
        default_ms: int,
        max_ms: int,
    ) -> float:
        if requested_ms is None or requested_ms <= 0:
            requested_ms = default_ms
        return min(requested_ms, max_ms) / 1000

    @field_validator("api_key", mode="before")
    @classmethod
    def _normalize_api_key(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)

    @field_validator("allowed_origins", "user_agent", mode="before")
    @classmethod
    def _normalize_required_text(cls, value: Any) -> str:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            raise ValueError("FEED_PROXY_ALLOWED_ORIGINS and FEED_PROXY_USER_AGENT must not be empty.")
        return normalized

    @field_validator(*_POSITIVE_INT_FIELDS)
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("size and timeout limits must be positive.")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("FEED_PROXY_LOG_LEVEL must be a string.")
        normalized = value.strip().upper()
        if normalized in _LOG_LEVELS:
            return normalized
        raise ValueError(
            "FEED_PROXY_LOG_LEVEL must be one of: " + ", ".join(sorted(_LOG_LEVELS)) + "."
        )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("FEED_PROXY_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("FEED_PROXY_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("log_dir", mode="before")
    @classmethod
    def _normalize_log_dir(cls, value: Any) -> Any:
        if value is None:
            return None
        return Path(value).expanduser().resolve()


def load_settings() -> ProxySettings:
    return ProxySettings()
