from __future__ import annotations

from pathlib import Path

import pytest

from backend.feedproxy.config import MEGABYTE, load_settings

_ENV_NAMES = (
    "FEED_PROXY_API_KEY",
    "FEED_PROXY_ALLOWED_ORIGINS",
    "FEED_PROXY_MAX_RESPONSE_SIZE_MB",
    "FEED_PROXY_MAX_HTML_SIZE_MB",
    "FEED_PROXY_DEFAULT_FETCH_TIMEOUT_MS",
    "FEED_PROXY_MAX_TIMEOUT_MS",
    "FEED_PROXY_USER_AGENT",
    "FEED_PROXY_LOG_DIR",
    "FEED_PROXY_LOG_LEVEL",
    "FEED_PROXY_TELEMETRY_ENABLED",
    "FEED_PROXY_TELEMETRY_SINK",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_load_settings_defaults() -> None:
    settings = load_settings()

    assert settings.api_key is None
    assert settings.allowed_origins == "*"
    assert settings.max_response_bytes == 10 * MEGABYTE
    assert settings.max_html_bytes == 5 * MEGABYTE
    assert settings.default_fetch_timeout_ms == 10_000
    assert settings.default_parse_timeout_ms == 15_000
    assert settings.default_discover_timeout_ms == 20_000
    assert settings.max_timeout_ms == 30_000
    assert settings.max_discover_timeout_ms == 45_000
    assert settings.user_agent == "FeedProxy/1.0"
    assert settings.telemetry_sink == "log"


def test_load_settings_reads_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FEED_PROXY_API_KEY", "  s3cret  ")
    monkeypatch.setenv("FEED_PROXY_ALLOWED_ORIGINS", " https://reader.example.com ")
    monkeypatch.setenv("FEED_PROXY_MAX_RESPONSE_SIZE_MB", "2")
    monkeypatch.setenv("FEED_PROXY_USER_AGENT", "Reader/3.1")
    monkeypatch.setenv("FEED_PROXY_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("FEED_PROXY_LOG_LEVEL", "debug")
    monkeypatch.setenv("FEED_PROXY_TELEMETRY_ENABLED", "false")
    monkeypatch.setenv("FEED_PROXY_TELEMETRY_SINK", " NONE ")

    settings = load_settings()

    assert settings.api_key == "s3cret"
    assert settings.allowed_origins == "https://reader.example.com"
    assert settings.max_response_bytes == 2 * MEGABYTE
    assert settings.user_agent == "Reader/3.1"
    assert settings.log_dir == (tmp_path / "logs").resolve()
    assert settings.log_level == "DEBUG"
    assert settings.telemetry_enabled is False
    assert settings.telemetry_sink == "none"


def test_blank_api_key_disables_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FEED_PROXY_API_KEY", "   ")

    assert load_settings().api_key is None


@pytest.mark.parametrize(
    ("name", "value", "match"),
    [
        ("FEED_PROXY_LOG_LEVEL", "chatty", "FEED_PROXY_LOG_LEVEL"),
        ("FEED_PROXY_TELEMETRY_SINK", "otlp", "FEED_PROXY_TELEMETRY_SINK"),
        ("FEED_PROXY_USER_AGENT", " ", "FEED_PROXY_USER_AGENT"),
        ("FEED_PROXY_MAX_TIMEOUT_MS", "0", "must be positive"),
    ],
)
def test_load_settings_rejects_invalid_values(
    monkeypatch: pytest.MonkeyPatch,
    name: str,
    value: str,
    match: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=match):
        load_settings()


def test_resolve_timeout_applies_default_and_ceiling() -> None:
    settings = load_settings()

    assert settings.resolve_timeout_seconds(None, default_ms=10_000, max_ms=30_000) == 10.0
    assert settings.resolve_timeout_seconds(0, default_ms=10_000, max_ms=30_000) == 10.0
    assert settings.resolve_timeout_seconds(2_500, default_ms=10_000, max_ms=30_000) == 2.5
    assert settings.resolve_timeout_seconds(120_000, default_ms=10_000, max_ms=30_000) == 30.0
