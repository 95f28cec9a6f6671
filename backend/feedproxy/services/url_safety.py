"""Outbound URL gate.

Only literal IP addresses and a static set of hostnames are checked. Names
are never resolved through DNS, so a public-looking hostname that resolves to
a private address is not caught here.
"""

from __future__ import annotations

import ipaddress
import re
import socket
from dataclasses import dataclass
from urllib.parse import SplitResult, urlsplit

from backend.feedproxy.errors import ErrorCode, ProxyError

ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https"})

BLOCKED_HOSTNAMES: frozenset[str] = frozenset(
    {
        "localhost",
        "metadata.google.internal",
        "metadata.azure.com",
        "169.254.169.254",
        "::1",
    }
)
BLOCKED_HOSTNAME_SUFFIXES: tuple[str, ...] = (".local", ".internal", ".localhost")

PRIVATE_IPV4_NETWORKS: tuple[ipaddress.IPv4Network, ...] = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
    ipaddress.IPv4Network("127.0.0.0/8"),
    ipaddress.IPv4Network("169.254.0.0/16"),
    ipaddress.IPv4Network("0.0.0.0/8"),
)
PRIVATE_IPV6_NETWORKS: tuple[ipaddress.IPv6Network, ...] = (
    ipaddress.IPv6Network("::1/128"),
    ipaddress.IPv6Network("fc00::/7"),
    ipaddress.IPv6Network("fe80::/10"),
)

# Hosts whose last label is a number are IPv4 literals in URL syntax, even in
# shorthand forms such as `127.1`, `0x7f.0.0.1` or `2130706433`.
_NUMERIC_LABEL = re.compile(r"(?:0x[0-9a-f]*|[0-9]+)")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error_code: ErrorCode | None = None
    message: str | None = None
    url: SplitResult | None = None


def validate_url(raw_url: str) -> ValidationResult:
    try:
        url = urlsplit(raw_url.strip())
        hostname = url.hostname
        _ = url.port
    except ValueError:
        return _invalid("URL is malformed")

    if url.scheme.lower() not in ALLOWED_SCHEMES:
        return _invalid("URL must use HTTP or HTTPS protocol")
    if not hostname:
        return _invalid("URL is malformed")

    hostname = hostname.lower().rstrip(".")
    if is_blocked_hostname(hostname):
        return _blocked("URL points to a blocked host")

    address = parse_ip_literal(hostname)
    if isinstance(address, ipaddress.IPv4Address) and is_private_ipv4(address):
        return _blocked("URL points to a private IP address")
    if isinstance(address, ipaddress.IPv6Address) and is_private_ipv6(address):
        return _blocked("URL points to a private IPv6 address")

    return ValidationResult(valid=True, url=url)


def is_url_safe(raw_url: str) -> bool:
    return validate_url(raw_url).valid


def ensure_safe_url(raw_url: str) -> str:
    result = validate_url(raw_url)
    if not result.valid:
        raise ProxyError(result.error_code or "INVALID_URL", result.message or "URL is malformed")
    return raw_url.strip()


def is_blocked_hostname(hostname: str) -> bool:
    lowered = hostname.lower()
    if lowered in BLOCKED_HOSTNAMES:
        return True
    return lowered.endswith(BLOCKED_HOSTNAME_SUFFIXES)


def is_private_ipv4(address: ipaddress.IPv4Address) -> bool:
    return any(address in network for network in PRIVATE_IPV4_NETWORKS)


def is_private_ipv6(address: ipaddress.IPv6Address) -> bool:
    mapped = address.ipv4_mapped
    if mapped is not None:
        return is_private_ipv4(mapped)
    return any(address in network for network in PRIVATE_IPV6_NETWORKS)


def parse_ip_literal(hostname: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    if ":" in hostname:
        try:
            return ipaddress.IPv6Address(hostname.split("%", 1)[0])
        except ValueError:
            return None

    last_label = hostname.rsplit(".", 1)[-1]
    if not _NUMERIC_LABEL.fullmatch(last_label):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(hostname))
    except OSError:
        return None


def _invalid(message: str) -> ValidationResult:
    return ValidationResult(valid=False, error_code="INVALID_URL", message=message)


def _blocked(message: str) -> ValidationResult:
    return ValidationResult(valid=False, error_code="BLOCKED_URL", message=message)
