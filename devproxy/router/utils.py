"""
Utility functions for Host-header routing, target parsing and h11 headers.
"""

import re
from urllib.parse import urlparse

from devproxy.models import DEFAULT_TARGET_HOST

# <slug>.localhost or <slug>.localhost:<port>
SUBDOMAIN_PATTERN = re.compile(r"^([a-z0-9][a-z0-9-]*[a-z0-9]?)\.localhost(:\d+)?$")


def extract_subdomain(host_header: str | bytes | None) -> str | None:
    """
    Extract the route name from a Host header.

    Args:
        host_header: HTTP Host header value (may include port)

    Returns:
        Subdomain string, or None when the request is addressed to the proxy itself
    """
    if not host_header:
        return None
    if isinstance(host_header, bytes):
        host_header = host_header.decode("latin-1")
    match = SUBDOMAIN_PATTERN.match(host_header)
    return match.group(1) if match else None


def parse_target(value) -> tuple[str, int] | None:
    """
    Parse a target value into a (host, port) tuple.

    Supports:
    - int: 8000 -> ("127.0.0.1", 8000)
    - numeric string: "8000" -> ("127.0.0.1", 8000)
    - host:port: "192.168.1.100:8080" -> ("192.168.1.100", 8080)
    - URL: "http://example.com:8080" -> ("example.com", 8080)

    Returns:
        (host, port) tuple or None if invalid
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        if 0 < value < 65536:
            return (DEFAULT_TARGET_HOST, value)
        return None
    if not isinstance(value, str):
        return None
    value = value.strip()
    if value.startswith("http://"):
        parsed = urlparse(value)
        try:
            port = parsed.port
        except ValueError:
            return None
        if parsed.hostname and port:
            return (parsed.hostname, port)
        return None
    if "://" in value:
        return None
    if ":" in value:
        host, port_str = value.rsplit(":", 1)
        if host and port_str.isdigit() and 0 < int(port_str) < 65536:
            return (host, int(port_str))
        return None
    if value.isdigit() and 0 < int(value) < 65536:
        return (DEFAULT_TARGET_HOST, int(value))
    return None


def get_header(headers, name: bytes) -> bytes | None:
    """First value of a header from an h11 header list (names are lowercased)"""
    for key, value in headers:
        if key == name:
            return value
    return None


def header_tokens(headers, name: bytes) -> set[bytes]:
    """Comma-separated tokens across all occurrences of a header, lowercased"""
    tokens: set[bytes] = set()
    for key, value in headers:
        if key == name:
            tokens.update(part.strip().lower() for part in value.split(b","))
    tokens.discard(b"")
    return tokens


def is_upgrade_request(headers) -> bool:
    """True for requests asking to switch protocols (e.g. WebSocket)"""
    return get_header(headers, b"upgrade") is not None and b"upgrade" in header_tokens(headers, b"connection")


def has_request_body(headers) -> bool:
    if get_header(headers, b"transfer-encoding") is not None:
        return True
    length = get_header(headers, b"content-length")
    return length is not None and length.strip() not in (b"", b"0")
