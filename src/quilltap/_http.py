"""Small HTTP-related constants and URL helpers shared across Quilltap.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

from urllib.parse import urlparse

# Status codes an outer retry layer may treat as transient.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

# Applied to httpx clients owned by adapters (connect/read/write/pool).
DEFAULT_TIMEOUT_S = 120.0


def http_hostname(url: str | None) -> str | None:
    """Return the lower-cased hostname of an http(s) URL, else None.

    Any other scheme (``javascript:``, ``file:``, ``ftp:``...) or an
    unparseable value yields None so callers treat it as a non-match.
    """
    if not url:
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if parsed.scheme.lower() not in ("http", "https"):
        return None
    host = parsed.hostname
    return host.lower() if host else None


def host_matches(hostname: str | None, domain: str) -> bool:
    """Whether *hostname* equals *domain* or is one of its subdomains."""
    if not hostname:
        return False
    return hostname == domain or hostname.endswith("." + domain)


def join_url(base_url: str, path: str) -> str:
    """Join a base URL and a path without doubling slashes."""
    return base_url.rstrip("/") + "/" + path.lstrip("/")
