"""Shared URL helpers for normalizing URLs and testing boundary membership."""

from __future__ import annotations

import re
from urllib.parse import urlparse

_MULTI_SLASH = re.compile(r"/+")


def normalize_path(path: str) -> str:
    """Collapse repeated slashes and drop one trailing slash (empty -> '/')."""
    path = _MULTI_SLASH.sub("/", path)
    if path.endswith("/"):
        path = path[:-1]
    return path or "/"


def hash_route(fragment: str) -> str:
    """Return the hash route of a URL fragment, without its own query string."""
    if not fragment:
        return ""
    return "#" + fragment.split("?", 1)[0]


def is_absolute_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme) and (bool(parsed.netloc) or parsed.scheme in ("about", "data", "file"))


def normalize_url(url: str) -> str:
    """Normalize a URL for route deduplication.

    Scheme and host are kept, the path is collapsed, query parameters are
    sorted and a hash route (SPA routing) is kept without its own query.
    """
    parsed = urlparse(url)
    path = normalize_path(parsed.path)
    query = ""
    if parsed.query:
        params = sorted(parsed.query.split("&"))
        query = "?" + "&".join(params)
    return f"{parsed.scheme}://{parsed.netloc}{path}{query}{hash_route(parsed.fragment)}"


def within_boundary(url: str, patterns: list[str]) -> bool:
    """True when the URL contains any of the boundary substrings."""
    return any(pattern in url for pattern in patterns)


def system_name(url: str) -> str:
    """First path segment of a URL, used to name the system a link leads to."""
    parts = [p for p in urlparse(url).path.split("/") if p]
    return parts[0] if parts else "unknown"
