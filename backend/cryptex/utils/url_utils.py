"""URL normalization utilities for upstream base URLs."""

from typing import Iterable, List, Optional
from urllib.parse import urlparse


def ensure_url_scheme(url: str) -> str:
    """Ensure a URL has a scheme. Adds https:// if missing.

    Handles bare domains (api.binance.com), scheme-relative (//api.binance.com),
    and URLs that already have a scheme.
    """
    url = url.strip()
    if not url:
        return url
    if url.startswith("//"):
        return "https:" + url
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        url = "https://" + url
    return url


def url_origin(raw: Optional[str]) -> Optional[str]:
    """Reduce a URL to ``scheme://host[:port]``. Returns None for blank or unparseable input."""
    if not raw or not raw.strip():
        return None
    parsed = urlparse(ensure_url_scheme(raw))
    if not parsed.netloc:
        return None
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


def url_host(raw: Optional[str]) -> Optional[str]:
    """Host (with port) of a URL, or None."""
    origin = url_origin(raw)
    if origin is None:
        return None
    return urlparse(origin).netloc


def unique_origins(urls: Iterable[Optional[str]]) -> List[str]:
    """Normalize each URL to its origin, dropping blanks and duplicates while keeping order."""
    seen = []
    for url in urls:
        origin = url_origin(url)
        if origin and origin not in seen:
            seen.append(origin)
    return seen
