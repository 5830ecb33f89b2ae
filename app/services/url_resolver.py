"""
URL Resolver and Proxy-URL Synthesizer
Turns page references into absolute URLs and absolute URLs into proxy references
"""

import re
from urllib.parse import urljoin, urlsplit, quote

from app.core.exceptions import ResolutionFailure

DEFAULT_PROXY_PATH = "/fetch"

# References that can never be fetched through the proxy
UNPROXIABLE_PREFIXES = ("data:", "javascript:", "mailto:", "tel:", "#")

_WHITESPACE_OR_CONTROL = re.compile(r"[\x00-\x20\x7f]")


def resolve(reference: str, base: str) -> str:
    """Resolve a possibly-relative reference against an absolute base URL.

    Raises ResolutionFailure for anything that does not end up as an
    http(s) URL with a host.
    """
    reference = reference.strip()
    if _WHITESPACE_OR_CONTROL.search(reference):
        raise ResolutionFailure(f"Malformed reference: {reference!r}")

    try:
        absolute = urljoin(base, reference)
        parts = urlsplit(absolute)
        parts.port  # raises ValueError on a bad port
    except ValueError as e:
        raise ResolutionFailure(f"Cannot resolve {reference!r}: {e}")

    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ResolutionFailure(f"Not a fetchable URL: {absolute!r}")

    return absolute


def is_proxied(reference: str, proxy_path: str = DEFAULT_PROXY_PATH) -> bool:
    return reference.startswith(proxy_path + "?")


def proxy_reference(absolute_url: str, proxy_path: str = DEFAULT_PROXY_PATH) -> str:
    """Build the proxy reference for an already absolute URL"""
    return f"{proxy_path}?url={quote(absolute_url, safe='')}"


def synthesize(reference: str, base: str, proxy_path: str = DEFAULT_PROXY_PATH) -> str:
    """Create proxy URL from original reference.

    Fails open: anything that is empty, unproxiable, already proxied or
    unresolvable comes back untouched.
    """
    candidate = reference.strip()
    if not candidate or candidate.lower().startswith(UNPROXIABLE_PREFIXES):
        return reference
    if is_proxied(candidate, proxy_path):
        return reference

    try:
        absolute = resolve(candidate, base)
    except ResolutionFailure:
        return reference

    return proxy_reference(absolute, proxy_path)
