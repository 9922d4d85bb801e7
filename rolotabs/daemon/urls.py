"""URL matching for bookmark/tab association.

Two URLs refer to the same destination when they share origin, path and
query. Trailing slashes and fragments are ignored; anything else counts.
"""

import urllib.parse
from typing import Iterable, Optional

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}

DEFAULT_HIDDEN_PREFIXES = ("chrome://", "chrome-extension://")

# Characters left alone when percent-encoding; existing escapes are kept.
PATH_SAFE = "/%:@!$&'()*+,;=~"
QUERY_SAFE = PATH_SAFE + "?"


def normalize_url(url: str) -> str:
    """Reduce a URL to origin + path + query.

    Falls back to the raw string when the URL cannot be parsed, so that
    unparseable identifiers still compare by plain equality.
    """
    try:
        parsed = urllib.parse.urlsplit(url)
        port = parsed.port
    except ValueError:
        return url

    scheme = parsed.scheme.lower()
    if not scheme:
        return url

    path = urllib.parse.quote(parsed.path, safe=PATH_SAFE).rstrip("/")
    query = urllib.parse.quote(parsed.query, safe=QUERY_SAFE)
    query = f"?{query}" if query else ""

    if not parsed.netloc:
        # about:blank, data:, mailto: and friends have no origin
        return f"{scheme}:{path}{query}"

    host = _ascii_host((parsed.hostname or "").lower())
    if ":" in host:
        host = f"[{host}]"
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        host = f"{host}:{port}"

    return f"{scheme}://{host}{path}{query}"


def _ascii_host(host: str) -> str:
    """Punycode internationalized hostnames; leave invalid ones as they are."""
    if host.isascii():
        return host
    try:
        return host.encode("idna").decode("ascii")
    except UnicodeError:
        return host


def urls_match(url_a: Optional[str], url_b: Optional[str]) -> bool:
    """Loose URL equality; a missing URL never matches anything."""
    if not url_a or not url_b:
        return False
    return normalize_url(url_a) == normalize_url(url_b)


def is_internal_url(
    url: Optional[str],
    prefixes: Iterable[str] = DEFAULT_HIDDEN_PREFIXES,
) -> bool:
    """True for browser-internal pages that never show up as open tabs."""
    if not url:
        return False
    lower_url = url.lower()
    return any(lower_url.startswith(prefix.lower()) for prefix in prefixes)
