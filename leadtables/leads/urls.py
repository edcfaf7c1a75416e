from __future__ import annotations

import ipaddress
import re
from urllib.parse import SplitResult, quote, urlsplit

_PROTOCOL_RE = re.compile(r"^https?://", re.IGNORECASE)
_HOST_RE = re.compile(r"^[a-z0-9\-._~!$&'()*+,;=]+$")
_DEFAULT_PORTS = {"http": 80, "https": 443}
_PATH_SAFE = "/%!$&'()*+,;=:@-._~"
_QUERY_SAFE = "/?%!$&'()*+,;=:@-._~"


def normalize_whitespace(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def _canonical_host(hostname: str) -> str | None:
    if ":" in hostname:
        try:
            return f"[{ipaddress.IPv6Address(hostname).compressed}]"
        except ValueError:
            return None

    host = hostname.lower()
    if not host.isascii():
        try:
            host = host.encode("idna").decode("ascii")
        except UnicodeError:
            return None
    if not _HOST_RE.match(host):
        return None
    return host


def _split(candidate: str) -> tuple[SplitResult, str, int | None] | None:
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return None

    if parts.scheme.lower() not in _DEFAULT_PORTS or not parts.hostname:
        return None
    host = _canonical_host(parts.hostname)
    if host is None:
        return None
    return parts, host, port


def normalize_website_url(value: str | None) -> str | None:
    """Canonical absolute URL for a user-entered website, or the trimmed input if it cannot be parsed."""
    cleaned = normalize_whitespace(value)
    if cleaned is None:
        return None

    candidate = cleaned if _PROTOCOL_RE.match(cleaned) else f"https://{cleaned}"
    split = _split(candidate)
    if split is None:
        return cleaned

    parts, host, port = split
    scheme = parts.scheme.lower()
    netloc = host
    if "@" in parts.netloc:
        netloc = f"{parts.netloc.rpartition('@')[0]}@{host}"
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"

    url = f"{scheme}://{netloc}{quote(parts.path or '/', safe=_PATH_SAFE)}"
    if parts.query:
        url = f"{url}?{quote(parts.query, safe=_QUERY_SAFE)}"
    return url.rstrip("/")


def extract_domain(website_url: str | None) -> str | None:
    normalized = normalize_website_url(website_url)
    if normalized is None:
        return None

    split = _split(normalized)
    if split is not None:
        return split[1].removeprefix("www.")

    lowered = normalized.lower()
    for prefix in ("https://", "http://"):
        if lowered.startswith(prefix):
            lowered = lowered[len(prefix):]
            break
    lowered = lowered.removeprefix("www.")
    return lowered.split("/")[0].strip() or None
