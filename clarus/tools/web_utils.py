from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlparse, urlsplit, urlunsplit

_TRACKING_PARAMS = frozenset({"fbclid", "gclid", "mc_cid", "mc_eid", "ref", "ref_src", "si", "igshid"})


def hostname(url: str) -> str:
    """Lowercased host of a URL, or an empty string when it has none."""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def extract_domain(url: str) -> str:
    """Host without a leading ``www.``, used for domain statistics."""
    host = hostname(url)
    return host[4:] if host.startswith("www.") else host


def normalize_url(url: str) -> str:
    """Canonical form used as the cross-user cache key."""
    url = url.strip()
    if url.startswith(("pdf://", "file://")):
        return url
    try:
        parsed = urlsplit(url)
    except ValueError:
        return url
    if not parsed.netloc:
        return url

    scheme = (parsed.scheme or "https").lower()
    netloc = parsed.netloc.lower()
    if netloc.startswith("www."):
        netloc = netloc[4:]
    params = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not key.lower().startswith("utm_") and key.lower() not in _TRACKING_PARAMS
    ]
    query = urlencode(sorted(params))
    path = parsed.path.rstrip("/")
    return urlunsplit((scheme, netloc, path, query, ""))
