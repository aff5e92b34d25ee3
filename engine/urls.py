"""
Canonical URL forms used as record identity keys
"""

from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAM_PREFIXES = ("utm_",)
TRACKING_PARAMS = {
    "gclid", "fbclid", "msclkid", "mc_cid", "mc_eid", "igshid",
    "ref", "ref_src", "srsltid", "wt_mc", "itm_source", "itm_medium", "itm_campaign",
}


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PARAM_PREFIXES)


def normalize_url(url: str, keep_query: bool = False) -> str:
    """
    Canonicalise a URL.

    - scheme and host lower-cased, default ports dropped
    - fragment removed
    - query removed, or with keep_query=True only tracking parameters
      removed and the rest sorted
    - trailing slash removed from the path (the bare root keeps no slash)
    """
    url = url.strip()
    if not url:
        raise ValueError("Cannot normalise an empty URL")

    parts = urlsplit(url)
    scheme = (parts.scheme or "https").lower()
    host = (parts.hostname or "").lower()
    netloc = host
    if parts.port and not ((scheme == "http" and parts.port == 80) or (scheme == "https" and parts.port == 443)):
        netloc = f"{host}:{parts.port}"

    path = parts.path.rstrip("/")

    query = ""
    if keep_query and parts.query:
        params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking_param(k)]
        query = urlencode(sorted(params))

    return urlunsplit((scheme, netloc, path, query, ""))


def host_of(url: str) -> Optional[str]:
    host = urlsplit(url.strip()).hostname
    return host.lower() if host else None


def host_matches(url: str, hosts) -> bool:
    """True when the URL's host equals, or is a subdomain of, one of `hosts`."""
    host = host_of(url)
    if not host:
        return False
    for candidate in hosts:
        candidate = candidate.lower()
        if host == candidate or host.endswith("." + candidate):
            return True
    return False
