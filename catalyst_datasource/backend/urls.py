"""Endpoint URL construction from a configured base URL.

The base URL may sit behind a reverse proxy (``https://gw/proxy/dnac/dna``) or
point anywhere inside the API (``https://host/dna/intent/api/v1``). Every path
segment before the first ``dna`` segment is kept as a prefix; the rest of the
base path is replaced by the endpoint path.
"""

import httpx

from catalyst_datasource.errors import ConfigurationError

ANCHOR_SEGMENT = "dna"

TOKEN_PATH = "/dna/system/api/v1/auth/token"
ISSUES_PATH = "/dna/data/api/v1/assuranceIssues"
SITE_PATH = "/dna/intent/api/v1/site"
SITE_HEALTH_PATH = "/dna/intent/api/v1/site-health"


def _parse_base(base: str) -> httpx.URL:
    if not base.strip():
        raise ConfigurationError("base URL is not configured")
    try:
        url = httpx.URL(base.strip())
    except httpx.InvalidURL as e:
        raise ConfigurationError(f"invalid base URL {base!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"invalid base URL {base!r}: expected http(s)://host[/path]")
    return url


def path_prefix(base: str) -> str:
    """Return the path segments preceding the anchor segment, or ``""``."""
    segments = [s for s in _parse_base(base).path.split("/") if s]
    if ANCHOR_SEGMENT not in segments:
        return ""
    head = segments[: segments.index(ANCHOR_SEGMENT)]
    return "/" + "/".join(head) if head else ""


def _endpoint(base: str, path: str) -> str:
    url = _parse_base(base)
    return str(url.copy_with(path=path_prefix(base) + path))


def token_url(base: str) -> str:
    return _endpoint(base, TOKEN_PATH)


def issues_url(base: str) -> str:
    return _endpoint(base, ISSUES_PATH)


def site_url(base: str) -> str:
    return _endpoint(base, SITE_PATH)


def site_health_url(base: str) -> str:
    return _endpoint(base, SITE_HEALTH_PATH)
