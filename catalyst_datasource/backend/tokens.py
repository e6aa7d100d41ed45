"""Credential cache for Catalyst Center ``X-Auth-Token`` bearer tokens.

One ``TokenManager`` lives for the whole process and is shared by every query.
Tokens are cached per instance uid and refreshed lazily: a lookup either returns
a still-valid cached token or performs a login exchange against the auth
endpoint. A manual override token on the instance bypasses the cache entirely.
"""

import logging
import math
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from catalyst_datasource.backend.client import AUTH_HEADER
from catalyst_datasource.backend.models import InstanceSettings
from catalyst_datasource.backend.urls import token_url
from catalyst_datasource.errors import AuthEndpointError, CredentialsMissingError, TokenNotFoundError
from catalyst_datasource.observability.metrics import TOKEN_CACHE_HITS, TOKEN_REQUESTS_TOTAL

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 55 * 60
MIN_TTL_SECONDS = 5 * 60
# A server-provided expiry this close to now is treated as implausible.
MIN_PLAUSIBLE_SECONDS = 60

EXPIRES_IN_HEADERS = ("X-Auth-Token-Expires-In", "X-Token-Expires-In")
EXPIRY_EPOCH_HEADERS = ("X-Auth-Token-Expiry", "X-Token-Expiry")

_MAX_AGE_RE = re.compile(r"^\s*max-age\s*=\s*(\d+)\s*$", re.IGNORECASE)
_INT64_MAX = 2**63 - 1


@dataclass(frozen=True)
class TokenEntry:
    token: str
    expires_at: float  # epoch seconds

    def usable(self, now: float) -> bool:
        return bool(self.token.strip()) and now < self.expires_at


class TokenManager:
    """Acquires and caches auth tokens, keyed by datasource instance uid."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: dict[str, TokenEntry] = {}

    async def get_token(self, client: httpx.AsyncClient, instance: InstanceSettings) -> str:
        """Return a usable token for ``instance``.

        Order of precedence:
          1. The manual override token from the instance settings.
          2. A non-expired token from the cache.
          3. A fresh token from the login endpoint, which is then cached.
        """
        if override := instance.override_token:
            return override

        with self._lock:
            entry = self._cache.get(instance.uid)
            if entry is not None and entry.usable(self._clock()):
                TOKEN_CACHE_HITS.inc()
                return entry.token

        if not instance.username or not instance.password:
            raise CredentialsMissingError("no username/password provided; cannot obtain token")

        return await self._login(client, instance)

    def invalidate(self, uid: str) -> None:
        """Force the next ``get_token`` for ``uid`` through the login exchange."""
        with self._lock:
            self._cache[uid] = TokenEntry(token="", expires_at=0.0)

    def _peek(self, uid: str) -> TokenEntry | None:
        with self._lock:
            return self._cache.get(uid)

    async def _login(self, client: httpx.AsyncClient, instance: InstanceSettings) -> str:
        url = token_url(instance.base_url)
        logger.info("Requesting Catalyst Center token for instance %s", instance.uid)
        try:
            response = await client.post(url, auth=httpx.BasicAuth(instance.username, instance.password))
        except httpx.HTTPError as e:
            TOKEN_REQUESTS_TOTAL.labels(status="error").inc()
            raise AuthEndpointError(f"token request to {url} failed: {e}") from e

        if not response.is_success:
            TOKEN_REQUESTS_TOTAL.labels(status="error").inc()
            raise AuthEndpointError(f"token endpoint returned HTTP {response.status_code}: {response.text[:500]}")

        now = self._clock()
        expires_at: float | None = None

        token = response.headers.get(AUTH_HEADER, "").strip()
        if token:
            expires_at = expiry_from_headers(response.headers, now)
        else:
            body = _decode_body(response)
            token = _token_from_body(body)
            if not token:
                TOKEN_REQUESTS_TOTAL.labels(status="error").inc()
                logger.warning("Catalyst Center token not found in header or JSON body")
                raise TokenNotFoundError("token not found in response")
            expires_at = expiry_from_headers(response.headers, now)
            if expires_at is None:
                expires_at = expiry_from_body(body, now)

        TOKEN_REQUESTS_TOTAL.labels(status="success").inc()
        self._store(instance.uid, token, expires_at, now)
        return token

    def _store(self, uid: str, token: str, expires_at: float | None, now: float) -> None:
        if expires_at is None:
            expires_at = now + DEFAULT_TTL_SECONDS
        elif expires_at <= now + MIN_PLAUSIBLE_SECONDS:
            expires_at = now + MIN_TTL_SECONDS
        with self._lock:
            self._cache[uid] = TokenEntry(token=token, expires_at=expires_at)
        logger.debug("Cached token for instance %s, expires in %.0fs", uid, expires_at - now)


# --- Response parsing ---


def _decode_body(response: httpx.Response) -> dict[str, Any]:
    # Malformed bodies are tolerated; the token may still come from headers.
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _token_from_body(body: dict[str, Any]) -> str:
    for key in ("Token", "token"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _as_int(value: object) -> int | None:
    """Read an integer from a header or JSON value; non-finite or out-of-range numbers are None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        value = int(value)
    elif isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if not isinstance(value, int) or abs(value) > _INT64_MAX:
        return None
    return value


def parse_max_age(cache_control: str) -> int | None:
    """Extract the ``max-age`` directive from a Cache-Control header."""
    for directive in cache_control.split(","):
        match = _MAX_AGE_RE.match(directive)
        if match:
            return _as_int(match.group(1))
    return None


def _parse_datetime(value: str) -> datetime | None:
    """Parse an RFC 3339 timestamp or an HTTP-date (RFC 1123/850, asctime)."""
    value = value.strip()
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            dt = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


def expiry_from_headers(headers: httpx.Headers, now: float) -> float | None:
    """Derive an absolute expiry (epoch seconds) from login response headers."""
    for key in EXPIRES_IN_HEADERS:
        seconds = _as_int(headers.get(key, ""))
        if seconds is not None and seconds > 0:
            return now + seconds

    for key in EXPIRY_EPOCH_HEADERS:
        epoch = _as_int(headers.get(key, ""))
        if epoch is not None and epoch > now:
            return float(epoch)

    if cache_control := headers.get("Cache-Control"):
        max_age = parse_max_age(cache_control)
        if max_age is not None and max_age > 0:
            return now + max_age

    if expires := headers.get("Expires"):
        dt = _parse_datetime(expires)
        if dt is not None and dt.timestamp() > now:
            return dt.timestamp()

    return None


def expiry_from_body(body: dict[str, Any], now: float) -> float | None:
    """Derive an absolute expiry from conventional JSON fields in the login body."""
    for key in ("expiresIn", "expires_in"):
        seconds = _as_int(body.get(key))
        if seconds is not None and seconds > 0:
            return now + seconds

    for key in ("expiresAt", "expiry"):
        epoch = _as_int(body.get(key))
        if epoch is not None and epoch > now + MIN_PLAUSIBLE_SECONDS:
            return float(epoch)

    # "expiration" is ambiguous across API versions: epoch if in the future, else seconds.
    expiration = _as_int(body.get("expiration"))
    if expiration is not None and expiration > 0:
        if expiration > now + MIN_PLAUSIBLE_SECONDS:
            return float(expiration)
        return now + expiration

    expire_time = body.get("expireTime")
    if isinstance(expire_time, str):
        dt = _parse_datetime(expire_time)
        if dt is not None and dt.timestamp() > now + MIN_PLAUSIBLE_SECONDS:
            return dt.timestamp()

    return None
