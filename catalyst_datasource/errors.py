"""Exception hierarchy for the Catalyst Center datasource backend.

Errors from the credential cache and the paginated fetcher abort the query
they belong to and are reported in that query's result slot. Enrichment
errors are recovered where they are raised.
"""

from typing import Any


class CatalystError(Exception):
    """Base class for every error raised by the datasource backend."""


class ConfigurationError(CatalystError):
    """The instance settings are missing or invalid (base URL, credentials)."""


class CredentialsMissingError(ConfigurationError):
    """No override token and no username/password to log in with."""


class AuthEndpointError(CatalystError):
    """The login call failed at the transport level or returned non-2xx."""


class TokenNotFoundError(CatalystError):
    """The login call succeeded but no token could be extracted from it."""


class UpstreamRequestError(CatalystError):
    """A list or lookup call failed at the transport level."""


class UpstreamStatusError(CatalystError):
    """A list or lookup call returned a non-2xx status."""

    def __init__(self, endpoint: str, status_code: int, body: str) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        self.body = body
        super().__init__(f"{endpoint} endpoint returned HTTP {status_code}: {body[:500]}")


class EnrichmentError(CatalystError):
    """The batched site-name lookup failed."""


class FetchCancelledError(CatalystError):
    """The query deadline passed between pages.

    ``records`` holds whatever was accumulated before the fetch unwound.
    """

    def __init__(self, records: list[dict[str, Any]], message: str = "query deadline exceeded") -> None:
        self.records = records
        super().__init__(f"{message} after {len(records)} record(s)")
