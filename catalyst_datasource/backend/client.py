"""HTTP client construction for one Catalyst Center instance."""

import ssl

import httpx

from catalyst_datasource.backend.models import InstanceSettings

DEFAULT_TIMEOUT_SECONDS = 30
AUTH_HEADER = "X-Auth-Token"


def ssl_verify(instance: InstanceSettings) -> ssl.SSLContext | bool:
    """Build the SSL verification parameter for httpx.

    Returns False when the instance skips verification (self-signed lab setups).
    If a CA cert path is provided, returns an SSLContext.
    Otherwise returns True (system CA bundle).
    """
    if instance.insecure_skip_verify:
        return False
    if instance.ca_cert:
        return ssl.create_default_context(cafile=instance.ca_cert)
    return True


def client_for(instance: InstanceSettings) -> httpx.AsyncClient:
    """Create the client shared by every call made for one inbound request."""
    return httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS, verify=ssl_verify(instance))


def auth_headers(token: str) -> dict[str, str]:
    return {AUTH_HEADER: token, "Accept": "application/json"}
