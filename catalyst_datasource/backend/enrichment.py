"""Resolve site ids to display names with one batched site lookup."""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from catalyst_datasource.backend.client import auth_headers
from catalyst_datasource.backend.models import InstanceSettings
from catalyst_datasource.backend.tokens import TokenManager
from catalyst_datasource.backend.urls import site_url
from catalyst_datasource.errors import CatalystError, EnrichmentError
from catalyst_datasource.observability.metrics import ENRICHMENT_FAILURES

logger = logging.getLogger(__name__)


def collect_site_ids(records: Iterable[Mapping[str, Any]]) -> set[str]:
    return {sid for r in records if isinstance(sid := r.get("siteId"), str) and sid}


async def _lookup_site_names(
    client: httpx.AsyncClient,
    tokens: TokenManager,
    instance: InstanceSettings,
    ids: set[str],
) -> dict[str, str]:
    try:
        url = site_url(instance.base_url)
        token = await tokens.get_token(client, instance)
        response = await client.get(url, params={"siteId": ",".join(sorted(ids))}, headers=auth_headers(token))
    except (CatalystError, httpx.HTTPError) as e:
        raise EnrichmentError(f"site lookup failed: {e}") from e

    if not response.is_success:
        raise EnrichmentError(f"site endpoint returned HTTP {response.status_code}: {response.text[:500]}")

    try:
        body = response.json()
    except ValueError as e:
        raise EnrichmentError(f"failed to decode site response: {e}") from e

    sites = body.get("response") if isinstance(body, dict) else None
    names: dict[str, str] = {}
    for site in sites if isinstance(sites, list) else []:
        if not isinstance(site, dict):
            continue
        site_id = site.get("id")
        name = site.get("siteName") or site.get("name")
        if isinstance(site_id, str) and site_id and isinstance(name, str) and name:
            names[site_id] = name
    return names


async def resolve_site_names(
    client: httpx.AsyncClient,
    tokens: TokenManager,
    instance: InstanceSettings,
    ids: set[str],
) -> dict[str, str]:
    """Map site ids to names; any failure degrades to an empty mapping."""
    if not ids:
        return {}
    try:
        names = await _lookup_site_names(client, tokens, instance, ids)
    except EnrichmentError as e:
        ENRICHMENT_FAILURES.inc()
        logger.warning("Failed to resolve site names, showing raw ids: %s", e)
        return {}
    logger.debug("Resolved %d of %d site id(s)", len(names), len(ids))
    return names
