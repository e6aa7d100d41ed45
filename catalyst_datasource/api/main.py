"""FastAPI backend for the Catalyst Center datasource.

Provides the HTTP endpoints a dashboard calls to run queries, check the
connection and populate template variables. The datasource (and its token
cache) is built once at startup and shared across requests.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from catalyst_datasource.backend.datasource import Datasource
from catalyst_datasource.backend.models import DataResponse, InstanceSettings
from catalyst_datasource.config import get_settings
from catalyst_datasource.observability.metrics import (
    APP_INFO,
    COMPONENT_HEALTHY,
    REQUEST_DURATION,
    REQUESTS_IN_PROGRESS,
    REQUESTS_TOTAL,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class QueryRequest(BaseModel):
    """Request body for POST /query.

    ``instance`` overrides the default instance from the environment.
    Each entry of ``queries`` is a raw dashboard query keyed by ``refId``.
    """

    instance: InstanceSettings | None = None
    queries: list[dict[str, Any]] = Field(default_factory=list)


class QueryResponse(BaseModel):
    """Response body for POST /query."""

    results: dict[str, DataResponse]


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    message: str


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the datasource once at startup."""
    settings = get_settings()
    APP_INFO.info({"version": "0.1.0"})
    app.state.datasource = Datasource(query_timeout_seconds=settings.query_timeout_seconds)
    logger.info("Catalyst datasource ready")
    yield
    logger.info("Shutting down Catalyst datasource")


app = FastAPI(title="Catalyst Center Datasource", lifespan=lifespan)


def _instance(override: InstanceSettings | None) -> InstanceSettings:
    return override or InstanceSettings.from_settings(get_settings())


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/query", response_model=QueryResponse)
async def query(request: QueryRequest) -> QueryResponse:
    """Run every dashboard query in the request against one instance."""
    datasource: Datasource = app.state.datasource
    REQUESTS_IN_PROGRESS.labels(endpoint="/query").inc()
    start = time.monotonic()

    try:
        results = await datasource.query_data(_instance(request.instance), request.queries)
    except Exception as exc:
        REQUESTS_TOTAL.labels(endpoint="/query", status="error").inc()
        REQUEST_DURATION.labels(endpoint="/query").observe(time.monotonic() - start)
        logger.exception("Query request failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        REQUESTS_IN_PROGRESS.labels(endpoint="/query").dec()

    REQUEST_DURATION.labels(endpoint="/query").observe(time.monotonic() - start)
    REQUESTS_TOTAL.labels(endpoint="/query", status="success").inc()
    return QueryResponse(results=results)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Check that the default instance accepts our credentials."""
    datasource: Datasource = app.state.datasource
    result = await datasource.check_health(_instance(None))
    COMPONENT_HEALTHY.labels(component="catalyst_center").set(1.0 if result.status == "ok" else 0.0)
    return HealthResponse(status=result.status, message=result.message)


@app.get("/resources/{path}")
async def resource(path: str, request: Request) -> Response:
    """Serve variable-editor resources; ``issues`` is proxied to the API."""
    datasource: Datasource = app.state.datasource
    result = await datasource.call_resource(_instance(None), path, request.url.query)
    REQUESTS_TOTAL.labels(endpoint="/resources", status="success" if result.status < 400 else "error").inc()
    return Response(content=result.body, status_code=result.status, headers=result.headers)
