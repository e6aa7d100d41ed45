"""Prometheus metric definitions for datasource self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

REQUEST_DURATION_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0)
UPSTREAM_DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0)

# ---------------------------------------------------------------------------
# Inbound request metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "catalyst_datasource_request_duration_seconds",
    "End-to-end request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "catalyst_datasource_requests_total",
    "Total number of requests",
    labelnames=["endpoint", "status"],
)

REQUESTS_IN_PROGRESS = Gauge(
    "catalyst_datasource_requests_in_progress",
    "Number of requests currently being processed",
    labelnames=["endpoint"],
)

QUERIES_TOTAL = Counter(
    "catalyst_datasource_queries_total",
    "Total number of dashboard queries answered",
    labelnames=["query_type", "status"],
)

# ---------------------------------------------------------------------------
# Credential cache metrics
# ---------------------------------------------------------------------------

TOKEN_REQUESTS_TOTAL = Counter(
    "catalyst_datasource_token_requests_total",
    "Login exchanges against the auth endpoint",
    labelnames=["status"],
)

TOKEN_CACHE_HITS = Counter(
    "catalyst_datasource_token_cache_hits_total",
    "Token lookups served from the in-memory cache",
)

TOKEN_INVALIDATIONS = Counter(
    "catalyst_datasource_token_invalidations_total",
    "Cached tokens invalidated after a 401/403 response",
)

# ---------------------------------------------------------------------------
# Upstream API metrics
# ---------------------------------------------------------------------------

UPSTREAM_REQUEST_DURATION = Histogram(
    "catalyst_datasource_upstream_request_duration_seconds",
    "Duration of calls to the Catalyst Center API in seconds",
    labelnames=["endpoint"],
    buckets=UPSTREAM_DURATION_BUCKETS,
)

PAGES_FETCHED = Counter(
    "catalyst_datasource_pages_fetched_total",
    "List pages fetched from the Catalyst Center API",
    labelnames=["endpoint"],
)

ENRICHMENT_FAILURES = Counter(
    "catalyst_datasource_enrichment_failures_total",
    "Site-name lookups that failed and fell back to raw ids",
)

# ---------------------------------------------------------------------------
# Health / info metrics
# ---------------------------------------------------------------------------

COMPONENT_HEALTHY = Gauge(
    "catalyst_datasource_component_healthy",
    "Whether a dependency component is healthy (1=healthy, 0=unhealthy)",
    labelnames=["component"],
)

APP_INFO = Info(
    "catalyst_datasource",
    "Catalyst datasource build information",
)
