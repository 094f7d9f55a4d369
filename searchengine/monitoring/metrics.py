from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Crawl Metrics
# -------------------------

FETCH_REQUESTS = Counter(
    "searchengine_fetch_requests_total",
    "HTTP fetch attempts",
    ["site"],
)

FETCH_FAILURES = Counter(
    "searchengine_fetch_failures_total",
    "Fetches that produced no page",
    ["site", "reason"],
)

FETCH_LATENCY = Histogram(
    "searchengine_fetch_latency_seconds",
    "Time to fetch a page",
    ["site"],
)

PAGES_INDEXED = Counter(
    "searchengine_pages_indexed_total",
    "Pages persisted together with their lemmas",
    ["site"],
)

SKIPPED_LINKS = Counter(
    "searchengine_skipped_links_total",
    "Discovered links that were not queued",
    ["reason"],
)

TASK_ERRORS = Counter(
    "searchengine_task_errors_total",
    "Crawl tasks aborted by an unexpected error",
    ["site"],
)

SITES_INDEXING = Gauge(
    "searchengine_sites_indexing",
    "Sites whose crawl is in progress",
)

# -------------------------
# Search Metrics
# -------------------------

SEARCH_REQUESTS = Counter(
    "searchengine_search_requests_total",
    "Search queries answered",
    ["outcome"],
)

SEARCH_LATENCY = Histogram(
    "searchengine_search_latency_seconds",
    "Time to answer a search query",
)


async def metrics_handler(request):
    data = generate_latest()

    # aiohttp rejects a charset inside content_type
    ctype = CONTENT_TYPE_LATEST.split(";")[0]

    return web.Response(
        body=data,
        content_type=ctype
    )
