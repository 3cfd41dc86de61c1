"""Prometheus metrics for the sales board."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("sales_board", "Sales board application info")
app_info.info({"version": "0.1.0", "name": "sales-board"})

# Fetch metrics
page_fetches_total = Counter(
    "sales_page_fetches_total",
    "Total number of upstream search page fetches",
    ["region", "status"],
)

page_fetch_duration_seconds = Histogram(
    "sales_page_fetch_duration_seconds",
    "Time spent fetching and parsing one search page",
    ["region"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

pagination_drift_total = Counter(
    "sales_pagination_drift_total",
    "Pages whose ids repeated the previous page and needed the HTML fallback",
    ["region", "outcome"],
)

session_bootstraps_total = Counter(
    "sales_session_bootstraps_total",
    "Store session bootstraps",
    ["region", "reason"],
)

# Cache metrics
page_cache_hits_total = Counter(
    "sales_page_cache_hits_total",
    "Page cache hits",
    ["region"],
)

page_cache_misses_total = Counter(
    "sales_page_cache_misses_total",
    "Page cache misses",
    ["region"],
)

page_cache_size = Gauge(
    "sales_page_cache_size",
    "Number of pages currently cached",
)

# Navigation metrics
nav_interactions_total = Counter(
    "sales_nav_interactions_total",
    "Button interactions on pinned boards by outcome",
    ["outcome"],
)

board_refreshes_total = Counter(
    "sales_board_refreshes_total",
    "Scheduled pinned board refreshes",
    ["status"],
)
