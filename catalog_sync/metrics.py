"""Prometheus metrics for the catalog sync."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("catalog_sync", "Catalog sync application info")
app_info.info({"version": "0.1.0", "name": "catalog-sync"})

# Fetch metrics
listing_fetches_total = Counter(
    "listing_fetches_total",
    "Total number of page fetch attempts",
    ["kind", "status"],
)

listing_fetch_duration_seconds = Histogram(
    "listing_fetch_duration_seconds",
    "Time spent fetching pages",
    ["kind"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

# Extraction metrics
listings_extracted_total = Counter(
    "listings_extracted_total",
    "Total number of listings extracted with a usable title",
)

listings_discarded_total = Counter(
    "listings_discarded_total",
    "Total number of listings dropped from a run",
    ["reason"],
)

# Catalog metrics
catalog_mutations_total = Counter(
    "catalog_mutations_total",
    "Total number of catalog rows written by reconciliation",
    ["action"],
)

catalog_write_errors_total = Counter(
    "catalog_write_errors_total",
    "Total number of rejected catalog writes",
)

# Run metrics
sync_runs_total = Counter(
    "sync_runs_total",
    "Total number of sync runs",
    ["trigger", "status"],
)

sync_last_run_timestamp = Gauge(
    "sync_last_run_timestamp",
    "Timestamp of the last finished sync run",
    ["trigger"],
)

sync_lock_skipped_total = Counter(
    "sync_lock_skipped_total",
    "Sync runs that could not take the run lock",
    ["trigger"],
)


def record_fetch(kind: str, success: bool, duration: float):
    """Record one page fetch (kind is 'index' or 'listing')."""
    status = "success" if success else "error"
    listing_fetches_total.labels(kind=kind, status=status).inc()
    listing_fetch_duration_seconds.labels(kind=kind).observe(duration)


def record_listing_discarded(reason: str):
    """Record a listing dropped from the result set."""
    listings_discarded_total.labels(reason=reason).inc()


def record_catalog_mutation(action: str):
    """Record an insert, reactivation or deactivation."""
    catalog_mutations_total.labels(action=action).inc()


def record_sync_run(trigger: str, status: str):
    """Record a finished sync run."""
    sync_runs_total.labels(trigger=trigger, status=status).inc()
    sync_last_run_timestamp.labels(trigger=trigger).set(time.time())
