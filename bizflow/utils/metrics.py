"""Prometheus metrics definitions"""

from prometheus_client import Counter, Histogram, Gauge


# Spreadsheet sync
sheet_sync_attempts = Counter(
    'sheet_sync_attempts_total',
    'Spreadsheet endpoint calls by transport, action and outcome',
    labelnames=['transport', 'action', 'outcome']  # success, failure
)

sheet_sync_latency = Histogram(
    'sheet_sync_latency_seconds',
    'Latency of spreadsheet endpoint calls',
    labelnames=['transport'],
    buckets=[0.25, 0.5, 1, 2, 5, 10, 30]
)

sync_log_entries = Gauge(
    'sheet_sync_log_entries',
    'Entries currently held in the sync log'
)

# Hosted backend
remote_store_errors = Counter(
    'remote_store_errors_total',
    'Failed hosted backend calls',
    labelnames=['kind', 'operation']
)

remote_store_latency = Histogram(
    'remote_store_latency_seconds',
    'Latency of hosted backend calls',
    labelnames=['operation'],
    buckets=[0.05, 0.1, 0.5, 1, 2, 5]
)

# Local state
entity_mutations = Counter(
    'entity_mutations_total',
    'Create/update/delete operations applied to in-memory state',
    labelnames=['kind', 'operation']  # create, update, delete
)

local_cache_read_failures = Counter(
    'local_cache_read_failures_total',
    'Corrupt or unreadable local cache entries replaced by empty collections',
    labelnames=['kind']
)
