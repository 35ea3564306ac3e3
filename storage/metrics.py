"""
Prometheus metrics for the track store.
"""

from prometheus_client import Counter, Histogram

PILOTS_RETRIEVED = Counter(
    'store_pilots_retrieved_total',
    'Pilots loaded from the store'
)

TRACKS_RETRIEVED = Counter(
    'store_tracks_retrieved_total',
    'Track points read from the store'
)

TRACKS_WRITTEN = Counter(
    'store_tracks_written_total',
    'Track point writes',
    ['result']  # inserted, duplicate
)

QUERY_LATENCY = Histogram(
    'store_query_latency_seconds',
    'Store query latency',
    ['query'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)
