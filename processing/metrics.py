"""
Prometheus metrics for the tracker service.
"""

from prometheus_client import Counter, Gauge, Histogram

POINTS_FETCHED = Counter(
    'tracker_points_fetched_total',
    'Points parsed from tracker feeds',
    ['source']
)

POINTS_MERGED = Counter(
    'tracker_points_merged_total',
    'New points appended to pilot tracks'
)

PILOT_ERRORS = Counter(
    'tracker_pilot_errors_total',
    'Pilots skipped during a fetch cycle',
    ['stage']  # fetching, merging, persisting, notifying
)

NOTIFICATIONS_SENT = Counter(
    'tracker_notifications_sent_total',
    'Chat messages sent'
)

NOTIFICATIONS_REMOVED = Counter(
    'tracker_notifications_removed_total',
    'Chat messages deleted at the daily reset'
)

NOTIFICATION_ERRORS = Counter(
    'tracker_notification_errors_total',
    'Failed Telegram calls',
    ['method']
)

ROSTER_SIZE = Gauge(
    'tracker_roster_size',
    'Pilots currently tracked'
)

CYCLE_DURATION = Histogram(
    'tracker_cycle_duration_seconds',
    'Duration of a full fetch cycle',
    buckets=[1, 5, 10, 30, 60, 120, 240, 600]
)
