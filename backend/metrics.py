"""
Prometheus metrics for the backend service.
"""

import os
from fastapi.responses import Response
from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import CollectorRegistry


SSE_SUBSCRIBERS = Gauge(
    'backend_sse_subscribers',
    'Connected dashboard subscribers'
)

SSE_MESSAGES_SENT = Counter(
    'backend_sse_messages_sent_total',
    'Frames written to subscribers',
    ['type']  # data, heartbeat
)

SSE_EVICTIONS = Counter(
    'backend_sse_evictions_total',
    'Subscribers evicted because their mailbox was full'
)

NOTIFICATIONS_RECEIVED = Counter(
    'backend_notifications_received_total',
    'Store change notifications received',
    ['status']  # valid, invalid
)

LISTENER_RECONNECTS = Counter(
    'backend_listener_reconnects_total',
    'Reconnections of the store listener'
)

HTTP_REQUESTS = Counter(
    'backend_http_requests_total',
    'HTTP requests',
    ['method', 'path', 'status']
)


async def get_metrics():
    """FastAPI handler for /metrics endpoint."""
    if 'PROMETHEUS_MULTIPROC_DIR' in os.environ:
        # Multi-process mode (for production)
        registry = CollectorRegistry()
        MultiProcessCollector(registry)
        output = generate_latest(registry)
    else:
        # Single-process mode (for development)
        output = generate_latest()

    return Response(content=output, media_type=CONTENT_TYPE_LATEST)
