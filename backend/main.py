"""
FastAPI backend - live dashboard API for Livetrack.

Serves:
- Server-sent events stream of newly stored points (/api/events)
- REST API for pilots, active dates and daily tracks
- Prometheus metrics endpoint
"""

import os
import sys
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path

# Add parent directory to path for package imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware

from backend.broadcast import BroadcastServer, DEFAULT_MAILBOX_SIZE
from backend.listener import StoreListener
from backend.metrics import get_metrics, HTTP_REQUESTS
from contracts.constants import NOTIFY_CHANNEL_NEW_TRACK_DATA
from contracts.validation import DatesResponse
from processing.track import compute_statistics
from storage.manager import DATABASE_URL, DEFAULT_DATES_LIMIT, StoreError, TrackStore

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Configuration
BACKEND_HOST = os.getenv("BACKEND_HOST", "0.0.0.0")
BACKEND_PORT = int(os.getenv("BACKEND_PORT", "8000"))
LISTEN_CHANNEL = os.getenv("LISTEN_CHANNEL", NOTIFY_CHANNEL_NEW_TRACK_DATA)
SSE_HEARTBEAT_SECONDS = float(os.getenv("SSE_HEARTBEAT_SECONDS", "10"))
SSE_MAILBOX_SIZE = int(os.getenv("SSE_MAILBOX_SIZE", str(DEFAULT_MAILBOX_SIZE)))
SHUTDOWN_TIMEOUT_SECONDS = int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "10"))

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# Global state
store: TrackStore = None
broadcast_server: BroadcastServer = None
listener: StoreListener = None


def create_store() -> TrackStore:
    return TrackStore(DATABASE_URL)


def create_listener(server: BroadcastServer) -> StoreListener:
    return StoreListener(DATABASE_URL, server.publish_threadsafe, channel=LISTEN_CHANNEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global store, broadcast_server, listener

    logger.info("=" * 50)
    logger.info("Livetrack Backend - Starting")
    logger.info("=" * 50)

    store = create_store()
    # Fails startup if the database is unreachable
    await asyncio.to_thread(store.ping)
    logger.info("Track store ready")

    broadcast_server = BroadcastServer(
        mailbox_size=SSE_MAILBOX_SIZE,
        heartbeat_interval=SSE_HEARTBEAT_SECONDS,
    )
    broadcast_server.start()

    listener = create_listener(broadcast_server)
    listener.start()
    logger.info(f"Store listener started on '{LISTEN_CHANNEL}'")

    yield

    # Cleanup
    logger.info("Shutting down...")
    await asyncio.to_thread(listener.stop, SHUTDOWN_TIMEOUT_SECONDS)
    await broadcast_server.stop()
    store.close()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Livetrack Backend API",
    description="Live tracking of paragliding pilots",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Middleware to track HTTP requests."""
    response = await call_next(request)
    route = request.scope.get("route")
    HTTP_REQUESTS.labels(
        method=request.method,
        path=route.path if route else request.url.path,
        status=response.status_code
    ).inc()
    return response


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Livetrack Backend",
        "version": "1.0.0",
        "endpoints": {
            "events": "/api/events",
            "pilots": "/api/pilots",
            "dates": "/api/dates",
            "tracks": "/api/tracks/{date}",
            "health": "/health",
            "metrics": "/metrics"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "subscribers": broadcast_server.subscriber_count if broadcast_server else 0,
    }


@app.get("/api/ping")
def ping():
    """Database round trip."""
    try:
        store.ping()
    except StoreError as e:
        logger.error(f"Ping failed: {e}")
        return JSONResponse(status_code=503, content={"error": "Database unavailable"})
    return {"status": "pong"}


@app.get("/api/pilots")
def get_pilots():
    """Roster, without tracks."""
    try:
        pilots = store.get_all_pilots()
    except StoreError as e:
        logger.error(f"Retrieving pilots failed: {e}")
        return JSONResponse(status_code=503, content={"error": "Database unavailable"})
    return [pilot.model_dump(mode="json", by_alias=True, exclude={"points"}) for pilot in pilots]


@app.get("/api/dates")
def get_dates():
    """Most recent dates with tracks and the number of pilots of each."""
    try:
        rows = store.get_dates_with_count(DEFAULT_DATES_LIMIT)
    except StoreError as e:
        logger.error(f"Retrieving dates failed: {e}")
        return JSONResponse(status_code=503, content={"error": "Database unavailable"})
    response = DatesResponse(
        dates=[day.isoformat() for day, _ in rows],
        counts=[count for _, count in rows],
    )
    return response.model_dump()


@app.get("/api/tracks/{day}")
def get_tracks(day: str):
    """
    Tracks of a day (YYYY-MM-DD), keyed by pilot name.

    Pilots without points that day are left out. Every point carries its
    flight statistics.
    """
    try:
        parsed = date.fromisoformat(day)
    except ValueError:
        return JSONResponse(status_code=400, content={"error": f"Invalid date: {day}"})

    try:
        tracks = store.get_all_tracks_of_day(parsed)
    except StoreError as e:
        logger.error(f"Retrieving tracks of {day} failed: {e}")
        return JSONResponse(status_code=503, content={"error": "Database unavailable"})

    return {
        name: [point.model_dump(mode="json", by_alias=True) for point in compute_statistics(points)]
        for name, points in tracks.items()
        if points
    }


@app.get("/api/events")
async def events():
    """
    Server-sent events stream of stored points.

    Each frame is `data: <payload>` where the payload is the JSON sent on
    the new_track_data channel. A `: heartbeat` comment is sent every
    SSE_HEARTBEAT_SECONDS seconds.
    """
    if not broadcast_server or not broadcast_server.running:
        return JSONResponse(status_code=503, content={"error": "Service not ready"})

    return StreamingResponse(
        broadcast_server.serve(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return await get_metrics()


def run():
    import uvicorn
    uvicorn.run(
        "backend.main:app",
        host=BACKEND_HOST,
        port=BACKEND_PORT,
        log_level="info",
        timeout_graceful_shutdown=SHUTDOWN_TIMEOUT_SECONDS,
    )


if __name__ == "__main__":
    run()
