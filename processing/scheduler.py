"""
Fetch scheduler.

Runs two background threads:
- fetch: every `fetch_interval` seconds, processes every pilot of the
  roster one after the other (fetch, merge, persist, notify)
- daily reset: at a fixed wall-clock time, reloads the roster and
  deletes the chat messages of the day

The roster is owned by the fetch thread. The reset thread never touches
it; it posts a ReplaceRoster message to the fetch thread's inbox.
"""

import time
import queue
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, time as dt_time, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from contracts.validation import Pilot, Point
from ingestion import NORMALIZERS, FetchError, Normalizer, ParseError, TrackerFetcher
from processing.classifier import EventClassifier, Notification
from processing.metrics import POINTS_FETCHED, POINTS_MERGED, PILOT_ERRORS, ROSTER_SIZE, CYCLE_DURATION
from processing.notifier import NotificationDispatcher, NotificationError
from processing.track import high_water_mark, merge
from storage.manager import StoreError, TrackStore

logger = logging.getLogger(__name__)

DEFAULT_FETCH_INTERVAL_SECONDS = 240
DEFAULT_PACING_DELAY_SECONDS = 5.0


class PilotState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"


@dataclass
class ReplaceRoster:
    """Inbox message: swap the whole roster, dropping all in-memory tracks."""
    pilots: list[Pilot]


def seconds_until(moment: dt_time, now: datetime) -> float:
    """Seconds from `now` to the next occurrence of the wall-clock time `moment`."""
    target = now.replace(hour=moment.hour, minute=moment.minute, second=moment.second, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class FetchScheduler:
    """Periodic fetching of every pilot's tracker, and the daily reset."""

    def __init__(
        self,
        store: TrackStore,
        fetchers: dict[str, TrackerFetcher],
        classifier: EventClassifier,
        dispatcher: NotificationDispatcher,
        fetch_interval: float = DEFAULT_FETCH_INTERVAL_SECONDS,
        reset_time: dt_time = dt_time(0, 0),
        pacing_delay: float = DEFAULT_PACING_DELAY_SECONDS,
        organization: Optional[str] = None,
        normalizers: Optional[dict[str, Normalizer]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.fetchers = fetchers
        self.normalizers = normalizers if normalizers is not None else NORMALIZERS
        self.classifier = classifier
        self.dispatcher = dispatcher
        self.fetch_interval = fetch_interval
        self.reset_time = reset_time
        self.pacing_delay = pacing_delay
        self.organization = organization
        self.clock = clock

        # Owned by the fetch thread once started
        self.roster: dict[str, Pilot] = {}
        self.inbox: queue.Queue = queue.Queue()

        self.running = False
        self._stop_event = threading.Event()
        self._fetch_thread: Optional[threading.Thread] = None
        self._reset_thread: Optional[threading.Thread] = None

    # ============================================================================
    # Roster
    # ============================================================================

    def load_roster(self) -> list[Pilot]:
        """Read the roster from the store (filtered by organization if one is set)."""
        if self.organization:
            return self.store.get_pilots_from_org(self.organization)
        return self.store.get_all_pilots()

    def set_roster(self, pilots: list[Pilot]):
        """Replace the roster. Only call from the owning thread, or before start()."""
        self.roster = {pilot.id: pilot for pilot in pilots}
        ROSTER_SIZE.set(len(self.roster))
        logger.info(f"Roster loaded with {len(self.roster)} pilots")

    def _apply_inbox(self):
        while True:
            try:
                message = self.inbox.get_nowait()
            except queue.Empty:
                return
            if isinstance(message, ReplaceRoster):
                self.set_roster(message.pilots)

    def daily_reset(self):
        """Reload the roster and retract the chat messages of the day."""
        logger.info("Daily reset: reloading roster and removing chat messages")

        try:
            pilots = self.load_roster()
        except StoreError as e:
            logger.error(f"Reloading roster failed, keeping the current one: {e}")
        else:
            self.inbox.put(ReplaceRoster(pilots=pilots))

        try:
            self.dispatcher.retract_all()
        except ExceptionGroup as group:
            for error in group.exceptions:
                logger.error(f"Removing message failed: {error}")

    # ============================================================================
    # Fetch cycle
    # ============================================================================

    def _transition(self, pilot: Pilot, state: PilotState):
        logger.debug(f"{pilot.name}: {state.value}")

    def _notify(self, pilot: Pilot, notification: Notification):
        if not notification.should_notify:
            return
        try:
            self.dispatcher.send(notification.text, pilot_id=pilot.id)
        except NotificationError as e:
            PILOT_ERRORS.labels(stage=PilotState.NOTIFYING.value).inc()
            logger.error(f"Sending {notification.kind.value} message for {pilot.name} failed: {e}")

    def process_pilot(self, pilot: Pilot) -> list[Point]:
        """
        Run one fetch cycle step for a pilot.

        Returns the points appended to the pilot's track. Any failure is
        logged and leaves the pilot idle until the next cycle.
        """
        now = self.clock()

        self._transition(pilot, PilotState.FETCHING)
        fetcher = self.fetchers.get(pilot.tracker_type)
        normalizer = self.normalizers.get(pilot.tracker_type)
        if fetcher is None or normalizer is None:
            PILOT_ERRORS.labels(stage=PilotState.FETCHING.value).inc()
            logger.error(f"Unknown tracker type '{pilot.tracker_type}' for {pilot.name}")
            return []

        since = high_water_mark(pilot.points, now)
        try:
            raw = fetcher.fetch(pilot.id, since)
        except FetchError as e:
            PILOT_ERRORS.labels(stage=PilotState.FETCHING.value).inc()
            logger.error(f"Fetching track of {pilot.name} failed: {e}")
            return []

        self._transition(pilot, PilotState.MERGING)
        try:
            fetched = normalizer.parse(raw)
        except ParseError as e:
            PILOT_ERRORS.labels(stage=PilotState.MERGING.value).inc()
            logger.error(f"Parsing track of {pilot.name} failed on field {e.field}: {e}")
            return []

        POINTS_FETCHED.labels(source=pilot.tracker_type).inc(len(fetched))
        result = merge(pilot.points, fetched, now)
        if not result.points:
            self._transition(pilot, PilotState.IDLE)
            return []

        known = len(pilot.points)
        pilot.points.extend(result.points)

        self._transition(pilot, PilotState.PERSISTING)
        try:
            for point in result.points:
                self.store.write_track(pilot.id, point)
        except StoreError as e:
            # Forget the points so the next cycle fetches them again
            del pilot.points[known:]
            PILOT_ERRORS.labels(stage=PilotState.PERSISTING.value).inc()
            logger.error(f"Storing track of {pilot.name} failed: {e}")
            return []

        POINTS_MERGED.inc(len(result.points))
        logger.info(f"{pilot.name}: {len(result.points)} new points")

        self._transition(pilot, PilotState.NOTIFYING)
        if result.session_start is not None:
            self._notify(pilot, self.classifier.session_started(pilot, result.session_start))
        # Each point is classified against the track up to and including itself
        for i, point in enumerate(result.points):
            track_so_far = pilot.model_copy(update={"points": pilot.points[:known + i + 1]})
            self._notify(pilot, self.classifier.classify(point, track_so_far))

        self._transition(pilot, PilotState.IDLE)
        return result.points

    def run_cycle(self):
        """Process every pilot of the roster, sequentially."""
        self._apply_inbox()
        logger.info(f"Retrieving tracks of {len(self.roster)} pilots")

        with CYCLE_DURATION.time():
            for pilot in list(self.roster.values()):
                if self._stop_event.is_set():
                    break
                try:
                    self.process_pilot(pilot)
                except Exception as e:
                    logger.error(f"Unexpected error processing {pilot.name}: {e}", exc_info=True)
                # Spread requests to the tracker APIs
                if self._stop_event.wait(self.pacing_delay):
                    break

    # ============================================================================
    # Threads
    # ============================================================================

    def _fetch_loop(self):
        logger.info(f"Fetch loop started (every {self.fetch_interval}s)")
        while not self._stop_event.is_set():
            started = time.monotonic()
            self.run_cycle()
            elapsed = time.monotonic() - started
            logger.debug(f"Fetch cycle took {elapsed:.1f}s")
            if self._stop_event.wait(self.fetch_interval):
                break
        logger.info("Fetch loop stopped")

    def _reset_loop(self):
        logger.info(f"Daily reset scheduled at {self.reset_time.isoformat()}")
        while not self._stop_event.is_set():
            delay = seconds_until(self.reset_time, datetime.now())
            if self._stop_event.wait(delay):
                break
            try:
                self.daily_reset()
            except Exception as e:
                logger.error(f"Unexpected error during daily reset: {e}", exc_info=True)
        logger.info("Daily reset loop stopped")

    def start(self):
        """Start the fetch and daily reset threads."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.running = True
        self._stop_event.clear()
        self._fetch_thread = threading.Thread(target=self._fetch_loop, name="fetch", daemon=True)
        self._reset_thread = threading.Thread(target=self._reset_loop, name="daily-reset", daemon=True)
        self._fetch_thread.start()
        self._reset_thread.start()
        logger.info("Scheduler started")

    def stop(self, timeout: float = 5.0):
        """Stop both threads, waiting at most `timeout` seconds for each."""
        if not self.running:
            return

        self.running = False
        self._stop_event.set()
        for thread in (self._fetch_thread, self._reset_thread):
            if thread:
                thread.join(timeout=timeout)
                if thread.is_alive():
                    logger.warning(f"Thread {thread.name} did not stop within {timeout}s")
        logger.info("Scheduler stopped")
