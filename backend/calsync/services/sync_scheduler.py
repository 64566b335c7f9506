from __future__ import annotations
from datetime import datetime, timedelta
from typing import Callable, Optional
import logging
import threading
import time

from ..errors import AuthorizationRequiredError, ValidationAppError
from ..repositories.calendar_cache_repository import CalendarCacheRepository
from ..usecases.sync_all_calendars import SyncAllCalendarsUseCase, SyncPassResult
from ..usecases.sync_calendar import utcnow

logger = logging.getLogger(__name__)


def spawn_daemon(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, name="calendar-sync-trigger", daemon=True).start()


class SyncScheduler:
    """Runs sync passes on a fixed interval from a daemon thread.

    Changing the interval while running restarts the wait with the new
    period. On-demand triggers are debounced so rapid polling from the UI
    cannot start a pass more than once a minute.
    """

    TRIGGER_DEBOUNCE_SECONDS = 60
    MIN_INTERVAL_MINUTES = 1

    def __init__(
        self,
        sync_pass: SyncAllCalendarsUseCase,
        cache_repo: CalendarCacheRepository,
        interval_minutes: int = 15,
        startup_delay_seconds: float = 2.0,
        time_provider: Optional[Callable[[], float]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        spawn: Callable[[Callable[[], None]], None] = spawn_daemon,
    ):
        self.sync_pass = sync_pass
        self.cache_repo = cache_repo
        self.startup_delay_seconds = startup_delay_seconds
        self.time_provider = time_provider or time.monotonic
        self.clock = clock or utcnow
        self._spawn = spawn
        self._interval_minutes = self._validate_interval(interval_minutes)
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._trigger_lock = threading.Lock()
        self._last_trigger: Optional[float] = None

    # --- interval ---
    @staticmethod
    def _validate_interval(minutes) -> int:
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < SyncScheduler.MIN_INTERVAL_MINUTES:
            raise ValidationAppError("INVALID_INTERVAL", "Invalid interval. Must be a number >= 1")
        return minutes

    @property
    def interval_minutes(self) -> int:
        return self._interval_minutes

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self._interval_minutes)

    def set_interval_minutes(self, minutes: int) -> None:
        self._interval_minutes = self._validate_interval(minutes)
        logger.info("Calendar sync interval set to %d minutes", minutes)
        if self.running:
            self._wake.set()

    # --- lifecycle ---
    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        if self.running:
            logger.info("Background calendar sync already started")
            return False
        # each loop owns its events so a thread outliving stop() cannot be revived
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread = threading.Thread(
            target=self._loop, args=(self._stop, self._wake), name="calendar-sync", daemon=True
        )
        self._thread.start()
        logger.info("Background calendar sync started (every %d minutes)", self._interval_minutes)
        return True

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Calendar sync thread still finishing a pass, it will exit afterwards")
            self._thread = None
        logger.info("Background calendar sync stopped")

    def _loop(self, stop: threading.Event, wake: threading.Event) -> None:
        if stop.wait(self.startup_delay_seconds):
            return
        while not stop.is_set():
            self._run_pass_safely(fresh=False)
            while True:
                wake.clear()
                # stop() sets the stop flag before waking, so a wake cleared above is not lost
                if stop.is_set():
                    return
                woke = wake.wait(self.interval.total_seconds())
                if stop.is_set():
                    return
                if not woke:
                    break
                # interval changed: wait a whole new period

    def _run_pass_safely(self, fresh: bool) -> None:
        try:
            self.sync_pass.execute(self.interval, fresh=fresh)
        except AuthorizationRequiredError:
            logger.warning("Background calendar sync needs authorization")
        except Exception:
            logger.exception("Background calendar sync failed")

    # --- triggers ---
    def is_stale(self) -> bool:
        marker = self.cache_repo.get_global_marker()
        if marker is None:
            return True
        return self.clock() - marker >= self.interval

    def trigger(self, fresh: bool = False) -> bool:
        """Start a background pass unless one was triggered within the debounce window."""
        with self._trigger_lock:
            now_ts = self.time_provider()
            if (
                not fresh
                and self._last_trigger is not None
                and now_ts - self._last_trigger < self.TRIGGER_DEBOUNCE_SECONDS
            ):
                logger.debug("Sync trigger ignored (debounced)")
                return False
            self._last_trigger = now_ts
        self._spawn(lambda: self._run_pass_safely(fresh))
        return True

    def run_now(self, fresh: bool = False) -> SyncPassResult:
        return self.sync_pass.execute(self.interval, fresh=fresh)
