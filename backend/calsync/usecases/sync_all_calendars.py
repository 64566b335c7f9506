from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
import logging
import threading
import time

from prometheus_client import Counter, Histogram

from ..domain.enums import SyncMode, SyncOutcome
from ..errors import AuthorizationRequiredError, ProviderError, TransientProviderError
from ..ports.calendar_provider import CalendarProvider
from ..repositories.calendar_cache_repository import CalendarCacheRepository
from .sync_calendar import CALENDAR_SYNC_COUNT, SyncCalendarUseCase, utcnow

logger = logging.getLogger(__name__)

AUTH_REQUIRED_MESSAGE = "authorization required"

SYNC_PASS_COUNT = Counter(
    "calsync_sync_passes_total", "Calendar sync passes", ["outcome"]
)
SYNC_PASS_DURATION = Histogram(
    "calsync_sync_pass_duration_seconds", "Duration of a full sync pass over all calendars"
)


@dataclass
class SyncPassResult:
    skipped: bool = False
    aborted: bool = False
    full: int = 0
    incremental: int = 0
    unchanged: int = 0
    failed: int = 0
    started_at: Optional[datetime] = None


class SyncAllCalendarsUseCase:
    """One pass over every calendar of the account.

    Only one pass runs at a time; a trigger that arrives while a pass is in
    flight returns a skipped result instead of queueing. Calendars are synced
    sequentially with a pause between network-bound calendars to stay under
    the provider's per-user rate limit.
    """

    BASE_DELAY_SECONDS = 1.0
    ESCALATED_DELAY_SECONDS = 2.0
    ESCALATE_EVERY = 5

    def __init__(
        self,
        provider_factory: Callable[[], CalendarProvider],
        cache_repo: CalendarCacheRepository,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.provider_factory = provider_factory
        self.cache_repo = cache_repo
        self.sleep = sleep
        self.clock = clock or utcnow
        self.last_error: Optional[str] = None
        self._pass_lock = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._pass_lock.locked()

    def delay_for(self, network_calls: int) -> float:
        if network_calls % self.ESCALATE_EVERY == 0:
            return self.ESCALATED_DELAY_SECONDS
        return self.BASE_DELAY_SECONDS

    def execute(self, min_age: timedelta, fresh: bool = False) -> SyncPassResult:
        if not self._pass_lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            SYNC_PASS_COUNT.labels(outcome="skipped").inc()
            return SyncPassResult(skipped=True)
        try:
            with SYNC_PASS_DURATION.time():
                return self._run(min_age, fresh)
        finally:
            self._pass_lock.release()

    def _run(self, min_age: timedelta, fresh: bool) -> SyncPassResult:
        started = self.clock()
        result = SyncPassResult(started_at=started)
        logger.info("Starting fresh calendar sync" if fresh else "Starting calendar sync")

        if fresh:
            cleared = self.cache_repo.clear_sync_tokens()
            logger.info("Cleared %d sync tokens for fresh sync", cleared)

        try:
            provider = self.provider_factory()
            calendars = provider.list_calendars()
        except AuthorizationRequiredError:
            self.last_error = AUTH_REQUIRED_MESSAGE
            SYNC_PASS_COUNT.labels(outcome="unauthorized").inc()
            logger.warning("Calendar sync aborted: authorization required")
            raise
        except TransientProviderError as e:
            self.last_error = e.message
            result.aborted = True
            SYNC_PASS_COUNT.labels(outcome="failed").inc()
            logger.error("Failed to list calendars: %s", e.message)
            return result

        logger.info("Found %d calendars to sync", len(calendars))
        use_case = SyncCalendarUseCase(provider, self.cache_repo, clock=self.clock)
        previous_hit_network = False
        network_calls = 0
        for cal in calendars:
            # escalation counts calendars that reached the provider, fresh skips are free
            if previous_hit_network:
                self.sleep(self.delay_for(network_calls))
            try:
                res = use_case.execute(cal, min_age, force=fresh)
            except AuthorizationRequiredError:
                self.last_error = AUTH_REQUIRED_MESSAGE
                SYNC_PASS_COUNT.labels(outcome="unauthorized").inc()
                logger.warning("Calendar sync aborted at %s: authorization required", cal.name)
                raise
            except ProviderError as e:
                result.failed += 1
                previous_hit_network = True
                network_calls += 1
                CALENDAR_SYNC_COUNT.labels(mode="unknown", outcome=SyncOutcome.FAILED.value).inc()
                logger.error("Failed to sync calendar %s: %s", cal.name, e.message)
                continue
            except Exception:
                result.failed += 1
                previous_hit_network = True
                network_calls += 1
                CALENDAR_SYNC_COUNT.labels(mode="unknown", outcome=SyncOutcome.FAILED.value).inc()
                logger.exception("Unexpected error syncing calendar %s", cal.name)
                continue

            previous_hit_network = res.mode != SyncMode.SKIPPED
            if previous_hit_network:
                network_calls += 1
            if res.mode == SyncMode.FULL:
                result.full += 1
            elif res.mode == SyncMode.INCREMENTAL:
                result.incremental += 1
            else:
                result.unchanged += 1

        self.cache_repo.set_global_marker(started)
        if result.failed:
            self.last_error = f"{result.failed} of {len(calendars)} calendars failed to sync"
            SYNC_PASS_COUNT.labels(outcome="partial").inc()
        else:
            self.last_error = None
            SYNC_PASS_COUNT.labels(outcome="success").inc()
        logger.info(
            "Calendar sync completed: %d full, %d incremental, %d unchanged, %d failed",
            result.full, result.incremental, result.unchanged, result.failed,
        )
        return result
