from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Tuple
import calendar as _calendar
import logging

from prometheus_client import Counter

from ..domain.enums import SyncMode, SyncOutcome
from ..domain.models import CalendarEvent, CalendarInfo, CalendarSyncRecord, ProviderEvent
from ..errors import TokenExpiredError, TransientProviderError
from ..ports.calendar_provider import CalendarProvider, FullWindowListing, IncrementalListing
from ..repositories.calendar_cache_repository import CalendarCacheRepository

logger = logging.getLogger(__name__)

CALENDAR_SYNC_COUNT = Counter(
    "calsync_calendar_syncs_total", "Per-calendar sync attempts", ["mode", "outcome"]
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, _calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def full_sync_window(now: datetime) -> Tuple[datetime, datetime]:
    """One month back, three months forward."""
    return add_months(now, -1), add_months(now, 3)


def merge_incremental(
    existing: Iterable[CalendarEvent],
    changes: Iterable[ProviderEvent],
    calendar: CalendarInfo,
) -> List[CalendarEvent]:
    """Apply an incremental delta to a full snapshot.

    Cancelled items drop their id, everything else replaces or inserts by id.
    Applying the same delta twice yields the same snapshot.
    """
    by_id = {e.id: e for e in existing}
    for change in changes:
        if change.cancelled:
            by_id.pop(change.id, None)
            continue
        event = change.to_calendar_event(calendar)
        if event is not None:
            by_id[change.id] = event
    return list(by_id.values())


@dataclass
class SyncCalendarResult:
    calendar_id: str
    mode: SyncMode
    event_count: int
    token_expired: bool = False


class SyncCalendarUseCase:
    """Brings one calendar's cache record up to date.

    No record or no token -> full sync. Token and an old enough record ->
    incremental sync, falling back to a single full sync if the token has
    expired. Otherwise nothing is fetched.
    """

    def __init__(
        self,
        provider: CalendarProvider,
        cache_repo: CalendarCacheRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.provider = provider
        self.cache_repo = cache_repo
        self.clock = clock or utcnow

    def execute(self, calendar: CalendarInfo, min_age: timedelta, force: bool = False) -> SyncCalendarResult:
        cached = self.cache_repo.get(calendar.id)
        now = self.clock()

        if cached is None or not cached.sync_token or force:
            return self._full_sync(calendar, now, cached)

        if now - cached.last_sync < min_age:
            logger.debug("Cache for %s is fresh, skipping", calendar.name)
            return SyncCalendarResult(calendar.id, SyncMode.SKIPPED, len(cached.events))

        logger.info("Using incremental sync for %s", calendar.name)
        try:
            listing = self.provider.list_events(calendar.id, IncrementalListing(cached.sync_token))
        except TokenExpiredError:
            CALENDAR_SYNC_COUNT.labels(mode=SyncMode.INCREMENTAL.value, outcome=SyncOutcome.TOKEN_EXPIRED.value).inc()
            logger.info("Sync token invalid for %s, falling back to full sync", calendar.name)
            stale = cached.without_token()
            self.cache_repo.put(stale)
            result = self._full_sync(calendar, now, stale)
            result.token_expired = True
            return result

        events = merge_incremental(cached.events, listing.events, calendar)
        self.cache_repo.put(CalendarSyncRecord(
            calendar_id=calendar.id,
            calendar_name=calendar.name,
            sync_token=listing.next_sync_token or cached.sync_token,
            last_sync=now,
            events=events,
            color=calendar.color,
            time_zone=listing.time_zone or cached.time_zone,
            access_role=calendar.access_role,
        ))
        CALENDAR_SYNC_COUNT.labels(mode=SyncMode.INCREMENTAL.value, outcome=SyncOutcome.SUCCESS.value).inc()
        logger.info("Synced %d events for %s (%d changes)", len(events), calendar.name, len(listing.events))
        return SyncCalendarResult(calendar.id, SyncMode.INCREMENTAL, len(events))

    def _full_sync(
        self,
        calendar: CalendarInfo,
        now: datetime,
        cached: Optional[CalendarSyncRecord],
    ) -> SyncCalendarResult:
        logger.info("Performing full sync for %s", calendar.name)
        time_min, time_max = full_sync_window(now)
        listing = self.provider.list_events(calendar.id, FullWindowListing(time_min, time_max))
        try:
            token = self.provider.fetch_sync_token(calendar.id)
        except TransientProviderError as e:
            # Events are still worth caching; no token means the next pass full-syncs again.
            logger.warning("Could not obtain sync token for %s: %s", calendar.name, e.message)
            token = None

        events = [e for e in (p.to_calendar_event(calendar) for p in listing.events) if e is not None]
        self.cache_repo.put(CalendarSyncRecord(
            calendar_id=calendar.id,
            calendar_name=calendar.name,
            sync_token=token,
            last_sync=now,
            events=events,
            color=calendar.color,
            time_zone=listing.time_zone or (cached.time_zone if cached else None),
            access_role=calendar.access_role,
        ))
        CALENDAR_SYNC_COUNT.labels(mode=SyncMode.FULL.value, outcome=SyncOutcome.SUCCESS.value).inc()
        logger.info("Synced %d events for %s", len(events), calendar.name)
        return SyncCalendarResult(calendar.id, SyncMode.FULL, len(events))
