"""Process-wide calendar sync component.

Constructed once at startup, `start()`ed to launch the background timer and
`stop()`ed on shutdown to cancel it and release the cache connection. The
HTTP layer receives the instance explicitly through application state.
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging
import time

from ..adapters.google_calendar_provider import GoogleCalendarProvider
from ..config import Settings
from ..domain.models import CalendarEvent, CalendarSyncRecord, SyncStatus
from ..ports.calendar_provider import CalendarProvider
from ..repositories.calendar_cache_repository import CalendarCacheRepository
from ..usecases.sync_all_calendars import SyncAllCalendarsUseCase, SyncPassResult
from .cache_store import KeyValueStore, create_cache_store
from .credential_service import CredentialService
from .event_query_service import EventQueryService
from .sync_scheduler import SyncScheduler, spawn_daemon

logger = logging.getLogger(__name__)


class CalendarSyncService:
    def __init__(
        self,
        settings: Settings,
        store: Optional[KeyValueStore] = None,
        credential_service: Optional[CredentialService] = None,
        provider_factory: Optional[Callable[[], CalendarProvider]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
        time_provider: Optional[Callable[[], float]] = None,
        spawn: Callable[[Callable[[], None]], None] = spawn_daemon,
    ):
        self.settings = settings
        self.store = store if store is not None else create_cache_store(settings)
        self.cache_repo = CalendarCacheRepository(self.store, settings.cache_ttl_seconds)
        self.credentials = credential_service or CredentialService(
            settings.google_token_path, settings.google_client_id, settings.google_client_secret
        )
        self.sync_pass = SyncAllCalendarsUseCase(
            provider_factory or self._google_provider, self.cache_repo, sleep=sleep, clock=clock
        )
        self.scheduler = SyncScheduler(
            self.sync_pass,
            self.cache_repo,
            interval_minutes=settings.sync_interval_minutes,
            startup_delay_seconds=settings.sync_startup_delay_seconds,
            time_provider=time_provider,
            clock=clock,
            spawn=spawn,
        )
        self.events = EventQueryService(self.cache_repo)

    def _google_provider(self) -> CalendarProvider:
        return GoogleCalendarProvider(self.credentials.get_valid_credentials())

    # --- lifecycle ---
    def start(self) -> bool:
        return self.scheduler.start()

    def stop(self) -> None:
        try:
            self.scheduler.stop()
        finally:
            self.store.close()
            logger.info("Disconnected calendar cache store")

    # --- sync ---
    def trigger_sync(self, fresh: bool = False) -> bool:
        return self.scheduler.trigger(fresh=fresh)

    def sync_now(self, fresh: bool = False) -> SyncPassResult:
        return self.scheduler.run_now(fresh=fresh)

    def is_stale(self) -> bool:
        return self.scheduler.is_stale()

    def is_authorized(self) -> bool:
        try:
            return self.credentials.is_authorized()
        except Exception:
            logger.exception("Authorization check failed")
            return False

    def get_status(self) -> SyncStatus:
        return SyncStatus(
            last_sync=self.cache_repo.get_global_marker(),
            sync_in_progress=self.sync_pass.in_progress,
            error=self.sync_pass.last_error,
        )

    def get_interval(self) -> int:
        return self.scheduler.interval_minutes

    def set_interval(self, minutes: int) -> int:
        self.scheduler.set_interval_minutes(minutes)
        return self.scheduler.interval_minutes

    # --- reads ---
    def get_events(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        if self.is_stale():
            if self.scheduler.trigger():
                logger.info("Cache is stale, triggered background sync")
        return self.events.get_events(start, end)

    def cached_calendars(self) -> List[CalendarSyncRecord]:
        return self.events.cached_calendars()

    def detailed_status(self) -> Dict[str, Any]:
        summary = self.events.cache_summary()
        summary["syncInProgress"] = self.sync_pass.in_progress
        summary["error"] = self.sync_pass.last_error
        return summary

    def health(self) -> Dict[str, Any]:
        return {
            "cacheBackend": self.settings.cache_backend.value,
            "cache": "up" if self.cache_repo.is_available() else "down",
            "scheduler": "running" if self.scheduler.running else "stopped",
        }
