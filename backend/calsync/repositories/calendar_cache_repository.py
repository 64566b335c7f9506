from __future__ import annotations
from datetime import datetime
from typing import List, Optional
import json
import logging

from ..domain.models import CalendarSyncRecord, from_epoch_ms, to_epoch_ms
from ..errors import CacheUnavailableError
from ..services.cache_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class CalendarCacheRepository:
    """Maps sync records and the last-full-sync marker onto cache keys.

    Key layout:
      calendar:<calendarId>  -> JSON CalendarSyncRecord
      calendar:lastFullSync  -> epoch milliseconds of the last completed pass

    The cache is allowed to be down. Reads then behave as if the key were
    absent and writes are dropped; both are logged, neither raises.
    """

    KEY_PREFIX = "calendar:"
    MARKER_KEY = "calendar:lastFullSync"

    def __init__(self, store: KeyValueStore, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def get(self, calendar_id: str) -> Optional[CalendarSyncRecord]:
        key = self.KEY_PREFIX + calendar_id
        try:
            data = self.store.get(key)
            if data is None:
                return None
            return CalendarSyncRecord.from_dict(json.loads(data))
        except CacheUnavailableError as e:
            logger.warning("Failed to read %s from cache: %s", key, e.message)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable cache entry %s: %s", key, e)
        return None

    def put(self, record: CalendarSyncRecord, ttl_seconds: Optional[int] = None) -> bool:
        key = self.KEY_PREFIX + record.calendar_id
        try:
            self.store.set(key, json.dumps(record.to_dict()), ttl_seconds or self.ttl_seconds)
            return True
        except CacheUnavailableError as e:
            logger.error("Failed to save %s to cache: %s", key, e.message)
            return False

    def list_keys(self, prefix: str = KEY_PREFIX) -> List[str]:
        try:
            keys = self.store.keys(prefix)
        except CacheUnavailableError as e:
            logger.warning("Failed to list cache keys: %s", e.message)
            return []
        return sorted(k for k in keys if k != self.MARKER_KEY)

    def list_calendar_ids(self) -> List[str]:
        return [k[len(self.KEY_PREFIX):] for k in self.list_keys(self.KEY_PREFIX)]

    def list_records(self) -> List[CalendarSyncRecord]:
        records = []
        for calendar_id in self.list_calendar_ids():
            record = self.get(calendar_id)
            if record is not None:
                records.append(record)
        return records

    def get_global_marker(self) -> Optional[datetime]:
        try:
            raw = self.store.get(self.MARKER_KEY)
            return from_epoch_ms(raw) if raw else None
        except CacheUnavailableError as e:
            logger.warning("Failed to read last full sync marker: %s", e.message)
        except ValueError as e:
            logger.warning("Discarding unreadable last full sync marker: %s", e)
        return None

    def set_global_marker(self, timestamp: datetime) -> bool:
        try:
            self.store.set(self.MARKER_KEY, str(to_epoch_ms(timestamp)), self.ttl_seconds)
            return True
        except CacheUnavailableError as e:
            logger.error("Failed to set last full sync marker: %s", e.message)
            return False

    def clear_sync_tokens(self) -> int:
        """Drop the stored token of every cached calendar; returns how many were cleared."""
        cleared = 0
        for record in self.list_records():
            if record.sync_token and self.put(record.without_token()):
                cleared += 1
        return cleared

    def is_available(self) -> bool:
        return self.store.ping()
