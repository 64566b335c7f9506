"""Read side of the calendar cache. Never touches the provider."""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List

from ..domain.models import CalendarEvent, CalendarSyncRecord
from ..errors import ValidationAppError
from ..repositories.calendar_cache_repository import CalendarCacheRepository


class EventQueryService:
    def __init__(self, cache_repo: CalendarCacheRepository):
        self.cache_repo = cache_repo

    def get_events(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        """Cached events overlapping [start, end], ordered by start time."""
        if start.tzinfo is None or end.tzinfo is None:
            raise ValidationAppError("INVALID_DATE_RANGE", "start and end must be timezone-aware")
        events: List[CalendarEvent] = []
        for record in self.cache_repo.list_records():
            events.extend(e for e in record.events if e.overlaps(start, end))
        events.sort(key=lambda e: e.start)
        return events

    def cached_calendars(self) -> List[CalendarSyncRecord]:
        return self.cache_repo.list_records()

    def cache_summary(self) -> Dict[str, Any]:
        calendars = []
        total_events = 0
        for record in self.cache_repo.list_records():
            total_events += len(record.events)
            calendars.append({
                "calendarId": record.calendar_id,
                "calendarName": record.calendar_name,
                "eventCount": len(record.events),
                "hasSyncToken": bool(record.sync_token),
                "lastSync": record.last_sync.isoformat(),
                "metadata": {
                    "color": record.color,
                    "timeZone": record.time_zone,
                    "accessRole": record.access_role,
                },
            })
        calendars.sort(key=lambda c: c["calendarName"].lower())
        marker = self.cache_repo.get_global_marker()
        return {
            "calendars": calendars,
            "totalCalendars": len(calendars),
            "totalEvents": total_events,
            "lastFullSync": marker.isoformat() if marker else None,
        }
