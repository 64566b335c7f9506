"""Cached calendar data model.

Everything stored in the cache is serialized from these dataclasses with
camelCase keys so that the browser-side store can read the same payloads the
HTTP API returns.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def parse_timestamp(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def from_epoch_ms(value: int | float | str) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class CalendarInfo:
    id: str
    name: str
    color: Optional[str] = None
    access_role: Optional[str] = None


@dataclass(frozen=True)
class CalendarEvent:
    """Snapshot of one provider event as of the sync that fetched it."""

    id: str
    calendar_id: str
    calendar_name: str
    title: str
    start: datetime
    end: datetime
    color: Optional[str] = None
    is_all_day: bool = False

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start <= end and self.end >= start

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "calendarId": self.calendar_id,
            "calendarName": self.calendar_name,
            "title": self.title,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "color": self.color,
            "isAllDay": self.is_all_day,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalendarEvent":
        return cls(
            id=data["id"],
            calendar_id=data["calendarId"],
            calendar_name=data.get("calendarName", ""),
            title=data.get("title") or "Untitled",
            start=parse_timestamp(data["start"]),
            end=parse_timestamp(data["end"]),
            color=data.get("color"),
            is_all_day=bool(data.get("isAllDay", False)),
        )


@dataclass(frozen=True)
class ProviderEvent:
    """One item of an events listing, independent of the provider's wire format.

    Cancelled items (deletion markers of an incremental listing) usually carry
    nothing but their id, so start/end are optional.
    """

    id: str
    title: str = "Untitled"
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    is_all_day: bool = False
    cancelled: bool = False

    def to_calendar_event(self, calendar: CalendarInfo) -> Optional[CalendarEvent]:
        if self.cancelled or self.start is None or self.end is None:
            return None
        return CalendarEvent(
            id=self.id,
            calendar_id=calendar.id,
            calendar_name=calendar.name,
            title=self.title,
            start=self.start,
            end=self.end,
            color=calendar.color,
            is_all_day=self.is_all_day,
        )


@dataclass
class EventListing:
    events: List[ProviderEvent] = field(default_factory=list)
    next_sync_token: Optional[str] = None
    time_zone: Optional[str] = None


@dataclass
class CalendarSyncRecord:
    """Unit of caching: the complete current snapshot of one calendar."""

    calendar_id: str
    calendar_name: str
    last_sync: datetime
    events: List[CalendarEvent] = field(default_factory=list)
    sync_token: Optional[str] = None
    color: Optional[str] = None
    time_zone: Optional[str] = None
    access_role: Optional[str] = None

    def without_token(self) -> "CalendarSyncRecord":
        return replace(self, sync_token=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calendarId": self.calendar_id,
            "calendarName": self.calendar_name,
            "syncToken": self.sync_token,
            "lastSync": to_epoch_ms(self.last_sync),
            "events": [e.to_dict() for e in self.events],
            "color": self.color,
            "timeZone": self.time_zone,
            "accessRole": self.access_role,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalendarSyncRecord":
        return cls(
            calendar_id=data["calendarId"],
            calendar_name=data.get("calendarName", ""),
            sync_token=data.get("syncToken") or None,
            last_sync=from_epoch_ms(data.get("lastSync") or 0),
            events=[CalendarEvent.from_dict(e) for e in data.get("events") or []],
            color=data.get("color"),
            time_zone=data.get("timeZone"),
            access_role=data.get("accessRole"),
        )


@dataclass(frozen=True)
class SyncStatus:
    last_sync: Optional[datetime]
    sync_in_progress: bool
    error: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
            "syncInProgress": self.sync_in_progress,
            "error": self.error,
        }
