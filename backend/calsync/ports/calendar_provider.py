from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, List, Optional, Union

from ..domain.models import CalendarInfo, EventListing


@dataclass(frozen=True)
class IncrementalListing:
    """Changes since `sync_token`, deletion markers included, recurrences unexpanded."""

    sync_token: str


@dataclass(frozen=True)
class FullWindowListing:
    """Every event instance in [time_min, time_max], recurrences expanded, by start time."""

    time_min: datetime
    time_max: datetime


ListingMode = Union[IncrementalListing, FullWindowListing]


class CalendarProvider(Protocol):
    """Abstracts external calendar operations for testability.

    Implementations raise `TokenExpiredError` when an incremental token is
    rejected, `AuthorizationRequiredError` when the credential is unusable and
    `TransientProviderError` for everything else.
    """

    def list_calendars(self) -> List[CalendarInfo]:
        """Return every calendar visible to the credential."""
        ...

    def list_events(self, calendar_id: str, mode: ListingMode) -> EventListing:
        """Return events for one calendar, all pages concatenated."""
        ...

    def fetch_sync_token(self, calendar_id: str) -> Optional[str]:
        """Return a fresh sync token for the calendar, or None if none was issued."""
        ...
