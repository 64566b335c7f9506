from __future__ import annotations
import json
import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..domain.models import CalendarInfo, EventListing, ProviderEvent, parse_timestamp
from ..errors import AuthorizationRequiredError, TokenExpiredError, TransientProviderError
from ..ports.calendar_provider import CalendarProvider, FullWindowListing, IncrementalListing, ListingMode

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"}


def _error_reasons(err: HttpError) -> Set[str]:
    content = err.content
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    try:
        payload = json.loads(content or "{}")
    except ValueError:
        return set()
    errors = (payload.get("error") or {}).get("errors") or []
    return {e.get("reason") for e in errors if isinstance(e, dict) and e.get("reason")}


def _parse_when(when: Dict[str, Any]) -> Optional[datetime]:
    if "dateTime" in when:
        return parse_timestamp(when["dateTime"])
    if "date" in when:
        d = date.fromisoformat(when["date"])
        return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
    return None


def to_provider_event(google_event: Dict[str, Any]) -> ProviderEvent:
    start = google_event.get("start") or {}
    end = google_event.get("end") or {}
    return ProviderEvent(
        id=google_event["id"],
        title=google_event.get("summary") or "Untitled",
        start=_parse_when(start),
        end=_parse_when(end),
        is_all_day="dateTime" not in start,
        cancelled=google_event.get("status") == "cancelled",
    )


class GoogleCalendarProvider(CalendarProvider):
    PAGE_SIZE = 2500
    TOKEN_PAGE_LIMIT = 50
    MAX_RATE_LIMIT_RETRIES = 3

    def __init__(self, credentials, sleep: Callable[[float], None] = time.sleep):
        self._service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)
        self._sleep = sleep

    def list_calendars(self) -> List[CalendarInfo]:
        calendars: List[CalendarInfo] = []
        page_token: Optional[str] = None
        while True:
            res = self._execute(self._service.calendarList().list(pageToken=page_token))
            for cal in res.get('items', []):
                calendars.append(CalendarInfo(
                    id=cal['id'],
                    name=cal.get('summary') or cal.get('summaryOverride') or 'Untitled Calendar',
                    color=cal.get('backgroundColor'),
                    access_role=cal.get('accessRole'),
                ))
            page_token = res.get('nextPageToken')
            if not page_token:
                return calendars

    def list_events(self, calendar_id: str, mode: ListingMode) -> EventListing:
        listing = EventListing()
        page_token: Optional[str] = None
        while True:
            if isinstance(mode, IncrementalListing):
                # A sync token cannot be combined with singleEvents or time bounds.
                req = self._service.events().list(
                    calendarId=calendar_id,
                    syncToken=mode.sync_token,
                    maxResults=self.PAGE_SIZE,
                    pageToken=page_token,
                )
            elif isinstance(mode, FullWindowListing):
                req = self._service.events().list(
                    calendarId=calendar_id,
                    timeMin=mode.time_min.isoformat(),
                    timeMax=mode.time_max.isoformat(),
                    singleEvents=True,
                    orderBy='startTime',
                    maxResults=self.PAGE_SIZE,
                    pageToken=page_token,
                )
            else:
                raise TypeError(f"unsupported listing mode: {mode!r}")
            res = self._execute(req)
            listing.events.extend(to_provider_event(ev) for ev in res.get('items', []) if ev.get('id'))
            listing.time_zone = res.get('timeZone') or listing.time_zone
            page_token = res.get('nextPageToken')
            if not page_token:
                listing.next_sync_token = res.get('nextSyncToken')
                return listing

    def fetch_sync_token(self, calendar_id: str) -> Optional[str]:
        """Page through the unfiltered event set; Google only issues a token on its last page."""
        page_token: Optional[str] = None
        for _ in range(self.TOKEN_PAGE_LIMIT):
            res = self._execute(self._service.events().list(
                calendarId=calendar_id,
                maxResults=self.PAGE_SIZE,
                pageToken=page_token,
                fields='nextPageToken,nextSyncToken',
            ))
            page_token = res.get('nextPageToken')
            if not page_token:
                return res.get('nextSyncToken')
        logger.warning("No sync token for %s after %d pages", calendar_id, self.TOKEN_PAGE_LIMIT)
        return None

    def _execute(self, request) -> Dict[str, Any]:
        attempt = 0
        while True:
            try:
                return request.execute()
            except HttpError as e:
                status = e.resp.status
                if status == 410:
                    raise TokenExpiredError(f"Google API error: {e}")
                if status == 401:
                    raise AuthorizationRequiredError("Google credential rejected")
                if status in (403, 429) and (status == 429 or _error_reasons(e) & RATE_LIMIT_REASONS):
                    if attempt < self.MAX_RATE_LIMIT_RETRIES:
                        delay = 2 ** attempt
                        logger.info("Rate limited by Google, retrying in %ss (attempt %d)", delay, attempt + 1)
                        self._sleep(delay)
                        attempt += 1
                        continue
                    raise TransientProviderError("Google Calendar rate limit exceeded")
                raise TransientProviderError(f"Google API error: {e}")
            except RefreshError as e:
                raise AuthorizationRequiredError(f"Failed to refresh credential: {e}")
            except (TransportError, httplib2.HttpLib2Error, OSError) as e:
                raise TransientProviderError(f"Google API unreachable: {e}")
