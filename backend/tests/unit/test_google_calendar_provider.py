"""Google adapter tests against a mocked discovery service."""
import json
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import httplib2
import pytest
from googleapiclient.errors import HttpError

from calsync.adapters.google_calendar_provider import GoogleCalendarProvider, to_provider_event
from calsync.errors import AuthorizationRequiredError, TokenExpiredError, TransientProviderError
from calsync.ports.calendar_provider import FullWindowListing, IncrementalListing


def http_error(status: int, reason: str = "backendError") -> HttpError:
    body = json.dumps({"error": {"code": status, "errors": [{"reason": reason}]}}).encode()
    return HttpError(httplib2.Response({"status": status}), body)


def request(result=None, error=None):
    req = Mock()
    if error is not None:
        req.execute.side_effect = error
    else:
        req.execute.return_value = result
    return req


@pytest.fixture
def service():
    with patch("calsync.adapters.google_calendar_provider.build") as mock_build:
        svc = Mock()
        mock_build.return_value = svc
        yield svc


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def provider(service, sleeps):
    return GoogleCalendarProvider(credentials=Mock(), sleep=sleeps.append)


def test_list_calendars_maps_metadata(provider, service):
    service.calendarList.return_value.list.side_effect = [
        request({"items": [{"id": "primary", "summary": "Me", "backgroundColor": "#fff", "accessRole": "owner"}],
                 "nextPageToken": "p2"}),
        request({"items": [{"id": "team", "summaryOverride": "Team"}, {"id": "x"}]}),
    ]
    cals = provider.list_calendars()
    assert [c.id for c in cals] == ["primary", "team", "x"]
    assert cals[0].color == "#fff" and cals[0].access_role == "owner"
    assert cals[1].name == "Team"
    assert cals[2].name == "Untitled Calendar"


def test_full_window_listing_expands_recurrences_and_pages(provider, service):
    events_api = service.events.return_value
    events_api.list.side_effect = [
        request({"items": [{"id": "a", "summary": "A", "start": {"dateTime": "2025-06-15T09:00:00Z"},
                            "end": {"dateTime": "2025-06-15T10:00:00Z"}}],
                 "nextPageToken": "p2", "timeZone": "Europe/Berlin"}),
        request({"items": [{"id": "b", "start": {"date": "2025-06-16"}, "end": {"date": "2025-06-17"}}]}),
    ]
    time_min = datetime(2025, 5, 15, tzinfo=timezone.utc)
    time_max = datetime(2025, 9, 15, tzinfo=timezone.utc)

    listing = provider.list_events("primary", FullWindowListing(time_min, time_max))

    assert [e.id for e in listing.events] == ["a", "b"]
    assert listing.time_zone == "Europe/Berlin"
    first_kwargs = events_api.list.call_args_list[0].kwargs
    assert first_kwargs["singleEvents"] is True
    assert first_kwargs["orderBy"] == "startTime"
    assert first_kwargs["timeMin"] == time_min.isoformat()
    assert first_kwargs["timeMax"] == time_max.isoformat()
    assert "syncToken" not in first_kwargs
    assert events_api.list.call_args_list[1].kwargs["pageToken"] == "p2"


def test_incremental_listing_never_expands_recurrences(provider, service):
    events_api = service.events.return_value
    events_api.list.side_effect = [
        request({"items": [{"id": "gone", "status": "cancelled"}], "nextSyncToken": "tok-2"}),
    ]
    listing = provider.list_events("primary", IncrementalListing("tok-1"))

    kwargs = events_api.list.call_args.kwargs
    assert kwargs["syncToken"] == "tok-1"
    assert "singleEvents" not in kwargs
    assert "timeMin" not in kwargs and "orderBy" not in kwargs
    assert listing.next_sync_token == "tok-2"
    assert listing.events[0].cancelled is True


def test_fetch_sync_token_pages_until_last_page(provider, service):
    events_api = service.events.return_value
    events_api.list.side_effect = [
        request({"nextPageToken": "p2"}),
        request({"nextSyncToken": "final-token"}),
    ]
    assert provider.fetch_sync_token("primary") == "final-token"
    calls = events_api.list.call_args_list
    assert len(calls) == 2
    assert calls[1].kwargs["pageToken"] == "p2"
    assert all("singleEvents" not in c.kwargs and "timeMin" not in c.kwargs for c in calls)


def test_fetch_sync_token_respects_page_cap(provider, service):
    provider.TOKEN_PAGE_LIMIT = 3
    service.events.return_value.list.side_effect = lambda **kw: request({"nextPageToken": "more"})
    assert provider.fetch_sync_token("primary") is None
    assert service.events.return_value.list.call_count == 3


def test_gone_maps_to_token_expired(provider, service):
    service.events.return_value.list.return_value = request(error=http_error(410, "fullSyncRequired"))
    with pytest.raises(TokenExpiredError):
        provider.list_events("primary", IncrementalListing("stale"))


def test_unauthorized_maps_to_authorization_required(provider, service):
    service.calendarList.return_value.list.return_value = request(error=http_error(401, "authError"))
    with pytest.raises(AuthorizationRequiredError):
        provider.list_calendars()


def test_rate_limit_is_retried_with_backoff(provider, service, sleeps):
    req = Mock()
    req.execute.side_effect = [http_error(403, "rateLimitExceeded"), http_error(429, "rateLimitExceeded"),
                               {"items": []}]
    service.calendarList.return_value.list.return_value = req
    assert provider.list_calendars() == []
    assert sleeps == [1, 2]


def test_rate_limit_gives_up_after_max_retries(provider, service, sleeps):
    service.calendarList.return_value.list.return_value = request(error=http_error(429, "rateLimitExceeded"))
    with pytest.raises(TransientProviderError):
        provider.list_calendars()
    assert sleeps == [1, 2, 4]


def test_forbidden_without_rate_limit_reason_is_not_retried(provider, service, sleeps):
    service.calendarList.return_value.list.return_value = request(error=http_error(403, "forbidden"))
    with pytest.raises(TransientProviderError):
        provider.list_calendars()
    assert sleeps == []


def test_server_and_network_errors_are_transient(provider, service):
    service.events.return_value.list.return_value = request(error=http_error(503))
    with pytest.raises(TransientProviderError):
        provider.fetch_sync_token("primary")
    service.events.return_value.list.return_value = request(error=TimeoutError("timed out"))
    with pytest.raises(TransientProviderError):
        provider.fetch_sync_token("primary")


def test_to_provider_event_handles_all_day_and_missing_title():
    ev = to_provider_event({"id": "d", "start": {"date": "2025-06-16"}, "end": {"date": "2025-06-17"}})
    assert ev.is_all_day is True
    assert ev.title == "Untitled"
    assert ev.start == datetime(2025, 6, 16, tzinfo=timezone.utc)
    timed = to_provider_event({"id": "t", "summary": "Call", "status": "confirmed",
                               "start": {"dateTime": "2025-06-16T10:00:00+02:00"},
                               "end": {"dateTime": "2025-06-16T11:00:00+02:00"}})
    assert timed.is_all_day is False
    assert timed.start == datetime(2025, 6, 16, 8, tzinfo=timezone.utc)
    assert timed.cancelled is False
