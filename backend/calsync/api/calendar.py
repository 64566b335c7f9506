from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from datetime import datetime, time, timedelta, timezone
from pydantic import BaseModel
from typing import Any, Optional

from ..domain.models import parse_timestamp
from ..errors import ValidationAppError
from ..services.calendar_sync_service import CalendarSyncService

router = APIRouter(prefix="/calendar", tags=["calendar"])


class IntervalUpdate(BaseModel):
    # range checked by the scheduler so bad values surface as INVALID_INTERVAL
    interval: Optional[Any] = None


def get_sync_service(request: Request) -> CalendarSyncService:
    return request.app.state.sync_service


def _parse_bound(value: str) -> datetime:
    try:
        if len(value) == 10:
            d = datetime.fromisoformat(value)
            return d.replace(tzinfo=timezone.utc)
        return parse_timestamp(value)
    except ValueError:
        raise ValidationAppError("INVALID_DATE", "Invalid date format")


def _auth_required() -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"detail": {"code": "AUTH_REQUIRED", "message": "Not authorized"}, "authRequired": True},
    )


@router.get("/events")
def get_events(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    date: Optional[str] = Query(default=None),
    days: int = Query(default=1),
    service: CalendarSyncService = Depends(get_sync_service),
):
    """Cached events for a range: startDate/endDate, or the legacy date + days (1..7)."""
    if start_date and end_date:
        start = _parse_bound(start_date)
        end = _parse_bound(end_date)
    elif date:
        day = _parse_bound(date)
        if days < 1 or days > 7:
            raise ValidationAppError("INVALID_DAYS", "Days must be between 1 and 7")
        start = datetime.combine(day.date(), time.min, tzinfo=timezone.utc)
        end = datetime.combine(day.date() + timedelta(days=days - 1), time.max, tzinfo=timezone.utc)
    else:
        raise ValidationAppError("DATE_REQUIRED", "Date parameters required")
    if end < start:
        raise ValidationAppError("INVALID_DATE_RANGE", "endDate before startDate")

    if not service.is_authorized():
        return _auth_required()

    events = service.get_events(start, end)
    return {
        "success": True,
        "events": [e.to_dict() for e in events],
        "startDate": start.isoformat(),
        "endDate": end.isoformat(),
        "cached": True,
    }


@router.post("/sync")
def start_background_sync(service: CalendarSyncService = Depends(get_sync_service)):
    started = service.start()
    message = "Background calendar sync started" if started else "Background calendar sync already running"
    return {"success": True, "message": message}


@router.get("/sync")
def sync_now(service: CalendarSyncService = Depends(get_sync_service)):
    res = service.sync_now()
    if res.skipped:
        return {"success": True, "message": "Sync already in progress"}
    return {
        "success": not res.aborted,
        "message": "Manual calendar sync completed",
        "result": {
            "full": res.full,
            "incremental": res.incremental,
            "unchanged": res.unchanged,
            "failed": res.failed,
        },
    }


@router.post("/sync/fresh")
def sync_fresh(service: CalendarSyncService = Depends(get_sync_service)):
    res = service.sync_now(fresh=True)
    if res.skipped:
        return {"success": False, "message": "Sync already in progress"}
    return {
        "success": not res.aborted,
        "message": "Fresh calendar sync completed - all sync tokens cleared",
        "result": {"full": res.full, "failed": res.failed},
    }


@router.get("/sync/interval")
def get_interval(service: CalendarSyncService = Depends(get_sync_service)):
    return {"interval": service.get_interval()}


@router.post("/sync/interval")
def set_interval(body: IntervalUpdate, service: CalendarSyncService = Depends(get_sync_service)):
    interval = service.set_interval(body.interval)
    return {"success": True, "interval": interval}


@router.get("/sync/status")
def sync_status(service: CalendarSyncService = Depends(get_sync_service)):
    return service.get_status().to_dict()


@router.get("/sync/detailed-status")
def detailed_status(service: CalendarSyncService = Depends(get_sync_service)):
    return service.detailed_status()


@router.get("/store/init")
@router.get("/store/refresh")
def store_snapshot(service: CalendarSyncService = Depends(get_sync_service)):
    """All cached calendars with their events, for the browser-side event store."""
    return {
        "calendars": [
            {
                "calendarId": r.calendar_id,
                "calendarName": r.calendar_name,
                "events": [e.to_dict() for e in r.events],
            }
            for r in service.cached_calendars()
        ]
    }


@router.get("/auth/status")
def auth_status(service: CalendarSyncService = Depends(get_sync_service)):
    return {"authorized": service.is_authorized()}
