"""Calendar API routes for suitecal."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Optional

from aiohttp import web
from dateutil import parser as date_parser

from ..calendar.models import Attendee, Reminder, ReminderMethod, SeriesRoot, TimeWindow
from ..core.exceptions import (
    ExceptionMismatch,
    InvalidRule,
    SeriesNotFound,
    StoreUnavailable,
    UnknownTimezone,
    WindowTooLarge,
)
from ..core.timezone_utils import ensure_utc

logger = logging.getLogger(__name__)

OCCURRENCE_FIELD_MAP = {
    "startAt": "start_at",
    "endAt": "end_at",
    "title": "title",
    "description": "description",
    "location": "location",
    "onlineMeetingLink": "online_meeting_link",
}


class BadRequest(ValueError):
    """Malformed request parameter; ``field`` names the offending one."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


def parse_instant(value: Any, field: str) -> datetime:
    """Parse an ISO-8601 instant from a query or body value (naive means UTC)."""
    if not value:
        raise BadRequest(field, f"missing {field}")
    if not isinstance(value, str):
        raise BadRequest(field, f"{field} must be an ISO-8601 string")
    try:
        return ensure_utc(date_parser.isoparse(value))
    except ValueError as e:
        raise BadRequest(field, f"invalid {field}: {value!r}") from e


def parse_window(query: Any) -> TimeWindow:
    start = parse_instant(query.get("start"), "start")
    end = parse_instant(query.get("end"), "end")
    if start >= end:
        raise BadRequest("end", "end must be after start")
    return TimeWindow(start=start, end=end)


def parse_flag(value: Any, field: str) -> bool:
    """Accept a JSON boolean only; strings such as "false" are rejected."""
    if value is None:
        return False
    if not isinstance(value, bool):
        raise BadRequest(field, f"{field} must be a boolean")
    return value


def parse_object_list(value: Any, field: str) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise BadRequest(field, f"{field} must be a list of objects")
    return value


def parse_minutes(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise BadRequest(field, f"{field} must be an integer")
    return value


def parse_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def error_response(exc: Exception) -> web.Response:
    """Map engine errors to JSON error responses."""
    if isinstance(exc, InvalidRule):
        return web.json_response(
            {"error": str(exc), "field": "recurrenceRule", "token": exc.token}, status=400
        )
    if isinstance(exc, UnknownTimezone):
        return web.json_response({"error": str(exc), "field": "timezone", "zone": exc.zone}, status=400)
    if isinstance(exc, WindowTooLarge):
        return web.json_response({"error": str(exc), "field": "end", "limit": exc.limit}, status=400)
    if isinstance(exc, BadRequest):
        return web.json_response({"error": str(exc), "field": exc.field}, status=400)
    if isinstance(exc, SeriesNotFound):
        return web.json_response({"error": str(exc), "seriesId": exc.series_id}, status=404)
    if isinstance(exc, ExceptionMismatch):
        return web.json_response(
            {
                "error": str(exc),
                "seriesId": exc.series_id,
                "originalStartAt": exc.original_start_at.isoformat(),
            },
            status=409,
        )
    if isinstance(exc, StoreUnavailable):
        return web.json_response({"error": "datastore unavailable"}, status=503)
    if isinstance(exc, ValueError):
        return web.json_response({"error": str(exc)}, status=400)
    logger.exception("Unhandled error in calendar route", exc_info=exc)
    return web.json_response({"error": "internal error"}, status=500)


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError as e:
        raise BadRequest("body", "invalid json") from e
    if not isinstance(data, dict):
        raise BadRequest("body", "request body must be a JSON object")
    return data


def series_from_payload(data: dict[str, Any], default_timezone: str) -> tuple[SeriesRoot, Optional[list[Reminder]]]:
    """Build a SeriesRoot (and optional reminders) from a camelCase request body."""
    series_id = str(data.get("id") or uuid.uuid4().hex)
    for required in ("calendarId", "title", "startAt", "endAt", "createdBy"):
        if not data.get(required):
            raise BadRequest(required, f"missing {required}")

    recurrence_end_at = data.get("recurrenceEndAt")
    series = SeriesRoot(
        id=series_id,
        calendar_id=str(data["calendarId"]),
        title=str(data["title"]),
        description=data.get("description"),
        location=data.get("location"),
        online_meeting_link=data.get("onlineMeetingLink"),
        start_at=parse_instant(data["startAt"], "startAt"),
        end_at=parse_instant(data["endAt"], "endAt"),
        all_day=parse_flag(data.get("allDay"), "allDay"),
        timezone=str(data.get("timezone") or default_timezone),
        recurrence_rule=data.get("recurrenceRule") or None,
        recurrence_end_at=(
            parse_instant(recurrence_end_at, "recurrenceEndAt") if recurrence_end_at else None
        ),
        created_by=str(data["createdBy"]),
        attendees=[
            Attendee(
                user_id=item.get("userId"),
                email=item.get("email"),
                response=item.get("response") or "NEEDS_ACTION",
            )
            for item in parse_object_list(data.get("attendees"), "attendees")
        ],
    )

    reminders = None
    if data.get("reminders") is not None:
        reminders = [
            Reminder(
                id=uuid.uuid4().hex,
                event_id=series_id,
                method=item.get("method") or ReminderMethod.APP,
                minutes_before=parse_minutes(item.get("minutesBefore", 10), "minutesBefore"),
            )
            for item in parse_object_list(data["reminders"], "reminders")
        ]
    return series, reminders


def register_calendar_routes(
    app: web.Application,
    series_service: Any,
    conflict_detector: Any,
    free_busy: Any,
    scheduler: Any,
    time_provider: Callable[[], datetime],
    default_timezone: str = "UTC",
) -> None:
    """Register calendar API routes.

    Args:
        app: aiohttp web application
        series_service: SeriesService for lifecycle operations and materialization
        conflict_detector: ConflictDetector
        free_busy: FreeBusyAggregator
        scheduler: ReminderScheduler
        time_provider: Time provider callable
        default_timezone: Zone applied to series created without one
    """

    async def health_check(_request: web.Request) -> web.Response:
        """Health check endpoint with the last dispatch report."""
        last = scheduler.last_report
        return web.json_response(
            {
                "status": "ok",
                "serverTime": time_provider().isoformat(),
                "lastDispatch": last.to_dict() if last is not None else None,
            }
        )

    async def list_occurrences(request: web.Request) -> web.Response:
        try:
            window = parse_window(request.query)
            calendar_ids = parse_csv(request.query.get("calendarIds"))
            occurrences = await asyncio.to_thread(
                series_service.materializer.materialize, calendar_ids, window
            )
        except Exception as e:
            return error_response(e)
        logger.debug("/api/occurrences returned %d occurrences", len(occurrences))
        return web.json_response({"occurrences": [o.to_api_dict() for o in occurrences]})

    async def check_conflicts(request: web.Request) -> web.Response:
        try:
            window = parse_window(request.query)
            calendar_ids = parse_csv(request.query.get("calendarIds"))
            conflicts = await asyncio.to_thread(
                conflict_detector.detect_conflicts, window.start, window.end, calendar_ids
            )
        except Exception as e:
            return error_response(e)
        return web.json_response(
            {
                "hasConflicts": bool(conflicts),
                "conflicts": [o.to_api_dict() for o in conflicts],
            }
        )

    async def get_free_busy(request: web.Request) -> web.Response:
        try:
            window = parse_window(request.query)
            calendar_ids = parse_csv(request.query.get("calendarIds"))
            emails = parse_csv(request.query.get("attendeeEmails"))
            busy = await asyncio.to_thread(free_busy.compute_free_busy, window, calendar_ids, emails)
        except Exception as e:
            return error_response(e)
        return web.json_response(
            {
                "start": window.start.isoformat(),
                "end": window.end.isoformat(),
                "busy": [interval.to_api_dict() for interval in busy],
            }
        )

    async def search(request: web.Request) -> web.Response:
        try:
            text = request.query.get("text", "").strip()
            if not text:
                raise BadRequest("text", "missing text")
            window = parse_window(request.query)
            calendar_ids = parse_csv(request.query.get("calendarIds"))
            results = await asyncio.to_thread(
                series_service.search_occurrences, text, calendar_ids, window
            )
        except Exception as e:
            return error_response(e)
        return web.json_response({"results": [o.to_api_dict() for o in results]})

    async def create_series(request: web.Request) -> web.Response:
        try:
            data = await _read_json(request)
            series, reminders = series_from_payload(data, default_timezone)
            stored = await asyncio.to_thread(series_service.create_series, series, reminders)
        except Exception as e:
            return error_response(e)
        return web.json_response({"series": stored.model_dump(mode="json")}, status=201)

    async def trash_series(request: web.Request) -> web.Response:
        series_id = request.match_info["series_id"]
        try:
            stored = await asyncio.to_thread(series_service.trash_series, series_id)
        except Exception as e:
            return error_response(e)
        return web.json_response({"seriesId": stored.id, "trashedAt": stored.trashed_at.isoformat()})

    async def edit_occurrence(request: web.Request) -> web.Response:
        """Edit or cancel one occurrence (editMode THIS)."""
        series_id = request.match_info["series_id"]
        try:
            data = await _read_json(request)
            edit_mode = str(data.get("editMode", "THIS")).upper()
            if edit_mode != "THIS":
                raise BadRequest("editMode", f"unsupported editMode {edit_mode!r}")
            original = parse_instant(data.get("originalStartAt"), "originalStartAt")

            if parse_flag(data.get("cancel"), "cancel"):
                stored = await asyncio.to_thread(
                    series_service.cancel_occurrence, series_id, original
                )
            else:
                changes: dict[str, Any] = {}
                for key, field_name in OCCURRENCE_FIELD_MAP.items():
                    if key not in data:
                        continue
                    value = data[key]
                    if field_name in ("start_at", "end_at") and value is not None:
                        value = parse_instant(value, key)
                    changes[field_name] = value
                stored = await asyncio.to_thread(
                    series_service.edit_occurrence, series_id, original, **changes
                )
        except Exception as e:
            return error_response(e)
        return web.json_response({"exception": stored.model_dump(mode="json")}, status=200)

    async def dispatch_reminders(_request: web.Request) -> web.Response:
        try:
            report = await asyncio.to_thread(scheduler.run_dispatch_tick)
        except Exception as e:
            return error_response(e)
        return web.json_response(report.to_dict())

    app.router.add_get("/api/health", health_check)
    app.router.add_get("/api/occurrences", list_occurrences)
    app.router.add_get("/api/conflicts", check_conflicts)
    app.router.add_get("/api/free-busy", get_free_busy)
    app.router.add_get("/api/search", search)
    app.router.add_post("/api/series", create_series)
    app.router.add_delete("/api/series/{series_id}", trash_series)
    app.router.add_post("/api/series/{series_id}/occurrences", edit_occurrence)
    app.router.add_post("/api/reminders/dispatch", dispatch_reminders)
