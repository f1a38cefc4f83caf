"""Data models for the suitecal calendar engine."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from ..core.timezone_utils import DEFAULT_TIMEZONE, ensure_utc


def _utc_or_none(value: Optional[datetime]) -> Optional[datetime]:
    return None if value is None else ensure_utc(value)


class EventStatus(str, Enum):
    """Event status values."""

    CONFIRMED = "CONFIRMED"
    CANCELED = "CANCELED"


class ReminderMethod(str, Enum):
    """Reminder delivery method."""

    APP = "APP"
    EMAIL = "EMAIL"


class ReminderState(str, Enum):
    """Reminder state machine: PENDING -> DISPATCHED, never back."""

    PENDING = "PENDING"
    DISPATCHED = "DISPATCHED"


class AttendeeResponse(str, Enum):
    """Attendee RSVP status."""

    NEEDS_ACTION = "NEEDS_ACTION"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    TENTATIVE = "TENTATIVE"


class TimeWindow(BaseModel):
    """Half-open query window ``[start, end)``.

    Every expansion and materialization requires one; ``start < end`` is
    enforced so no query can be unbounded.
    """

    start: datetime = Field(..., description="Inclusive window start")
    end: datetime = Field(..., description="Exclusive window end")

    model_config = ConfigDict(frozen=True)

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> TimeWindow:
        if self.start >= self.end:
            raise ValueError("window start must be before window end")
        return self

    def intersects(self, start_at: datetime, end_at: datetime) -> bool:
        """True if ``[start_at, end_at)`` overlaps the window.

        Zero-length intervals count when their instant lies inside the window.
        """
        if start_at == end_at:
            return self.start <= start_at < self.end
        return start_at < self.end and end_at > self.start


class Attendee(BaseModel):
    """Event attendee; internal users carry ``user_id``, external ones only ``email``."""

    user_id: Optional[str] = Field(default=None, description="Resolved user identity")
    email: Optional[str] = Field(default=None, description="Attendee email address")
    response: AttendeeResponse = Field(
        default=AttendeeResponse.NEEDS_ACTION, description="RSVP status"
    )

    @model_validator(mode="after")
    def _require_identity(self) -> Attendee:
        if not self.user_id and not self.email:
            raise ValueError("attendee needs a user_id or an email")
        return self


class OccurrenceFields(BaseModel):
    """Display fields of an occurrence that an exception may override."""

    title: str = Field(..., description="Event title")
    description: Optional[str] = Field(default=None, description="Event description")
    location: Optional[str] = Field(default=None, description="Event location")
    online_meeting_link: Optional[str] = Field(default=None, description="Meeting URL")

    model_config = ConfigDict(frozen=True)


class SeriesRoot(BaseModel):
    """A recurring series root or a standalone event.

    A row with ``recurrence_rule`` is a recurring root; without one it is a
    standalone event. Per-occurrence overrides live in ``ExceptionOverride``.
    """

    id: str = Field(..., description="Series id")
    calendar_id: str = Field(..., description="Owning calendar id")
    title: str = Field(..., description="Event title")
    description: Optional[str] = None
    location: Optional[str] = None
    online_meeting_link: Optional[str] = None

    start_at: datetime = Field(..., description="Anchor start instant")
    end_at: datetime = Field(..., description="Anchor end instant")
    all_day: bool = Field(default=False, description="All-day flag")
    timezone: str = Field(default=DEFAULT_TIMEZONE, description="IANA zone of the series")

    recurrence_rule: Optional[str] = Field(default=None, description="Bounded RRULE string")
    recurrence_end_at: Optional[datetime] = Field(
        default=None, description="Hard ceiling for occurrence starts"
    )

    status: EventStatus = Field(default=EventStatus.CONFIRMED)
    created_by: str = Field(..., description="Creator user id")
    attendees: list[Attendee] = Field(default_factory=list)
    trashed_at: Optional[datetime] = Field(default=None, description="Soft-delete marker")

    @field_validator("start_at", "end_at")
    @classmethod
    def _normalize_required(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("recurrence_end_at", "trashed_at")
    @classmethod
    def _normalize_optional(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(value)

    @model_validator(mode="after")
    def _check_interval(self) -> SeriesRoot:
        if self.end_at < self.start_at:
            raise ValueError("end_at must not be before start_at")
        return self

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurrence_rule)

    @property
    def is_trashed(self) -> bool:
        return self.trashed_at is not None

    @property
    def duration(self) -> timedelta:
        return self.end_at - self.start_at

    @property
    def base_fields(self) -> OccurrenceFields:
        return OccurrenceFields(
            title=self.title,
            description=self.description,
            location=self.location,
            online_meeting_link=self.online_meeting_link,
        )

    @field_serializer("start_at", "end_at")
    def serialize_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @field_serializer("recurrence_end_at", "trashed_at", when_used="unless-none")
    def serialize_optional_datetime(self, dt: datetime) -> str:
        return dt.isoformat()


class ExceptionOverride(BaseModel):
    """Override or cancellation of exactly one occurrence of a series.

    Keyed by ``(root_id, original_start_at)``; ``original_start_at`` must
    equal a raw occurrence instant of the root exactly.
    """

    id: str = Field(..., description="Exception id")
    root_id: str = Field(..., description="Series root id")
    original_start_at: datetime = Field(..., description="Raw occurrence being overridden")
    start_at: datetime = Field(..., description="Overridden start")
    end_at: datetime = Field(..., description="Overridden end")
    status: EventStatus = Field(default=EventStatus.CONFIRMED)

    # None inherits the root's value
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    online_meeting_link: Optional[str] = None

    created_by: Optional[str] = None

    @field_validator("original_start_at", "start_at", "end_at")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_interval(self) -> ExceptionOverride:
        if self.end_at < self.start_at:
            raise ValueError("end_at must not be before start_at")
        return self

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.root_id, self.original_start_at)

    @property
    def is_cancellation(self) -> bool:
        return self.status == EventStatus.CANCELED

    def apply_to(self, base: OccurrenceFields) -> OccurrenceFields:
        """Return ``base`` with this exception's non-None fields applied."""
        return OccurrenceFields(
            title=self.title if self.title is not None else base.title,
            description=self.description if self.description is not None else base.description,
            location=self.location if self.location is not None else base.location,
            online_meeting_link=(
                self.online_meeting_link
                if self.online_meeting_link is not None
                else base.online_meeting_link
            ),
        )

    @field_serializer("original_start_at", "start_at", "end_at")
    def serialize_datetime(self, dt: datetime) -> str:
        return dt.isoformat()


class Reminder(BaseModel):
    """Reminder attached to an event.

    ``minutes_before`` is signed; a negative value fires after the start.
    ``dispatched_at`` moves from None to a timestamp exactly once.
    """

    id: str = Field(..., description="Reminder id")
    event_id: str = Field(..., description="Event (series) id")
    method: ReminderMethod = Field(default=ReminderMethod.APP)
    minutes_before: int = Field(default=10, description="Signed offset before start")
    dispatched_at: Optional[datetime] = Field(default=None, description="Dispatch timestamp")

    @field_validator("dispatched_at")
    @classmethod
    def _normalize(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(value)

    @property
    def state(self) -> ReminderState:
        if self.dispatched_at is None:
            return ReminderState.PENDING
        return ReminderState.DISPATCHED

    @field_serializer("dispatched_at", when_used="unless-none")
    def serialize_datetime(self, dt: datetime) -> str:
        return dt.isoformat()


class Occurrence(BaseModel):
    """One concrete instance of a (possibly recurring) event. Never persisted."""

    series_id: str = Field(..., description="Series root id")
    calendar_id: str = Field(..., description="Calendar id")
    start_at: datetime = Field(..., description="Occurrence start (UTC)")
    end_at: datetime = Field(..., description="Occurrence end (UTC)")
    all_day: bool = Field(default=False)
    original_start_at: Optional[datetime] = Field(
        default=None, description="Raw recurrence instant; None for standalone events"
    )
    base_fields: OccurrenceFields = Field(..., description="Series fields")
    override: Optional[OccurrenceFields] = Field(
        default=None, description="Fields from an exception override"
    )

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.series_id, self.start_at)

    @property
    def effective_fields(self) -> OccurrenceFields:
        return self.override if self.override is not None else self.base_fields

    @property
    def is_overridden(self) -> bool:
        return self.override is not None

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the JSON shape used by the HTTP API."""
        effective = self.effective_fields
        return {
            "seriesId": self.series_id,
            "calendarId": self.calendar_id,
            "occurrenceStartAt": self.start_at.isoformat(),
            "occurrenceEndAt": self.end_at.isoformat(),
            "originalStartAt": (
                self.original_start_at.isoformat() if self.original_start_at else None
            ),
            "allDay": self.all_day,
            "title": effective.title,
            "description": effective.description,
            "location": effective.location,
            "onlineMeetingLink": effective.online_meeting_link,
            "overridden": self.is_overridden,
        }


class BusyInterval(BaseModel):
    """Half-open busy interval; carries no event identity."""

    start_at: datetime
    end_at: datetime

    model_config = ConfigDict(frozen=True)

    def to_api_dict(self) -> dict[str, str]:
        return {"startAt": self.start_at.isoformat(), "endAt": self.end_at.isoformat()}


class CalendarRows(BaseModel):
    """Rows a Datastore returns for a window: series roots plus their overrides."""

    series: list[SeriesRoot] = Field(default_factory=list)
    exceptions: list[ExceptionOverride] = Field(default_factory=list)


class PendingReminder(BaseModel):
    """A PENDING reminder together with the event it belongs to."""

    reminder: Reminder
    event: SeriesRoot


class ReminderNotification(BaseModel):
    """Payload handed to the Notifier for one recipient."""

    type: str = Field(default="calendar_reminder")
    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)
