"""Shared Pydantic request/response models for the HTTP API.

Provides the generic response wrapper, the error envelope, and the request
bodies accepted by the mutation endpoints.  Request bodies accept either
snake_case or camelCase keys and are dumped in the stored (camelCase) shape.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from teamcal.engine.models import (
    Audience,
    AvailabilitySnapshot,
    BlockingPolicy,
    CalendarProjection,
    EventPrivacy,
    SharePolicy,
)

# ---------------------------------------------------------------------------
# Base response wrappers
# ---------------------------------------------------------------------------


class ApiMeta(BaseModel):
    """Extensible metadata bag attached to every API response."""

    model_config = {"extra": "allow"}


class ApiResponse[T](BaseModel):
    """Generic API response wrapper.

    All successful responses follow ``{"data": T, "meta": {...}}``.
    """

    data: T
    meta: ApiMeta = Field(default_factory=ApiMeta)


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class AvailabilityResponse(BaseModel):
    user_id: str
    day: date = Field(serialization_alias="date")
    available_hours: float
    busy_hours: float
    ooo: bool
    computed_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, snapshot: AvailabilitySnapshot) -> AvailabilityResponse:
        return cls(
            user_id=snapshot.user_id,
            day=snapshot.day,
            available_hours=snapshot.available_hours,
            busy_hours=snapshot.busy_hours,
            ooo=snapshot.ooo,
            computed_at=snapshot.computed_at,
        )


# ---------------------------------------------------------------------------
# Mutation requests
# ---------------------------------------------------------------------------


class _DocumentRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """Dump the fields the caller actually sent, in stored key style."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class EventCreateRequest(_DocumentRequest):
    title: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime | None = None
    category: str | None = None
    source: str | None = None
    privacy: EventPrivacy | None = None
    audience: Audience | None = None
    blocking_policy: BlockingPolicy | None = None
    description: str | None = None
    location: str | None = None
    project_id: str | None = None
    external_calendar_id: str | None = None
    external_event_id: str | None = None


class EventUpdateRequest(_DocumentRequest):
    title: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    category: str | None = None
    privacy: EventPrivacy | None = None
    audience: Audience | None = None
    blocking_policy: BlockingPolicy | None = None
    description: str | None = None
    location: str | None = None


class MilestoneCreateRequest(_DocumentRequest):
    title: str = Field(min_length=1)
    due_date: datetime
    visibility: Audience | None = None
    description: str | None = None


class MilestoneUpdateRequest(_DocumentRequest):
    title: str | None = None
    due_date: datetime | None = None
    visibility: Audience | None = None
    description: str | None = None
    status: str | None = None
    completed_at: datetime | None = None


class TaskCreateRequest(_DocumentRequest):
    title: str = Field(min_length=1)
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    labels: list[str] | None = None
    assignees: list[str] | None = None
    deadline: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    milestone_id: str | None = None
    progress_percent: float | None = None
    progress_method: str | None = None
    share_policy: SharePolicy | None = None
    audience: Audience | None = None
    calendar_projection: CalendarProjection | None = None


class TaskUpdateRequest(_DocumentRequest):
    title: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    labels: list[str] | None = None
    assignees: list[str] | None = None
    deadline: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    milestone_id: str | None = None
    progress_percent: float | None = None
    share_policy: SharePolicy | None = None
    audience: Audience | None = None
    calendar_projection: CalendarProjection | None = None


class TaskProgressRequest(_DocumentRequest):
    progress_percent: float
