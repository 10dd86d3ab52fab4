"""Domain models for calendar feeds and availability.

``CalendarItem`` is a closed union of three tagged variants (task, event,
milestone) discriminated on ``kind``.  Items are derived per request from the
stored documents and are never persisted themselves.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from teamcal.errors import InvalidArgumentError

DEFAULT_VIEWER_ROLE = "STAFF"


class ItemKind(enum.StrEnum):
    TASK = "task"
    EVENT = "event"
    MILESTONE = "milestone"


class Audience(enum.StrEnum):
    """Who is eligible to see an item at all."""

    ASSIGNEE_ONLY = "AssigneeOnly"
    PROJECT_MEMBERS = "ProjectMembers"
    BUSINESS = "Business"


class EventPrivacy(enum.StrEnum):
    """How much of an event an eligible non-owner sees."""

    PRIVATE_REDACTED = "PrivateRedacted"
    BUSY_ONLY = "BusyOnly"
    TITLE_VISIBLE = "TitleVisible"


class SharePolicy(enum.StrEnum):
    """How much of a task an eligible non-owner sees."""

    STATUS_ONLY = "StatusOnly"
    STATUS_AND_TITLE = "Status+Title"
    FULL = "Full"


class BlockingPolicy(enum.StrEnum):
    """Whether an item counts toward busy time."""

    HARD_BLOCK = "HardBlock"
    SOFT_BLOCK = "SoftBlock"
    NONE = "None"


class CalendarProjection(enum.StrEnum):
    SHOW = "Show"
    HIDE = "Hide"


class VisibilityHint(enum.StrEnum):
    ME = "Me"
    TEAM = "Team"
    BUSINESS = "Business"


class MemberFailurePolicy(enum.StrEnum):
    """What the team feed does when a per-member task query fails."""

    BEST_EFFORT = "best_effort"
    FAIL_CLOSED = "fail_closed"


# ---------------------------------------------------------------------------
# Calendar items
# ---------------------------------------------------------------------------


class CalendarItemBase(BaseModel):
    """Fields common to every calendar item variant."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_user_id: str | None = None
    project_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    title: str = ""
    description: str = ""
    audience: Audience = Audience.ASSIGNEE_ONLY
    blocking_policy: BlockingPolicy = BlockingPolicy.NONE
    category: str | None = None
    priority: str | None = None
    title_redacted: bool = False
    visibility_hint: VisibilityHint | None = None


class TaskItem(CalendarItemBase):
    kind: Literal[ItemKind.TASK] = ItemKind.TASK
    status: str | None = None
    progress_percent: int = 0
    share_policy: SharePolicy = SharePolicy.STATUS_ONLY
    calendar_projection: CalendarProjection = CalendarProjection.HIDE
    assignees: tuple[str, ...] = ()


class EventItem(CalendarItemBase):
    kind: Literal[ItemKind.EVENT] = ItemKind.EVENT
    privacy: EventPrivacy = EventPrivacy.PRIVATE_REDACTED
    calendar_projection: CalendarProjection = CalendarProjection.SHOW
    location: str = ""


class MilestoneItem(CalendarItemBase):
    kind: Literal[ItemKind.MILESTONE] = ItemKind.MILESTONE
    status: str | None = None


CalendarItem = Annotated[TaskItem | EventItem | MilestoneItem, Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Request scope
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Viewer:
    """The authenticated identity a feed is composed for."""

    user_id: str
    role: str = DEFAULT_VIEWER_ROLE


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class FeedWindow(BaseModel):
    """Closed time window bounding item ``start_time`` inclusively."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _validate_bounds(self) -> FeedWindow:
        if self.start > self.end:
            raise ValueError("window start must not be after window end")
        return self

    @classmethod
    def between(cls, start: datetime, end: datetime) -> FeedWindow:
        """Build a window, raising ``InvalidArgumentError`` on inverted bounds."""
        start, end = _as_utc(start), _as_utc(end)
        if start > end:
            raise InvalidArgumentError(
                "window start must not be after window end",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )
        return cls(start=start, end=end)

    def contains(self, instant: datetime | None) -> bool:
        if instant is None:
            return False
        return self.start <= _as_utc(instant) <= self.end


class Feed(BaseModel):
    """A composed, time-ordered, privacy-filtered sequence of calendar items."""

    items: list[CalendarItem] = Field(default_factory=list)
    count: int = 0
    skipped_members: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Membership and availability
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrganizationMembership:
    organization_id: str
    user_id: str
    role: str = "member"


@dataclass(frozen=True)
class Project:
    id: str
    members: frozenset[str] = frozenset()
    organization_id: str | None = None
    name: str | None = None


class AvailabilitySummary(BaseModel):
    """Busy/available hour totals for one user on one day."""

    model_config = ConfigDict(frozen=True)

    available_hours: float
    busy_hours: float
    ooo: bool


class AvailabilitySnapshot(AvailabilitySummary):
    """Cached ``AvailabilitySummary`` keyed by ``(user_id, date)``."""

    user_id: str
    day: date
    window_start: datetime
    window_end: datetime
    computed_at: datetime

    @property
    def key(self) -> str:
        return availability_key(self.user_id, self.day)

    def summary(self) -> AvailabilitySummary:
        return AvailabilitySummary(
            available_hours=self.available_hours,
            busy_hours=self.busy_hours,
            ooo=self.ooo,
        )


def availability_key(user_id: str, day: date) -> str:
    """Storage key for an availability snapshot: ``{user_id}_{YYYY-MM-DD}``."""
    return f"{user_id}_{day.isoformat()}"


@dataclass
class BatchResult:
    """Outcome of one availability recompute run across all users."""

    day: date
    processed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
