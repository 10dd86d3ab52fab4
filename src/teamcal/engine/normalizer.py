"""Map stored task/event/milestone documents onto ``CalendarItem`` variants.

Documents drift: the same concept can appear under camelCase or snake_case
keys, and a task's placement may live in ``startTime``, ``deadline`` or
``dueDate``.  The constructors here resolve those into one shape and never
raise on bad data; an unparseable date simply becomes ``None``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, date, datetime, time
from enum import StrEnum
from typing import Any

from teamcal.engine.models import (
    Audience,
    BlockingPolicy,
    CalendarItem,
    CalendarProjection,
    EventItem,
    EventPrivacy,
    ItemKind,
    MilestoneItem,
    SharePolicy,
    TaskItem,
)

logger = logging.getLogger(__name__)

# Precedence for the instant that places an item on the calendar.
_START_KEYS = ("startTime", "start_time", "deadline", "dueDate", "due_date")
_END_KEYS = ("endTime", "end_time")
_OWNER_KEYS = ("userId", "user_id", "createdBy", "created_by")

_SHARE_POLICY_ALIASES = {"StatusAndTitle": SharePolicy.STATUS_AND_TITLE}


def _first(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def coerce_datetime(value: object) -> datetime | None:
    """Best-effort conversion of a stored date value to an aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=UTC)
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        normalized = value.strip()
        if not normalized:
            return None
        if normalized.endswith("Z"):
            normalized = f"{normalized[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return None


def _coerce_enum[E: StrEnum](value: object, enum_cls: type[E], default: E) -> E:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip())
        except ValueError:
            pass
    return default


def _coerce_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_progress(value: object) -> int:
    try:
        progress = int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, progress))


def _share_policy(value: object) -> SharePolicy:
    if isinstance(value, str) and value.strip() in _SHARE_POLICY_ALIASES:
        return _SHARE_POLICY_ALIASES[value.strip()]
    return _coerce_enum(value, SharePolicy, SharePolicy.STATUS_ONLY)


def _base_fields(raw: Mapping[str, Any]) -> dict[str, Any]:
    owner = _first(raw, _OWNER_KEYS)
    return {
        "id": str(raw.get("id", "")),
        "owner_user_id": str(owner) if owner is not None else None,
        "project_id": _coerce_str(_first(raw, ("projectId", "project_id"))),
        "start_time": coerce_datetime(_first(raw, _START_KEYS)),
        "end_time": coerce_datetime(_first(raw, _END_KEYS)),
        "title": str(raw.get("title") or ""),
        "description": str(raw.get("description") or ""),
        "audience": _coerce_enum(raw.get("audience"), Audience, Audience.ASSIGNEE_ONLY),
        "blocking_policy": _coerce_enum(
            _first(raw, ("blockingPolicy", "blocking_policy")),
            BlockingPolicy,
            BlockingPolicy.NONE,
        ),
        "category": _coerce_str(raw.get("category")),
        "priority": _coerce_str(raw.get("priority")),
    }


def normalize_task(raw: Mapping[str, Any]) -> TaskItem:
    """Build a ``TaskItem``; the deadline stands in for a missing start."""
    fields = _base_fields(raw)
    if _first(raw, ("startTime", "start_time")) is None:
        # Deadline-placed tasks are points in time.
        fields["end_time"] = None
    assignees = raw.get("assignees") or ()
    return TaskItem(
        **fields,
        status=_coerce_str(raw.get("status")),
        progress_percent=_coerce_progress(_first(raw, ("progressPercent", "progress_percent"))),
        share_policy=_share_policy(_first(raw, ("sharePolicy", "share_policy"))),
        calendar_projection=_coerce_enum(
            _first(raw, ("calendarProjection", "calendar_projection")),
            CalendarProjection,
            CalendarProjection.HIDE,
        ),
        assignees=tuple(str(a) for a in assignees if a is not None),
    )


def normalize_event(raw: Mapping[str, Any]) -> EventItem:
    return EventItem(
        **_base_fields(raw),
        privacy=_coerce_enum(raw.get("privacy"), EventPrivacy, EventPrivacy.PRIVATE_REDACTED),
        calendar_projection=_coerce_enum(
            _first(raw, ("calendarProjection", "calendar_projection")),
            CalendarProjection,
            CalendarProjection.SHOW,
        ),
        location=str(raw.get("location") or ""),
    )


def normalize_milestone(raw: Mapping[str, Any]) -> MilestoneItem:
    fields = _base_fields(raw)
    # Milestones are scoped by project rather than audience-gated.
    fields["audience"] = _coerce_enum(
        _first(raw, ("visibility", "audience")), Audience, Audience.PROJECT_MEMBERS
    )
    return MilestoneItem(**fields, status=_coerce_str(raw.get("status")))


_CONSTRUCTORS = {
    ItemKind.TASK: normalize_task,
    ItemKind.EVENT: normalize_event,
    ItemKind.MILESTONE: normalize_milestone,
}


def normalize(raw: Mapping[str, Any], kind: ItemKind | str) -> CalendarItem:
    """Dispatch *raw* to the constructor for *kind*."""
    return _CONSTRUCTORS[ItemKind(kind)](raw)


def normalize_many(rows: list[Mapping[str, Any]], kind: ItemKind) -> list[CalendarItem]:
    """Normalize *rows*, dropping (and logging) any document that cannot be shaped."""
    items: list[CalendarItem] = []
    for raw in rows:
        try:
            items.append(normalize(raw, kind))
        except (TypeError, ValueError):
            logger.warning(
                "Skipping malformed %s document: id=%s", kind, raw.get("id"), exc_info=True
            )
    return items
