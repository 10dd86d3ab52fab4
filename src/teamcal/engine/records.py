"""Task, event and milestone mutations.

Documents are stored in their wire (camelCase) shape; the normalizer maps
them into ``CalendarItem`` values at read time.  Every successful mutation
appends an activity entry.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from teamcal.core.activity import log_activity
from teamcal.engine.normalizer import coerce_datetime
from teamcal.errors import InvalidArgumentError, NotFoundError, PermissionDeniedError
from teamcal.store import RecordStore

logger = logging.getLogger(__name__)

EVENT_DEFAULTS: dict[str, Any] = {
    "category": "Work",
    "source": "Manual",
    "privacy": "BusyOnly",
    "audience": "AssigneeOnly",
    "blockingPolicy": "SoftBlock",
    "description": "",
    "location": "",
    "projectId": None,
    "externalCalendarId": None,
    "externalEventId": None,
}

TASK_DEFAULTS: dict[str, Any] = {
    "description": "",
    "assignees": [],
    "labels": [],
    "priority": "MEDIUM",
    "progressPercent": 0,
    "progressMethod": "Manual",
    "deadline": None,
    "milestoneId": None,
    "sharePolicy": "Full",
    "audience": "AssigneeOnly",
    "calendarProjection": "Show",
}

MILESTONE_DEFAULTS: dict[str, Any] = {
    "visibility": "ProjectMembers",
    "description": "",
    "status": "pending",
    "completedAt": None,
}

# Keys a caller may never overwrite through an update.
_IMMUTABLE_KEYS = frozenset({"id", "userId", "projectId", "createdAt", "updatedAt"})
_TASK_IMMUTABLE_KEYS = _IMMUTABLE_KEYS | {"createdBy", "progressUpdatedAt"}

# Keys an update may change but never clear.
_REQUIRED_EVENT_KEYS = ("title", "startTime")
_REQUIRED_TASK_KEYS = ("title",)
_REQUIRED_MILESTONE_KEYS = ("title", "dueDate")


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _provided(data: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def _check_event_times(doc: Mapping[str, Any]) -> None:
    start = coerce_datetime(doc.get("startTime"))
    end = coerce_datetime(doc.get("endTime"))
    if doc.get("startTime") is not None and start is None:
        raise InvalidArgumentError("startTime is not a valid timestamp")
    if doc.get("endTime") is not None and end is None:
        raise InvalidArgumentError("endTime is not a valid timestamp")
    if start is not None and end is not None and end < start:
        raise InvalidArgumentError(
            "endTime must not be before startTime",
            details={"startTime": start.isoformat(), "endTime": end.isoformat()},
        )


def _check_task_fields(data: Mapping[str, Any]) -> None:
    if data.get("deadline") is not None and coerce_datetime(data["deadline"]) is None:
        raise InvalidArgumentError("deadline is not a valid timestamp")
    if "assignees" in data and not (
        isinstance(data["assignees"], list)
        and all(isinstance(a, str) for a in data["assignees"])
    ):
        raise InvalidArgumentError("assignees must be a list of user ids")


def clamp_progress(value: Any) -> int:
    """Progress as a whole percentage in ``[0, 100]``."""
    if isinstance(value, bool) or not isinstance(value, int | float) or math.isnan(value):
        raise InvalidArgumentError(
            "progressPercent must be a number", details={"progressPercent": repr(value)}
        )
    return int(max(0.0, min(100.0, value)))


def _check_not_cleared(changes: Mapping[str, Any], required: tuple[str, ...]) -> None:
    cleared = [key for key in required if key in changes and changes[key] in (None, "")]
    if cleared:
        raise InvalidArgumentError(
            f"Fields cannot be cleared: {', '.join(cleared)}", details={"fields": cleared}
        )


def _strip_immutable(
    changes: Mapping[str, Any], immutable: frozenset[str] = _IMMUTABLE_KEYS
) -> dict[str, Any]:
    rejected = sorted(immutable.intersection(changes))
    if rejected:
        raise InvalidArgumentError(
            f"Fields cannot be changed: {', '.join(rejected)}", details={"fields": rejected}
        )
    return dict(changes)


class RecordService:
    """Validated, permission-checked writes for tasks, events and milestones.

    Events are writable by their owner only.  Tasks are created by project
    members and edited by their creator or an assignee; only the creator may
    delete one.  Milestone writes require project membership.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    # -- events --------------------------------------------------------------

    async def create_event(self, user_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        if not data.get("title"):
            raise InvalidArgumentError("title is required")
        if data.get("startTime") is None:
            raise InvalidArgumentError("startTime is required")

        now = _now()
        doc = {
            **EVENT_DEFAULTS,
            **_provided(data),
            "userId": user_id,
            "syncState": "synced",
            "createdAt": now,
            "updatedAt": now,
        }
        _check_event_times(doc)

        event_id = await self.store.insert_event(doc)
        logger.info("Event created: id=%s user=%s", event_id, user_id)
        await log_activity(
            self.store,
            "calendar.created",
            user_id,
            {"eventId": event_id, "title": doc.get("title"), "startTime": doc.get("startTime")},
        )
        return {**doc, "id": event_id}

    async def _owned_event(self, event_id: str, actor: str) -> dict[str, Any]:
        event = await self.store.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event not found: {event_id}", details={"event_id": event_id})
        if event.get("userId") != actor:
            raise PermissionDeniedError(
                "Only the event owner can modify it", details={"event_id": event_id}
            )
        return event

    async def update_event(
        self, event_id: str, changes: Mapping[str, Any], actor: str
    ) -> dict[str, Any]:
        current = await self._owned_event(event_id, actor)
        changes = _strip_immutable(changes)
        _check_not_cleared(changes, _REQUIRED_EVENT_KEYS)
        if not changes:
            return current

        merged = {**current, **changes}
        _check_event_times(merged)
        update = {**changes, "updatedAt": _now()}
        await self.store.update_event(event_id, update)
        await log_activity(
            self.store,
            "calendar.updated",
            current.get("userId"),
            {"eventId": event_id, "changes": sorted(changes)},
        )
        return {**current, **update}

    async def delete_event(self, event_id: str, actor: str) -> None:
        current = await self._owned_event(event_id, actor)
        await self.store.delete_event(event_id)
        logger.info("Event deleted: id=%s user=%s", event_id, actor)
        await log_activity(
            self.store,
            "calendar.deleted",
            current.get("userId"),
            {"eventId": event_id, "title": current.get("title")},
        )

    # -- tasks ---------------------------------------------------------------

    async def create_task(
        self, project_id: str, data: Mapping[str, Any], actor: str
    ) -> dict[str, Any]:
        await self._require_project_member(project_id, actor)
        if not data.get("title"):
            raise InvalidArgumentError("title is required")
        provided = _provided(data)
        _check_task_fields(provided)
        _check_event_times(provided)

        now = _now()
        doc = {
            **TASK_DEFAULTS,
            **provided,
            "projectId": project_id,
            "createdBy": actor,
            "createdAt": now,
            "updatedAt": now,
            "progressUpdatedAt": now,
        }
        doc["progressPercent"] = clamp_progress(doc["progressPercent"])
        task_id = await self.store.insert_task(doc)
        logger.info("Task created: id=%s project=%s user=%s", task_id, project_id, actor)
        await log_activity(
            self.store,
            "task.created",
            actor,
            {"taskId": task_id, "projectId": project_id, "title": doc.get("title")},
        )
        return {**doc, "id": task_id}

    async def _task_for(
        self, task_id: str, actor: str, *, creator_only: bool = False
    ) -> dict[str, Any]:
        task = await self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", details={"task_id": task_id})
        allowed = task.get("createdBy") == actor or (
            not creator_only and actor in (task.get("assignees") or ())
        )
        if not allowed:
            who = "creator" if creator_only else "creator or an assignee"
            raise PermissionDeniedError(
                f"Only the task {who} can modify it", details={"task_id": task_id}
            )
        return task

    async def update_task(
        self, task_id: str, changes: Mapping[str, Any], actor: str
    ) -> dict[str, Any]:
        current = await self._task_for(task_id, actor)
        changes = _strip_immutable(changes, _TASK_IMMUTABLE_KEYS)
        _check_not_cleared(changes, _REQUIRED_TASK_KEYS)
        if not changes:
            return current
        _check_task_fields(changes)
        _check_event_times({**current, **changes})

        now = _now()
        update = {**changes, "updatedAt": now}
        if "progressPercent" in changes:
            update["progressPercent"] = clamp_progress(changes["progressPercent"])
            update["progressUpdatedAt"] = now
        await self.store.update_task(task_id, update)
        await log_activity(
            self.store,
            "task.updated",
            actor,
            {"taskId": task_id, "changes": sorted(changes)},
        )
        return {**current, **update}

    async def update_task_progress(
        self, task_id: str, progress_percent: Any, actor: str
    ) -> dict[str, Any]:
        """Set ``progressPercent`` (clamped to 0-100) and log the new value."""
        current = await self._task_for(task_id, actor)
        progress = clamp_progress(progress_percent)
        now = _now()
        update = {"progressPercent": progress, "progressUpdatedAt": now, "updatedAt": now}
        await self.store.update_task(task_id, update)
        await log_activity(
            self.store,
            "task.progress.updated",
            actor,
            {"taskId": task_id, "progressPercent": progress},
        )
        return {**current, **update}

    async def delete_task(self, task_id: str, actor: str) -> None:
        current = await self._task_for(task_id, actor, creator_only=True)
        await self.store.delete_task(task_id)
        logger.info("Task deleted: id=%s user=%s", task_id, actor)
        await log_activity(
            self.store,
            "task.deleted",
            actor,
            {
                "taskId": task_id,
                "projectId": current.get("projectId"),
                "title": current.get("title"),
            },
        )

    # -- milestones ----------------------------------------------------------

    async def _require_project_member(self, project_id: str, actor: str) -> None:
        project = await self.store.get_project(project_id)
        if project is None:
            raise NotFoundError(
                f"Project not found: {project_id}", details={"project_id": project_id}
            )
        if actor not in project.members:
            raise PermissionDeniedError("Not a project member", details={"project_id": project_id})

    async def create_milestone(
        self, project_id: str, data: Mapping[str, Any], actor: str
    ) -> dict[str, Any]:
        await self._require_project_member(project_id, actor)
        if not data.get("title"):
            raise InvalidArgumentError("title is required")
        if coerce_datetime(data.get("dueDate")) is None:
            raise InvalidArgumentError("dueDate is required")

        now = _now()
        doc = {
            **MILESTONE_DEFAULTS,
            **_provided(data),
            "projectId": project_id,
            "status": MILESTONE_DEFAULTS["status"],
            "createdAt": now,
            "updatedAt": now,
        }
        milestone_id = await self.store.insert_milestone(doc)
        await log_activity(
            self.store,
            "milestone.created",
            actor,
            {"milestoneId": milestone_id, "projectId": project_id, "title": doc.get("title")},
        )
        return {**doc, "id": milestone_id}

    async def update_milestone(
        self, milestone_id: str, changes: Mapping[str, Any], actor: str
    ) -> dict[str, Any]:
        current = await self.store.get_milestone(milestone_id)
        if current is None:
            raise NotFoundError(
                f"Milestone not found: {milestone_id}", details={"milestone_id": milestone_id}
            )
        await self._require_project_member(str(current.get("projectId")), actor)
        changes = _strip_immutable(changes)
        _check_not_cleared(changes, _REQUIRED_MILESTONE_KEYS)
        if not changes:
            return current
        if "dueDate" in changes and coerce_datetime(changes["dueDate"]) is None:
            raise InvalidArgumentError("dueDate is not a valid timestamp")

        update = {**changes, "updatedAt": _now()}
        await self.store.update_milestone(milestone_id, update)
        await log_activity(
            self.store,
            "milestone.updated",
            actor,
            {"milestoneId": milestone_id, "changes": sorted(changes)},
        )
        return {**current, **update}
