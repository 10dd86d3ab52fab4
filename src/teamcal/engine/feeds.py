"""Feed composition: self, team and project calendar feeds.

Every variant follows the same shape:

1. authorization / existence checks (abort before touching item data);
2. concurrent source queries against the record store;
3. normalization, privacy enforcement, window filtering;
4. a stable sort on ``start_time``.

Items with equal start times keep the order in which their source queries
produced them; no secondary sort key is applied.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from opentelemetry import trace

from teamcal.engine.models import (
    DEFAULT_VIEWER_ROLE,
    Audience,
    CalendarItem,
    CalendarProjection,
    EventItem,
    Feed,
    FeedWindow,
    ItemKind,
    MemberFailurePolicy,
    Viewer,
    VisibilityHint,
)
from teamcal.engine.normalizer import normalize_many
from teamcal.engine.privacy import AUDIENCE_HINTS, as_owner_view, enforce
from teamcal.errors import (
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    TeamcalError,
)
from teamcal.store import RecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

SHARED_AUDIENCES = (Audience.BUSINESS.value, Audience.PROJECT_MEMBERS.value)
_PROJECT_AUDIENCES = (Audience.PROJECT_MEMBERS.value, Audience.BUSINESS.value)
_SHOW = CalendarProjection.SHOW.value
_FAR_FUTURE = datetime.max.replace(tzinfo=UTC)


def sort_key(item: CalendarItem) -> datetime:
    return item.start_time if item.start_time is not None else _FAR_FUTURE


def merge_sorted(items: Iterable[CalendarItem]) -> list[CalendarItem]:
    """Stable ascending sort on ``start_time``; undated items sink to the end."""
    return sorted(items, key=sort_key)


def in_window(items: Iterable[CalendarItem], window: FeedWindow) -> list[CalendarItem]:
    """Keep items whose ``start_time`` falls inside *window* (inclusive)."""
    return [item for item in items if window.contains(item.start_time)]


def build_feed(items: Iterable[CalendarItem], skipped_members: list[str] | None = None) -> Feed:
    ordered = merge_sorted(items)
    return Feed(items=ordered, count=len(ordered), skipped_members=skipped_members or [])


async def _required(awaitable: Awaitable[T], source: str) -> T:
    """Await a query whose failure must fail the whole request."""
    try:
        return await awaitable
    except TeamcalError:
        raise
    except Exception as exc:
        logger.error("Required feed query failed: source=%s", source, exc_info=True)
        raise InternalError(f"Failed to load {source}", details={"source": source}) from exc


async def resolve_viewer_role(
    store: RecordStore, user_id: str, fallback: str = DEFAULT_VIEWER_ROLE
) -> str:
    """Look up the viewer's business role from their user record."""
    user = await store.get_user(user_id)
    role = (user or {}).get("role")
    return str(role) if role else fallback


class FeedComposer:
    """Composes calendar feeds for a viewer over a closed time window."""

    def __init__(
        self,
        store: RecordStore,
        *,
        member_failure_policy: MemberFailurePolicy = MemberFailurePolicy.BEST_EFFORT,
        max_window: timedelta | None = None,
    ) -> None:
        self.store = store
        self.member_failure_policy = member_failure_policy
        self.max_window = max_window
        self._tracer = trace.get_tracer("teamcal")

    def _check_window(self, window: FeedWindow) -> None:
        if self.max_window is not None and window.end - window.start > self.max_window:
            raise InvalidArgumentError(
                f"Feed window may span at most {self.max_window.days} days",
                details={"start": window.start.isoformat(), "end": window.end.isoformat()},
            )

    # -- self ----------------------------------------------------------------

    async def self_feed(self, viewer: Viewer, window: FeedWindow) -> Feed:
        """The viewer's own events plus tasks they created or are assigned to.

        No privacy enforcement runs here; ownership substitutes for it.
        """
        self._check_window(window)
        with self._tracer.start_as_current_span("teamcal.feed.self") as span:
            uid = viewer.user_id
            event_rows, created_rows, assigned_rows = await asyncio.gather(
                _required(self.store.list_events_for_user(uid, window.start, window.end), "events"),
                _required(self.store.list_tasks_created_by(uid, projection=_SHOW), "tasks"),
                _required(self.store.list_tasks_assigned_to(uid, projection=_SHOW), "tasks"),
            )

            candidates: list[CalendarItem] = [
                event
                for event in normalize_many(event_rows, ItemKind.EVENT)
                if not (
                    isinstance(event, EventItem)
                    and event.calendar_projection == CalendarProjection.HIDE
                )
            ]
            candidates += normalize_many(created_rows, ItemKind.TASK)
            candidates += normalize_many(assigned_rows, ItemKind.TASK)

            seen: set[tuple[str, str]] = set()
            items: list[CalendarItem] = []
            for item in candidates:
                key = (item.kind, item.id)
                if key in seen:
                    continue
                seen.add(key)
                items.append(as_owner_view(item))

            feed = build_feed(in_window(items, window))
            span.set_attribute("items", feed.count)
            logger.debug("Composed self feed: viewer=%s items=%d", uid, feed.count)
            return feed

    # -- team ----------------------------------------------------------------

    async def team_feed(self, viewer: Viewer, organization_id: str, window: FeedWindow) -> Feed:
        """Shared events and projected tasks across every organization member.

        Only events owned by members of *organization_id* are included, even
        when an outsider's event carries a ``Business`` audience.
        """
        self._check_window(window)
        with self._tracer.start_as_current_span("teamcal.feed.team") as span:
            span.set_attribute("organization_id", organization_id)
            organization, memberships = await asyncio.gather(
                _required(self.store.get_organization(organization_id), "organization"),
                _required(
                    self.store.list_organization_members(organization_id), "organization members"
                ),
            )
            if organization is None:
                raise NotFoundError(
                    f"Organization not found: {organization_id}",
                    details={"organization_id": organization_id},
                )
            viewer_membership = next(
                (m for m in memberships if m.user_id == viewer.user_id), None
            )
            if viewer_membership is None:
                raise PermissionDeniedError(
                    "Not a member of this organization",
                    details={"organization_id": organization_id},
                )

            member_ids = list(dict.fromkeys(m.user_id for m in memberships))
            span.set_attribute("members", len(member_ids))

            role, event_rows, member_results = await asyncio.gather(
                _required(
                    resolve_viewer_role(self.store, viewer.user_id, viewer_membership.role),
                    "viewer role",
                ),
                _required(
                    self.store.list_events_by_audience(
                        SHARED_AUDIENCES, window.start, window.end, owner_ids=member_ids
                    ),
                    "events",
                ),
                asyncio.gather(
                    *(
                        self.store.list_tasks_created_by(member_id, projection=_SHOW)
                        for member_id in member_ids
                    ),
                    return_exceptions=True,
                ),
            )

            task_rows, skipped = self._collect_member_tasks(member_ids, member_results)

            candidates = normalize_many(event_rows, ItemKind.EVENT)
            candidates += normalize_many(task_rows, ItemKind.TASK)
            items = self._enforce_all(candidates, viewer.user_id, role)

            feed = build_feed(in_window(items, window), skipped)
            span.set_attribute("items", feed.count)
            span.set_attribute("skipped_members", len(skipped))
            logger.debug(
                "Composed team feed: viewer=%s organization=%s items=%d skipped=%d",
                viewer.user_id,
                organization_id,
                feed.count,
                len(skipped),
            )
            return feed

    def _collect_member_tasks(
        self, member_ids: list[str], results: list[Any]
    ) -> tuple[list[dict[str, Any]], list[str]]:
        rows: list[dict[str, Any]] = []
        skipped: list[str] = []
        for member_id, result in zip(member_ids, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                if self.member_failure_policy == MemberFailurePolicy.FAIL_CLOSED:
                    raise InternalError(
                        f"Failed to load tasks for member {member_id}",
                        details={"member_id": member_id},
                    ) from result
                logger.warning(
                    "Skipping member tasks after query failure: member=%s",
                    member_id,
                    exc_info=result,
                )
                skipped.append(member_id)
                continue
            rows.extend(result)
        return rows, skipped

    # -- project -------------------------------------------------------------

    async def project_feed(self, viewer: Viewer, project_id: str, window: FeedWindow) -> Feed:
        """Project tasks, milestones and shared project events."""
        self._check_window(window)
        with self._tracer.start_as_current_span("teamcal.feed.project") as span:
            span.set_attribute("project_id", project_id)
            project = await _required(self.store.get_project(project_id), "project")
            if project is None:
                raise NotFoundError(
                    f"Project not found: {project_id}", details={"project_id": project_id}
                )
            if viewer.user_id not in project.members:
                raise PermissionDeniedError(
                    "Not a project member", details={"project_id": project_id}
                )

            role, task_rows, milestone_rows, event_rows = await asyncio.gather(
                _required(resolve_viewer_role(self.store, viewer.user_id), "viewer role"),
                _required(self.store.list_project_tasks(project_id, projection=_SHOW), "tasks"),
                _required(
                    self.store.list_project_milestones(project_id, window.start, window.end),
                    "milestones",
                ),
                _required(
                    self.store.list_project_events(
                        project_id, _PROJECT_AUDIENCES, window.start, window.end
                    ),
                    "events",
                ),
            )

            items = self._enforce_all(
                normalize_many(task_rows, ItemKind.TASK), viewer.user_id, role
            )
            # Milestones are project-visible and bypass content redaction.
            items += [
                milestone.model_copy(
                    update={
                        "visibility_hint": AUDIENCE_HINTS.get(
                            milestone.audience, VisibilityHint.TEAM
                        )
                    }
                )
                for milestone in normalize_many(milestone_rows, ItemKind.MILESTONE)
            ]
            items += self._enforce_all(
                normalize_many(event_rows, ItemKind.EVENT), viewer.user_id, role
            )

            feed = build_feed(in_window(items, window))
            span.set_attribute("items", feed.count)
            logger.debug(
                "Composed project feed: viewer=%s project=%s items=%d",
                viewer.user_id,
                project_id,
                feed.count,
            )
            return feed

    @staticmethod
    def _enforce_all(
        items: Iterable[CalendarItem], viewer_user_id: str, viewer_role: str
    ) -> list[CalendarItem]:
        visible: list[CalendarItem] = []
        for item in items:
            filtered = enforce(item, viewer_user_id, viewer_role)
            if filtered is not None:
                visible.append(filtered)
        return visible
