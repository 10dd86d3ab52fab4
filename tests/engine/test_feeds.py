"""Tests for teamcal.engine.feeds: self, team and project feed composition."""

from __future__ import annotations

from datetime import timedelta

import pytest

from teamcal.engine import feeds
from teamcal.engine.feeds import FeedComposer, merge_sorted
from teamcal.engine.models import (
    EventItem,
    FeedWindow,
    ItemKind,
    MemberFailurePolicy,
    TaskItem,
    Viewer,
    VisibilityHint,
)
from teamcal.errors import (
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
)
from tests.conftest import at, make_event_row, make_milestone_row, make_task_row

pytestmark = pytest.mark.unit

WINDOW = FeedWindow(start=at(0), end=at(23, 59))
VIEWER = Viewer(user_id="v")


@pytest.fixture
def composer(store):
    return FeedComposer(store)


# ---------------------------------------------------------------------------
# Self feed
# ---------------------------------------------------------------------------


class TestSelfFeed:
    async def test_combines_events_and_tasks_sorted(self, store, composer):
        store.events.append(make_event_row(id="e-late", user_id="v", start=at(15)))
        store.events.append(make_event_row(id="e-early", user_id="v", start=at(8)))
        store.tasks.append(make_task_row(id="t-mid", created_by="v", deadline=at(11)))

        feed = await composer.self_feed(VIEWER, WINDOW)

        assert [item.id for item in feed.items] == ["e-early", "t-mid", "e-late"]
        assert feed.count == 3

    async def test_dedups_task_created_and_assigned(self, store, composer):
        store.tasks.append(make_task_row(id="t1", created_by="v", assignees=["v"]))

        feed = await composer.self_feed(VIEWER, WINDOW)

        assert [item.id for item in feed.items] == ["t1"]

    async def test_assigned_task_from_someone_else_included(self, store, composer):
        store.tasks.append(make_task_row(id="t1", created_by="boss", assignees=["v"]))

        feed = await composer.self_feed(VIEWER, WINDOW)

        assert [item.id for item in feed.items] == ["t1"]

    async def test_hidden_tasks_excluded(self, store, composer):
        store.tasks.append(make_task_row(id="hidden", created_by="v", projection="Hide"))

        feed = await composer.self_feed(VIEWER, WINDOW)

        assert feed.items == []

    async def test_events_marked_hidden_excluded(self, store, composer):
        store.events.append(make_event_row(id="e1", user_id="v", calendarProjection="Hide"))

        feed = await composer.self_feed(VIEWER, WINDOW)

        assert feed.items == []

    async def test_owner_sees_unredacted_content(self, store, composer):
        store.events.append(
            make_event_row(id="e1", user_id="v", title="Therapy", privacy="PrivateRedacted")
        )
        store.tasks.append(make_task_row(id="t1", created_by="v", share_policy="StatusOnly"))

        feed = await composer.self_feed(VIEWER, WINDOW)

        by_id = {item.id: item for item in feed.items}
        assert by_id["e1"].title == "Therapy"
        assert by_id["t1"].title == "Write report"
        assert all(item.visibility_hint == VisibilityHint.ME for item in feed.items)
        assert not any(item.title_redacted for item in feed.items)

    async def test_items_outside_window_excluded(self, store, composer):
        store.tasks.append(make_task_row(id="t-next-day", created_by="v", deadline=at(9, day=11)))
        store.tasks.append(make_task_row(id="t-undated", created_by="v"))
        store.tasks[-1]["deadline"] = None

        feed = await composer.self_feed(VIEWER, WINDOW)

        assert feed.items == []

    async def test_store_failure_is_internal_error(self, store, composer):
        store.failing_event_owners.add("v")

        with pytest.raises(InternalError):
            await composer.self_feed(VIEWER, WINDOW)


# ---------------------------------------------------------------------------
# Team feed
# ---------------------------------------------------------------------------


class TestTeamFeed:
    async def test_status_only_task_redacted_for_teammate(self, store, composer):
        store.add_organization("o", ["v", "a", "b"])
        store.tasks.append(
            make_task_row(id="t-a", created_by="a", share_policy="StatusOnly", status="blocked")
        )

        feed = await composer.team_feed(VIEWER, "o", WINDOW)

        [item] = feed.items
        assert isinstance(item, TaskItem)
        assert item.title == ""
        assert item.title_redacted is True
        assert item.status == "blocked"
        assert item.progress_percent == 40

    async def test_shared_events_redacted_per_privacy(self, store, composer):
        store.add_organization("o", ["v", "a"])
        store.events.append(
            make_event_row(id="e-a", user_id="a", privacy="BusyOnly", category="Work")
        )

        feed = await composer.team_feed(VIEWER, "o", WINDOW)

        [item] = feed.items
        assert isinstance(item, EventItem)
        assert item.title == "Busy — Work"
        assert item.visibility_hint == VisibilityHint.BUSINESS

    async def test_assignee_only_items_never_appear(self, store, composer):
        store.add_organization("o", ["v", "a"])
        store.events.append(make_event_row(id="e-a", user_id="a", audience="AssigneeOnly"))
        store.tasks.append(make_task_row(id="t-a", created_by="a", audience="AssigneeOnly"))

        feed = await composer.team_feed(VIEWER, "o", WINDOW)

        assert feed.items == []

    async def test_events_of_non_members_excluded(self, store, composer):
        store.add_organization("o", ["v", "a"])
        store.events.append(make_event_row(id="e-outsider", user_id="outsider"))

        feed = await composer.team_feed(VIEWER, "o", WINDOW)

        assert feed.items == []

    async def test_unknown_organization(self, store, composer):
        with pytest.raises(NotFoundError):
            await composer.team_feed(VIEWER, "missing", WINDOW)

    async def test_non_member_denied_before_item_queries(self, store, composer):
        store.add_organization("o", ["a", "b"])

        with pytest.raises(PermissionDeniedError):
            await composer.team_feed(VIEWER, "o", WINDOW)
        assert not any(call.startswith("tasks_created_by") for call in store.calls)

    async def test_best_effort_skips_failing_member(self, store, composer):
        store.add_organization("o", ["v", "a", "b"])
        store.tasks.append(make_task_row(id="t-a", created_by="a", share_policy="Full"))
        store.tasks.append(make_task_row(id="t-b", created_by="b", share_policy="Full"))
        store.failing_task_owners.add("b")

        feed = await composer.team_feed(VIEWER, "o", WINDOW)

        assert [item.id for item in feed.items] == ["t-a"]
        assert feed.skipped_members == ["b"]

    async def test_fail_closed_raises(self, store):
        composer = FeedComposer(store, member_failure_policy=MemberFailurePolicy.FAIL_CLOSED)
        store.add_organization("o", ["v", "a"])
        store.failing_task_owners.add("a")

        with pytest.raises(InternalError):
            await composer.team_feed(VIEWER, "o", WINDOW)

    async def test_viewer_role_read_from_user_record(self, store, composer, monkeypatch):
        store.add_organization("o", {"v": "member", "a": "member"})
        store.users["v"] = {"id": "v", "role": "MANAGER"}
        store.events.append(make_event_row(id="e-a", user_id="a"))
        seen_roles = []

        original = feeds.enforce

        def spy(item, viewer_user_id, viewer_role):
            seen_roles.append(viewer_role)
            return original(item, viewer_user_id, viewer_role)

        monkeypatch.setattr(feeds, "enforce", spy)

        await composer.team_feed(VIEWER, "o", WINDOW)

        assert seen_roles == ["MANAGER"]


# ---------------------------------------------------------------------------
# Project feed
# ---------------------------------------------------------------------------


class TestProjectFeed:
    async def test_tasks_milestones_and_events(self, store, composer):
        store.add_project("p-1", ["v", "a"])
        store.tasks.append(
            make_task_row(id="t", created_by="a", project_id="p-1", deadline=at(10))
        )
        store.milestones.append(make_milestone_row(id="m", project_id="p-1", due=at(17)))
        store.events.append(
            make_event_row(
                id="e",
                user_id="a",
                project_id="p-1",
                audience="ProjectMembers",
                privacy="TitleVisible",
                start=at(14),
            )
        )

        feed = await composer.project_feed(VIEWER, "p-1", WINDOW)

        assert [(item.kind, item.id) for item in feed.items] == [
            (ItemKind.TASK, "t"),
            (ItemKind.EVENT, "e"),
            (ItemKind.MILESTONE, "m"),
        ]
        milestone = feed.items[-1]
        assert milestone.title == "Beta"
        assert milestone.visibility_hint == VisibilityHint.TEAM

    async def test_unknown_project(self, store, composer):
        with pytest.raises(NotFoundError):
            await composer.project_feed(VIEWER, "nope", WINDOW)

    async def test_non_member_denied(self, store, composer):
        store.add_project("p-1", ["a"])

        with pytest.raises(PermissionDeniedError):
            await composer.project_feed(VIEWER, "p-1", WINDOW)

    async def test_milestones_outside_window_excluded(self, store, composer):
        store.add_project("p-1", ["v"])
        store.milestones.append(make_milestone_row(id="m", project_id="p-1", due=at(9, day=20)))

        feed = await composer.project_feed(VIEWER, "p-1", WINDOW)

        assert feed.items == []


# ---------------------------------------------------------------------------
# Ordering and windows
# ---------------------------------------------------------------------------


class TestOrdering:
    def test_equal_start_times_keep_source_order(self):
        first = EventItem(id="first", start_time=at(9))
        second = TaskItem(id="second", start_time=at(9))
        earlier = EventItem(id="earlier", start_time=at(8))

        ordered = merge_sorted([first, second, earlier])

        assert [item.id for item in ordered] == ["earlier", "first", "second"]

    def test_undated_items_sort_last(self):
        undated = TaskItem(id="undated")
        dated = TaskItem(id="dated", start_time=at(9))

        assert [item.id for item in merge_sorted([undated, dated])] == ["dated", "undated"]


class TestWindowLimits:
    async def test_window_wider_than_limit_rejected(self, store):
        composer = FeedComposer(store, max_window=timedelta(days=7))
        window = FeedWindow(start=at(0), end=at(0) + timedelta(days=8))

        with pytest.raises(InvalidArgumentError):
            await composer.self_feed(VIEWER, window)

    def test_inverted_window_rejected(self):
        with pytest.raises(InvalidArgumentError):
            FeedWindow.between(at(10), at(9))
