"""Tests for the calendar feed endpoints."""

from __future__ import annotations

import pytest

from tests.api.conftest import VIEWER_HEADERS
from tests.conftest import at, make_event_row, make_milestone_row, make_task_row

pytestmark = pytest.mark.unit

WINDOW = {"start": at(0).isoformat(), "end": at(23, 59).isoformat()}


async def test_missing_viewer_header_is_unauthenticated(client):
    resp = await client.get("/api/calendar/feeds/me", params=WINDOW)

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "UNAUTHENTICATED"


async def test_self_feed_returns_envelope(client, store):
    store.events.append(
        make_event_row(id="e1", user_id="v", title="Dentist", privacy="PrivateRedacted")
    )

    resp = await client.get("/api/calendar/feeds/me", params=WINDOW, headers=VIEWER_HEADERS)

    assert resp.status_code == 200
    body = resp.json()
    assert set(body) == {"data", "meta"}
    assert body["data"]["count"] == 1
    item = body["data"]["items"][0]
    assert item["title"] == "Dentist"
    assert item["kind"] == "event"
    assert item["title_redacted"] is False


async def test_inverted_window_is_invalid_argument(client):
    params = {"start": at(12).isoformat(), "end": at(8).isoformat()}

    resp = await client.get("/api/calendar/feeds/me", params=params, headers=VIEWER_HEADERS)

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_ARGUMENT"


async def test_malformed_window_bound_is_invalid_argument(client):
    params = {"start": "not-a-date", "end": at(8).isoformat()}

    resp = await client.get("/api/calendar/feeds/me", params=params, headers=VIEWER_HEADERS)

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "INVALID_ARGUMENT"
    assert error["details"] == {"fields": ["query.start"]}


async def test_window_longer_than_limit_rejected(client):
    start = at(0, day=1)
    params = {"start": start.isoformat(), "end": start.replace(year=2026).isoformat()}

    resp = await client.get("/api/calendar/feeds/me", params=params, headers=VIEWER_HEADERS)

    assert resp.status_code == 400


class TestTeamFeedEndpoint:
    async def test_status_only_task_is_redacted(self, client, store):
        store.add_organization("org-1", ["v", "alice"])
        store.tasks.append(
            make_task_row(
                id="t1",
                created_by="alice",
                title="Secret merger",
                share_policy="StatusOnly",
                audience="Business",
            )
        )

        resp = await client.get(
            "/api/calendar/feeds/team/org-1", params=WINDOW, headers=VIEWER_HEADERS
        )

        assert resp.status_code == 200
        item = resp.json()["data"]["items"][0]
        assert item["title"] == ""
        assert item["description"] == ""
        assert item["title_redacted"] is True
        assert item["status"] == "in_progress"
        assert item["progress_percent"] == 40
        assert item["visibility_hint"] == "Business"

    async def test_busy_only_event_shows_category(self, client, store):
        store.add_organization("org-1", ["v", "alice"])
        store.events.append(
            make_event_row(id="e1", user_id="alice", title="Interview", category="Work")
        )

        resp = await client.get(
            "/api/calendar/feeds/team/org-1", params=WINDOW, headers=VIEWER_HEADERS
        )

        item = resp.json()["data"]["items"][0]
        assert item["title"] == "Busy — Work"
        assert item["description"] == ""

    async def test_non_member_forbidden(self, client, store):
        store.add_organization("org-1", ["alice"])

        resp = await client.get(
            "/api/calendar/feeds/team/org-1", params=WINDOW, headers=VIEWER_HEADERS
        )

        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "PERMISSION_DENIED"

    async def test_unknown_organization_not_found(self, client):
        resp = await client.get(
            "/api/calendar/feeds/team/missing", params=WINDOW, headers=VIEWER_HEADERS
        )

        assert resp.status_code == 404
        assert resp.json()["error"]["details"] == {"organization_id": "missing"}

    async def test_skipped_members_reported_in_meta(self, client, store):
        store.add_organization("org-1", ["v", "flaky"])
        store.failing_task_owners.add("flaky")

        resp = await client.get(
            "/api/calendar/feeds/team/org-1", params=WINDOW, headers=VIEWER_HEADERS
        )

        assert resp.status_code == 200
        assert resp.json()["meta"]["skipped_members"] == ["flaky"]


class TestProjectFeedEndpoint:
    async def test_includes_milestones_and_tasks(self, client, store):
        store.add_project("p-1", ["v", "alice"])
        store.milestones.append(make_milestone_row(id="m1", project_id="p-1", due=at(17)))
        store.tasks.append(
            make_task_row(id="t1", created_by="alice", project_id="p-1", deadline=at(10))
        )

        resp = await client.get(
            "/api/calendar/feeds/project/p-1", params=WINDOW, headers=VIEWER_HEADERS
        )

        assert resp.status_code == 200
        assert [item["id"] for item in resp.json()["data"]["items"]] == ["t1", "m1"]

    async def test_non_member_forbidden(self, client, store):
        store.add_project("p-1", ["alice"])

        resp = await client.get(
            "/api/calendar/feeds/project/p-1", params=WINDOW, headers=VIEWER_HEADERS
        )

        assert resp.status_code == 403

    async def test_unknown_project_not_found(self, client):
        resp = await client.get(
            "/api/calendar/feeds/project/nope", params=WINDOW, headers=VIEWER_HEADERS
        )

        assert resp.status_code == 404
