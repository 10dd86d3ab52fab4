"""Per-item visibility and redaction for non-owner viewers.

Two independent axes decide what a viewer sees:

- ``audience`` gates *whether* a non-owner sees the item at all;
- ``privacy`` (events) or ``share_policy`` (tasks) decides *how much* of it
  survives once the viewer is eligible.

Owners short-circuit both.  The content axis is expressed as lookup tables
rather than branching so every (kind, policy) pair has exactly one outcome.
"""

from __future__ import annotations

from dataclasses import dataclass

from teamcal.engine.models import (
    Audience,
    CalendarItem,
    EventItem,
    EventPrivacy,
    MilestoneItem,
    SharePolicy,
    TaskItem,
    VisibilityHint,
)

BUSY_TITLE = "Busy"


@dataclass(frozen=True)
class Redaction:
    """What survives of an item's free-text content."""

    title: str | None  # None keeps the original title
    clear_description: bool
    redacted: bool
    embed_category: bool = False


_KEEP_ALL = Redaction(title=None, clear_description=False, redacted=False)

EVENT_REDACTIONS: dict[EventPrivacy, Redaction] = {
    EventPrivacy.PRIVATE_REDACTED: Redaction(
        title=BUSY_TITLE, clear_description=True, redacted=True
    ),
    EventPrivacy.BUSY_ONLY: Redaction(
        title=BUSY_TITLE, clear_description=True, redacted=True, embed_category=True
    ),
    EventPrivacy.TITLE_VISIBLE: _KEEP_ALL,
}

TASK_REDACTIONS: dict[SharePolicy, Redaction] = {
    SharePolicy.STATUS_ONLY: Redaction(title="", clear_description=True, redacted=True),
    SharePolicy.STATUS_AND_TITLE: Redaction(title=None, clear_description=True, redacted=False),
    SharePolicy.FULL: _KEEP_ALL,
}

AUDIENCE_HINTS: dict[Audience, VisibilityHint] = {
    Audience.BUSINESS: VisibilityHint.BUSINESS,
    Audience.PROJECT_MEMBERS: VisibilityHint.TEAM,
}


def busy_title(category: str | None) -> str:
    """Placeholder title for busy-only events, e.g. ``"Busy — Work"``."""
    if not category:
        return BUSY_TITLE
    return f"{BUSY_TITLE} — {category}"


def redaction_for(item: CalendarItem) -> Redaction:
    match item:
        case EventItem(privacy=privacy):
            return EVENT_REDACTIONS[privacy]
        case TaskItem(share_policy=share_policy):
            return TASK_REDACTIONS[share_policy]
        case MilestoneItem():
            return _KEEP_ALL
    raise TypeError(f"Unsupported calendar item: {type(item).__name__}")


def as_owner_view(item: CalendarItem) -> CalendarItem:
    return item.model_copy(update={"title_redacted": False, "visibility_hint": VisibilityHint.ME})


def enforce(item: CalendarItem, viewer_user_id: str, viewer_role: str) -> CalendarItem | None:
    """Return the viewer's copy of *item*, or ``None`` if it is invisible to them.

    ``viewer_role`` is accepted for role-aware policies; the current tables do
    not vary by role.  *item* itself is never modified.
    """
    if item.owner_user_id is not None and item.owner_user_id == viewer_user_id:
        return as_owner_view(item)

    if item.audience == Audience.ASSIGNEE_ONLY:
        return None

    rule = redaction_for(item)
    update: dict[str, object] = {
        "title_redacted": rule.redacted,
        "visibility_hint": AUDIENCE_HINTS[item.audience],
    }
    if rule.embed_category:
        update["title"] = busy_title(item.category)
    elif rule.title is not None:
        update["title"] = rule.title
    if rule.clear_description:
        update["description"] = ""
    return item.model_copy(update=update)
