"""Status transition engine: execution status, priority and scalar fields.

Functions here are pure: they take an Issue and return a changed copy.
The Tracker loads, calls these, and commits the result together with the
audit entry describing it.
"""

import logging
from datetime import datetime

from worktrack.lib.errors import ValidationError
from worktrack.store.codec import jsonable
from worktrack.workflow.fsm import StatusFSM
from worktrack.workflow.models import Issue, IssueStatus, Priority

logger = logging.getLogger(__name__)

# Fields update_fields() may touch. Everything else has a dedicated operation.
UPDATABLE_FIELDS = ("title", "description", "story_points", "due_date", "assignee_id")


def can_transition(issue: Issue, new_status: IssueStatus) -> bool:
    """Check if moving issue to new_status is allowed. Self-moves count as allowed."""
    if issue.status == new_status:
        return True
    return StatusFSM(issue.status.value, issue.id).can_reach(new_status.value)


def apply_status(issue: Issue, new_status: IssueStatus, now: datetime) -> Issue:
    """Return issue moved to new_status.

    Moving to the current status is a no-op and returns the same object.

    Raises:
        IllegalTransitionError: If the edge is not in the transition table.
    """
    if issue.status == new_status:
        logger.debug(f"[STATUS] {issue.key}: already {new_status.value}, no-op")
        return issue

    fsm = StatusFSM(issue.status.value, issue.id)
    fsm.move_to(new_status.value)
    return issue.evolve(status=IssueStatus(fsm.state), updated_at=now)


def status_payload(old: Issue, new: Issue, reason: str | None = None) -> dict:
    payload = {"old": old.status.value, "new": new.status.value}
    if reason:
        payload["reason"] = reason
    return payload


def apply_priority(issue: Issue, priority: Priority, now: datetime) -> Issue:
    """Any priority may replace any other. Same value is a no-op."""
    if issue.priority == priority:
        return issue
    return issue.evolve(priority=priority, updated_at=now)


def apply_fields(issue: Issue, changes: dict, now: datetime, title_max_length: int) -> tuple[Issue, list[dict]]:
    """Apply scalar field changes.

    Returns the new issue and one update_field payload per field that
    actually changed. All changes validate together: one bad field rejects
    the lot.

    Raises:
        ValidationError: Unknown field or invariant violation.
    """
    unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError("unknown_field", f"cannot update {', '.join(unknown)} here")

    changed = {name: value for name, value in changes.items() if getattr(issue, name) != value}
    if not changed:
        return issue, []

    updated = issue.evolve(title_max_length=title_max_length, updated_at=now, **changed)
    payloads = [
        {"field": name, "old": jsonable(getattr(issue, name)), "new": jsonable(getattr(updated, name))}
        for name in UPDATABLE_FIELDS
        if name in changed
    ]
    return updated, payloads
