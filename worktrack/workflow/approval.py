"""Client approval sub-state machine.

Orthogonal to execution status and only meaningful on client-visible
issues. A client decision moves PENDING to APPROVED, REJECTED or
CHANGES_REQUESTED; the team brings rejected work back to PENDING with an
explicit re-submission. APPROVED only returns to PENDING through an
explicit revert: no other edit triggers it.

Hiding an issue from the client keeps its approval state. The state is
suppressed from client_approval_status while hidden and comes back
unchanged when the issue is shown again.
"""

import logging
from datetime import datetime
from typing import Optional

from worktrack.lib.errors import NotVisibleError, ValidationError
from worktrack.workflow.fsm import ApprovalFSM
from worktrack.workflow.models import ApprovalStatus, Issue

logger = logging.getLogger(__name__)

DECISIONS = (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, ApprovalStatus.CHANGES_REQUESTED)
FEEDBACK_REQUIRED = (ApprovalStatus.REJECTED, ApprovalStatus.CHANGES_REQUESTED)


def normalize_feedback(feedback: Optional[str]) -> Optional[str]:
    if feedback is None:
        return None
    if not isinstance(feedback, str):
        raise ValidationError("feedback", "feedback must be text")
    feedback = feedback.strip()
    return feedback or None


def check_decision(status: ApprovalStatus, feedback: Optional[str]) -> None:
    """Input checks that hold regardless of the issue's state."""
    if status not in DECISIONS:
        raise ValidationError(
            "approval_status",
            f"{status.value} is not a client decision; use re-submission to return to PENDING",
        )
    if status in FEEDBACK_REQUIRED and not feedback:
        raise ValidationError("feedback_required", f"feedback is required when status is {status.value}")


def _require_visible(issue: Issue) -> ApprovalFSM:
    if not issue.is_client_visible:
        raise NotVisibleError(issue.id)
    # Visible issues always start PENDING; a missing state means a record
    # written before visibility was tracked
    current = issue.approval_state or ApprovalStatus.PENDING
    return ApprovalFSM(current.value, issue.id)


def apply_decision(issue: Issue, status: ApprovalStatus, feedback: Optional[str], now: datetime) -> Issue:
    """Record a client decision.

    Raises:
        ValidationError: Not a decision, or feedback missing where required.
        NotVisibleError: Issue is not client-visible.
        IllegalTransitionError: Issue is APPROVED and has not been reverted.
    """
    feedback = normalize_feedback(feedback)
    check_decision(status, feedback)
    fsm = _require_visible(issue)
    fsm.move_to(status.value)
    return issue.evolve(
        approval_state=ApprovalStatus(fsm.state),
        approval_feedback=feedback,
        updated_at=now,
    )


def apply_resubmit(issue: Issue, now: datetime) -> Issue:
    """Team sends rejected or change-requested work back for review."""
    fsm = _require_visible(issue)
    fsm.fire("resubmit")
    return issue.evolve(approval_state=ApprovalStatus(fsm.state), approval_feedback=None, updated_at=now)


def apply_revert(issue: Issue, reason: Optional[str], now: datetime) -> Issue:
    """Take an approval back because the approved work changed materially."""
    reason = normalize_feedback(reason)
    if not reason:
        raise ValidationError("revert_reason", "a reason is required to revert an approval")
    fsm = _require_visible(issue)
    fsm.fire("revert")
    return issue.evolve(approval_state=ApprovalStatus(fsm.state), approval_feedback=reason, updated_at=now)


def apply_visibility(issue: Issue, visible: bool, now: datetime) -> Issue:
    """Show or hide an issue to the client.

    Showing an issue with no approval state starts it at PENDING. Hiding
    never clears the state.
    """
    if issue.is_client_visible == visible:
        return issue
    changes = {"is_client_visible": visible, "updated_at": now}
    if visible and issue.approval_state is None:
        changes["approval_state"] = ApprovalStatus.PENDING
    return issue.evolve(**changes)
