"""Sprint lifecycle helpers and statistics."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from worktrack.lib.errors import CrossProjectError, IllegalTransitionError, ValidationError
from worktrack.workflow.models import Issue, IssueStatus, Sprint, SprintStatus

logger = logging.getLogger(__name__)

DEFAULT_VELOCITY_WINDOW = 3


def today_in(now: datetime, tz) -> date:
    """Calendar date used to derive sprint status."""
    return now.astimezone(tz).date()


def apply_start(sprint: Sprint, now: datetime, today: date) -> Sprint:
    status = sprint.status(today)
    if sprint.is_completed or sprint.started_at is not None:
        raise IllegalTransitionError("sprint", status.value, SprintStatus.ACTIVE.value, sprint.id)
    return sprint.evolve(started_at=now, updated_at=now)


def check_completable(sprint: Sprint) -> None:
    if sprint.is_completed:
        raise IllegalTransitionError("sprint", SprintStatus.COMPLETED.value, SprintStatus.COMPLETED.value, sprint.id)


def apply_complete(sprint: Sprint, now: datetime) -> Sprint:
    check_completable(sprint)
    return sprint.evolve(completed_at=now, updated_at=now)


def check_carry_over(sprint: Sprint, target: Sprint) -> None:
    """Raise unless open work from sprint may be carried into target."""
    if target.id == sprint.id:
        raise ValidationError("carry_over", "cannot carry issues into the sprint being completed")
    if target.project_id != sprint.project_id:
        raise CrossProjectError(sprint.id, sprint.project_id, target.id, target.project_id)
    if target.is_completed:
        raise ValidationError("sprint_completed", f"sprint {target.name} is completed")


@dataclass
class SprintStats:
    sprint_id: str
    status: SprintStatus
    issue_count: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    committed_points: float = 0.0
    completed_points: float = 0.0
    unestimated: int = 0

    @property
    def completion_ratio(self) -> float:
        if not self.committed_points:
            return 0.0
        return self.completed_points / self.committed_points


def sprint_statistics(sprint: Sprint, issues: list[Issue], today: date) -> SprintStats:
    """Summarize the issues currently linked to sprint.

    Cancelled issues are counted by status but excluded from committed points.
    """
    stats = SprintStats(sprint_id=sprint.id, status=sprint.status(today))
    stats.by_status = {s.value: 0 for s in IssueStatus}
    for issue in issues:
        if issue.sprint_id != sprint.id:
            continue
        stats.issue_count += 1
        stats.by_status[issue.status.value] += 1
        if issue.status == IssueStatus.CANCELLED:
            continue
        if issue.story_points is None:
            stats.unestimated += 1
            continue
        stats.committed_points += issue.story_points
        if issue.status == IssueStatus.DONE:
            stats.completed_points += issue.story_points
    return stats


def velocity(sprints: list[Sprint], issues: list[Issue], last_n: int = DEFAULT_VELOCITY_WINDOW) -> Optional[float]:
    """Mean completed points over the last_n completed sprints.

    Returns None when no sprint has been completed yet.
    """
    if last_n < 1:
        raise ValidationError("velocity_window", "last_n must be at least 1")
    completed = sorted((s for s in sprints if s.is_completed), key=lambda s: s.completed_at)
    window = completed[-last_n:]
    if not window:
        return None
    totals = []
    for sprint in window:
        done = sum(
            i.story_points or 0
            for i in issues
            if i.sprint_id == sprint.id and i.status == IssueStatus.DONE
        )
        totals.append(done)
    return sum(totals) / len(totals)
