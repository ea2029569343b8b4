"""Tests for sprint membership, lifecycle and statistics."""

from datetime import date

import pytest

from worktrack.lib.errors import (
    CrossProjectError,
    IllegalTransitionError,
    InvalidHierarchyError,
    NotFoundError,
    ValidationError,
)
from worktrack.workflow.models import IssueStatus, SprintStatus


def make_done(tracker, issue_id):
    for status in ("IN_PROGRESS", "IN_REVIEW", "DONE"):
        tracker.transition_status(issue_id, status, actor_id="bob")


@pytest.fixture
def sprint(tracker):
    return tracker.create_sprint("p1", "Sprint 1", actor_id="alice")


@pytest.fixture
def next_sprint(tracker):
    return tracker.create_sprint("p1", "Sprint 2", actor_id="alice")


class TestMembership:
    """assign_to_sprint / move_to_backlog."""

    def test_assign(self, tracker, sprint):
        task = tracker.create_issue("p1", "TASK", "Deploy", reporter_id="alice")
        issue = tracker.assign_to_sprint(task.id, sprint.id, actor_id="alice")
        assert issue.sprint_id == sprint.id
        assert tracker.history(task.id)[-1].payload == {"field": "sprint_id", "old": None, "new": sprint.id}

    def test_move_between_sprints(self, tracker, sprint, next_sprint):
        task = tracker.create_issue("p1", "TASK", "Deploy", reporter_id="alice", sprint_id=sprint.id)
        issue = tracker.assign_to_sprint(task.id, next_sprint.id, actor_id="alice")
        assert issue.sprint_id == next_sprint.id

    def test_backlog_idempotent(self, tracker, sprint):
        task = tracker.create_issue("p1", "TASK", "Deploy", reporter_id="alice", sprint_id=sprint.id)
        tracker.move_to_backlog(task.id, actor_id="alice")
        issue = tracker.move_to_backlog(task.id, actor_id="alice")
        assert issue.sprint_id is None
        assert [e.action for e in tracker.history(task.id)] == ["create_issue", "update_field"]

    def test_epic_cannot_join(self, tracker, sprint):
        epic = tracker.create_issue("p1", "EPIC", "Big", reporter_id="alice")
        with pytest.raises(InvalidHierarchyError):
            tracker.assign_to_sprint(epic.id, sprint.id, actor_id="alice")

    def test_cross_project(self, tracker, sprint):
        tracker.register_project("p2", "OPS", actor_id="alice")
        foreign = tracker.create_issue("p2", "TASK", "Server", reporter_id="alice")
        with pytest.raises(CrossProjectError):
            tracker.assign_to_sprint(foreign.id, sprint.id, actor_id="alice")

    def test_completed_sprint_rejected(self, tracker, sprint):
        tracker.complete_sprint(sprint.id, actor_id="alice")
        task = tracker.create_issue("p1", "TASK", "Late", reporter_id="alice")
        with pytest.raises(ValidationError) as exc:
            tracker.assign_to_sprint(task.id, sprint.id, actor_id="alice")
        assert exc.value.rule == "sprint_completed"

    def test_bulk_assign_reports_failures(self, tracker, sprint):
        a = tracker.create_issue("p1", "TASK", "A", reporter_id="alice")
        epic = tracker.create_issue("p1", "EPIC", "E", reporter_id="alice")
        result = tracker.bulk_assign_to_sprint([a.id, epic.id, "missing"], sprint.id, actor_id="alice")
        assert result.succeeded == [a.id]
        assert result.failed_ids == [epic.id, "missing"]
        assert isinstance(result.failed[1].error, NotFoundError)

    def test_bulk_to_backlog(self, tracker, sprint):
        a = tracker.create_issue("p1", "TASK", "A", reporter_id="alice", sprint_id=sprint.id)
        result = tracker.bulk_assign_to_sprint([a.id], None, actor_id="alice")
        assert result.ok
        assert tracker.get_issue(a.id).sprint_id is None


class TestLifecycle:
    """create_sprint / start_sprint / complete_sprint."""

    def test_create_validates_dates(self, tracker):
        with pytest.raises(ValidationError):
            tracker.create_sprint("p1", "Bad", actor_id="alice", start_date=date(2025, 2, 1), end_date=date(2025, 1, 1))

    def test_create_records_entry(self, tracker, sprint):
        entry = tracker.history(sprint.id)[0]
        assert entry.action == "create_sprint"
        assert entry.resource_type == "sprint"

    def test_status_from_dates(self, tracker, clock):
        sprint = tracker.create_sprint(
            "p1", "Dated", actor_id="alice",
            start_date=date(2025, 1, 20), end_date=date(2025, 2, 3),
        )
        assert tracker.sprint_status(sprint.id) == SprintStatus.PLANNED
        clock.advance(days=5)
        assert tracker.sprint_status(sprint.id) == SprintStatus.ACTIVE

    def test_start(self, tracker, sprint):
        started = tracker.start_sprint(sprint.id, actor_id="alice")
        assert started.started_at is not None
        assert tracker.sprint_status(sprint.id) == SprintStatus.ACTIVE
        with pytest.raises(IllegalTransitionError):
            tracker.start_sprint(sprint.id, actor_id="alice")

    def test_complete_moves_open_issues_to_backlog(self, tracker, sprint):
        open_task = tracker.create_issue("p1", "TASK", "Open", reporter_id="alice", sprint_id=sprint.id)
        done_task = tracker.create_issue("p1", "TASK", "Done", reporter_id="alice", sprint_id=sprint.id)
        make_done(tracker, done_task.id)

        result = tracker.complete_sprint(sprint.id, actor_id="alice")

        assert result.completed
        assert tracker.get_issue(open_task.id).sprint_id is None
        assert tracker.get_issue(done_task.id).sprint_id == sprint.id
        assert tracker.sprint_status(sprint.id) == SprintStatus.COMPLETED
        entry = tracker.history(sprint.id)[-1]
        assert entry.payload == {"name": "Sprint 1", "carry_over_to": None, "open_issues": 1}

    def test_complete_carries_over(self, tracker, sprint, next_sprint):
        task = tracker.create_issue("p1", "TASK", "Open", reporter_id="alice", sprint_id=sprint.id)
        tracker.complete_sprint(sprint.id, actor_id="alice", carry_over_to=next_sprint.id)
        assert tracker.get_issue(task.id).sprint_id == next_sprint.id

    def test_carry_over_into_self_rejected(self, tracker, sprint):
        with pytest.raises(ValidationError):
            tracker.complete_sprint(sprint.id, actor_id="alice", carry_over_to=sprint.id)

    def test_complete_twice(self, tracker, sprint):
        tracker.complete_sprint(sprint.id, actor_id="alice")
        with pytest.raises(IllegalTransitionError):
            tracker.complete_sprint(sprint.id, actor_id="alice")


class TestStatistics:
    """sprint_statistics and velocity."""

    def test_statistics(self, tracker, sprint):
        a = tracker.create_issue("p1", "TASK", "A", reporter_id="alice", sprint_id=sprint.id, story_points=3)
        tracker.create_issue("p1", "TASK", "B", reporter_id="alice", sprint_id=sprint.id, story_points=5)
        tracker.create_issue("p1", "TASK", "C", reporter_id="alice", sprint_id=sprint.id)
        d = tracker.create_issue("p1", "TASK", "D", reporter_id="alice", sprint_id=sprint.id, story_points=8)
        make_done(tracker, a.id)
        tracker.cancel(d.id, actor_id="alice")

        stats = tracker.sprint_statistics(sprint.id)
        assert stats.issue_count == 4
        assert stats.by_status[IssueStatus.DONE.value] == 1
        assert stats.by_status[IssueStatus.CANCELLED.value] == 1
        assert stats.committed_points == 8
        assert stats.completed_points == 3
        assert stats.unestimated == 1
        assert stats.completion_ratio == pytest.approx(3 / 8)

    def test_velocity_none_without_completed_sprints(self, tracker, sprint):
        assert tracker.velocity("p1") is None

    def test_velocity_averages_last_sprints(self, tracker, clock):
        points = [2, 4, 6, 8]
        for n, value in enumerate(points, 1):
            sprint = tracker.create_sprint("p1", f"Sprint {n}", actor_id="alice")
            task = tracker.create_issue("p1", "TASK", f"T{n}", reporter_id="alice",
                                        sprint_id=sprint.id, story_points=value)
            make_done(tracker, task.id)
            clock.advance(days=14)
            tracker.complete_sprint(sprint.id, actor_id="alice")

        assert tracker.velocity("p1") == pytest.approx((4 + 6 + 8) / 3)
        assert tracker.velocity("p1", last_n=1) == 8

    def test_velocity_window_validated(self, tracker):
        with pytest.raises(ValidationError):
            tracker.velocity("p1", last_n=0)
