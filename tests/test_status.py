"""Tests for status, priority and field updates through the Tracker."""

from datetime import date

import pytest

from worktrack.lib.errors import (
    ConflictError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from worktrack.workflow.models import IssueStatus, Priority
from worktrack.workflow.status import can_transition


def actions(tracker, issue_id):
    return [e.action for e in tracker.history(issue_id)]


class TestTransitionStatus:
    """Tests for Tracker.transition_status."""

    @pytest.fixture
    def story(self, tracker):
        return tracker.create_issue("p1", "STORY", "Login page", reporter_id="alice")

    def test_start(self, tracker, story):
        issue = tracker.transition_status(story.id, "IN_PROGRESS", actor_id="bob")
        assert issue.status == IssueStatus.IN_PROGRESS
        assert issue.version == story.version + 1

    def test_records_status_change(self, tracker, story):
        tracker.transition_status(story.id, IssueStatus.IN_PROGRESS, actor_id="bob")
        entry = tracker.history(story.id)[-1]
        assert entry.action == "status_change"
        assert entry.actor_id == "bob"
        assert entry.payload == {"old": "TODO", "new": "IN_PROGRESS"}

    def test_reason_recorded(self, tracker, story):
        tracker.transition_status(story.id, "CANCELLED", actor_id="bob", reason="duplicate")
        assert tracker.history(story.id)[-1].payload["reason"] == "duplicate"

    def test_todo_to_done_rejected(self, tracker, story):
        with pytest.raises(IllegalTransitionError):
            tracker.transition_status(story.id, "DONE", actor_id="bob")
        assert tracker.get_issue(story.id).status == IssueStatus.TODO
        assert actions(tracker, story.id) == ["create_issue"]

    def test_full_path_through_review(self, tracker, story):
        for status in ("IN_PROGRESS", "IN_REVIEW", "DONE"):
            tracker.transition_status(story.id, status, actor_id="bob")
        changes = [e.payload["new"] for e in tracker.history(story.id) if e.action == "status_change"]
        assert changes == ["IN_PROGRESS", "IN_REVIEW", "DONE"]

    def test_same_status_is_noop(self, tracker, story):
        """Moving to the current status records nothing."""
        issue = tracker.transition_status(story.id, "TODO", actor_id="bob")
        assert issue.version == story.version
        assert actions(tracker, story.id) == ["create_issue"]

    def test_cancelled_is_terminal(self, tracker, story):
        tracker.cancel(story.id, actor_id="bob")
        with pytest.raises(IllegalTransitionError):
            tracker.transition_status(story.id, "IN_PROGRESS", actor_id="bob")

    def test_unknown_status(self, tracker, story):
        with pytest.raises(ValidationError):
            tracker.transition_status(story.id, "FINISHED", actor_id="bob")

    def test_missing_issue(self, tracker):
        with pytest.raises(NotFoundError):
            tracker.transition_status("nope", "IN_PROGRESS", actor_id="bob")

    def test_unknown_actor(self, tracker, story):
        with pytest.raises(NotFoundError) as exc:
            tracker.transition_status(story.id, "IN_PROGRESS", actor_id="mallory")
        assert exc.value.resource_type == "user"

    def test_expected_version_mismatch(self, tracker, story):
        """A caller holding an old version gets ConflictError."""
        tracker.transition_status(story.id, "IN_PROGRESS", actor_id="bob")
        with pytest.raises(ConflictError):
            tracker.transition_status(story.id, "IN_REVIEW", actor_id="carol", expected_version=story.version)

    def test_can_transition(self, story):
        assert can_transition(story, IssueStatus.IN_PROGRESS)
        assert not can_transition(story, IssueStatus.DONE)
        assert can_transition(story, IssueStatus.TODO)


class TestPriorityAndFields:
    """Tests for change_priority and update_fields."""

    @pytest.fixture
    def task(self, tracker):
        return tracker.create_issue("p1", "TASK", "Set up CI", reporter_id="alice")

    def test_change_priority(self, tracker, task):
        issue = tracker.change_priority(task.id, "CRITICAL", actor_id="alice")
        assert issue.priority == Priority.CRITICAL
        entry = tracker.history(task.id)[-1]
        assert entry.action == "priority_change"
        assert entry.payload == {"old": "MEDIUM", "new": "CRITICAL"}

    def test_same_priority_noop(self, tracker, task):
        tracker.change_priority(task.id, "MEDIUM", actor_id="alice")
        assert actions(tracker, task.id) == ["create_issue"]

    def test_update_fields_one_entry_per_field(self, tracker, task):
        issue = tracker.update_fields(
            task.id, "alice",
            title="Set up CI pipeline",
            story_points=3,
            due_date=date(2025, 2, 1),
        )
        assert issue.title == "Set up CI pipeline"
        assert issue.story_points == 3
        fields = [e.payload for e in tracker.history(task.id) if e.action == "update_field"]
        assert fields == [
            {"field": "title", "old": "Set up CI", "new": "Set up CI pipeline"},
            {"field": "story_points", "old": None, "new": 3},
            {"field": "due_date", "old": None, "new": "2025-02-01"},
        ]

    def test_unchanged_fields_not_recorded(self, tracker, task):
        tracker.update_fields(task.id, "alice", title="Set up CI")
        assert actions(tracker, task.id) == ["create_issue"]

    def test_unknown_field(self, tracker, task):
        with pytest.raises(ValidationError) as exc:
            tracker.update_fields(task.id, "alice", status="DONE")
        assert exc.value.rule == "unknown_field"

    def test_invalid_change_rejects_all(self, tracker, task):
        with pytest.raises(ValidationError):
            tracker.update_fields(task.id, "alice", title="Renamed", story_points=-2)
        assert tracker.get_issue(task.id).title == "Set up CI"

    def test_assignee_must_exist(self, tracker, task):
        with pytest.raises(NotFoundError):
            tracker.assign(task.id, "mallory", actor_id="alice")
        issue = tracker.assign(task.id, "bob", actor_id="alice")
        assert issue.assignee_id == "bob"

    def test_title_limit_from_config(self, tracker, task):
        tracker.config.title_max_length = 10
        with pytest.raises(ValidationError):
            tracker.update_fields(task.id, "alice", title="A much longer title")
