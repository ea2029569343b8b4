"""Tests for worktrack.workflow.models."""

from datetime import date, datetime

import pytest
import pytz

from worktrack.lib.errors import CrossProjectError, InvalidHierarchyError, ValidationError
from worktrack.workflow.models import (
    ApprovalStatus,
    AuditEntry,
    BulkFailure,
    BulkResult,
    Issue,
    IssueKind,
    IssueStatus,
    Priority,
    Project,
    Sprint,
    SprintStatus,
    check_parent,
    check_sprint,
    parse_enum,
)

NOW = datetime(2025, 1, 15, 10, 0, tzinfo=pytz.UTC)


def make_issue(**overrides) -> Issue:
    fields = dict(
        id="i1",
        key="MAR-1",
        project_id="p1",
        kind=IssueKind.STORY,
        title="Login page",
        reporter_id="alice",
        created_at=NOW,
        updated_at=NOW,
    )
    fields.update(overrides)
    return Issue(**fields)


def make_sprint(**overrides) -> Sprint:
    fields = dict(id="s1", project_id="p1", name="Sprint 1", created_at=NOW, updated_at=NOW)
    fields.update(overrides)
    return Sprint(**fields)


class TestProject:
    """Tests for Project key validation."""

    def test_valid_key(self):
        assert Project(id="p1", key="MAR").key == "MAR"

    def test_lowercase_key_rejected(self):
        with pytest.raises(ValidationError) as exc:
            Project(id="p1", key="mar")
        assert exc.value.rule == "project_key"

    def test_single_letter_rejected(self):
        with pytest.raises(ValidationError):
            Project(id="p1", key="M")


class TestParseEnum:
    """Tests for parse_enum."""

    def test_accepts_member(self):
        assert parse_enum(IssueStatus, IssueStatus.DONE, "status") is IssueStatus.DONE

    def test_accepts_value_and_lowercase_name(self):
        assert parse_enum(IssueStatus, "IN_REVIEW", "status") is IssueStatus.IN_REVIEW
        assert parse_enum(Priority, "high", "priority") is Priority.HIGH

    def test_unknown_value(self):
        with pytest.raises(ValidationError) as exc:
            parse_enum(IssueStatus, "FINISHED", "status")
        assert exc.value.rule == "status"
        assert "TODO" in str(exc.value)

    def test_non_string(self):
        with pytest.raises(ValidationError):
            parse_enum(IssueStatus, 3, "status")


class TestIssue:
    """Tests for Issue invariants."""

    def test_defaults(self):
        """New issues start TODO, MEDIUM, hidden from the client, in the backlog."""
        issue = make_issue()
        assert issue.status == IssueStatus.TODO
        assert issue.priority == Priority.MEDIUM
        assert issue.is_client_visible is False
        assert issue.sprint_id is None
        assert issue.version == 0

    def test_hidden_issue_has_no_approval_status(self):
        """client_approval_status reads None while hidden, even with a stored state."""
        issue = make_issue(approval_state=ApprovalStatus.APPROVED)
        assert issue.client_approval_status is None
        assert issue.evolve(is_client_visible=True).client_approval_status == ApprovalStatus.APPROVED

    def test_visible_without_stored_state_reads_pending(self):
        issue = make_issue(is_client_visible=True, approval_state=None)
        assert issue.client_approval_status == ApprovalStatus.PENDING

    def test_evolve_returns_copy(self):
        issue = make_issue()
        changed = issue.evolve(title="New title")
        assert changed.title == "New title"
        assert issue.title == "Login page"

    @pytest.mark.parametrize("field,value", [
        ("id", "other"),
        ("key", "MAR-2"),
        ("project_id", "p2"),
        ("kind", IssueKind.BUG),
        ("reporter_id", "bob"),
    ])
    def test_immutable_fields(self, field, value):
        with pytest.raises(ValidationError) as exc:
            make_issue().evolve(**{field: value})
        assert exc.value.rule == "immutable_field"

    def test_empty_title(self):
        with pytest.raises(ValidationError):
            make_issue().evolve(title="   ")

    def test_title_length_limit(self):
        issue = make_issue()
        issue.evolve(title="x" * 200)
        with pytest.raises(ValidationError):
            issue.evolve(title="x" * 201)
        with pytest.raises(ValidationError):
            issue.evolve(title="x" * 20, title_max_length=10)

    def test_unchanged_title_not_rechecked(self):
        """A title accepted under a raised limit survives unrelated changes."""
        issue = make_issue(title="x" * 250)
        moved = issue.evolve(status=IssueStatus.IN_PROGRESS)
        assert moved.title == "x" * 250
        with pytest.raises(ValidationError):
            issue.evolve(title="y" * 250)

    def test_story_points_on_epic_rejected(self):
        with pytest.raises(ValidationError) as exc:
            make_issue(kind=IssueKind.EPIC).evolve(story_points=3)
        assert exc.value.rule == "story_points"

    def test_negative_story_points_rejected(self):
        with pytest.raises(ValidationError):
            make_issue().evolve(story_points=-1)

    def test_bool_story_points_rejected(self):
        with pytest.raises(ValidationError):
            make_issue().evolve(story_points=True)

    def test_epic_cannot_have_parent(self):
        with pytest.raises(ValidationError):
            make_issue(kind=IssueKind.EPIC).evolve(parent_id="e2")

    def test_self_parent_rejected(self):
        with pytest.raises(ValidationError):
            make_issue().evolve(parent_id="i1")

    def test_close_marker_only_on_epics(self):
        with pytest.raises(ValidationError):
            make_issue().evolve(closed_at=NOW)

    def test_is_open(self):
        assert make_issue().is_open
        assert not make_issue(status=IssueStatus.DONE).is_open
        assert not make_issue(status=IssueStatus.CANCELLED).is_open


class TestHierarchyChecks:
    """Tests for check_parent and check_sprint."""

    def test_parent_must_be_epic(self):
        with pytest.raises(InvalidHierarchyError):
            check_parent(make_issue(), make_issue(id="i2", key="MAR-2", kind=IssueKind.TASK))

    def test_epic_cannot_be_child(self):
        epic = make_issue(kind=IssueKind.EPIC)
        other = make_issue(id="e2", key="MAR-2", kind=IssueKind.EPIC)
        with pytest.raises(InvalidHierarchyError):
            check_parent(epic, other)

    def test_cross_project_parent(self):
        epic = make_issue(id="e1", key="OPS-1", project_id="p2", kind=IssueKind.EPIC)
        with pytest.raises(CrossProjectError) as exc:
            check_parent(make_issue(), epic)
        assert exc.value.other_project == "p2"

    def test_cross_project_sprint(self):
        with pytest.raises(CrossProjectError):
            check_sprint(make_issue(), make_sprint(project_id="p2"))

    def test_epic_cannot_join_sprint(self):
        with pytest.raises(InvalidHierarchyError):
            check_sprint(make_issue(kind=IssueKind.EPIC), make_sprint())


class TestSprint:
    """Tests for Sprint status derivation."""

    def test_planned_without_dates(self):
        assert make_sprint().status(date(2025, 1, 15)) == SprintStatus.PLANNED

    def test_active_once_start_date_reached(self):
        sprint = make_sprint(start_date=date(2025, 1, 15), end_date=date(2025, 1, 29))
        assert sprint.status(date(2025, 1, 14)) == SprintStatus.PLANNED
        assert sprint.status(date(2025, 1, 15)) == SprintStatus.ACTIVE

    def test_overdue_sprint_stays_active(self):
        """Passing the end date does not complete a sprint."""
        sprint = make_sprint(start_date=date(2025, 1, 1), end_date=date(2025, 1, 14))
        assert sprint.status(date(2025, 3, 1)) == SprintStatus.ACTIVE

    def test_completed(self):
        sprint = make_sprint(started_at=NOW, completed_at=NOW)
        assert sprint.status(date(2025, 1, 15)) == SprintStatus.COMPLETED

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError) as exc:
            make_sprint(start_date=date(2025, 1, 15), end_date=date(2025, 1, 1)).validate()
        assert exc.value.rule == "sprint_dates"

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            make_sprint().evolve(name="")


class TestAuditEntryAndBulkResult:
    """Tests for AuditEntry ordering and BulkResult."""

    def test_sort_key_uses_sequence_for_ties(self):
        a = AuditEntry(id="b", actor_id="u", resource_type="issue", resource_id="i1",
                       action="x", created_at=NOW, sequence=2)
        b = AuditEntry(id="a", actor_id="u", resource_type="issue", resource_id="i1",
                       action="x", created_at=NOW, sequence=1)
        assert sorted([a, b], key=AuditEntry.sort_key) == [b, a]

    def test_bulk_result(self):
        result = BulkResult(succeeded=["i1"])
        assert result.ok
        result.failed.append(BulkFailure("i2", "boom"))
        assert not result.ok
        assert result.failed_ids == ["i2"]
