"""
Work-item model: issues, sprints, audit entries.

Model objects are plain dataclasses. Changes go through Issue.evolve() /
Sprint.evolve(), which validate the complete candidate state and return a
new object, so a rejected change never leaves a half-updated record behind.
"""

import dataclasses
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from worktrack.lib.config import DEFAULT_TITLE_MAX_LENGTH
from worktrack.lib.errors import CrossProjectError, InvalidHierarchyError, ValidationError

PROJECT_KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9]{1,9}$')


class IssueKind(Enum):
    EPIC = "EPIC"
    STORY = "STORY"
    TASK = "TASK"
    BUG = "BUG"
    FEATURE = "FEATURE"
    SUPPORT = "SUPPORT"

    @property
    def is_container(self) -> bool:
        return self is IssueKind.EPIC


class IssueStatus(Enum):
    """Execution state. Values match the status FSM state names."""
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (IssueStatus.DONE, IssueStatus.CANCELLED)


class Priority(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ApprovalStatus(Enum):
    """Client approval sub-state. Values match the approval FSM state names."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"


class SprintStatus(Enum):
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class EpicResolution(Enum):
    KEEP = "KEEP"
    MOVE = "MOVE"
    BACKLOG = "BACKLOG"
    CANCEL = "CANCEL"


class LinkType(Enum):
    BLOCKS = "blocks"
    IS_BLOCKED_BY = "is_blocked_by"
    RELATES_TO = "relates_to"
    DUPLICATES = "duplicates"


def parse_enum(enum_cls: type[Enum], value: Any, rule: str) -> Enum:
    """Coerce a raw value into enum_cls, raising ValidationError on miss."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if member.value == value or member.name == value.upper():
                return member
    allowed = ", ".join(m.value for m in enum_cls)
    raise ValidationError(rule, f"{value!r} is not one of: {allowed}")


@dataclass(frozen=True)
class Project:
    """A project owns issues and sprints and supplies the issue key prefix."""
    id: str
    key: str
    name: str = ""

    def __post_init__(self):
        if not PROJECT_KEY_PATTERN.match(self.key):
            raise ValidationError(
                "project_key",
                f"{self.key!r} must be 2-10 upper-case letters/digits starting with a letter",
            )


@dataclass(frozen=True)
class IssueLink:
    id: str
    link_type: LinkType
    target_issue_id: str
    created_at: datetime


@dataclass
class Issue:
    """The central work item.

    approval_state is the stored approval sub-state. It is kept when client
    visibility is turned off; client_approval_status is the exposed value and
    reads as None while the issue is hidden from the client.
    """
    id: str
    key: str                                   # PROJ-116, immutable
    project_id: str
    kind: IssueKind
    title: str
    reporter_id: str                           # Immutable
    created_at: datetime
    updated_at: datetime
    status: IssueStatus = IssueStatus.TODO
    priority: Priority = Priority.MEDIUM
    description: str = ""
    assignee_id: Optional[str] = None
    parent_id: Optional[str] = None            # EPIC issue id, leaf kinds only
    sprint_id: Optional[str] = None            # None means backlog
    is_client_visible: bool = False
    approval_state: Optional[ApprovalStatus] = None
    approval_feedback: Optional[str] = None
    story_points: Optional[float] = None
    due_date: Optional[date] = None
    links: tuple[IssueLink, ...] = ()
    closed_at: Optional[datetime] = None       # Epics only: terminal close marker
    close_resolution: Optional[EpicResolution] = None
    version: int = 0                           # Optimistic concurrency token

    @property
    def is_epic(self) -> bool:
        return self.kind.is_container

    @property
    def is_closed_epic(self) -> bool:
        return self.is_epic and self.closed_at is not None

    @property
    def is_open(self) -> bool:
        """True while the work item still needs doing."""
        return not self.status.is_terminal

    @property
    def client_approval_status(self) -> Optional[ApprovalStatus]:
        """None while hidden. A visible issue without a stored state reads PENDING."""
        if not self.is_client_visible:
            return None
        return self.approval_state or ApprovalStatus.PENDING

    def evolve(self, title_max_length: int = DEFAULT_TITLE_MAX_LENGTH, **changes) -> "Issue":
        """Return a validated copy with changes applied.

        Raises:
            ValidationError: If the resulting issue violates a model invariant.
        """
        for frozen in ("id", "key", "project_id", "kind", "reporter_id", "created_at"):
            if frozen in changes and changes[frozen] != getattr(self, frozen):
                raise ValidationError("immutable_field", f"{frozen} cannot change on {self.key}")
        candidate = dataclasses.replace(self, **changes)
        # An unchanged title was checked against the limit in force when it was set
        title_changed = "title" in changes and changes["title"] != self.title
        candidate.validate(title_max_length, check_title=title_changed)
        return candidate

    def validate(self, title_max_length: int = DEFAULT_TITLE_MAX_LENGTH, check_title: bool = True) -> None:
        """Check the invariants that need no other resource."""
        if check_title:
            validate_title(self.title, title_max_length)
        if self.story_points is not None:
            if self.is_epic:
                raise ValidationError("story_points", "story points apply to leaf issues only")
            if isinstance(self.story_points, bool) or not isinstance(self.story_points, (int, float)):
                raise ValidationError("story_points", f"{self.story_points!r} is not a number")
            if self.story_points < 0:
                raise ValidationError("story_points", "story points must be non-negative")
        if self.is_epic and self.parent_id is not None:
            raise ValidationError("epic_parent", "epics cannot have a parent")
        if self.parent_id is not None and self.parent_id == self.id:
            raise ValidationError("self_parent", f"{self.key} cannot be its own parent")
        if self.closed_at is not None and not self.is_epic:
            raise ValidationError("close_marker", "only epics carry a close marker")


@dataclass
class Sprint:
    id: str
    project_id: str
    name: str
    created_at: datetime
    updated_at: datetime
    goal: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 0

    def status(self, today: date) -> SprintStatus:
        """Derive status from the explicit close/start markers and dates.

        A sprint past its end date stays ACTIVE until explicitly completed.
        """
        if self.completed_at is not None:
            return SprintStatus.COMPLETED
        if self.started_at is not None:
            return SprintStatus.ACTIVE
        if self.start_date is not None and self.start_date <= today:
            return SprintStatus.ACTIVE
        return SprintStatus.PLANNED

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def evolve(self, **changes) -> "Sprint":
        for frozen in ("id", "project_id", "created_at"):
            if frozen in changes and changes[frozen] != getattr(self, frozen):
                raise ValidationError("immutable_field", f"{frozen} cannot change on sprint {self.id}")
        candidate = dataclasses.replace(self, **changes)
        candidate.validate()
        return candidate

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("sprint_name", "sprint name must not be empty")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValidationError(
                "sprint_dates",
                f"end date {self.end_date} is before start date {self.start_date}",
            )


@dataclass(frozen=True)
class AuditEntry:
    """One immutable record of a single mutation."""
    id: str
    actor_id: str
    resource_type: str                         # "issue", "sprint", "project"
    resource_id: str
    action: str                                # Discriminating tag, e.g. "status_change"
    payload: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    sequence: int = 0                          # Assigned by the store on append

    def sort_key(self) -> tuple:
        return (self.created_at, self.sequence, self.id)


@dataclass
class BulkFailure:
    resource_id: str
    reason: str
    error: Optional[Exception] = None


@dataclass
class BulkResult:
    """Outcome of a batch where every item is its own atomic step.

    Failed items are left as they were and can be retried individually.
    """
    succeeded: list[str] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def failed_ids(self) -> list[str]:
        return [f.resource_id for f in self.failed]


def validate_title(title: str, max_length: int = DEFAULT_TITLE_MAX_LENGTH) -> None:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title", "title must not be empty")
    if len(title) > max_length:
        raise ValidationError("title", f"title exceeds {max_length} characters")


def check_parent(issue: Issue, parent: Issue) -> None:
    """Raise unless parent may hold issue as a child."""
    if issue.is_epic:
        raise InvalidHierarchyError(f"{issue.key} is an epic and cannot have a parent", issue.id)
    if not parent.is_epic:
        raise InvalidHierarchyError(
            f"{parent.key} is a {parent.kind.value}, only epics can hold children", issue.id
        )
    if parent.project_id != issue.project_id:
        raise CrossProjectError(issue.id, issue.project_id, parent.id, parent.project_id)


def check_sprint(issue: Issue, sprint: Sprint) -> None:
    """Raise unless issue may be placed in sprint."""
    if issue.is_epic:
        raise InvalidHierarchyError(f"{issue.key} is an epic, only leaf issues join sprints", issue.id)
    if sprint.project_id != issue.project_id:
        raise CrossProjectError(issue.id, issue.project_id, sprint.id, sprint.project_id)
