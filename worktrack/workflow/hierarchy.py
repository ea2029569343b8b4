"""Hierarchy manager.

Maintains two independent partitions over leaf issues:
- Epic -> children (parent_id)
- Backlog <-> Sprint (sprint_id)

The manager reads from the store but never writes and never records
audit entries: each method returns the changed copy and the Tracker
commits it with the entry for the action it performed.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from worktrack.lib.errors import (
    CrossProjectError,
    IllegalTransitionError,
    InvalidHierarchyError,
    ValidationError,
)
from worktrack.workflow.models import (
    EpicResolution,
    Issue,
    IssueStatus,
    Sprint,
    check_parent,
    check_sprint,
)

logger = logging.getLogger(__name__)

KEY_NUMBER_PATTERN = re.compile(r'-(\d+)$')


def key_order(issue: Issue) -> tuple:
    """Sort issues by their key number, then creation time."""
    match = KEY_NUMBER_PATTERN.search(issue.key)
    number = int(match.group(1)) if match else 0
    return (number, issue.created_at, issue.id)


@dataclass
class EpicNode:
    epic: Issue
    children: list[Issue] = field(default_factory=list)

    @property
    def is_closed(self) -> bool:
        return self.epic.is_closed_epic

    @property
    def progress(self) -> float:
        """Share of children that are DONE, 0.0 for an empty epic."""
        if not self.children:
            return 0.0
        done = sum(1 for c in self.children if c.status == IssueStatus.DONE)
        return done / len(self.children)


@dataclass
class Hierarchy:
    """Epics with their ordered children, plus leaf issues with no parent.

    Closed epics are included; callers that want only open epics filter
    with open_epics().
    """
    project_id: str
    epics: list[EpicNode] = field(default_factory=list)
    unparented: list[Issue] = field(default_factory=list)

    def open_epics(self) -> list[EpicNode]:
        return [node for node in self.epics if not node.is_closed]

    def find(self, epic_id: str) -> Optional[EpicNode]:
        for node in self.epics:
            if node.epic.id == epic_id:
                return node
        return None


@dataclass
class ChildPlan:
    """What closing an epic does to one open child."""
    before: Issue
    parent_id: Optional[str]
    cancel: bool = False


def build_hierarchy(project_id: str, issues: list[Issue]) -> Hierarchy:
    """Group a project's issues into epics and unparented leaves.

    Leaves whose parent no longer exists are reported as unparented.
    """
    epics = sorted((i for i in issues if i.is_epic), key=key_order)
    nodes = {epic.id: EpicNode(epic=epic) for epic in epics}
    unparented = []
    for issue in sorted((i for i in issues if not i.is_epic), key=key_order):
        node = nodes.get(issue.parent_id) if issue.parent_id else None
        if node is None:
            unparented.append(issue)
        else:
            node.children.append(issue)
    return Hierarchy(project_id=project_id, epics=[nodes[e.id] for e in epics], unparented=unparented)


class HierarchyManager:
    def __init__(self, store):
        self.store = store

    def attach_to_epic(self, issue: Issue, epic: Issue, now: datetime) -> Issue:
        """Return issue re-parented under epic, replacing any previous parent.

        Raises:
            InvalidHierarchyError: issue is an epic, epic is not an epic, or epic is closed.
            CrossProjectError: issue and epic are in different projects.
        """
        check_parent(issue, epic)
        if epic.is_closed_epic:
            raise InvalidHierarchyError(f"{epic.key} is closed and cannot take new children", issue.id)
        if issue.parent_id == epic.id:
            return issue
        if issue.parent_id:
            logger.debug(f"[HIERARCHY] {issue.key}: leaving epic {issue.parent_id}")
        return issue.evolve(parent_id=epic.id, updated_at=now)

    def detach_from_epic(self, issue: Issue, now: datetime) -> Issue:
        """Idempotent: an issue without a parent comes back unchanged."""
        if issue.parent_id is None:
            return issue
        return issue.evolve(parent_id=None, updated_at=now)

    def assign_to_sprint(self, issue: Issue, sprint: Sprint, now: datetime) -> Issue:
        """Return issue placed in sprint, leaving any previous sprint.

        Raises:
            CrossProjectError: sprint belongs to another project.
            InvalidHierarchyError: issue is an epic.
            ValidationError: sprint is already completed.
        """
        check_sprint(issue, sprint)
        if sprint.is_completed:
            raise ValidationError("sprint_completed", f"sprint {sprint.name} is completed")
        if issue.sprint_id == sprint.id:
            return issue
        return issue.evolve(sprint_id=sprint.id, updated_at=now)

    def move_to_backlog(self, issue: Issue, now: datetime) -> Issue:
        """Idempotent: a backlog issue comes back unchanged."""
        if issue.sprint_id is None:
            return issue
        return issue.evolve(sprint_id=None, updated_at=now)

    def get_hierarchy(self, project_id: str) -> Hierarchy:
        self.store.load_project(project_id)
        return build_hierarchy(project_id, self.store.list_issues(project_id))

    def children_of(self, epic_id: str, project_id: str) -> list[Issue]:
        return sorted(
            (i for i in self.store.list_issues(project_id) if i.parent_id == epic_id),
            key=key_order,
        )

    def check_epic_closable(self, epic: Issue) -> None:
        if not epic.is_epic:
            raise InvalidHierarchyError(f"{epic.key} is a {epic.kind.value}, not an epic", epic.id)
        if epic.is_closed_epic:
            raise IllegalTransitionError("epic", "CLOSED", "CLOSED", epic.id)

    def check_move_target(self, epic: Issue, target: Issue) -> None:
        """Raise unless target can receive the children of epic."""
        if target.id == epic.id:
            raise InvalidHierarchyError(f"cannot move children of {epic.key} into itself", epic.id)
        if not target.is_epic:
            raise InvalidHierarchyError(f"{target.key} is not an epic", epic.id)
        if target.project_id != epic.project_id:
            raise CrossProjectError(epic.id, epic.project_id, target.id, target.project_id)
        if target.is_closed_epic:
            raise InvalidHierarchyError(f"{target.key} is closed", epic.id)

    def plan_epic_close(
        self,
        epic: Issue,
        resolution: EpicResolution,
        target: Optional[Issue] = None,
    ) -> list[ChildPlan]:
        """Work out what happens to each open child of epic.

        Only children that are still open (not DONE, not CANCELLED) are
        touched. KEEP leaves them linked to the closed epic.
        """
        self.check_epic_closable(epic)
        if resolution == EpicResolution.MOVE:
            if target is None:
                raise ValidationError("target_epic", "MOVE requires a target epic")
            self.check_move_target(epic, target)

        open_children = [c for c in self.children_of(epic.id, epic.project_id) if c.is_open]
        if resolution == EpicResolution.KEEP:
            return []
        if resolution == EpicResolution.MOVE:
            return [ChildPlan(before=c, parent_id=target.id) for c in open_children]
        if resolution == EpicResolution.BACKLOG:
            return [ChildPlan(before=c, parent_id=None) for c in open_children]
        return [ChildPlan(before=c, parent_id=None, cancel=True) for c in open_children]
