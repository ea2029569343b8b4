"""Tracker: the operations callers invoke.

Every mutating operation follows the same shape:
    load -> pure transform -> build audit entries -> store.commit()

The commit holds the changed records and their audit entries together,
so a mutation is never stored without its entry. Bulk operations (epic
close, sprint completion, detaching dependents) commit each item on its
own and report failures in a BulkResult instead of rolling back.

Every operation takes actor_id explicitly.

Usage:
    tracker = Tracker(InMemoryStore())
    tracker.register_project("p1", "MAR", actor_id="alice")
    story = tracker.create_issue("p1", "STORY", "Login page", reporter_id="alice")
    tracker.transition_status(story.id, "IN_PROGRESS", actor_id="alice")
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from worktrack.identity import Directory, OpenDirectory
from worktrack.lib.audit import AuditRecorder
from worktrack.lib.clock import new_id, utcnow
from worktrack.lib.config import TrackerConfig
from worktrack.lib.errors import ConflictError, NotFoundError, TrackerError, ValidationError
from worktrack.lib.timeline import TimelineDay, reconstruct
from worktrack.notifications import LogNotifier, Notifier, approval_event, notify_users
from worktrack.store.codec import jsonable
from worktrack.store.ports import Changeset
from worktrack.workflow import approval, sprints, status
from worktrack.workflow.hierarchy import Hierarchy, HierarchyManager
from worktrack.workflow.models import (
    ApprovalStatus,
    AuditEntry,
    BulkFailure,
    BulkResult,
    EpicResolution,
    Issue,
    IssueKind,
    IssueLink,
    IssueStatus,
    LinkType,
    Priority,
    Project,
    Sprint,
    parse_enum,
)

logger = logging.getLogger(__name__)

ISSUE = "issue"
SPRINT = "sprint"
PROJECT = "project"


@dataclass
class EpicCloseResult(BulkResult):
    """BulkResult for an epic close. epic is None until every child succeeded."""
    epic: Optional[Issue] = None

    @property
    def closed(self) -> bool:
        return self.epic is not None and self.epic.is_closed_epic


@dataclass
class SprintCompleteResult(BulkResult):
    sprint: Optional[Sprint] = None

    @property
    def completed(self) -> bool:
        return self.sprint is not None and self.sprint.is_completed


class Tracker:
    def __init__(
        self,
        store,
        config: Optional[TrackerConfig] = None,
        directory: Optional[Directory] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_id,
    ):
        self.store = store
        self.config = config or TrackerConfig()
        self.directory = directory or OpenDirectory()
        self.notifier = notifier or LogNotifier()
        self.clock = clock
        self.id_factory = id_factory
        self.recorder = AuditRecorder(store, clock=clock, id_factory=id_factory)
        self.hierarchy = HierarchyManager(store)

    # Helpers

    def _require_actor(self, actor_id: str) -> None:
        if not actor_id:
            raise ValidationError("actor", "actor_id is required")
        if not self.directory.exists(actor_id):
            raise NotFoundError("user", actor_id)

    def _load_issue(self, issue_id: str, expected_version: Optional[int] = None) -> Issue:
        issue = self.store.load_issue(issue_id)
        if expected_version is not None and issue.version != expected_version:
            raise ConflictError(ISSUE, issue_id, expected_version, issue.version)
        return issue

    def _entry(self, resource_type: str, resource_id: str, actor_id: str, action: str, payload: dict, now: datetime) -> AuditEntry:
        return self.recorder.entry(resource_type, resource_id, actor_id, action, payload, at=now)

    def _commit(self, issues: Iterable[Issue] = (), sprints_: Iterable[Sprint] = (), entries: Iterable[AuditEntry] = ()) -> Changeset:
        return self.store.commit(Changeset(issues=list(issues), sprints=list(sprints_), entries=list(entries)))

    def _commit_issue(self, issue: Issue, entries: list[AuditEntry]) -> Issue:
        return self._commit(issues=[issue], entries=entries).issues[0]

    def _today(self, now: datetime) -> date:
        return sprints.today_in(now, self.config.tzinfo())

    def _field_entry(self, issue: Issue, actor_id: str, name: str, old, new, now: datetime) -> AuditEntry:
        payload = {"field": name, "old": jsonable(old), "new": jsonable(new)}
        return self._entry(ISSUE, issue.id, actor_id, "update_field", payload, now)

    # Projects

    def register_project(self, project_id: str, key: str, actor_id: str, name: str = "") -> Project:
        self._require_actor(actor_id)
        project = Project(id=project_id, key=key, name=name)
        self.store.save_project(project)
        logger.info(f"[PROJECT] registered {project.key} ({project.id}) by {actor_id}")
        return project

    # Issues

    def create_issue(
        self,
        project_id: str,
        kind: IssueKind | str,
        title: str,
        reporter_id: str,
        actor_id: Optional[str] = None,
        priority: Priority | str = Priority.MEDIUM,
        description: str = "",
        assignee_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        sprint_id: Optional[str] = None,
        is_client_visible: bool = False,
        story_points: Optional[float] = None,
        due_date: Optional[date] = None,
    ) -> Issue:
        """Create an issue with the next key of its project.

        A client-visible issue starts with approval PENDING. An issue created
        under an epic also records create_subtask on the epic.
        """
        actor_id = actor_id or reporter_id
        self._require_actor(actor_id)
        self._require_actor(reporter_id)
        if assignee_id is not None:
            self._require_actor(assignee_id)
        kind = parse_enum(IssueKind, kind, "kind")
        priority = parse_enum(Priority, priority, "priority")
        project = self.store.load_project(project_id)
        now = self.clock()

        parent = self.store.load_issue(parent_id) if parent_id else None
        sprint = self.store.load_sprint(sprint_id) if sprint_id else None

        # Build a provisional issue so every invariant is checked before a
        # number is reserved. Parent and sprint go through the hierarchy checks.
        issue = Issue(
            id=self.id_factory(),
            key=f"{project.key}-0",
            project_id=project.id,
            kind=kind,
            title=title,
            reporter_id=reporter_id,
            created_at=now,
            updated_at=now,
            priority=priority,
            description=description,
            assignee_id=assignee_id,
            is_client_visible=is_client_visible,
            approval_state=ApprovalStatus.PENDING if is_client_visible else None,
            story_points=story_points,
            due_date=due_date,
        )
        issue.validate(self.config.title_max_length)
        if parent is not None:
            issue = self.hierarchy.attach_to_epic(issue, parent, now)
        if sprint is not None:
            issue = self.hierarchy.assign_to_sprint(issue, sprint, now)

        number = self.store.next_issue_number(project.id)
        issue = replace(issue, key=f"{project.key}-{number}")

        entries = [self._entry(ISSUE, issue.id, actor_id, "create_issue", {
            "key": issue.key,
            "kind": issue.kind.value,
            "title": issue.title,
            "parent_id": issue.parent_id,
            "sprint_id": issue.sprint_id,
            "is_client_visible": issue.is_client_visible,
        }, now)]
        if parent is not None:
            entries.append(self._entry(ISSUE, parent.id, actor_id, "create_subtask", {
                "subtask_key": issue.key,
                "subtask_id": issue.id,
            }, now))

        created = self._commit_issue(issue, entries)
        logger.info(f"[ISSUE] {created.key}: created {created.kind.value} by {actor_id}")
        return created

    def get_issue(self, issue_id: str) -> Issue:
        return self.store.load_issue(issue_id)

    def transition_status(
        self,
        issue_id: str,
        new_status: IssueStatus | str,
        actor_id: str,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Issue:
        """Move an issue along the status table.

        Raises:
            NotFoundError: Issue does not exist.
            IllegalTransitionError: The edge is not allowed (e.g. TODO -> DONE).
            ConflictError: The issue changed since expected_version.
        """
        self._require_actor(actor_id)
        new_status = parse_enum(IssueStatus, new_status, "status")
        issue = self._load_issue(issue_id, expected_version)
        now = self.clock()

        updated = status.apply_status(issue, new_status, now)
        if updated is issue:
            return issue

        entry = self._entry(ISSUE, issue.id, actor_id, "status_change", status.status_payload(issue, updated, reason), now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[STATUS] {issue.key}: {issue.status.value} -> {updated.status.value} by {actor_id}")
        return committed

    def cancel(self, issue_id: str, actor_id: str, reason: Optional[str] = None) -> Issue:
        return self.transition_status(issue_id, IssueStatus.CANCELLED, actor_id, reason=reason)

    def change_priority(
        self,
        issue_id: str,
        priority: Priority | str,
        actor_id: str,
        expected_version: Optional[int] = None,
    ) -> Issue:
        self._require_actor(actor_id)
        priority = parse_enum(Priority, priority, "priority")
        issue = self._load_issue(issue_id, expected_version)
        now = self.clock()

        updated = status.apply_priority(issue, priority, now)
        if updated is issue:
            return issue

        entry = self._entry(ISSUE, issue.id, actor_id, "priority_change", {
            "old": issue.priority.value,
            "new": updated.priority.value,
        }, now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[STATUS] {issue.key}: priority {issue.priority.value} -> {updated.priority.value} by {actor_id}")
        return committed

    def update_fields(self, issue_id: str, actor_id: str, expected_version: Optional[int] = None, **changes) -> Issue:
        """Change scalar fields (title, description, story_points, due_date, assignee_id).

        One update_field entry per changed field, all committed together.
        """
        self._require_actor(actor_id)
        if changes.get("assignee_id") is not None:
            self._require_actor(changes["assignee_id"])
        issue = self._load_issue(issue_id, expected_version)
        now = self.clock()

        updated, payloads = status.apply_fields(issue, changes, now, self.config.title_max_length)
        if not payloads:
            return issue

        entries = [self._entry(ISSUE, issue.id, actor_id, "update_field", p, now) for p in payloads]
        committed = self._commit_issue(updated, entries)
        logger.info(f"[ISSUE] {issue.key}: updated {', '.join(p['field'] for p in payloads)} by {actor_id}")
        return committed

    def assign(self, issue_id: str, assignee_id: Optional[str], actor_id: str) -> Issue:
        return self.update_fields(issue_id, actor_id, assignee_id=assignee_id)

    # Client approval

    def set_client_visibility(self, issue_id: str, visible: bool, actor_id: str) -> Issue:
        """Show or hide an issue to the client. Hiding keeps the approval state."""
        self._require_actor(actor_id)
        issue = self._load_issue(issue_id)
        now = self.clock()

        updated = approval.apply_visibility(issue, bool(visible), now)
        if updated is issue:
            return issue

        entry = self._field_entry(issue, actor_id, "is_client_visible", issue.is_client_visible, updated.is_client_visible, now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[APPROVAL] {issue.key}: client visibility {'on' if visible else 'off'} by {actor_id}")
        return committed

    def submit_approval(
        self,
        issue_id: str,
        actor_id: str,
        status_: ApprovalStatus | str,
        feedback: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Issue:
        """Record a client decision and notify assignee and reporter.

        Raises:
            ValidationError: Feedback missing for REJECTED / CHANGES_REQUESTED.
            NotVisibleError: Issue is not client-visible.
            IllegalTransitionError: Issue is APPROVED and was not reverted.
        """
        self._require_actor(actor_id)
        decision = parse_enum(ApprovalStatus, status_, "approval_status")
        feedback = approval.normalize_feedback(feedback)
        approval.check_decision(decision, feedback)
        issue = self._load_issue(issue_id, expected_version)
        now = self.clock()

        updated = approval.apply_decision(issue, decision, feedback, now)
        entry = self._entry(ISSUE, issue.id, actor_id, "client_approval", {
            "status": decision.value,
            "feedback": updated.approval_feedback,
        }, now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[APPROVAL] {issue.key}: {decision.value} by {actor_id}")

        self._notify_decision(committed, decision, actor_id)
        return committed

    def resubmit_for_approval(self, issue_id: str, actor_id: str) -> Issue:
        """Send REJECTED or CHANGES_REQUESTED work back to PENDING."""
        self._require_actor(actor_id)
        issue = self._load_issue(issue_id)
        now = self.clock()

        updated = approval.apply_resubmit(issue, now)
        entry = self._entry(ISSUE, issue.id, actor_id, "client_approval", {
            "status": ApprovalStatus.PENDING.value,
            "feedback": None,
        }, now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[APPROVAL] {issue.key}: re-submitted by {actor_id}")
        return committed

    def revert_approval(self, issue_id: str, actor_id: str, reason: str) -> Issue:
        """Return an APPROVED issue to PENDING. Never happens implicitly."""
        self._require_actor(actor_id)
        issue = self._load_issue(issue_id)
        now = self.clock()

        updated = approval.apply_revert(issue, reason, now)
        entry = self._entry(ISSUE, issue.id, actor_id, "client_approval", {
            "status": ApprovalStatus.PENDING.value,
            "feedback": updated.approval_feedback,
        }, now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[APPROVAL] {issue.key}: approval reverted by {actor_id}")
        return committed

    def _notify_decision(self, issue: Issue, decision: ApprovalStatus, actor_id: str) -> None:
        if not self.config.notifications.enabled:
            return
        event = approval_event(issue.id, issue.key, decision.value, issue.approval_feedback, actor_id)
        notify_users(self.notifier, [issue.assignee_id, issue.reporter_id], event)

    # Links and comments

    def add_link(self, issue_id: str, target_issue_id: str, link_type: LinkType | str, actor_id: str) -> IssueLink:
        self._require_actor(actor_id)
        link_type = parse_enum(LinkType, link_type, "link_type")
        issue = self._load_issue(issue_id)
        target = self.store.load_issue(target_issue_id)
        if target.id == issue.id:
            raise ValidationError("self_link", f"{issue.key} cannot link to itself")
        for link in issue.links:
            if link.target_issue_id == target.id and link.link_type == link_type:
                raise ValidationError("duplicate_link", f"{issue.key} already {link_type.value} {target.key}")
        now = self.clock()

        link = IssueLink(id=self.id_factory(), link_type=link_type, target_issue_id=target.id, created_at=now)
        updated = issue.evolve(links=issue.links + (link,), updated_at=now)
        entry = self._entry(ISSUE, issue.id, actor_id, "add_link", {
            "link_id": link.id,
            "type": link_type.value,
            "target_issue_id": target.id,
            "target_key": target.key,
        }, now)
        self._commit_issue(updated, [entry])
        logger.info(f"[ISSUE] {issue.key}: {link_type.value} {target.key} by {actor_id}")
        return link

    def remove_link(self, issue_id: str, link_id: str, actor_id: str) -> Issue:
        self._require_actor(actor_id)
        issue = self._load_issue(issue_id)
        link = next((l for l in issue.links if l.id == link_id), None)
        if link is None:
            raise NotFoundError("link", link_id)
        now = self.clock()

        updated = issue.evolve(links=tuple(l for l in issue.links if l.id != link_id), updated_at=now)
        entry = self._entry(ISSUE, issue.id, actor_id, "remove_link", {
            "link_id": link.id,
            "type": link.link_type.value,
            "target_issue_id": link.target_issue_id,
        }, now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[ISSUE] {issue.key}: removed link {link_id} by {actor_id}")
        return committed

    def add_comment(self, issue_id: str, actor_id: str, content: str) -> AuditEntry:
        """Record a comment. The comment body itself is stored by the caller's comment service."""
        self._require_actor(actor_id)
        issue = self._load_issue(issue_id)
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("comment", "comment must not be empty")
        return self.recorder.record(ISSUE, issue.id, actor_id, "add_comment", {"content": content.strip()})

    # Hierarchy

    def attach_to_epic(self, issue_id: str, epic_id: str, actor_id: str) -> Issue:
        self._require_actor(actor_id)
        issue = self._load_issue(issue_id)
        epic = self.store.load_issue(epic_id)
        now = self.clock()

        updated = self.hierarchy.attach_to_epic(issue, epic, now)
        if updated is issue:
            return issue
        entry = self._field_entry(issue, actor_id, "parent_id", issue.parent_id, updated.parent_id, now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[HIERARCHY] {issue.key}: attached to {epic.key} by {actor_id}")
        return committed

    def detach_from_epic(self, issue_id: str, actor_id: str) -> Issue:
        self._require_actor(actor_id)
        issue = self._load_issue(issue_id)
        now = self.clock()

        updated = self.hierarchy.detach_from_epic(issue, now)
        if updated is issue:
            logger.debug(f"[HIERARCHY] {issue.key}: no parent, no-op")
            return issue
        entry = self._field_entry(issue, actor_id, "parent_id", issue.parent_id, None, now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[HIERARCHY] {issue.key}: detached from {issue.parent_id} by {actor_id}")
        return committed

    def assign_to_sprint(self, issue_id: str, sprint_id: str, actor_id: str) -> Issue:
        self._require_actor(actor_id)
        issue = self._load_issue(issue_id)
        sprint = self.store.load_sprint(sprint_id)
        now = self.clock()

        updated = self.hierarchy.assign_to_sprint(issue, sprint, now)
        if updated is issue:
            return issue
        entry = self._field_entry(issue, actor_id, "sprint_id", issue.sprint_id, updated.sprint_id, now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[SPRINT] {issue.key}: assigned to {sprint.name} by {actor_id}")
        return committed

    def move_to_backlog(self, issue_id: str, actor_id: str) -> Issue:
        self._require_actor(actor_id)
        issue = self._load_issue(issue_id)
        now = self.clock()

        updated = self.hierarchy.move_to_backlog(issue, now)
        if updated is issue:
            return issue
        entry = self._field_entry(issue, actor_id, "sprint_id", issue.sprint_id, None, now)
        committed = self._commit_issue(updated, [entry])
        logger.info(f"[SPRINT] {issue.key}: moved to backlog by {actor_id}")
        return committed

    def bulk_assign_to_sprint(self, issue_ids: list[str], sprint_id: Optional[str], actor_id: str) -> BulkResult:
        """Assign many issues to a sprint (or the backlog when sprint_id is None).

        Each issue is its own atomic step.
        """
        self._require_actor(actor_id)
        if sprint_id is not None:
            self.store.load_sprint(sprint_id)
        result = BulkResult()
        for issue_id in issue_ids:
            try:
                if sprint_id is None:
                    self.move_to_backlog(issue_id, actor_id)
                else:
                    self.assign_to_sprint(issue_id, sprint_id, actor_id)
                result.succeeded.append(issue_id)
            except TrackerError as e:
                logger.warning(f"[SPRINT] bulk assign: {issue_id} failed: {e}")
                result.failed.append(BulkFailure(issue_id, str(e), e))
        return result

    def get_hierarchy(self, project_id: str) -> Hierarchy:
        return self.hierarchy.get_hierarchy(project_id)

    def close_epic(
        self,
        epic_id: str,
        resolution: EpicResolution | str,
        actor_id: str,
        target_epic_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> EpicCloseResult:
        """Close an epic and resolve its open children.

        Each child is updated as its own atomic step. The epic is only marked
        closed once every child step has succeeded; otherwise it stays open
        and the call can be retried to finish the remaining children.
        """
        self._require_actor(actor_id)
        resolution = parse_enum(EpicResolution, resolution, "resolution")
        epic = self._load_issue(epic_id)
        target = self.store.load_issue(target_epic_id) if target_epic_id else None
        if resolution != EpicResolution.MOVE:
            target = None

        plans = self.hierarchy.plan_epic_close(epic, resolution, target)
        result = EpicCloseResult()
        for plan in plans:
            try:
                self._apply_child_plan(plan, actor_id, epic)
                result.succeeded.append(plan.before.id)
            except TrackerError as e:
                logger.warning(f"[HIERARCHY] close {epic.key}: child {plan.before.key} failed: {e}")
                result.failed.append(BulkFailure(plan.before.id, str(e), e))

        if not result.ok:
            logger.warning(
                f"[HIERARCHY] {epic.key}: {len(result.failed)} child(ren) failed, epic left open for retry"
            )
            return result

        now = self.clock()
        closed = epic.evolve(closed_at=now, close_resolution=resolution, updated_at=now)
        entry = self._entry(ISSUE, epic.id, actor_id, "close_epic", {
            "resolution": resolution.value,
            "target_epic_id": target.id if target else None,
            "affected": len(plans),
            "notes": notes,
        }, now)
        result.epic = self._commit_issue(closed, [entry])
        logger.info(f"[HIERARCHY] {epic.key}: closed ({resolution.value}, {len(plans)} child(ren)) by {actor_id}")
        return result

    def _apply_child_plan(self, plan, actor_id: str, epic: Issue) -> Issue:
        child = plan.before
        now = self.clock()
        updated = child
        entries = []
        if plan.cancel:
            # Cancellation goes through the status table like any other move
            updated = status.apply_status(child, IssueStatus.CANCELLED, now)
            entries.append(self._entry(
                ISSUE, child.id, actor_id, "status_change",
                status.status_payload(child, updated, f"epic {epic.key} closed"), now,
            ))
        if plan.parent_id != child.parent_id:
            updated = updated.evolve(parent_id=plan.parent_id, updated_at=now)
            entries.append(self._field_entry(child, actor_id, "parent_id", child.parent_id, plan.parent_id, now))
        if not entries:
            return child
        return self._commit_issue(updated, entries)

    # Sprints

    def create_sprint(
        self,
        project_id: str,
        name: str,
        actor_id: str,
        goal: str = "",
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Sprint:
        self._require_actor(actor_id)
        self.store.load_project(project_id)
        now = self.clock()
        sprint = Sprint(
            id=self.id_factory(),
            project_id=project_id,
            name=name,
            created_at=now,
            updated_at=now,
            goal=goal,
            start_date=start_date,
            end_date=end_date,
        )
        sprint.validate()
        entry = self._entry(SPRINT, sprint.id, actor_id, "create_sprint", {
            "name": sprint.name,
            "start_date": jsonable(start_date),
            "end_date": jsonable(end_date),
        }, now)
        created = self._commit(sprints_=[sprint], entries=[entry]).sprints[0]
        logger.info(f"[SPRINT] {project_id}: created {created.name} by {actor_id}")
        return created

    def get_sprint(self, sprint_id: str) -> Sprint:
        return self.store.load_sprint(sprint_id)

    def sprint_status(self, sprint_id: str):
        return self.store.load_sprint(sprint_id).status(self._today(self.clock()))

    def start_sprint(self, sprint_id: str, actor_id: str) -> Sprint:
        self._require_actor(actor_id)
        sprint = self.store.load_sprint(sprint_id)
        now = self.clock()
        started = sprints.apply_start(sprint, now, self._today(now))
        entry = self._entry(SPRINT, sprint.id, actor_id, "sprint_start", {"name": sprint.name}, now)
        committed = self._commit(sprints_=[started], entries=[entry]).sprints[0]
        logger.info(f"[SPRINT] {sprint.name}: started by {actor_id}")
        return committed

    def complete_sprint(self, sprint_id: str, actor_id: str, carry_over_to: Optional[str] = None) -> SprintCompleteResult:
        """Close a sprint. Open issues go to the backlog or to carry_over_to.

        DONE and CANCELLED issues stay linked to the completed sprint. Like
        close_epic, the sprint is only marked completed once every open
        issue has moved.
        """
        self._require_actor(actor_id)
        sprint = self.store.load_sprint(sprint_id)
        sprints.check_completable(sprint)
        target = None
        if carry_over_to:
            target = self.store.load_sprint(carry_over_to)
            sprints.check_carry_over(sprint, target)

        open_issues = [
            i for i in self.store.list_issues(sprint.project_id)
            if i.sprint_id == sprint.id and i.is_open
        ]
        result = SprintCompleteResult()
        for issue in open_issues:
            try:
                if target is None:
                    self.move_to_backlog(issue.id, actor_id)
                else:
                    self.assign_to_sprint(issue.id, target.id, actor_id)
                result.succeeded.append(issue.id)
            except TrackerError as e:
                logger.warning(f"[SPRINT] complete {sprint.name}: {issue.key} failed: {e}")
                result.failed.append(BulkFailure(issue.id, str(e), e))

        if not result.ok:
            return result

        now = self.clock()
        completed = sprints.apply_complete(sprint, now)
        entry = self._entry(SPRINT, sprint.id, actor_id, "sprint_complete", {
            "name": sprint.name,
            "carry_over_to": target.id if target else None,
            "open_issues": len(open_issues),
        }, now)
        result.sprint = self._commit(sprints_=[completed], entries=[entry]).sprints[0]
        logger.info(f"[SPRINT] {sprint.name}: completed, {len(open_issues)} open issue(s) moved by {actor_id}")
        return result

    def sprint_statistics(self, sprint_id: str) -> sprints.SprintStats:
        sprint = self.store.load_sprint(sprint_id)
        issues = self.store.list_issues(sprint.project_id)
        return sprints.sprint_statistics(sprint, issues, self._today(self.clock()))

    def velocity(self, project_id: str, last_n: int = sprints.DEFAULT_VELOCITY_WINDOW) -> Optional[float]:
        return sprints.velocity(self.store.list_sprints(project_id), self.store.list_issues(project_id), last_n)

    # Removed resources

    def detach_removed_issue(self, project_id: str, issue_id: str, actor_id: str) -> BulkResult:
        """Clear references to an issue the storage layer has deleted.

        Children lose their parent link and links pointing at the issue are
        dropped, each dependent as its own step.
        """
        self._require_actor(actor_id)
        result = BulkResult()
        for dependent in self.store.list_issues(project_id):
            if dependent.id == issue_id:
                continue
            dangling = [l for l in dependent.links if l.target_issue_id == issue_id]
            if dependent.parent_id != issue_id and not dangling:
                continue
            try:
                now = self.clock()
                updated = dependent
                entries = []
                if dependent.parent_id == issue_id:
                    updated = self.hierarchy.detach_from_epic(updated, now)
                    entries.append(self._field_entry(dependent, actor_id, "parent_id", issue_id, None, now))
                for link in dangling:
                    entries.append(self._entry(ISSUE, dependent.id, actor_id, "remove_link", {
                        "link_id": link.id,
                        "type": link.link_type.value,
                        "target_issue_id": issue_id,
                    }, now))
                if dangling:
                    updated = updated.evolve(
                        links=tuple(l for l in updated.links if l.target_issue_id != issue_id),
                        updated_at=now,
                    )
                self._commit_issue(updated, entries)
                result.succeeded.append(dependent.id)
            except TrackerError as e:
                logger.warning(f"[HIERARCHY] detach {dependent.key} from removed {issue_id} failed: {e}")
                result.failed.append(BulkFailure(dependent.id, str(e), e))
        return result

    def detach_removed_sprint(self, project_id: str, sprint_id: str, actor_id: str) -> BulkResult:
        """Return every issue of a deleted sprint to the backlog."""
        self._require_actor(actor_id)
        result = BulkResult()
        for issue in self.store.list_issues(project_id):
            if issue.sprint_id != sprint_id:
                continue
            try:
                now = self.clock()
                updated = self.hierarchy.move_to_backlog(issue, now)
                entry = self._field_entry(issue, actor_id, "sprint_id", sprint_id, None, now)
                self._commit_issue(updated, [entry])
                result.succeeded.append(issue.id)
            except TrackerError as e:
                logger.warning(f"[SPRINT] detach {issue.key} from removed sprint failed: {e}")
                result.failed.append(BulkFailure(issue.id, str(e), e))
        return result

    # History

    def history(self, resource_id: str) -> list[AuditEntry]:
        return self.recorder.history(resource_id)

    def timeline(self, resource_id: str, tz=None) -> list[TimelineDay]:
        """Reconstructed activity feed for a resource, newest day first."""
        return reconstruct(self.history(resource_id), tz or self.config.timezone)

