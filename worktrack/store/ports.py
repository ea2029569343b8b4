"""Persistence interface consumed by the workflow core."""

from dataclasses import dataclass, field
from typing import Protocol

from worktrack.workflow.models import AuditEntry, Issue, Project, Sprint


@dataclass
class Changeset:
    """Records that must be stored together or not at all.

    Each issue and sprint carries the version the caller loaded; the store
    rejects the whole changeset with ConflictError if any stored version has
    moved on. Version 0 means "new record".
    """
    issues: list[Issue] = field(default_factory=list)
    sprints: list[Sprint] = field(default_factory=list)
    entries: list[AuditEntry] = field(default_factory=list)


class TrackerStore(Protocol):
    """Contract between the workflow core and its storage collaborator."""

    def save_project(self, project: Project) -> None:
        """Register a project. Re-registering the same id with a new key is a ValidationError."""
        ...

    def load_project(self, project_id: str) -> Project:
        """Raises NotFoundError."""
        ...

    def next_issue_number(self, project_id: str) -> int:
        """Reserve the next issue number. Numbers are never handed out twice."""
        ...

    def load_issue(self, issue_id: str) -> Issue:
        """Raises NotFoundError."""
        ...

    def list_issues(self, project_id: str) -> list[Issue]:
        """All issues of a project, ordered by creation."""
        ...

    def load_sprint(self, sprint_id: str) -> Sprint:
        """Raises NotFoundError."""
        ...

    def list_sprints(self, project_id: str) -> list[Sprint]:
        ...

    def commit(self, changes: Changeset) -> Changeset:
        """Atomically save records and append audit entries.

        Returns the changeset as stored (versions bumped, sequences set).

        Raises:
            ConflictError: If a record changed since it was loaded.
            StorageError: If the store cannot write. Nothing is applied.
        """
        ...

    def append_audit(self, entry: AuditEntry) -> AuditEntry:
        """Append one entry. Raises StorageError."""
        ...

    def query_audit(self, resource_id: str) -> list[AuditEntry]:
        """Entries for a resource in append order."""
        ...
