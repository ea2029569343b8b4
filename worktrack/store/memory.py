"""
In-memory store.

Keeps everything in dicts guarded by a single lock. Used by tests and as
the reference implementation of the TrackerStore contract.
"""

import copy
import dataclasses
import logging
import threading

from worktrack.lib.errors import ConflictError, NotFoundError, StorageError, ValidationError
from worktrack.store.ports import Changeset
from worktrack.workflow.models import AuditEntry, Issue, Project, Sprint

logger = logging.getLogger(__name__)


class InMemoryStore:
    def __init__(self):
        self._lock = threading.RLock()
        self._projects: dict[str, Project] = {}
        self._counters: dict[str, int] = {}
        self._issues: dict[str, Issue] = {}
        self._sprints: dict[str, Sprint] = {}
        self._audit: list[AuditEntry] = []
        self._sequence = 0

    # Projects

    def save_project(self, project: Project) -> None:
        with self._lock:
            existing = self._projects.get(project.id)
            if existing is not None and existing.key != project.key:
                raise ValidationError("project_key", f"project {project.id} already uses key {existing.key}")
            for other in self._projects.values():
                if other.id != project.id and other.key == project.key:
                    raise ValidationError("project_key", f"key {project.key} is taken by {other.id}")
            self._projects[project.id] = project
            self._counters.setdefault(project.id, 0)

    def load_project(self, project_id: str) -> Project:
        with self._lock:
            try:
                return self._projects[project_id]
            except KeyError:
                raise NotFoundError("project", project_id) from None

    def next_issue_number(self, project_id: str) -> int:
        with self._lock:
            self.load_project(project_id)
            self._counters[project_id] += 1
            return self._counters[project_id]

    # Issues and sprints

    def load_issue(self, issue_id: str) -> Issue:
        with self._lock:
            try:
                return copy.deepcopy(self._issues[issue_id])
            except KeyError:
                raise NotFoundError("issue", issue_id) from None

    def list_issues(self, project_id: str) -> list[Issue]:
        with self._lock:
            issues = [copy.deepcopy(i) for i in self._issues.values() if i.project_id == project_id]
        return sorted(issues, key=lambda i: (i.created_at, i.key))

    def load_sprint(self, sprint_id: str) -> Sprint:
        with self._lock:
            try:
                return copy.deepcopy(self._sprints[sprint_id])
            except KeyError:
                raise NotFoundError("sprint", sprint_id) from None

    def list_sprints(self, project_id: str) -> list[Sprint]:
        with self._lock:
            sprints = [copy.deepcopy(s) for s in self._sprints.values() if s.project_id == project_id]
        return sorted(sprints, key=lambda s: (s.created_at, s.id))

    def remove_issue(self, issue_id: str) -> None:
        """Physically drop an issue. Audit history is kept."""
        with self._lock:
            self._issues.pop(issue_id, None)

    def remove_sprint(self, sprint_id: str) -> None:
        with self._lock:
            self._sprints.pop(sprint_id, None)

    # Commit

    def _check_version(self, table: dict, resource_type: str, record) -> None:
        stored = table.get(record.id)
        actual = stored.version if stored is not None else 0
        if actual != record.version:
            raise ConflictError(resource_type, record.id, record.version, actual)

    def _append_entries(self, entries: list[AuditEntry]) -> list[AuditEntry]:
        appended = []
        for entry in entries:
            self._sequence += 1
            appended.append(dataclasses.replace(entry, sequence=self._sequence))
        self._audit.extend(appended)
        return appended

    def commit(self, changes: Changeset) -> Changeset:
        with self._lock:
            for issue in changes.issues:
                self._check_version(self._issues, "issue", issue)
            for sprint in changes.sprints:
                self._check_version(self._sprints, "sprint", sprint)

            # Ledger first: if the append fails, no record changes
            sequence_before = self._sequence
            try:
                entries = self._append_entries(changes.entries)
            except StorageError:
                self._sequence = sequence_before
                raise

            issues = [dataclasses.replace(i, version=i.version + 1) for i in changes.issues]
            sprints = [dataclasses.replace(s, version=s.version + 1) for s in changes.sprints]
            for issue in issues:
                self._issues[issue.id] = copy.deepcopy(issue)
            for sprint in sprints:
                self._sprints[sprint.id] = copy.deepcopy(sprint)

        logger.debug(f"[STORE] committed {len(issues)} issue(s), {len(sprints)} sprint(s), {len(entries)} entr(ies)")
        return Changeset(issues=issues, sprints=sprints, entries=entries)

    # Audit

    def append_audit(self, entry: AuditEntry) -> AuditEntry:
        return self.commit(Changeset(entries=[entry])).entries[0]

    def query_audit(self, resource_id: str) -> list[AuditEntry]:
        with self._lock:
            return [e for e in self._audit if e.resource_id == resource_id]

    def all_audit(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._audit)
