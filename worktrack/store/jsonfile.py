"""
JSON file store.

Layout under the store directory:
  projects/<id>.json      project record plus last issued number
  issues/<id>.json        one file per issue
  sprints/<id>.json       one file per sprint
  audit.jsonl             append-only ledger, one entry per line
  audit.seq               last assigned audit sequence number
  locks/                  flock files

A commit appends its audit lines in one write before any record file is
replaced, so a failed append leaves every record untouched. If a record
write fails after the append, the ledger is truncated back and the
records already replaced are restored.
"""

import dataclasses
import json
import logging
import os
import tempfile
from pathlib import Path

from worktrack.lib.errors import ConflictError, NotFoundError, StorageError, ValidationError
from worktrack.lib.locking import counter_lock, store_lock
from worktrack.store import codec
from worktrack.store.ports import Changeset
from worktrack.workflow.models import AuditEntry, Issue, Project, Sprint

logger = logging.getLogger(__name__)


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class JsonFileStore:
    def __init__(self, root: Path, lock_timeout: float = 30):
        self.root = Path(root)
        self.lock_timeout = lock_timeout

    # Paths

    def _project_path(self, project_id: str) -> Path:
        return self.root / "projects" / f"{project_id}.json"

    def _issue_path(self, issue_id: str) -> Path:
        return self.root / "issues" / f"{issue_id}.json"

    def _sprint_path(self, sprint_id: str) -> Path:
        return self.root / "sprints" / f"{sprint_id}.json"

    @property
    def _audit_path(self) -> Path:
        return self.root / "audit.jsonl"

    @property
    def _sequence_path(self) -> Path:
        return self.root / "audit.seq"

    def _read_json(self, path: Path, resource_type: str, resource_id: str) -> dict:
        if not path.exists():
            raise NotFoundError(resource_type, resource_id)
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt {resource_type} file {path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Cannot read {path}: {e}") from e

    # Projects

    def save_project(self, project: Project) -> None:
        with store_lock(self.root, self.lock_timeout):
            path = self._project_path(project.id)
            last_number = 0
            if path.exists():
                data = self._read_json(path, "project", project.id)
                if data["key"] != project.key:
                    raise ValidationError("project_key", f"project {project.id} already uses key {data['key']}")
                last_number = data.get("last_number", 0)
            projects_dir = self.root / "projects"
            if projects_dir.exists():
                for other in projects_dir.glob("*.json"):
                    other_data = json.loads(other.read_text())
                    if other_data["id"] != project.id and other_data["key"] == project.key:
                        raise ValidationError("project_key", f"key {project.key} is taken by {other_data['id']}")
            data = codec.project_to_dict(project)
            data["last_number"] = last_number
            self._write(path, data)

    def load_project(self, project_id: str) -> Project:
        return codec.project_from_dict(self._read_json(self._project_path(project_id), "project", project_id))

    def next_issue_number(self, project_id: str) -> int:
        with counter_lock(self.root, project_id, self.lock_timeout):
            path = self._project_path(project_id)
            data = self._read_json(path, "project", project_id)
            data["last_number"] = data.get("last_number", 0) + 1
            self._write(path, data)
            return data["last_number"]

    # Issues and sprints

    def load_issue(self, issue_id: str) -> Issue:
        return codec.issue_from_dict(self._read_json(self._issue_path(issue_id), "issue", issue_id))

    def list_issues(self, project_id: str) -> list[Issue]:
        issues_dir = self.root / "issues"
        if not issues_dir.exists():
            return []
        issues = []
        for path in issues_dir.glob("*.json"):
            issue = self.load_issue(path.stem)
            if issue.project_id == project_id:
                issues.append(issue)
        return sorted(issues, key=lambda i: (i.created_at, i.key))

    def load_sprint(self, sprint_id: str) -> Sprint:
        return codec.sprint_from_dict(self._read_json(self._sprint_path(sprint_id), "sprint", sprint_id))

    def list_sprints(self, project_id: str) -> list[Sprint]:
        sprints_dir = self.root / "sprints"
        if not sprints_dir.exists():
            return []
        sprints = [self.load_sprint(p.stem) for p in sprints_dir.glob("*.json")]
        return sorted((s for s in sprints if s.project_id == project_id), key=lambda s: (s.created_at, s.id))

    def remove_issue(self, issue_id: str) -> None:
        with store_lock(self.root, self.lock_timeout):
            self._issue_path(issue_id).unlink(missing_ok=True)

    def remove_sprint(self, sprint_id: str) -> None:
        with store_lock(self.root, self.lock_timeout):
            self._sprint_path(sprint_id).unlink(missing_ok=True)

    # Commit

    def _write(self, path: Path, data: dict) -> None:
        try:
            _atomic_write(path, json.dumps(data, indent=2))
        except OSError as e:
            raise StorageError(f"Cannot write {path}: {e}") from e

    def _stored_version(self, path: Path) -> int:
        if not path.exists():
            return 0
        return json.loads(path.read_text()).get("version", 0)

    def _append_entries(self, entries: list[AuditEntry]) -> list[AuditEntry]:
        if not entries:
            return []
        sequence = 0
        if self._sequence_path.exists():
            sequence = int(self._sequence_path.read_text().strip() or 0)

        appended = []
        for entry in entries:
            sequence += 1
            appended.append(dataclasses.replace(entry, sequence=sequence))
        lines = "".join(json.dumps(codec.entry_to_dict(e)) + "\n" for e in appended)

        try:
            with open(self._audit_path, "a") as f:
                f.write(lines)
                f.flush()
                os.fsync(f.fileno())
            _atomic_write(self._sequence_path, f"{sequence}\n")
        except OSError as e:
            raise StorageError(f"Cannot append to audit ledger {self._audit_path}: {e}") from e
        return appended

    def _snapshot(self, paths: list[Path]) -> tuple[int, str | None, dict]:
        """Capture what a failed commit must restore: ledger size, sequence, prior record files."""
        try:
            offset = self._audit_path.stat().st_size if self._audit_path.exists() else 0
            sequence = self._sequence_path.read_text() if self._sequence_path.exists() else None
            originals = {path: path.read_text() if path.exists() else None for path in paths}
        except OSError as e:
            raise StorageError(f"Cannot read records before commit in {self.root}: {e}") from e
        return offset, sequence, originals

    def _rollback(self, offset: int, sequence: str | None, originals: dict) -> None:
        """Truncate the ledger back to offset and restore the records it described."""
        try:
            if self._audit_path.exists():
                with open(self._audit_path, "r+") as f:
                    f.truncate(offset)
                    f.flush()
                    os.fsync(f.fileno())
            if sequence is None:
                self._sequence_path.unlink(missing_ok=True)
            else:
                _atomic_write(self._sequence_path, sequence)
            for path, text in originals.items():
                if text is None:
                    path.unlink(missing_ok=True)
                else:
                    _atomic_write(path, text)
        except OSError as e:
            logger.error(f"[STORE] {self.root}: rollback failed, ledger may hold entries past byte {offset}: {e}")

    def commit(self, changes: Changeset) -> Changeset:
        self.root.mkdir(parents=True, exist_ok=True)
        with store_lock(self.root, self.lock_timeout):
            for issue in changes.issues:
                actual = self._stored_version(self._issue_path(issue.id))
                if actual != issue.version:
                    raise ConflictError("issue", issue.id, issue.version, actual)
            for sprint in changes.sprints:
                actual = self._stored_version(self._sprint_path(sprint.id))
                if actual != sprint.version:
                    raise ConflictError("sprint", sprint.id, sprint.version, actual)

            issues = [dataclasses.replace(i, version=i.version + 1) for i in changes.issues]
            sprints = [dataclasses.replace(s, version=s.version + 1) for s in changes.sprints]
            writes = [(self._issue_path(i.id), codec.issue_to_dict(i)) for i in issues]
            writes += [(self._sprint_path(s.id), codec.sprint_to_dict(s)) for s in sprints]

            offset, sequence, originals = self._snapshot([path for path, _ in writes])
            try:
                entries = self._append_entries(changes.entries)
                for path, data in writes:
                    self._write(path, data)
            except StorageError:
                self._rollback(offset, sequence, originals)
                raise

        logger.debug(f"[STORE] {self.root}: committed {len(issues)} issue(s), {len(sprints)} sprint(s), {len(entries)} entr(ies)")
        return Changeset(issues=issues, sprints=sprints, entries=entries)

    # Audit

    def append_audit(self, entry: AuditEntry) -> AuditEntry:
        return self.commit(Changeset(entries=[entry])).entries[0]

    def query_audit(self, resource_id: str) -> list[AuditEntry]:
        return [e for e in self.all_audit() if e.resource_id == resource_id]

    def all_audit(self) -> list[AuditEntry]:
        if not self._audit_path.exists():
            return []
        entries = []
        for line_num, line in enumerate(self._audit_path.read_text().splitlines(), 1):
            if not line.strip():
                continue
            try:
                entries.append(codec.entry_from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError) as e:
                raise StorageError(f"Corrupt audit line {line_num} in {self._audit_path}: {e}") from e
        return entries
