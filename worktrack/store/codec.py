"""
JSON codec for stored records.

Enums are stored by value, datetimes and dates as ISO strings.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from worktrack.workflow.models import (
    ApprovalStatus,
    AuditEntry,
    EpicResolution,
    Issue,
    IssueKind,
    IssueLink,
    IssueStatus,
    LinkType,
    Priority,
    Project,
    Sprint,
)


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _d(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_d(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def jsonable(value: Any) -> Any:
    """Convert a field value into something json.dumps accepts."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def project_to_dict(project: Project) -> dict:
    return {"id": project.id, "key": project.key, "name": project.name}


def project_from_dict(data: dict) -> Project:
    return Project(id=data["id"], key=data["key"], name=data.get("name", ""))


def issue_to_dict(issue: Issue) -> dict:
    return {
        "id": issue.id,
        "key": issue.key,
        "project_id": issue.project_id,
        "kind": issue.kind.value,
        "title": issue.title,
        "reporter_id": issue.reporter_id,
        "created_at": _dt(issue.created_at),
        "updated_at": _dt(issue.updated_at),
        "status": issue.status.value,
        "priority": issue.priority.value,
        "description": issue.description,
        "assignee_id": issue.assignee_id,
        "parent_id": issue.parent_id,
        "sprint_id": issue.sprint_id,
        "is_client_visible": issue.is_client_visible,
        "approval_state": issue.approval_state.value if issue.approval_state else None,
        "approval_feedback": issue.approval_feedback,
        "story_points": issue.story_points,
        "due_date": _d(issue.due_date),
        "links": [
            {
                "id": link.id,
                "link_type": link.link_type.value,
                "target_issue_id": link.target_issue_id,
                "created_at": _dt(link.created_at),
            }
            for link in issue.links
        ],
        "closed_at": _dt(issue.closed_at),
        "close_resolution": issue.close_resolution.value if issue.close_resolution else None,
        "version": issue.version,
    }


def issue_from_dict(data: dict) -> Issue:
    approval = data.get("approval_state")
    resolution = data.get("close_resolution")
    return Issue(
        id=data["id"],
        key=data["key"],
        project_id=data["project_id"],
        kind=IssueKind(data["kind"]),
        title=data["title"],
        reporter_id=data["reporter_id"],
        created_at=_parse_dt(data["created_at"]),
        updated_at=_parse_dt(data["updated_at"]),
        status=IssueStatus(data.get("status", "TODO")),
        priority=Priority(data.get("priority", "MEDIUM")),
        description=data.get("description", ""),
        assignee_id=data.get("assignee_id"),
        parent_id=data.get("parent_id"),
        sprint_id=data.get("sprint_id"),
        is_client_visible=data.get("is_client_visible", False),
        approval_state=ApprovalStatus(approval) if approval else None,
        approval_feedback=data.get("approval_feedback"),
        story_points=data.get("story_points"),
        due_date=_parse_d(data.get("due_date")),
        links=tuple(
            IssueLink(
                id=link["id"],
                link_type=LinkType(link["link_type"]),
                target_issue_id=link["target_issue_id"],
                created_at=_parse_dt(link["created_at"]),
            )
            for link in data.get("links", [])
        ),
        closed_at=_parse_dt(data.get("closed_at")),
        close_resolution=EpicResolution(resolution) if resolution else None,
        version=data.get("version", 0),
    )


def sprint_to_dict(sprint: Sprint) -> dict:
    return {
        "id": sprint.id,
        "project_id": sprint.project_id,
        "name": sprint.name,
        "created_at": _dt(sprint.created_at),
        "updated_at": _dt(sprint.updated_at),
        "goal": sprint.goal,
        "start_date": _d(sprint.start_date),
        "end_date": _d(sprint.end_date),
        "started_at": _dt(sprint.started_at),
        "completed_at": _dt(sprint.completed_at),
        "version": sprint.version,
    }


def sprint_from_dict(data: dict) -> Sprint:
    return Sprint(
        id=data["id"],
        project_id=data["project_id"],
        name=data["name"],
        created_at=_parse_dt(data["created_at"]),
        updated_at=_parse_dt(data["updated_at"]),
        goal=data.get("goal", ""),
        start_date=_parse_d(data.get("start_date")),
        end_date=_parse_d(data.get("end_date")),
        started_at=_parse_dt(data.get("started_at")),
        completed_at=_parse_dt(data.get("completed_at")),
        version=data.get("version", 0),
    )


def entry_to_dict(entry: AuditEntry) -> dict:
    return {
        "id": entry.id,
        "actor_id": entry.actor_id,
        "resource_type": entry.resource_type,
        "resource_id": entry.resource_id,
        "action": entry.action,
        "payload": entry.payload,
        "created_at": _dt(entry.created_at),
        "sequence": entry.sequence,
    }


def entry_from_dict(data: dict) -> AuditEntry:
    return AuditEntry(
        id=data["id"],
        actor_id=data["actor_id"],
        resource_type=data["resource_type"],
        resource_id=data["resource_id"],
        action=data["action"],
        payload=data.get("payload") or {},
        created_at=_parse_dt(data.get("created_at")),
        sequence=data.get("sequence", 0),
    )
