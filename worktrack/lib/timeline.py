"""
Activity reconstruction from audit entries.

Turns a raw list of audit entries into a display-ready feed:
- grouped by calendar day in a caller-supplied timezone, newest day first
- entries within a day oldest first
- each entry rendered through a per-tag formatter

Pure and deterministic: the same entries always give the same feed, in
whatever order they are passed in. Unknown tags and malformed payloads
never raise; they render a generic line instead.

Designed for reuse in: wt log, history views
"""

from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Callable, Iterable, Optional

import pytz

from worktrack.lib.errors import ValidationError
from worktrack.workflow.models import AuditEntry


class ActionTag(Enum):
    STATUS_CHANGE = "status_change"
    PRIORITY_CHANGE = "priority_change"
    CLIENT_APPROVAL = "client_approval"
    ADD_COMMENT = "add_comment"
    ADD_LINK = "add_link"
    REMOVE_LINK = "remove_link"
    CREATE_SUBTASK = "create_subtask"
    UPDATE_FIELD = "update_field"
    CREATE_ISSUE = "create_issue"
    CLOSE_EPIC = "close_epic"
    CREATE_SPRINT = "create_sprint"
    SPRINT_START = "sprint_start"
    SPRINT_COMPLETE = "sprint_complete"

    @classmethod
    def lookup(cls, action: str) -> Optional["ActionTag"]:
        try:
            return cls(action)
        except ValueError:
            return None


@dataclass(frozen=True)
class TimelineItem:
    """A single rendered entry in a resource's feed."""
    entry_id: str
    actor_id: str
    action: str
    timestamp: datetime                        # In the feed's timezone
    summary: str
    details: dict


@dataclass(frozen=True)
class TimelineDay:
    day: date
    items: tuple[TimelineItem, ...]


# ANSI color codes
COLORS = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "bold": "\033[1m",
    "green": "\033[32m",
    "red": "\033[31m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "cyan": "\033[36m",
}

ACTION_COLORS = {
    "create_issue": "cyan",
    "create_sprint": "cyan",
    "status_change": "blue",
    "priority_change": "yellow",
    "client_approval": "green",
    "close_epic": "dim",
    "sprint_start": "blue",
    "sprint_complete": "green",
}

ACTION_SYMBOLS = {
    "create_issue": "+",
    "create_subtask": "+",
    "create_sprint": "+",
    "status_change": ">",
    "priority_change": "!",
    "client_approval": "A",
    "add_comment": "#",
    "add_link": "&",
    "remove_link": "&",
    "update_field": "~",
    "close_epic": "-",
    "sprint_start": "S",
    "sprint_complete": "*",
}


def _text(value, default: str = "") -> str:
    if value is None or value == "":
        return default
    return str(value)


def _state(value) -> str:
    return _text(value, "Unknown").replace("_", " ")


def _short_id(value) -> str:
    text = _text(value, "?")
    return f"{text[:8]}..." if len(text) > 8 else text


def _status_change(data: dict) -> str:
    return f"changed status {_state(data.get('old'))} -> {_state(data.get('new'))}"


def _priority_change(data: dict) -> str:
    return f"changed priority {_text(data.get('old'), 'Unknown')} -> {_text(data.get('new'), 'Unknown')}"


def _client_approval(data: dict) -> str:
    line = f"client approval update: {_text(data.get('status'), 'Unknown')}"
    if data.get("feedback"):
        line += f' "{data["feedback"]}"'
    return line


def _add_comment(data: dict) -> str:
    return f'commented: "{_text(data.get("content"), "...")}"'


def _add_link(data: dict) -> str:
    target = data.get("target_key") or _short_id(data.get("target_issue_id"))
    return f"linked issue {_text(data.get('type'), 'relates_to')} {target}"


def _remove_link(data: dict) -> str:
    return f"removed link {_short_id(data.get('link_id'))}"


def _create_subtask(data: dict) -> str:
    return f"created subtask {_text(data.get('subtask_key'), 'new task')}"


def _update_field(data: dict) -> str:
    return f"updated {_text(data.get('field'), 'a field')}"


def _create_issue(data: dict) -> str:
    kind = _text(data.get("kind"), "issue").lower()
    return f"created {kind} {_text(data.get('key'))}".rstrip()


def _close_epic(data: dict) -> str:
    resolution = _text(data.get("resolution"), "Unknown")
    affected = data.get("affected")
    if isinstance(affected, int) and not isinstance(affected, bool):
        return f"closed epic ({resolution}, {affected} open child issue(s))"
    return f"closed epic ({resolution})"


def _create_sprint(data: dict) -> str:
    return f"created sprint {_text(data.get('name'))}".rstrip()


def _sprint_start(data: dict) -> str:
    return f"started sprint {_text(data.get('name'))}".rstrip()


def _sprint_complete(data: dict) -> str:
    line = f"completed sprint {_text(data.get('name'))}".rstrip()
    moved = data.get("open_issues")
    if isinstance(moved, int) and not isinstance(moved, bool) and moved:
        where = "next sprint" if data.get("carry_over_to") else "backlog"
        line += f", {moved} open issue(s) moved to {where}"
    return line


FORMATTERS: dict[ActionTag, Callable[[dict], str]] = {
    ActionTag.STATUS_CHANGE: _status_change,
    ActionTag.PRIORITY_CHANGE: _priority_change,
    ActionTag.CLIENT_APPROVAL: _client_approval,
    ActionTag.ADD_COMMENT: _add_comment,
    ActionTag.ADD_LINK: _add_link,
    ActionTag.REMOVE_LINK: _remove_link,
    ActionTag.CREATE_SUBTASK: _create_subtask,
    ActionTag.UPDATE_FIELD: _update_field,
    ActionTag.CREATE_ISSUE: _create_issue,
    ActionTag.CLOSE_EPIC: _close_epic,
    ActionTag.CREATE_SPRINT: _create_sprint,
    ActionTag.SPRINT_START: _sprint_start,
    ActionTag.SPRINT_COMPLETE: _sprint_complete,
}


def fallback_summary(action: str) -> str:
    return f"performed action: {action}"


def format_entry(action: str, payload) -> str:
    """Render one entry. Never raises."""
    tag = ActionTag.lookup(action)
    if tag is None or not isinstance(payload, dict):
        return fallback_summary(action)
    return FORMATTERS[tag](payload)


def _resolve_tz(tz) -> tzinfo:
    if isinstance(tz, tzinfo):
        return tz
    try:
        return pytz.timezone(tz or "UTC")
    except pytz.UnknownTimeZoneError:
        raise ValidationError("timezone", f"unknown timezone {tz!r}") from None


def _localize(ts: datetime, tz: tzinfo) -> datetime:
    # Naive timestamps are UTC
    if ts.tzinfo is None:
        ts = pytz.UTC.localize(ts)
    return ts.astimezone(tz)


def reconstruct(entries: Iterable[AuditEntry], tz="UTC") -> list[TimelineDay]:
    """
    Group entries into days for display.

    Args:
        entries: Audit entries in any order
        tz: Timezone name or tzinfo used to pick each entry's calendar day

    Returns:
        List of TimelineDays, newest day first, items oldest first

    Raises:
        ValidationError: If tz is not a known timezone name
    """
    zone = _resolve_tz(tz)
    items = []
    for entry in entries:
        if entry.created_at is None:
            continue
        ts = _localize(entry.created_at, zone)
        payload = entry.payload if isinstance(entry.payload, dict) else {}
        items.append((
            (ts, entry.sequence, entry.id),
            TimelineItem(
                entry_id=entry.id,
                actor_id=entry.actor_id,
                action=entry.action,
                timestamp=ts,
                summary=format_entry(entry.action, entry.payload),
                details=dict(payload),
            ),
        ))
    items.sort(key=lambda pair: pair[0])

    days: dict[date, list[TimelineItem]] = {}
    for _, item in items:
        days.setdefault(item.timestamp.date(), []).append(item)

    return [TimelineDay(day=day, items=tuple(days[day])) for day in sorted(days, reverse=True)]


def format_entry_oneline(item: TimelineItem, colorize: bool = True) -> str:
    """Format a single item as a one-line string (like git log --oneline)."""
    ts_str = item.timestamp.strftime("%Y-%m-%d %H:%M")
    symbol = ACTION_SYMBOLS.get(item.action, "?")

    if colorize:
        color = COLORS.get(ACTION_COLORS.get(item.action, "reset"), "")
        reset = COLORS["reset"]
        dim = COLORS["dim"]
        return f"{dim}{ts_str}{reset} {color}[{symbol}]{reset} {item.actor_id}: {item.summary}"
    else:
        return f"{ts_str} [{symbol}] {item.actor_id}: {item.summary}"
