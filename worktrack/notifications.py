"""
Notification collaborators.

Notifications are a best-effort side channel: a failure to deliver is
logged and never fails the mutation that triggered it.

DesktopNotifier uses notify-send (freedesktop compliant), which works with
mako, dunst, GNOME and KDE notification daemons.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)


VALID_URGENCIES = ("low", "normal", "critical")
MAX_NOTIFICATION_LENGTH = 200

# freedesktop notification category per event kind
KIND_CATEGORIES = {
    "client_approval": "worktrack.approval",
}
DEFAULT_CATEGORY = "worktrack"


@dataclass(frozen=True)
class NotificationEvent:
    """What happened, addressed to one or more users."""
    kind: str                  # "client_approval", ...
    issue_id: str
    issue_key: str
    title: str
    message: str
    actor_id: str
    urgency: str = "normal"
    details: dict = field(default_factory=dict)


class Notifier(Protocol):
    def notify(self, user_id: str, event: NotificationEvent) -> None:
        ...


class LogNotifier:
    """Writes notifications to the log. Default when no transport is configured."""

    def notify(self, user_id: str, event: NotificationEvent) -> None:
        logger.info(f"[NOTIFY] {user_id}: {event.title}: {event.message}")


class NullNotifier:
    def notify(self, user_id: str, event: NotificationEvent) -> None:
        pass


class DesktopNotifier:
    """Desktop notifications via notify-send.

    user_id is ignored: the desktop session belongs to whoever runs worktrack.
    """

    def __init__(self, app_name: str = "worktrack", timeout: float = 5):
        self.app_name = app_name
        self.timeout = timeout

    def command(self, event: NotificationEvent) -> list[str]:
        """notify-send argv for event. Urgency falls back to normal, long bodies are cut."""
        urgency = event.urgency
        if urgency not in VALID_URGENCIES:
            logger.warning(f"[NOTIFY] {event.issue_key}: invalid urgency '{urgency}', using 'normal'")
            urgency = "normal"
        body = event.message
        if len(body) > MAX_NOTIFICATION_LENGTH:
            body = body[:MAX_NOTIFICATION_LENGTH] + "..."
        return [
            "notify-send",
            "--urgency", urgency,
            "--app-name", self.app_name,
            "--category", KIND_CATEGORIES.get(event.kind, DEFAULT_CATEGORY),
            event.title,
            body,
        ]

    def notify(self, user_id: str, event: NotificationEvent) -> None:
        if not shutil.which("notify-send"):
            logger.debug(f"[NOTIFY] notify-send not found, skipping {event.kind} for {event.issue_key}")
            return
        try:
            result = subprocess.run(self.command(event), capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"[NOTIFY] {event.issue_key}: notify-send timed out")
            return
        except OSError as e:
            logger.warning(f"[NOTIFY] {event.issue_key}: cannot run notify-send: {e}")
            return
        if result.returncode != 0:
            logger.warning(f"[NOTIFY] {event.issue_key}: notify-send exited {result.returncode}: {result.stderr}")


def notify_users(notifier: Notifier, user_ids: Iterable[str | None], event: NotificationEvent) -> list[str]:
    """Deliver event to each distinct user, swallowing delivery failures.

    Returns the user ids that were notified successfully.
    """
    delivered = []
    seen = set()
    for user_id in user_ids:
        if not user_id or user_id in seen:
            continue
        seen.add(user_id)
        try:
            notifier.notify(user_id, event)
            delivered.append(user_id)
        except Exception as e:
            logger.warning(f"[NOTIFY] delivery to {user_id} failed for {event.issue_key}: {e}")
    return delivered


def approval_event(issue_id: str, issue_key: str, status: str, feedback: str | None, actor_id: str) -> NotificationEvent:
    """Build the event sent to assignee and reporter after a client decision."""
    label = status.replace("_", " ").lower()
    message = f"Client {label}"
    if feedback:
        message += f": {feedback}"
    return NotificationEvent(
        kind="client_approval",
        issue_id=issue_id,
        issue_key=issue_key,
        title=f"worktrack: {issue_key}",
        message=message,
        actor_id=actor_id,
        urgency="normal" if status == "APPROVED" else "critical",
        details={"status": status, "feedback": feedback},
    )
