"""Tests for notification collaborators."""

import subprocess
from unittest.mock import MagicMock, patch

from worktrack.identity import OpenDirectory, StaticDirectory
from worktrack.notifications import (
    MAX_NOTIFICATION_LENGTH,
    DesktopNotifier,
    LogNotifier,
    NotificationEvent,
    approval_event,
    notify_users,
)


def make_event(**overrides) -> NotificationEvent:
    fields = dict(
        kind="client_approval",
        issue_id="i1",
        issue_key="MAR-1",
        title="worktrack: MAR-1",
        message="Client approved",
        actor_id="client",
    )
    fields.update(overrides)
    return NotificationEvent(**fields)


class TestNotifyUsers:
    """Tests for notify_users."""

    def test_dedupes_and_skips_none(self):
        notifier = MagicMock()
        delivered = notify_users(notifier, ["bob", None, "alice", "bob"], make_event())
        assert delivered == ["bob", "alice"]
        assert notifier.notify.call_count == 2

    def test_failure_is_swallowed(self):
        notifier = MagicMock()
        notifier.notify.side_effect = [RuntimeError("boom"), None]
        delivered = notify_users(notifier, ["bob", "alice"], make_event())
        assert delivered == ["alice"]

    def test_log_notifier(self, caplog):
        with caplog.at_level("INFO", logger="worktrack.notifications"):
            LogNotifier().notify("bob", make_event())
        assert "[NOTIFY] bob" in caplog.text


class TestApprovalEvent:
    def test_rejection_is_critical(self):
        event = approval_event("i1", "MAR-1", "REJECTED", "Wrong font", "client")
        assert event.urgency == "critical"
        assert event.message == "Client rejected: Wrong font"
        assert event.details == {"status": "REJECTED", "feedback": "Wrong font"}

    def test_approval_is_normal(self):
        event = approval_event("i1", "MAR-1", "APPROVED", None, "client")
        assert event.urgency == "normal"
        assert event.message == "Client approved"


class TestDesktopNotifier:
    """Tests for DesktopNotifier (notify-send)."""

    @patch("worktrack.notifications.shutil.which", return_value=None)
    @patch("worktrack.notifications.subprocess.run")
    def test_skips_without_notify_send(self, mock_run, mock_which):
        DesktopNotifier().notify("bob", make_event())
        mock_run.assert_not_called()

    @patch("worktrack.notifications.shutil.which", return_value="/usr/bin/notify-send")
    @patch("worktrack.notifications.subprocess.run")
    def test_calls_notify_send(self, mock_run, mock_which):
        mock_run.return_value = MagicMock(returncode=0)
        DesktopNotifier().notify("bob", make_event(urgency="critical"))
        args = mock_run.call_args[0][0]
        assert args[0] == "notify-send"
        assert "--urgency" in args and "critical" in args
        assert args[-1] == "Client approved"

    @patch("worktrack.notifications.shutil.which", return_value="/usr/bin/notify-send")
    @patch("worktrack.notifications.subprocess.run")
    def test_truncates_long_messages(self, mock_run, mock_which):
        mock_run.return_value = MagicMock(returncode=0)
        DesktopNotifier().notify("bob", make_event(message="x" * 500))
        message = mock_run.call_args[0][0][-1]
        assert len(message) == MAX_NOTIFICATION_LENGTH + 3

    @patch("worktrack.notifications.shutil.which", return_value="/usr/bin/notify-send")
    @patch("worktrack.notifications.subprocess.run")
    def test_invalid_urgency_falls_back(self, mock_run, mock_which):
        mock_run.return_value = MagicMock(returncode=0)
        DesktopNotifier().notify("bob", make_event(urgency="extreme"))
        args = mock_run.call_args[0][0]
        assert args[args.index("--urgency") + 1] == "normal"

    def test_category_follows_event_kind(self):
        args = DesktopNotifier().command(make_event())
        assert args[args.index("--category") + 1] == "worktrack.approval"
        args = DesktopNotifier(app_name="board").command(make_event(kind="sprint_complete"))
        assert args[args.index("--category") + 1] == "worktrack"
        assert args[args.index("--app-name") + 1] == "board"

    @patch("worktrack.notifications.shutil.which", return_value="/usr/bin/notify-send")
    @patch("worktrack.notifications.subprocess.run", side_effect=subprocess.TimeoutExpired("notify-send", 5))
    def test_timeout_does_not_raise(self, mock_run, mock_which):
        DesktopNotifier().notify("bob", make_event())


class TestDirectories:
    def test_open_directory(self):
        assert OpenDirectory().exists("anyone")
        assert not OpenDirectory().exists("")

    def test_static_directory(self):
        directory = StaticDirectory(["alice"])
        assert directory.exists("alice")
        assert not directory.exists("bob")
        directory.add("bob")
        assert directory.exists("bob")
