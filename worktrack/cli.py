#!/usr/bin/env python3
"""wt CLI entrypoint.

Operates on the JSON file store configured in worktrack.yaml. Issues are
addressed by key (MAR-12) within the project given with --project.
"""

import argparse
import getpass
import logging
import os
import sys
from datetime import date
from pathlib import Path
from typing import Optional

from worktrack.lib.config import TrackerConfig, load_config
from worktrack.lib.errors import ConfigError, NotFoundError, TrackerError, ValidationError
from worktrack.lib.timeline import COLORS, format_entry_oneline
from worktrack.notifications import DesktopNotifier, LogNotifier
from worktrack.store import JsonFileStore
from worktrack.workflow.models import Issue
from worktrack.workflow.tracker import Tracker

ACTOR_ENV_VAR = "WT_ACTOR"


def get_actor(args) -> str:
    """Actor from --actor, $WT_ACTOR, or the login name."""
    return args.actor or os.environ.get(ACTOR_ENV_VAR) or getpass.getuser()


def build_tracker(config: TrackerConfig) -> Tracker:
    store = JsonFileStore(config.store_path, lock_timeout=config.lock_timeout)
    notifier = DesktopNotifier() if config.notifications.desktop else LogNotifier()
    return Tracker(store, config=config, notifier=notifier)


def require_project(args) -> str:
    if not args.project:
        raise ValidationError("project", "no project specified. Use --project <id>")
    return args.project


def resolve_issue(tracker: Tracker, args, ref: str) -> Issue:
    """Find an issue by key within --project, falling back to its id."""
    project_id = require_project(args)
    for issue in tracker.store.list_issues(project_id):
        if issue.key == ref or issue.id == ref:
            return issue
    raise NotFoundError("issue", ref)


def _parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError("date", f"invalid date {value!r}, use YYYY-MM-DD") from None


def _print_issue(issue: Issue) -> None:
    print(f"{issue.key}  {issue.title}")
    print(f"  Kind:      {issue.kind.value}")
    print(f"  Status:    {issue.status.value}")
    print(f"  Priority:  {issue.priority.value}")
    print(f"  Reporter:  {issue.reporter_id}")
    if issue.assignee_id:
        print(f"  Assignee:  {issue.assignee_id}")
    if issue.parent_id:
        print(f"  Epic:      {issue.parent_id}")
    print(f"  Sprint:    {issue.sprint_id or 'backlog'}")
    if issue.story_points is not None:
        print(f"  Points:    {issue.story_points:g}")
    if issue.is_client_visible:
        print(f"  Approval:  {issue.client_approval_status.value}")
        if issue.approval_feedback:
            print(f"  Feedback:  {issue.approval_feedback}")
    if issue.is_closed_epic:
        print(f"  Closed:    {issue.closed_at:%Y-%m-%d %H:%M} ({issue.close_resolution.value})")
    for link in issue.links:
        print(f"  Link:      {link.link_type.value} {link.target_issue_id} [{link.id}]")
    if issue.description:
        print()
        print(issue.description)


# Commands

def cmd_project_add(args, tracker: Tracker) -> int:
    project = tracker.register_project(args.id, args.key, actor_id=get_actor(args), name=args.name or "")
    print(f"Registered project {project.key} ({project.id})")
    return 0


def cmd_issue_create(args, tracker: Tracker) -> int:
    project_id = require_project(args)
    parent_id = resolve_issue(tracker, args, args.parent).id if args.parent else None
    issue = tracker.create_issue(
        project_id,
        args.kind.upper(),
        args.title,
        reporter_id=get_actor(args),
        priority=args.priority.upper(),
        description=args.description or "",
        assignee_id=args.assignee,
        parent_id=parent_id,
        sprint_id=args.sprint,
        is_client_visible=args.client_visible,
        story_points=args.points,
        due_date=_parse_date(args.due),
    )
    print(f"Created {issue.key}: {issue.title}")
    return 0


def cmd_issue_show(args, tracker: Tracker) -> int:
    _print_issue(resolve_issue(tracker, args, args.issue))
    return 0


def cmd_move(args, tracker: Tracker) -> int:
    issue = resolve_issue(tracker, args, args.issue)
    before = issue.status
    issue = tracker.transition_status(issue.id, args.status.upper(), actor_id=get_actor(args), reason=args.reason)
    print(f"{issue.key}: {before.value} -> {issue.status.value}")
    return 0


def cmd_approve(args, tracker: Tracker) -> int:
    issue = resolve_issue(tracker, args, args.issue)
    issue = tracker.submit_approval(issue.id, get_actor(args), args.status.upper(), feedback=args.feedback)
    print(f"{issue.key}: client approval {issue.client_approval_status.value}")
    return 0


def cmd_epic_close(args, tracker: Tracker) -> int:
    epic = resolve_issue(tracker, args, args.epic)
    target_id = resolve_issue(tracker, args, args.target).id if args.target else None
    result = tracker.close_epic(
        epic.id,
        args.resolution.upper(),
        actor_id=get_actor(args),
        target_epic_id=target_id,
        notes=args.notes,
    )
    if not result.closed:
        print(f"ERROR: {len(result.failed)} child issue(s) could not be updated; {epic.key} left open")
        for failure in result.failed:
            print(f"  {failure.resource_id}: {failure.reason}")
        print(f"Re-run 'wt epic close {epic.key} {args.resolution}' to retry")
        return 1
    print(f"Closed {epic.key} ({args.resolution.upper()}, {len(result.succeeded)} child issue(s) updated)")
    return 0


def cmd_sprint_create(args, tracker: Tracker) -> int:
    sprint = tracker.create_sprint(
        require_project(args),
        args.name,
        actor_id=get_actor(args),
        goal=args.goal or "",
        start_date=_parse_date(args.start),
        end_date=_parse_date(args.end),
    )
    print(f"Created sprint {sprint.name} ({sprint.id})")
    return 0


def cmd_sprint_start(args, tracker: Tracker) -> int:
    sprint = tracker.start_sprint(args.sprint, actor_id=get_actor(args))
    print(f"Started sprint {sprint.name}")
    return 0


def cmd_sprint_complete(args, tracker: Tracker) -> int:
    result = tracker.complete_sprint(args.sprint, actor_id=get_actor(args), carry_over_to=args.carry_over_to)
    if not result.completed:
        print(f"ERROR: {len(result.failed)} issue(s) could not be moved; sprint left open")
        for failure in result.failed:
            print(f"  {failure.resource_id}: {failure.reason}")
        return 1
    where = "next sprint" if args.carry_over_to else "backlog"
    print(f"Completed sprint {result.sprint.name}, {len(result.succeeded)} open issue(s) moved to {where}")
    return 0


def cmd_log(args, tracker: Tracker) -> int:
    """Show an issue's activity, newest day first."""
    issue = resolve_issue(tracker, args, args.issue)
    days = tracker.timeline(issue.id, tz=args.tz)
    if not days:
        print(f"No activity for {issue.key}")
        return 0

    colorize = not args.no_color and sys.stdout.isatty()
    bold = COLORS["bold"] if colorize else ""
    reset = COLORS["reset"] if colorize else ""
    for day in days:
        print(f"{bold}{day.day:%B %d, %Y}{reset}")
        for item in day.items:
            print(f"  {format_entry_oneline(item, colorize=colorize)}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog='wt', description='Work item tracker')
    parser.add_argument('--project', '-p', help='Project id')
    parser.add_argument('--actor', help=f'Acting user id (default: ${ACTOR_ENV_VAR} or login name)')
    parser.add_argument('--config', type=Path, help='Path to worktrack.yaml')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # wt project
    p_project = subparsers.add_parser('project', help='Manage projects')
    project_sub = p_project.add_subparsers(dest='project_cmd', required=True)

    p_project_add = project_sub.add_parser('add', help='Register a project')
    p_project_add.add_argument('id', help='Project id')
    p_project_add.add_argument('key', help='Issue key prefix (e.g. MAR)')
    p_project_add.add_argument('--name', help='Display name')
    p_project_add.set_defaults(func=cmd_project_add)

    # wt issue
    p_issue = subparsers.add_parser('issue', help='Create and inspect issues')
    issue_sub = p_issue.add_subparsers(dest='issue_cmd', required=True)

    p_issue_create = issue_sub.add_parser('create', help='Create an issue')
    p_issue_create.add_argument('kind', help='EPIC, STORY, TASK, BUG, FEATURE or SUPPORT')
    p_issue_create.add_argument('title', help='Issue title')
    p_issue_create.add_argument('--priority', default='MEDIUM', help='LOW, MEDIUM, HIGH or CRITICAL')
    p_issue_create.add_argument('--description', '-d', help='Description')
    p_issue_create.add_argument('--assignee', help='Assignee user id')
    p_issue_create.add_argument('--parent', help='Epic key')
    p_issue_create.add_argument('--sprint', help='Sprint id')
    p_issue_create.add_argument('--client-visible', action='store_true', help='Show to the client for approval')
    p_issue_create.add_argument('--points', type=float, help='Story points')
    p_issue_create.add_argument('--due', help='Due date (YYYY-MM-DD)')
    p_issue_create.set_defaults(func=cmd_issue_create)

    p_issue_show = issue_sub.add_parser('show', help='Show issue details')
    p_issue_show.add_argument('issue', help='Issue key')
    p_issue_show.set_defaults(func=cmd_issue_show)

    # wt move
    p_move = subparsers.add_parser('move', help='Change issue status')
    p_move.add_argument('issue', help='Issue key')
    p_move.add_argument('status', help='TODO, IN_PROGRESS, IN_REVIEW, DONE or CANCELLED')
    p_move.add_argument('--reason', help='Reason recorded with the change')
    p_move.set_defaults(func=cmd_move)

    # wt approve
    p_approve = subparsers.add_parser('approve', help='Record a client decision')
    p_approve.add_argument('issue', help='Issue key')
    p_approve.add_argument('status', help='APPROVED, REJECTED or CHANGES_REQUESTED')
    p_approve.add_argument('--feedback', '-f', help='Required unless APPROVED')
    p_approve.set_defaults(func=cmd_approve)

    # wt epic
    p_epic = subparsers.add_parser('epic', help='Epic operations')
    epic_sub = p_epic.add_subparsers(dest='epic_cmd', required=True)

    p_epic_close = epic_sub.add_parser('close', help='Close an epic')
    p_epic_close.add_argument('epic', help='Epic key')
    p_epic_close.add_argument('resolution', help='KEEP, MOVE, BACKLOG or CANCEL')
    p_epic_close.add_argument('--target', help='Target epic key (MOVE only)')
    p_epic_close.add_argument('--notes', help='Closing notes')
    p_epic_close.set_defaults(func=cmd_epic_close)

    # wt sprint
    p_sprint = subparsers.add_parser('sprint', help='Sprint operations')
    sprint_sub = p_sprint.add_subparsers(dest='sprint_cmd', required=True)

    p_sprint_create = sprint_sub.add_parser('create', help='Create a sprint')
    p_sprint_create.add_argument('name', help='Sprint name')
    p_sprint_create.add_argument('--goal', help='Sprint goal')
    p_sprint_create.add_argument('--start', help='Start date (YYYY-MM-DD)')
    p_sprint_create.add_argument('--end', help='End date (YYYY-MM-DD)')
    p_sprint_create.set_defaults(func=cmd_sprint_create)

    p_sprint_start = sprint_sub.add_parser('start', help='Start a sprint')
    p_sprint_start.add_argument('sprint', help='Sprint id')
    p_sprint_start.set_defaults(func=cmd_sprint_start)

    p_sprint_complete = sprint_sub.add_parser('complete', help='Complete a sprint')
    p_sprint_complete.add_argument('sprint', help='Sprint id')
    p_sprint_complete.add_argument('--carry-over-to', help='Sprint id receiving open issues (default: backlog)')
    p_sprint_complete.set_defaults(func=cmd_sprint_complete)

    # wt log
    p_log = subparsers.add_parser('log', help='Show issue activity')
    p_log.add_argument('issue', help='Issue key')
    p_log.add_argument('--tz', help='Timezone for day grouping (default from config)')
    p_log.add_argument('--no-color', action='store_true', help='Disable colors')
    p_log.set_defaults(func=cmd_log)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return 2

    try:
        return args.func(args, build_tracker(config))
    except TrackerError as e:
        print(f"ERROR: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
