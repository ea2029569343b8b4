"""
Error taxonomy for worktrack.

Every failure surfaced by the core derives from TrackerError and is passed
to the caller unmodified. Errors carry structured attributes so callers can
react without parsing messages.
"""


class TrackerError(Exception):
    """Base class for all worktrack errors."""


class ValidationError(TrackerError):
    """Malformed or missing input, or a model invariant would be violated."""

    def __init__(self, rule: str, message: str, path: str | None = None):
        self.rule = rule
        self.path = path
        super().__init__(f"[{rule}] {message}" + (f" at {path}" if path else ""))


class ConfigError(ValidationError):
    """Configuration file is unreadable or has the wrong shape."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__("config", message, path)


class IllegalTransitionError(TrackerError):
    """A state machine rejected the requested move."""

    def __init__(self, machine: str, from_state: str | None, to_state: str, issue_id: str = ""):
        self.machine = machine
        self.from_state = from_state
        self.to_state = to_state
        self.issue_id = issue_id
        super().__init__(
            f"Illegal {machine} transition: {from_state} -> {to_state}"
            + (f" (issue: {issue_id})" if issue_id else "")
        )


class NotFoundError(TrackerError):
    """Referenced resource does not exist."""

    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class InvalidHierarchyError(TrackerError):
    """Epic/child structure would be violated."""

    def __init__(self, message: str, issue_id: str = ""):
        self.issue_id = issue_id
        super().__init__(message)


class CrossProjectError(InvalidHierarchyError):
    """Two resources that must share a project do not."""

    def __init__(self, issue_id: str, issue_project: str, other_id: str, other_project: str):
        self.issue_project = issue_project
        self.other_id = other_id
        self.other_project = other_project
        super().__init__(
            f"{issue_id} belongs to project {issue_project}, "
            f"{other_id} belongs to project {other_project}",
            issue_id,
        )


class ConflictError(TrackerError):
    """The stored state changed underneath the caller."""

    def __init__(self, resource_type: str, resource_id: str, expected: int, actual: int):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Concurrent modification of {resource_type} {resource_id}: "
            f"expected version {expected}, found {actual}"
        )


class NotVisibleError(TrackerError):
    """Client approval attempted on an issue that is not client-visible."""

    def __init__(self, issue_id: str):
        self.issue_id = issue_id
        super().__init__(f"Issue {issue_id} is not visible to the client")


class StorageError(TrackerError):
    """The persistence collaborator failed."""
