"""Issue state machines using the transitions library.

Two orthogonal machines:
- Execution status: TODO -> IN_PROGRESS -> IN_REVIEW -> DONE, plus CANCELLED
- Client approval: PENDING -> {APPROVED, REJECTED, CHANGES_REQUESTED}

Both are declared as (trigger, source, dest) tables. The engines address
them by destination state, so each table also gets a pre-computed
(source, dest) -> trigger lookup.

Usage:
    from worktrack.workflow.fsm import StatusFSM

    fsm = StatusFSM("TODO")
    fsm.start()          # -> IN_PROGRESS
    fsm.submit_review()  # -> IN_REVIEW
    fsm.complete()       # -> DONE
"""

import logging

from transitions import Machine, MachineError

from worktrack.lib.errors import IllegalTransitionError

logger = logging.getLogger(__name__)


STATUS_STATES = ["TODO", "IN_PROGRESS", "IN_REVIEW", "DONE", "CANCELLED"]

# No TODO -> DONE edge: completion always passes through review
STATUS_TRANSITIONS = [
    {"trigger": "start", "source": "TODO", "dest": "IN_PROGRESS"},
    {"trigger": "stop", "source": "IN_PROGRESS", "dest": "TODO"},
    {"trigger": "submit_review", "source": "IN_PROGRESS", "dest": "IN_REVIEW"},
    {"trigger": "rework", "source": "IN_REVIEW", "dest": "IN_PROGRESS"},
    {"trigger": "complete", "source": "IN_REVIEW", "dest": "DONE"},
    {"trigger": "reopen", "source": "DONE", "dest": "IN_PROGRESS"},

    # Cancellation from any non-terminal state
    {"trigger": "cancel", "source": "TODO", "dest": "CANCELLED"},
    {"trigger": "cancel", "source": "IN_PROGRESS", "dest": "CANCELLED"},
    {"trigger": "cancel", "source": "IN_REVIEW", "dest": "CANCELLED"},
]


APPROVAL_STATES = ["PENDING", "APPROVED", "REJECTED", "CHANGES_REQUESTED"]

# APPROVED is sticky: a new decision needs an explicit revert first
APPROVAL_TRANSITIONS = [
    # Client decisions
    {"trigger": "approve", "source": "PENDING", "dest": "APPROVED"},
    {"trigger": "reject", "source": "PENDING", "dest": "REJECTED"},
    {"trigger": "request_changes", "source": "PENDING", "dest": "CHANGES_REQUESTED"},

    # Client revises an undecided-by-team outcome
    {"trigger": "approve", "source": "REJECTED", "dest": "APPROVED"},
    {"trigger": "approve", "source": "CHANGES_REQUESTED", "dest": "APPROVED"},
    {"trigger": "reject", "source": "REJECTED", "dest": "REJECTED"},
    {"trigger": "reject", "source": "CHANGES_REQUESTED", "dest": "REJECTED"},
    {"trigger": "request_changes", "source": "REJECTED", "dest": "CHANGES_REQUESTED"},
    {"trigger": "request_changes", "source": "CHANGES_REQUESTED", "dest": "CHANGES_REQUESTED"},

    # Team re-submits after addressing feedback
    {"trigger": "resubmit", "source": "REJECTED", "dest": "PENDING"},
    {"trigger": "resubmit", "source": "CHANGES_REQUESTED", "dest": "PENDING"},

    # Explicit revert when approved work changes materially
    {"trigger": "revert", "source": "APPROVED", "dest": "PENDING"},
]


def _build_trigger_lookup(transitions: list[dict]) -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in transitions:
        key = (t["source"], t["dest"])
        if key not in lookup:  # First trigger wins for a given source->dest
            lookup[key] = t["trigger"]
    return lookup


STATUS_TRIGGER_FOR = _build_trigger_lookup(STATUS_TRANSITIONS)
APPROVAL_TRIGGER_FOR = _build_trigger_lookup(APPROVAL_TRANSITIONS)


class _IssueFSM:
    """Wraps a transitions Machine around a single issue's current state.

    The FSM holds no persistent state of its own: callers construct it
    from the stored value, fire one trigger and read .state back.
    """

    MACHINE_NAME = ""
    STATES: list[str] = []
    TRANSITIONS: list[dict] = []
    TRIGGER_FOR: dict[tuple[str, str], str] = {}

    def __init__(self, initial: str, issue_id: str = ""):
        if initial not in self.STATES:
            raise IllegalTransitionError(self.MACHINE_NAME, initial, initial, issue_id)
        self.issue_id = issue_id
        self.machine = Machine(
            model=self,
            states=self.STATES,
            transitions=self.TRANSITIONS,
            initial=initial,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        logger.debug(
            f"[FSM] {self.MACHINE_NAME} {self.issue_id}: {event.transition.source} -> "
            f"{event.transition.dest} ({event.event.name})"
        )

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)

    def can_reach(self, dest: str) -> bool:
        return (self.state, dest) in self.TRIGGER_FOR

    def move_to(self, dest: str) -> str:
        """Fire whichever trigger leads from the current state to dest.

        Returns the trigger name that was fired.

        Raises:
            IllegalTransitionError: If no edge leads to dest.
        """
        source = self.state
        trigger = self.TRIGGER_FOR.get((source, dest))
        if trigger is None:
            raise IllegalTransitionError(self.MACHINE_NAME, source, dest, self.issue_id)
        try:
            getattr(self, trigger)()
        except MachineError as e:
            raise IllegalTransitionError(self.MACHINE_NAME, source, dest, self.issue_id) from e
        return trigger


class StatusFSM(_IssueFSM):
    """Execution status machine."""
    MACHINE_NAME = "status"
    STATES = STATUS_STATES
    TRANSITIONS = STATUS_TRANSITIONS
    TRIGGER_FOR = STATUS_TRIGGER_FOR


class ApprovalFSM(_IssueFSM):
    """Client approval sub-state machine."""
    MACHINE_NAME = "approval"
    STATES = APPROVAL_STATES
    TRANSITIONS = APPROVAL_TRANSITIONS
    TRIGGER_FOR = APPROVAL_TRIGGER_FOR

    def fire(self, trigger: str) -> None:
        """Fire a named trigger, translating MachineError."""
        source = self.state
        if not self.can(trigger):
            raise IllegalTransitionError(self.MACHINE_NAME, source, trigger, self.issue_id)
        try:
            getattr(self, trigger)()
        except MachineError as e:
            raise IllegalTransitionError(self.MACHINE_NAME, source, trigger, self.issue_id) from e
