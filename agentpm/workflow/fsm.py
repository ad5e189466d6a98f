"""Status state machines for epics, phases, tasks and tests.

Each entity kind has its own transition table. A transition is legal iff
(current_status, target_status) appears in that table. Triggers name the
verbs that drive them, so the engine applies a status change by firing
the trigger on a StatusFSM rather than by assigning the status field.

Usage:
    from agentpm.workflow.fsm import StatusFSM

    fsm = StatusFSM("task", "pending")
    fsm.start()        # pending -> wip
    fsm.complete()     # wip -> done
"""

import logging

from transitions import Machine, MachineError

logger = logging.getLogger(__name__)


ENTITY_KINDS = ("epic", "phase", "task", "test")

STATES = {
    "epic": ["pending", "wip", "done"],
    "phase": ["pending", "wip", "done"],
    "task": ["pending", "wip", "done", "cancelled"],
    "test": ["pending", "wip", "done", "cancelled"],
}

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the FSM
TRANSITIONS = {
    "epic": [
        {"trigger": "start", "source": "pending", "dest": "wip"},
        {"trigger": "complete", "source": "wip", "dest": "done"},
    ],
    "phase": [
        {"trigger": "start", "source": "pending", "dest": "wip"},
        {"trigger": "complete", "source": "wip", "dest": "done"},
    ],
    "task": [
        {"trigger": "start", "source": "pending", "dest": "wip"},
        {"trigger": "complete", "source": "wip", "dest": "done"},
        {"trigger": "cancel", "source": "pending", "dest": "cancelled"},
        {"trigger": "cancel", "source": "wip", "dest": "cancelled"},
    ],
    "test": [
        {"trigger": "start", "source": "pending", "dest": "wip"},
        {"trigger": "complete", "source": "wip", "dest": "done"},
        {"trigger": "cancel", "source": "pending", "dest": "cancelled"},
        {"trigger": "cancel", "source": "wip", "dest": "cancelled"},
        # A done test that regresses goes back to wip
        {"trigger": "reopen", "source": "done", "dest": "wip"},
        # Failing is allowed wherever the test can end up wip
        {"trigger": "fail", "source": "pending", "dest": "wip"},
        {"trigger": "fail", "source": "wip", "dest": "wip"},
        {"trigger": "fail", "source": "done", "dest": "wip"},
    ],
}

# Terminal states per kind: no transition leaves them
TERMINAL = {
    "epic": {"done"},
    "phase": {"done"},
    "task": {"done", "cancelled"},
    "test": {"cancelled"},
}


# Pre-computed lookup: kind -> (source, dest) -> trigger name
# First trigger wins for a given source->dest
def _build_trigger_lookup() -> dict[str, dict[tuple[str, str], str]]:
    """Build lookup from (source, dest) -> trigger name, per entity kind."""
    lookup: dict[str, dict[tuple[str, str], str]] = {}
    for kind, transitions in TRANSITIONS.items():
        table: dict[tuple[str, str], str] = {}
        for t in transitions:
            key = (t["source"], t["dest"])
            if key not in table:
                table[key] = t["trigger"]
        lookup[kind] = table
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


def is_legal(kind: str, current: str, target: str) -> bool:
    """True iff (current, target) is in the kind's transition table."""
    return (current, target) in TRIGGER_FOR[kind]


def trigger_for(kind: str, current: str, target: str) -> str | None:
    return TRIGGER_FOR[kind].get((current, target))


def allowed_targets(kind: str, current: str) -> list[str]:
    """Statuses reachable from `current` in one step."""
    return [dest for (source, dest) in TRIGGER_FOR[kind] if source == current]


class StatusFSM:
    """State machine for one entity's status.

    Wraps the transitions library: the FSM starts in the entity's current
    status, and firing a trigger either moves it or raises MachineError.
    """

    def __init__(self, kind: str, initial: str, label: str = ""):
        if kind not in STATES:
            raise ValueError(f"Unknown entity kind '{kind}'")
        if initial not in STATES[kind]:
            raise ValueError(f"Unknown {kind} status '{initial}'")
        self.kind = kind
        self.label = label or kind

        self.machine = Machine(
            model=self,
            states=STATES[kind],
            transitions=TRANSITIONS[kind],
            initial=initial,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition."""
        logger.debug(
            f"[FSM] {self.label}: {event.transition.source} -> "
            f"{event.transition.dest} ({event.event.name})"
        )

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def fire(self, trigger: str) -> str:
        """Fire `trigger` and return the resulting state.

        Raises:
            MachineError: trigger not valid from the current state
        """
        if not self.can(trigger):
            raise MachineError(f"Can't trigger '{trigger}' from state '{self.state}' ({self.label})")
        getattr(self, trigger)()
        return self.state


def advance(kind: str, current: str, trigger: str, label: str = "") -> str:
    """Run one trigger from `current` and return the new status."""
    return StatusFSM(kind, current, label).fire(trigger)
