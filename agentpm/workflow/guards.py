"""
Transition validation: may this entity move to that status right now?

validate_transition() never raises for a refusal. It returns a
TransitionCheck that is either ok or blocked with an error kind, the
offending entity and the blockers behind the refusal. Callers that want
an exception call check.raise_if_blocked().

Order of checks:
    1. the entity exists
    2. the (status, result) pair is not categorically illegal
    3. (current, target) is in the kind's transition table
    4. required arguments (cancellation reason)
    5. single-active constraints (one wip phase, one wip task per phase,
       test work only in the active phase)
    6. completion prerequisites, with every blocker enumerated
    7. the timestamp is not earlier than the entity's started_at
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from agentpm.epic.errors import (
    Blocker,
    EntityRef,
    EpicError,
    ErrorKind,
    error_for,
)
from agentpm.epic.models import (
    Epic,
    Phase,
    PhaseStatus,
    Task,
    TaskStatus,
    Test,
    TestResult,
    TestStatus,
)
from agentpm.lib.clock import ensure_utc, format_timestamp
from agentpm.workflow import fsm

logger = logging.getLogger(__name__)

SETTLED_TASK = (TaskStatus.DONE, TaskStatus.CANCELLED)
SETTLED_TEST = (TestStatus.DONE, TestStatus.CANCELLED)


@dataclass
class TransitionCheck:
    ok: bool
    kind: ErrorKind | None = None
    entity: EntityRef | None = None
    blockers: list[Blocker] = field(default_factory=list)
    message: str = ""
    suggestion: str = ""

    @classmethod
    def allowed(cls, entity: EntityRef | None = None) -> "TransitionCheck":
        return cls(ok=True, entity=entity)

    @classmethod
    def blocked(
        cls,
        kind: ErrorKind,
        message: str,
        entity: EntityRef | None = None,
        blockers: list[Blocker] | None = None,
        suggestion: str = "",
    ) -> "TransitionCheck":
        return cls(
            ok=False,
            kind=kind,
            entity=entity,
            blockers=list(blockers or []),
            message=message,
            suggestion=suggestion,
        )

    def to_error(self) -> EpicError:
        return error_for(
            self.kind,
            self.message,
            entity=self.entity,
            blockers=self.blockers,
            suggestion=self.suggestion,
        )

    def raise_if_blocked(self) -> None:
        if not self.ok:
            raise self.to_error()


# ─────────────────────────────────────────────────────────────────────────────
# Entity references and blockers
# ─────────────────────────────────────────────────────────────────────────────

def _status_of(entity) -> str:
    if isinstance(entity, Test):
        return entity.test_status.value
    return entity.status.value


def entity_ref(kind: str, entity) -> EntityRef:
    return EntityRef(kind=kind, id=entity.id, name=entity.name, current_status=_status_of(entity))


def blocker_for(entity: Phase | Task | Test) -> Blocker:
    """Blocker record describing `entity` as it stands."""
    if isinstance(entity, Test):
        return Blocker(
            kind="test",
            id=entity.id,
            name=entity.name,
            current_status=entity.test_status.value,
            test_result=entity.test_result.value if entity.test_result else None,
        )
    kind = "phase" if isinstance(entity, Phase) else "task"
    return Blocker(kind=kind, id=entity.id, name=entity.name, current_status=entity.status.value)


def _count(n: int, noun: str, qualifier: str) -> str:
    return f"{n} {qualifier} {noun}{'' if n == 1 else 's'}"


def find_entity(epic: Epic, kind: str, entity_id: str):
    if kind == "epic":
        return epic if entity_id in ("", epic.id) else None
    finder = {"phase": epic.find_phase, "task": epic.find_task, "test": epic.find_test}[kind]
    return finder(entity_id)


# ─────────────────────────────────────────────────────────────────────────────
# Completion prerequisites
# ─────────────────────────────────────────────────────────────────────────────

def epic_completion_blockers(epic: Epic) -> list[Blocker]:
    return [blocker_for(p) for p in epic.phases if p.status != PhaseStatus.DONE]


def phase_completion_blockers(epic: Epic, phase_id: str) -> tuple[list[Blocker], list[Blocker]]:
    """(task blockers, test blockers) that keep a phase from completing."""
    tasks = [blocker_for(t) for t in epic.tasks_in_phase(phase_id) if t.status not in SETTLED_TASK]
    tests = [blocker_for(t) for t in epic.tests_in_phase(phase_id) if t.test_status not in SETTLED_TEST]
    return tasks, tests


def task_completion_blockers(epic: Epic, task_id: str) -> list[Blocker]:
    return [blocker_for(t) for t in epic.tests_for_task(task_id) if t.test_status not in SETTLED_TEST]


def _check_epic_done(epic: Epic, ref: EntityRef) -> TransitionCheck:
    blockers = epic_completion_blockers(epic)
    if not blockers:
        return TransitionCheck.allowed(ref)
    return TransitionCheck.blocked(
        ErrorKind.COMPLETION_BLOCKED,
        f"Epic {epic.id} cannot be completed: {_count(len(blockers), 'phase', 'pending/wip')}",
        entity=ref,
        blockers=blockers,
        suggestion="Complete all phases before completing the epic",
    )


def _check_phase_done(epic: Epic, phase: Phase, ref: EntityRef) -> TransitionCheck:
    tasks, tests = phase_completion_blockers(epic, phase.id)
    if not tasks and not tests:
        return TransitionCheck.allowed(ref)
    parts = []
    if tasks:
        parts.append(_count(len(tasks), "task", "pending/wip"))
    if tests:
        parts.append(_count(len(tests), "test", "pending/wip"))
    return TransitionCheck.blocked(
        ErrorKind.COMPLETION_BLOCKED,
        f"Phase {phase.id} cannot be completed: {', '.join(parts)}",
        entity=ref,
        blockers=tasks + tests,
        suggestion="Complete or cancel the remaining tasks and tests in this phase",
    )


def _check_task_done(epic: Epic, task: Task, ref: EntityRef) -> TransitionCheck:
    blockers = task_completion_blockers(epic, task.id)
    if not blockers:
        return TransitionCheck.allowed(ref)
    return TransitionCheck.blocked(
        ErrorKind.COMPLETION_BLOCKED,
        f"Task {task.id} cannot be completed: {_count(len(blockers), 'test', 'pending/wip')}",
        entity=ref,
        blockers=blockers,
        suggestion="Pass or cancel the remaining tests for this task",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Single-active constraints
# ─────────────────────────────────────────────────────────────────────────────

def _check_phase_start(epic: Epic, phase: Phase, ref: EntityRef) -> TransitionCheck:
    others = [p for p in epic.wip_phases() if p.id != phase.id]
    if others:
        return TransitionCheck.blocked(
            ErrorKind.CONSTRAINT_VIOLATION,
            f"Cannot start phase {phase.id}: phase {others[0].id} is already in progress",
            entity=ref,
            blockers=[blocker_for(p) for p in others],
            suggestion=f"Complete phase {others[0].id} first",
        )
    return TransitionCheck.allowed(ref)


def _check_task_start(epic: Epic, task: Task, ref: EntityRef) -> TransitionCheck:
    phase = epic.find_phase(task.phase_id)
    if phase is None or phase.status != PhaseStatus.WIP:
        status = phase.status.value if phase else "missing"
        return TransitionCheck.blocked(
            ErrorKind.CONSTRAINT_VIOLATION,
            f"Cannot start task {task.id}: phase {task.phase_id} is {status}, not wip",
            entity=ref,
            blockers=[blocker_for(phase)] if phase else [],
            suggestion=f"Start phase {task.phase_id} first",
        )
    others = [
        t for t in epic.tasks_in_phase(task.phase_id)
        if t.status == TaskStatus.WIP and t.id != task.id
    ]
    if others:
        return TransitionCheck.blocked(
            ErrorKind.CONSTRAINT_VIOLATION,
            f"Cannot start task {task.id}: task {others[0].id} is already in progress in phase {task.phase_id}",
            entity=ref,
            blockers=[blocker_for(t) for t in others],
            suggestion=f"Complete or cancel task {others[0].id} first",
        )
    return TransitionCheck.allowed(ref)


def _check_test_phase(epic: Epic, test: Test, ref: EntityRef) -> TransitionCheck:
    active = epic.active_phase()
    if active is not None and active.id == test.phase_id:
        return TransitionCheck.allowed(ref)
    where = f"the active phase {active.id}" if active else "an active phase"
    return TransitionCheck.blocked(
        ErrorKind.CONSTRAINT_VIOLATION,
        f"Test {test.id} is in phase {test.phase_id}, not {where}",
        entity=ref,
        blockers=[blocker_for(test)],
        suggestion=f"Start phase {test.phase_id} before working on its tests",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────────────────────

def validate_transition(
    epic: Epic,
    entity_kind: str,
    entity_id: str,
    target_status: str,
    target_result: str | None = None,
    reason: str | None = None,
    at: datetime | None = None,
) -> TransitionCheck:
    """Decide whether `entity_id` may move to (`target_status`, `target_result`).

    `reason` is required for cancellation. `at`, when given, is the
    instant the transition would be recorded at.
    """
    if entity_kind not in fsm.ENTITY_KINDS:
        raise ValueError(f"Unknown entity kind '{entity_kind}'")

    entity = find_entity(epic, entity_kind, entity_id)
    if entity is None:
        return TransitionCheck.blocked(
            ErrorKind.NOT_FOUND,
            f"{entity_kind.capitalize()} {entity_id} not found in epic {epic.id}",
            entity=EntityRef(kind=entity_kind, id=entity_id),
            suggestion=f"Run 'agentpm status' to list the {entity_kind}s in this epic",
        )

    ref = entity_ref(entity_kind, entity)
    current = _status_of(entity)

    if entity_kind == "test":
        # Tests only move inside the active phase, whatever their status
        check = _check_test_phase(epic, entity, ref)
        if not check.ok:
            return check
        # A failing result never sits on a done test, and a wip target from
        # done only happens by failing
        if target_status == TestStatus.DONE.value and target_result == TestResult.FAILING.value:
            return TransitionCheck.blocked(
                ErrorKind.INVALID_TRANSITION,
                f"Test {entity.id} cannot be done and failing",
                entity=ref,
                suggestion=f"Use 'agentpm fail {entity.id}' to record a failure",
            )
        if (
            current == TestStatus.DONE.value
            and target_status == TestStatus.WIP.value
            and target_result != TestResult.FAILING.value
        ):
            return TransitionCheck.blocked(
                ErrorKind.INVALID_TRANSITION,
                f"Test {entity.id} is done; it can only return to wip as failing",
                entity=ref,
                suggestion=f"Use 'agentpm fail {entity.id}' to reopen it",
            )

    if not fsm.is_legal(entity_kind, current, target_status):
        allowed = fsm.allowed_targets(entity_kind, current)
        return TransitionCheck.blocked(
            ErrorKind.INVALID_TRANSITION,
            f"{entity_kind.capitalize()} {entity.id} cannot move from {current} to {target_status}",
            entity=ref,
            suggestion=(
                f"Allowed from {current}: {', '.join(allowed)}" if allowed
                else f"{current} is a terminal status"
            ),
        )

    if target_status == "cancelled" and not (reason or "").strip():
        return TransitionCheck.blocked(
            ErrorKind.MISSING_ARGUMENT,
            f"Cancelling {entity_kind} {entity.id} requires a reason",
            entity=ref,
            suggestion="Pass --reason \"...\"",
        )

    check = TransitionCheck.allowed(ref)
    if entity_kind == "epic" and target_status == "done":
        check = _check_epic_done(epic, ref)
    elif entity_kind == "phase" and target_status == "wip":
        check = _check_phase_start(epic, entity, ref)
    elif entity_kind == "phase" and target_status == "done":
        check = _check_phase_done(epic, entity, ref)
    elif entity_kind == "task" and target_status == "wip":
        check = _check_task_start(epic, entity, ref)
    elif entity_kind == "task" and target_status == "done":
        check = _check_task_done(epic, entity, ref)
    if not check.ok:
        return check

    started = entity.started_at
    if at is not None and started is not None and ensure_utc(at) < started:
        return TransitionCheck.blocked(
            ErrorKind.CONSTRAINT_VIOLATION,
            f"Timestamp {format_timestamp(at)} is earlier than {entity_kind} {entity.id} "
            f"started_at {format_timestamp(started)}",
            entity=ref,
            suggestion="Pass a --time at or after the start time",
        )

    return check


def validate_batch(
    epic: Epic,
    test_ids: list[str],
    target_status: str,
    target_result: str,
    at: datetime | None = None,
) -> TransitionCheck:
    """Validate a pass/fail over many tests; blocked if any single one is.

    The composite check lists every offender as a blocker and every
    individual message in its own message.
    """
    blockers: list[Blocker] = []
    messages: list[str] = []
    kinds: list[ErrorKind] = []
    for test_id in test_ids:
        check = validate_transition(epic, "test", test_id, target_status, target_result, at=at)
        if check.ok:
            continue
        kinds.append(check.kind)
        messages.append(check.message)
        test = epic.find_test(test_id)
        if test is not None:
            blockers.append(blocker_for(test))

    if not messages:
        return TransitionCheck.allowed()

    kind = kinds[0] if len(set(kinds)) == 1 else ErrorKind.CONSTRAINT_VIOLATION
    noun = "test" if len(messages) == 1 else "tests"
    return TransitionCheck.blocked(
        kind,
        f"Batch refused, {len(messages)} {noun} blocked: " + "; ".join(messages),
        entity=EntityRef(kind="epic", id=epic.id, name=epic.name, current_status=epic.status.value),
        blockers=blockers,
        suggestion="No tests were changed. Fix the listed tests and retry the batch",
    )
