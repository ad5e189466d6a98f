"""
Mutation engine.

Every verb runs the same pipeline:

    load -> structural check -> transition check -> apply -> journal -> save

The verb functions below are pure over an in-memory Epic: they check,
apply and journal, and leave loading and saving to EpicEngine. A refused
verb raises before touching the epic, so the document on disk is never
partially mutated.

A verb whose target is already reached ("start" on a wip entity, "done"
on a done one, "pass" on a passing test) succeeds with changed=False, no
event and no save.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from agentpm.epic import store
from agentpm.epic.errors import EntityRef, EpicError, MissingArgument, NotFound, SchemaViolation
from agentpm.epic.journal import append_event
from agentpm.epic.models import (
    Epic,
    EpicStatus,
    Event,
    EventType,
    Phase,
    PhaseStatus,
    TaskStatus,
    Test,
    TestResult,
    TestStatus,
)
from agentpm.epic.structure import validate_structure
from agentpm.lib.clock import Clock, ensure_utc, utc_now
from agentpm.workflow import fsm
from agentpm.workflow.guards import entity_ref, find_entity, validate_batch, validate_transition
from agentpm.workflow.hints import next_action

logger = logging.getLogger(__name__)

BATCH_ACTIONS = ("pass", "fail")


@dataclass
class MutationResult:
    """Outcome of one verb."""
    verb: str
    entity: EntityRef | None
    changed: bool
    message: str
    events: list[Event] = field(default_factory=list)
    hint: str | None = None

    def to_dict(self) -> dict:
        return {
            "verb": self.verb,
            "entity": self.entity.to_dict() if self.entity else None,
            "changed": self.changed,
            "message": self.message,
            "events": [
                {"id": e.id, "type": e.type.value, "data": e.data}
                for e in self.events
            ],
            "next_action": self.hint,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _require(epic: Epic, kind: str, entity_id: str):
    entity = find_entity(epic, kind, entity_id)
    if entity is None:
        raise NotFound(
            f"{kind.capitalize()} {entity_id} not found in epic {epic.id}",
            entity=EntityRef(kind=kind, id=entity_id),
            suggestion=f"Run 'agentpm status' to list the {kind}s in this epic",
        )
    return entity


def _fire(epic: Epic, kind: str, entity, trigger: str, verb: str) -> None:
    """Move `entity` through the status machine and store the new status."""
    is_test = isinstance(entity, Test)
    current = entity.test_status.value if is_test else entity.status.value
    label = f"{epic.id}/{kind} {entity.id}"
    new = fsm.advance(kind, current, trigger, label=label)

    if is_test:
        entity.test_status = TestStatus(new)
    elif isinstance(entity, Epic):
        entity.status = EpicStatus(new)
    elif isinstance(entity, Phase):
        entity.status = PhaseStatus(new)
    else:
        entity.status = TaskStatus(new)
    logger.info(f"[ENGINE] {epic.id}: {kind} {entity.id} {current} -> {new} ({verb})")


def _noop(epic: Epic, verb: str, kind: str, entity, message: str) -> MutationResult:
    logger.debug(f"[ENGINE] {epic.id}: {verb} {entity.id} is a no-op ({message})")
    return MutationResult(
        verb=verb,
        entity=entity_ref(kind, entity),
        changed=False,
        message=message,
        hint=epic.cursor.next_action_hint,
    )


def _done(epic: Epic, verb: str, kind: str, entity, message: str, events: list[Event]) -> MutationResult:
    epic.cursor.next_action_hint = next_action(epic)
    return MutationResult(
        verb=verb,
        entity=entity_ref(kind, entity),
        changed=True,
        message=message,
        events=events,
        hint=epic.cursor.next_action_hint,
    )


def _check(epic: Epic, kind: str, entity_id: str, target: str, at: datetime, **kwargs) -> None:
    validate_transition(epic, kind, entity_id, target, at=at, **kwargs).raise_if_blocked()


# ─────────────────────────────────────────────────────────────────────────────
# Epic
# ─────────────────────────────────────────────────────────────────────────────

def start_epic(epic: Epic, at: datetime) -> MutationResult:
    if epic.status == EpicStatus.WIP:
        return _noop(epic, "start_epic", "epic", epic, f"Epic {epic.id} already started")
    _check(epic, "epic", epic.id, "wip", at)

    _fire(epic, "epic", epic, "start", "start_epic")
    epic.started_at = at
    event = append_event(epic, EventType.EPIC_STARTED, at, epic.id, epic.name)
    return _done(epic, "start_epic", "epic", epic, f"Started epic {epic.id}", [event])


def done_epic(epic: Epic, at: datetime) -> MutationResult:
    if epic.status == EpicStatus.DONE:
        return _noop(epic, "done_epic", "epic", epic, f"Epic {epic.id} already completed")
    _check(epic, "epic", epic.id, "done", at)

    _fire(epic, "epic", epic, "complete", "done_epic")
    epic.completed_at = at
    epic.cursor.active_phase_id = None
    epic.cursor.active_task_id = None
    event = append_event(epic, EventType.EPIC_COMPLETED, at, epic.id, epic.name)
    return _done(epic, "done_epic", "epic", epic, f"Completed epic {epic.id}", [event])


# ─────────────────────────────────────────────────────────────────────────────
# Phases
# ─────────────────────────────────────────────────────────────────────────────

def start_phase(epic: Epic, phase_id: str, at: datetime) -> MutationResult:
    phase = _require(epic, "phase", phase_id)
    if phase.status == PhaseStatus.WIP:
        return _noop(epic, "start_phase", "phase", phase, f"Phase {phase.id} already started")
    _check(epic, "phase", phase_id, "wip", at)

    _fire(epic, "phase", phase, "start", "start_phase")
    phase.started_at = at
    epic.cursor.active_phase_id = phase.id
    active_task = epic.find_task(epic.cursor.active_task_id)
    if active_task is not None and active_task.phase_id != phase.id:
        epic.cursor.active_task_id = None
    event = append_event(epic, EventType.PHASE_STARTED, at, phase.id, phase.name)
    return _done(epic, "start_phase", "phase", phase, f"Started phase {phase.id}", [event])


def done_phase(epic: Epic, phase_id: str, at: datetime) -> MutationResult:
    phase = _require(epic, "phase", phase_id)
    if phase.status == PhaseStatus.DONE:
        return _noop(epic, "done_phase", "phase", phase, f"Phase {phase.id} already completed")
    _check(epic, "phase", phase_id, "done", at)

    _fire(epic, "phase", phase, "complete", "done_phase")
    phase.completed_at = at
    if epic.cursor.active_phase_id == phase.id:
        epic.cursor.active_phase_id = None
        epic.cursor.active_task_id = None
    event = append_event(epic, EventType.PHASE_COMPLETED, at, phase.id, phase.name)
    return _done(epic, "done_phase", "phase", phase, f"Completed phase {phase.id}", [event])


# ─────────────────────────────────────────────────────────────────────────────
# Tasks
# ─────────────────────────────────────────────────────────────────────────────

def start_task(epic: Epic, task_id: str, at: datetime, default_assignee: str = "") -> MutationResult:
    task = _require(epic, "task", task_id)
    if task.status == TaskStatus.WIP:
        return _noop(epic, "start_task", "task", task, f"Task {task.id} already started")
    _check(epic, "task", task_id, "wip", at)

    _fire(epic, "task", task, "start", "start_task")
    task.started_at = at
    if not task.assignee and default_assignee:
        task.assignee = default_assignee
    epic.cursor.active_task_id = task.id
    epic.cursor.active_phase_id = task.phase_id
    event = append_event(epic, EventType.TASK_STARTED, at, task.id, task.name)
    return _done(epic, "start_task", "task", task, f"Started task {task.id}", [event])


def done_task(epic: Epic, task_id: str, at: datetime) -> MutationResult:
    task = _require(epic, "task", task_id)
    if task.status == TaskStatus.DONE:
        return _noop(epic, "done_task", "task", task, f"Task {task.id} already completed")
    _check(epic, "task", task_id, "done", at)

    _fire(epic, "task", task, "complete", "done_task")
    task.completed_at = at
    if epic.cursor.active_task_id == task.id:
        epic.cursor.active_task_id = None
    event = append_event(epic, EventType.TASK_COMPLETED, at, task.id, task.name)
    return _done(epic, "done_task", "task", task, f"Completed task {task.id}", [event])


def cancel_task(epic: Epic, task_id: str, reason: str, at: datetime) -> MutationResult:
    task = _require(epic, "task", task_id)
    _check(epic, "task", task_id, "cancelled", at, reason=reason)

    reason = reason.strip()
    _fire(epic, "task", task, "cancel", "cancel_task")
    task.cancelled_at = at
    task.cancellation_reason = reason
    if epic.cursor.active_task_id == task.id:
        epic.cursor.active_task_id = None
    event = append_event(epic, EventType.TASK_CANCELLED, at, task.id, task.name, reason)
    return _done(epic, "cancel_task", "task", task, f"Cancelled task {task.id}: {reason}", [event])


# ─────────────────────────────────────────────────────────────────────────────
# Tests
# ─────────────────────────────────────────────────────────────────────────────

def _apply_pass(epic: Epic, test: Test, at: datetime) -> Event:
    _fire(epic, "test", test, "complete", "pass_test")
    test.test_result = TestResult.PASSING
    test.passed_at = at
    test.failed_at = None
    test.failure_note = ""
    return append_event(epic, EventType.TEST_PASSED, at, test.id, test.name)


def _apply_fail(epic: Epic, test: Test, note: str, at: datetime) -> Event:
    _fire(epic, "test", test, "fail", "fail_test")
    test.test_result = TestResult.FAILING
    if test.started_at is None:
        test.started_at = at
    test.failed_at = at
    test.passed_at = None
    test.failure_note = note
    return append_event(epic, EventType.TEST_FAILED, at, test.id, test.name, note)


def start_test(epic: Epic, test_id: str, at: datetime) -> MutationResult:
    test = _require(epic, "test", test_id)
    if test.test_status == TestStatus.WIP:
        return _noop(epic, "start_test", "test", test, f"Test {test.id} already started")
    _check(epic, "test", test_id, "wip", at)

    _fire(epic, "test", test, "start", "start_test")
    test.started_at = at
    event = append_event(epic, EventType.TEST_STARTED, at, test.id, test.name)
    return _done(epic, "start_test", "test", test, f"Started test {test.id}", [event])


def pass_test(epic: Epic, test_id: str, at: datetime) -> MutationResult:
    test = _require(epic, "test", test_id)
    if test.test_status == TestStatus.DONE:
        return _noop(epic, "pass_test", "test", test, f"Test {test.id} already passing")
    _check(epic, "test", test_id, "done", at, target_result="passing")

    event = _apply_pass(epic, test, at)
    return _done(epic, "pass_test", "test", test, f"Test {test.id} passed", [event])


def fail_test(epic: Epic, test_id: str, note: str, at: datetime) -> MutationResult:
    test = _require(epic, "test", test_id)
    _check(epic, "test", test_id, "wip", at, target_result="failing")

    note = (note or "").strip()
    event = _apply_fail(epic, test, note, at)
    message = f"Test {test.id} failed" + (f": {note}" if note else "")
    return _done(epic, "fail_test", "test", test, message, [event])


def cancel_test(epic: Epic, test_id: str, reason: str, at: datetime) -> MutationResult:
    test = _require(epic, "test", test_id)
    _check(epic, "test", test_id, "cancelled", at, reason=reason)

    reason = reason.strip()
    _fire(epic, "test", test, "cancel", "cancel_test")
    test.cancelled_at = at
    test.cancellation_reason = reason
    event = append_event(epic, EventType.TEST_CANCELLED, at, test.id, test.name, reason)
    return _done(epic, "cancel_test", "test", test, f"Cancelled test {test.id}: {reason}", [event])


def batch(epic: Epic, action: str, test_ids: list[str], at: datetime, note: str = "") -> MutationResult:
    """Pass or fail many tests at once, all or nothing.

    Every test is checked against the untouched epic first. If any one is
    refused, nothing changes and the error lists every offender. Tests
    that already pass are skipped by a pass batch.
    """
    if action not in BATCH_ACTIONS:
        raise ValueError(f"Unknown batch action '{action}'")
    ids = list(dict.fromkeys(i for i in test_ids if i))
    if not ids:
        raise MissingArgument(f"No test ids given to {action}", suggestion=f"agentpm {action} TEST_ID [TEST_ID ...]")

    verb = f"{action}_test"
    skipped = []
    if action == "pass":
        for test_id in ids:
            test = epic.find_test(test_id)
            if test is not None and test.test_status == TestStatus.DONE:
                skipped.append(test_id)
        check = validate_batch(epic, [i for i in ids if i not in skipped], "done", "passing", at=at)
    else:
        check = validate_batch(epic, ids, "wip", "failing", at=at)
    check.raise_if_blocked()

    note = (note or "").strip()
    events = []
    for test_id in ids:
        if test_id in skipped:
            continue
        test = epic.find_test(test_id)
        if action == "pass":
            events.append(_apply_pass(epic, test, at))
        else:
            events.append(_apply_fail(epic, test, note, at))

    entity = EntityRef(kind="epic", id=epic.id, name=epic.name, current_status=epic.status.value)
    past = "passed" if action == "pass" else "failed"
    message = f"{len(events)} of {len(ids)} tests {past}"
    if skipped:
        message += f" ({len(skipped)} already passing)"
    if not events:
        logger.debug(f"[ENGINE] {epic.id}: {action} batch is a no-op")
        return MutationResult(verb=verb, entity=entity, changed=False, message=message,
                              hint=epic.cursor.next_action_hint)
    epic.cursor.next_action_hint = next_action(epic)
    return MutationResult(verb=verb, entity=entity, changed=True, message=message,
                          events=events, hint=epic.cursor.next_action_hint)


# ─────────────────────────────────────────────────────────────────────────────
# Notes
# ─────────────────────────────────────────────────────────────────────────────

def log_note(epic: Epic, message: str, at: datetime) -> MutationResult:
    message = (message or "").strip()
    if not message:
        raise MissingArgument("A note needs a message", suggestion="agentpm log \"what happened\"")
    event = append_event(epic, EventType.NOTE, at, detail=message)
    logger.info(f"[ENGINE] {epic.id}: note logged")
    return _done(epic, "log", "epic", epic, "Note logged", [event])


# ─────────────────────────────────────────────────────────────────────────────
# File-backed engine
# ─────────────────────────────────────────────────────────────────────────────

class EpicEngine:
    """Runs verbs against the epic document at `epic_path`.

    Each call loads the document fresh, so nothing is cached between
    calls. `clock` supplies the timestamp when the caller passes none.
    """

    def __init__(self, epic_path: Path, clock: Clock = utc_now, default_assignee: str = ""):
        self.epic_path = Path(epic_path)
        self.clock = clock
        self.default_assignee = default_assignee

    def load(self) -> Epic:
        return store.load(self.epic_path)

    def load_checked(self) -> Epic:
        """Load and require a structurally valid document."""
        epic = self.load()
        report = validate_structure(epic)
        if not report.valid:
            shown = "; ".join(report.errors[:3])
            more = len(report.errors) - 3
            if more > 0:
                shown += f" (+{more} more)"
            raise SchemaViolation(
                f"Epic {epic.id} failed structural validation: {shown}",
                entity=EntityRef(kind="epic", id=epic.id, name=epic.name, current_status=epic.status.value),
                suggestion="Run 'agentpm validate' for the full report",
            )
        return epic

    def _resolve_time(self, at: datetime | None) -> datetime:
        return ensure_utc(at) if at is not None else ensure_utc(self.clock())

    def run(self, apply, at: datetime | None = None) -> MutationResult:
        """Load, check, apply `apply(epic, at)` and save if anything changed."""
        epic = self.load_checked()
        when = self._resolve_time(at)
        try:
            result = apply(epic, when)
        except EpicError as e:
            logger.info(f"[ENGINE] {epic.id}: refused with {e.kind.value}: {e.message}")
            raise
        if result.changed:
            store.save(epic, self.epic_path)
        return result

    def start_epic(self, at=None) -> MutationResult:
        return self.run(start_epic, at)

    def done_epic(self, at=None) -> MutationResult:
        return self.run(done_epic, at)

    def start_phase(self, phase_id: str, at=None) -> MutationResult:
        return self.run(lambda epic, when: start_phase(epic, phase_id, when), at)

    def done_phase(self, phase_id: str, at=None) -> MutationResult:
        return self.run(lambda epic, when: done_phase(epic, phase_id, when), at)

    def start_task(self, task_id: str, at=None) -> MutationResult:
        return self.run(lambda epic, when: start_task(epic, task_id, when, self.default_assignee), at)

    def done_task(self, task_id: str, at=None) -> MutationResult:
        return self.run(lambda epic, when: done_task(epic, task_id, when), at)

    def cancel_task(self, task_id: str, reason: str, at=None) -> MutationResult:
        return self.run(lambda epic, when: cancel_task(epic, task_id, reason, when), at)

    def start_test(self, test_id: str, at=None) -> MutationResult:
        return self.run(lambda epic, when: start_test(epic, test_id, when), at)

    def pass_test(self, test_id: str, at=None) -> MutationResult:
        return self.run(lambda epic, when: pass_test(epic, test_id, when), at)

    def fail_test(self, test_id: str, note: str = "", at=None) -> MutationResult:
        return self.run(lambda epic, when: fail_test(epic, test_id, note, when), at)

    def cancel_test(self, test_id: str, reason: str, at=None) -> MutationResult:
        return self.run(lambda epic, when: cancel_test(epic, test_id, reason, when), at)

    def batch(self, action: str, test_ids: list[str], note: str = "", at=None) -> MutationResult:
        return self.run(lambda epic, when: batch(epic, action, test_ids, when, note), at)

    def log_note(self, message: str, at=None) -> MutationResult:
        return self.run(lambda epic, when: log_note(epic, message, when), at)

    def start_next(self, at=None) -> MutationResult:
        from agentpm.workflow.autonext import start_next

        return self.run(lambda epic, when: start_next(epic, when, self.default_assignee), at)
