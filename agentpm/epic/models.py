"""
Data model for an epic document.

The epic is a flat arena: phases, tasks, tests and events live in
ordered lists on the Epic, and parent links are ids, not references.
Children and siblings are found by scanning those lists.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from agentpm.lib.clock import Clock, utc_now


class EpicStatus(Enum):
    PENDING = "pending"
    WIP = "wip"
    DONE = "done"


class PhaseStatus(Enum):
    PENDING = "pending"
    WIP = "wip"
    DONE = "done"


class TaskStatus(Enum):
    PENDING = "pending"
    WIP = "wip"
    DONE = "done"
    CANCELLED = "cancelled"


class TestStatus(Enum):
    __test__ = False  # not a pytest test class

    PENDING = "pending"
    WIP = "wip"
    DONE = "done"
    CANCELLED = "cancelled"


class TestResult(Enum):
    __test__ = False

    PASSING = "passing"
    FAILING = "failing"


class EventType(Enum):
    EPIC_STARTED = "epic_started"
    EPIC_COMPLETED = "epic_completed"
    PHASE_STARTED = "phase_started"
    PHASE_COMPLETED = "phase_completed"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_CANCELLED = "task_cancelled"
    TEST_STARTED = "test_started"
    TEST_PASSED = "test_passed"
    TEST_FAILED = "test_failed"
    TEST_CANCELLED = "test_cancelled"
    NOTE = "note"


# Status vocabulary of the old document shape. Never valid in a document.
LEGACY_STATUSES = frozenset({"planning", "active", "completed", "on_hold"})


@dataclass
class Cursor:
    """Where work currently is."""
    active_phase_id: str | None = None
    active_task_id: str | None = None
    next_action_hint: str | None = None


@dataclass
class EpicMetadata:
    created: datetime | None = None
    assignee: str = ""
    estimated_effort: str = ""


@dataclass
class Phase:
    id: str
    name: str = ""
    description: str = ""
    deliverables: str = ""
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class Task:
    id: str
    phase_id: str
    name: str = ""
    description: str = ""
    acceptance_criteria: str = ""
    status: TaskStatus = TaskStatus.PENDING
    assignee: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str = ""


@dataclass
class Test:
    __test__ = False

    id: str
    task_id: str
    phase_id: str
    name: str = ""
    description: str = ""
    test_status: TestStatus = TestStatus.PENDING
    test_result: TestResult | None = None  # None until the test first passes or fails
    started_at: datetime | None = None
    passed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    failure_note: str = ""
    cancellation_reason: str = ""


@dataclass
class Event:
    id: str
    type: EventType
    timestamp: datetime
    data: str = ""


@dataclass
class Epic:
    id: str
    name: str
    status: EpicStatus = EpicStatus.PENDING
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    assignee: str = ""
    description: str = ""
    workflow: str = ""
    requirements: str = ""
    dependencies: str = ""
    metadata: EpicMetadata | None = None
    cursor: Cursor = field(default_factory=Cursor)
    phases: list[Phase] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    tests: list[Test] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)

    # Lookups

    def find_phase(self, phase_id: str | None) -> Phase | None:
        return next((p for p in self.phases if p.id == phase_id), None)

    def find_task(self, task_id: str | None) -> Task | None:
        return next((t for t in self.tasks if t.id == task_id), None)

    def find_test(self, test_id: str | None) -> Test | None:
        return next((t for t in self.tests if t.id == test_id), None)

    def tasks_in_phase(self, phase_id: str) -> list[Task]:
        return [t for t in self.tasks if t.phase_id == phase_id]

    def tests_for_task(self, task_id: str) -> list[Test]:
        return [t for t in self.tests if t.task_id == task_id]

    def tests_in_phase(self, phase_id: str) -> list[Test]:
        return [t for t in self.tests if t.phase_id == phase_id]

    def wip_phases(self) -> list[Phase]:
        return [p for p in self.phases if p.status == PhaseStatus.WIP]

    def active_phase(self) -> Phase | None:
        """The phase work is happening in.

        The cursor's active phase when set, otherwise the single wip phase.
        """
        if self.cursor.active_phase_id:
            phase = self.find_phase(self.cursor.active_phase_id)
            if phase is not None and phase.status == PhaseStatus.WIP:
                return phase
        wip = self.wip_phases()
        return wip[0] if wip else None


def new_epic(epic_id: str, name: str, clock: Clock = utc_now, assignee: str = "") -> Epic:
    """Create an empty epic: pending, created now, empty cursor."""
    now = clock()
    return Epic(
        id=epic_id,
        name=name,
        status=EpicStatus.PENDING,
        created_at=now,
        assignee=assignee,
        metadata=EpicMetadata(created=now, assignee=assignee),
        cursor=Cursor(next_action_hint="Start epic"),
    )
