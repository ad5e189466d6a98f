"""Shared fixtures: an epic builder and a fixed clock."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from agentpm.epic import store
from agentpm.epic.models import (
    Cursor,
    Epic,
    EpicMetadata,
    EpicStatus,
    Phase,
    PhaseStatus,
    Task,
    TaskStatus,
    Test,
    TestResult,
    TestStatus,
)
from agentpm.lib.clock import fixed_clock, parse_timestamp

CREATED = datetime(2025, 8, 16, 8, 0, tzinfo=timezone.utc)
STARTED = datetime(2025, 8, 16, 9, 0, tzinfo=timezone.utc)
NOW = datetime(2025, 8, 16, 10, 0, tzinfo=timezone.utc)


def ts(text: str) -> datetime:
    return parse_timestamp(text)


class EpicBuilder:
    """Builds an Epic in a given state without going through the engine.

    Entities that are wip or further along get started_at = STARTED, so a
    later timestamp is always a legal transition time.
    """

    def __init__(self, epic_id: str = "E1", name: str = "Test Epic", status: str = "pending"):
        self.epic = Epic(
            id=epic_id,
            name=name,
            status=EpicStatus(status),
            created_at=CREATED,
            started_at=STARTED if status != "pending" else None,
            metadata=EpicMetadata(created=CREATED, assignee="agent"),
        )

    def phase(self, phase_id: str, status: str = "pending", name: str = "") -> "EpicBuilder":
        self.epic.phases.append(Phase(
            id=phase_id,
            name=name or f"Phase {phase_id}",
            status=PhaseStatus(status),
            started_at=STARTED if status != "pending" else None,
            completed_at=STARTED if status == "done" else None,
        ))
        return self

    def task(self, task_id: str, phase_id: str, status: str = "pending", name: str = "") -> "EpicBuilder":
        self.epic.tasks.append(Task(
            id=task_id,
            phase_id=phase_id,
            name=name or f"Task {task_id}",
            status=TaskStatus(status),
            started_at=STARTED if status in ("wip", "done") else None,
            completed_at=STARTED if status == "done" else None,
            cancelled_at=STARTED if status == "cancelled" else None,
            cancellation_reason="dropped" if status == "cancelled" else "",
        ))
        return self

    def test(
        self,
        test_id: str,
        task_id: str,
        status: str = "pending",
        result: str | None = None,
        note: str = "",
        name: str = "",
    ) -> "EpicBuilder":
        task = self.epic.find_task(task_id)
        if result is None and status == "done":
            result = "passing"
        self.epic.tests.append(Test(
            id=test_id,
            task_id=task_id,
            phase_id=task.phase_id if task else "",
            name=name or f"Test {test_id}",
            test_status=TestStatus(status),
            test_result=TestResult(result) if result else None,
            started_at=STARTED if status in ("wip", "done") else None,
            passed_at=STARTED if status == "done" else None,
            failed_at=STARTED if result == "failing" else None,
            cancelled_at=STARTED if status == "cancelled" else None,
            failure_note=note,
            cancellation_reason="dropped" if status == "cancelled" else "",
        ))
        return self

    def cursor(self, phase: str | None = None, task: str | None = None, hint: str | None = None) -> "EpicBuilder":
        self.epic.cursor = Cursor(active_phase_id=phase, active_task_id=task, next_action_hint=hint)
        return self

    def build(self) -> Epic:
        return self.epic

    def write(self, path: Path) -> Path:
        store.save(self.epic, path)
        return path


@pytest.fixture
def builder():
    return EpicBuilder()


@pytest.fixture
def clock():
    return fixed_clock(NOW)


@pytest.fixture
def epic_file(tmp_path):
    return tmp_path / "epic.xml"


@pytest.fixture
def fresh_epic():
    """Pending epic: two pending phases, three pending tasks, three pending tests."""
    return (
        EpicBuilder()
        .phase("P1")
        .phase("P2")
        .task("T1", "P1")
        .task("T2", "P1")
        .task("T3", "P2")
        .test("TEST1", "T1")
        .test("TEST2", "T2")
        .test("TEST3", "T3")
        .build()
    )


@pytest.fixture
def working_epic():
    """Started epic with P1 wip, T1 wip, TEST1 wip, TEST2 pending; P2 untouched."""
    return (
        EpicBuilder(status="wip")
        .phase("P1", "wip")
        .phase("P2")
        .task("T1", "P1", "wip")
        .task("T2", "P1")
        .task("T3", "P2")
        .test("TEST1", "T1", "wip")
        .test("TEST2", "T1")
        .test("TEST3", "T3")
        .cursor(phase="P1", task="T1")
        .build()
    )
