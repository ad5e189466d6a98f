"""
Read-only projections over a loaded epic.

Nothing here mutates. The only failure is NotFound for an id that is not
in the epic.
"""

from dataclasses import dataclass, field

from agentpm.epic.errors import EntityRef
from agentpm.epic.models import (
    Epic,
    EpicStatus,
    Event,
    PhaseStatus,
    TaskStatus,
    TestResult,
    TestStatus,
)
from agentpm.lib.clock import format_timestamp
from agentpm.workflow.guards import TransitionCheck, validate_transition
from agentpm.workflow.hints import next_action


def _ts(value) -> str | None:
    return format_timestamp(value) if value is not None else None


def epic_ref(epic: Epic) -> EntityRef:
    return EntityRef(kind="epic", id=epic.id, name=epic.name, current_status=epic.status.value)


def event_dict(event: Event) -> dict:
    return {
        "id": event.id,
        "type": event.type.value,
        "timestamp": format_timestamp(event.timestamp),
        "data": event.data,
    }


@dataclass
class Counts:
    phases_total: int = 0
    phases_done: int = 0
    tasks_total: int = 0
    tasks_done: int = 0
    tasks_cancelled: int = 0
    tests_total: int = 0
    tests_passing: int = 0
    tests_failing: int = 0
    tests_pending: int = 0
    tests_cancelled: int = 0

    @property
    def completion_percent(self) -> int:
        if self.phases_total == 0:
            return 0
        return self.phases_done * 100 // self.phases_total

    def to_dict(self) -> dict:
        return {
            "phases": {"done": self.phases_done, "total": self.phases_total},
            "tasks": {
                "done": self.tasks_done,
                "cancelled": self.tasks_cancelled,
                "total": self.tasks_total,
            },
            "tests": {
                "passing": self.tests_passing,
                "failing": self.tests_failing,
                "pending": self.tests_pending,
                "cancelled": self.tests_cancelled,
                "total": self.tests_total,
            },
        }


def counts(epic: Epic) -> Counts:
    c = Counts(
        phases_total=len(epic.phases),
        phases_done=sum(1 for p in epic.phases if p.status == PhaseStatus.DONE),
        tasks_total=len(epic.tasks),
        tasks_done=sum(1 for t in epic.tasks if t.status == TaskStatus.DONE),
        tasks_cancelled=sum(1 for t in epic.tasks if t.status == TaskStatus.CANCELLED),
        tests_total=len(epic.tests),
    )
    for test in epic.tests:
        if test.test_status == TestStatus.CANCELLED:
            c.tests_cancelled += 1
        elif test.test_result == TestResult.FAILING:
            c.tests_failing += 1
        elif test.test_status == TestStatus.DONE:
            c.tests_passing += 1
        else:
            c.tests_pending += 1
    return c


def cursor_dict(epic: Epic) -> dict:
    phase = epic.find_phase(epic.cursor.active_phase_id)
    task = epic.find_task(epic.cursor.active_task_id)
    return {
        "active_phase": phase.id if phase else epic.cursor.active_phase_id,
        "active_phase_name": phase.name if phase else None,
        "active_task": task.id if task else epic.cursor.active_task_id,
        "active_task_name": task.name if task else None,
        "next_action": epic.cursor.next_action_hint or next_action(epic),
    }


# ─────────────────────────────────────────────────────────────────────────────
# Projections
# ─────────────────────────────────────────────────────────────────────────────

def status(epic: Epic) -> dict:
    c = counts(epic)
    return {
        "epic": {
            "id": epic.id,
            "name": epic.name,
            "status": epic.status.value,
            "assignee": epic.assignee,
            "created_at": _ts(epic.created_at),
            "started_at": _ts(epic.started_at),
            "completed_at": _ts(epic.completed_at),
        },
        **c.to_dict(),
        "completion_percent": c.completion_percent,
        "current": cursor_dict(epic),
    }


def current(epic: Epic) -> dict:
    data = cursor_dict(epic)
    data["epic"] = epic.id
    data["epic_status"] = epic.status.value
    return data


def pending(epic: Epic) -> dict:
    """Pending and wip tasks grouped by phase, in declaration order."""
    groups = []
    for phase in epic.phases:
        tasks = [
            {
                "id": t.id,
                "name": t.name,
                "status": t.status.value,
                "assignee": t.assignee,
            }
            for t in epic.tasks_in_phase(phase.id)
            if t.status in (TaskStatus.PENDING, TaskStatus.WIP)
        ]
        if tasks:
            groups.append({
                "phase": phase.id,
                "phase_name": phase.name,
                "phase_status": phase.status.value,
                "tasks": tasks,
            })
    return {
        "epic": epic.id,
        "total": sum(len(g["tasks"]) for g in groups),
        "phases": groups,
    }


def failing(epic: Epic) -> dict:
    tests = [
        {
            "id": t.id,
            "name": t.name,
            "task_id": t.task_id,
            "phase_id": t.phase_id,
            "test_status": t.test_status.value,
            "failed_at": _ts(t.failed_at),
            "failure_note": t.failure_note,
        }
        for t in epic.tests
        if t.test_result == TestResult.FAILING and t.test_status != TestStatus.CANCELLED
    ]
    return {"epic": epic.id, "total": len(tests), "tests": tests}


def events(epic: Epic, limit: int | None = None, newest_first: bool = False) -> dict:
    """The last `limit` events (all when None), oldest first unless asked."""
    selected = list(epic.events)
    if limit is not None and limit >= 0:
        selected = selected[-limit:] if limit else []
    if newest_first:
        selected.reverse()
    return {
        "epic": epic.id,
        "total": len(epic.events),
        "shown": len(selected),
        "order": "newest_first" if newest_first else "oldest_first",
        "events": [event_dict(e) for e in selected],
    }


def can_complete_epic(epic: Epic) -> TransitionCheck:
    """Whether done_epic would be allowed right now."""
    return validate_transition(epic, "epic", epic.id, "done")


@dataclass
class Completion:
    """Answer to "can this epic be completed?"."""
    ok: bool
    message: str = ""
    blockers: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "can_complete": self.ok,
            "message": self.message,
            "blockers": [b.to_dict() for b in self.blockers],
        }


def completion(epic: Epic) -> Completion:
    if epic.status == EpicStatus.DONE:
        return Completion(ok=False, message=f"Epic {epic.id} is already completed")
    check = can_complete_epic(epic)
    if check.ok:
        return Completion(ok=True, message=f"Epic {epic.id} can be completed")
    return Completion(ok=False, message=check.message, blockers=check.blockers)

