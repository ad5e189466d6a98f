"""
Context around one entity, and the handoff summary.

context() shows an entity together with its parent chain, its siblings
(same parent) and its direct children. handoff() is what a collaborator
picking up the epic needs: identity, cursor, counts, recent events and
what is blocking progress.
"""

from agentpm.epic.errors import NotFound
from agentpm.epic.models import Epic, Phase, Task, Test, TestStatus
from agentpm.epic.query import (
    completion,
    counts,
    cursor_dict,
    epic_ref,
    event_dict,
    failing,
)
from agentpm.lib.clock import format_timestamp
from agentpm.lib.constants import HANDOFF_EVENT_LIMIT

KIND_ORDER = ("phase", "task", "test")


def _ts(value) -> str | None:
    return format_timestamp(value) if value is not None else None


def _summary(kind: str, entity) -> dict:
    data = {"kind": kind, "id": entity.id, "name": entity.name}
    if isinstance(entity, Test):
        data["status"] = entity.test_status.value
        data["result"] = entity.test_result.value if entity.test_result else None
    else:
        data["status"] = entity.status.value
    return data


def _phase_detail(phase: Phase) -> dict:
    return {
        **_summary("phase", phase),
        "description": phase.description,
        "deliverables": phase.deliverables,
        "started_at": _ts(phase.started_at),
        "completed_at": _ts(phase.completed_at),
    }


def _task_detail(task: Task) -> dict:
    return {
        **_summary("task", task),
        "phase_id": task.phase_id,
        "description": task.description,
        "acceptance_criteria": task.acceptance_criteria,
        "assignee": task.assignee,
        "started_at": _ts(task.started_at),
        "completed_at": _ts(task.completed_at),
        "cancelled_at": _ts(task.cancelled_at),
        "cancellation_reason": task.cancellation_reason,
    }


def _test_detail(test: Test) -> dict:
    return {
        **_summary("test", test),
        "task_id": test.task_id,
        "phase_id": test.phase_id,
        "description": test.description,
        "started_at": _ts(test.started_at),
        "passed_at": _ts(test.passed_at),
        "failed_at": _ts(test.failed_at),
        "cancelled_at": _ts(test.cancelled_at),
        "failure_note": test.failure_note,
        "cancellation_reason": test.cancellation_reason,
    }


def _epic_summary(epic: Epic) -> dict:
    return {"kind": "epic", "id": epic.id, "name": epic.name, "status": epic.status.value}


def find_any(epic: Epic, entity_id: str, kind: str | None = None) -> tuple[str, object]:
    """Find an entity by id, in one category or the first that has it."""
    finders = {"phase": epic.find_phase, "task": epic.find_task, "test": epic.find_test}
    kinds = [kind] if kind else list(KIND_ORDER)
    for k in kinds:
        entity = finders[k](entity_id)
        if entity is not None:
            return k, entity
    what = kind.capitalize() if kind else "Phase, task or test"
    raise NotFound(f"{what} {entity_id} not found in epic {epic.id}")


def context(epic: Epic, entity_id: str, kind: str | None = None) -> dict:
    kind, entity = find_any(epic, entity_id, kind)

    if kind == "phase":
        detail = _phase_detail(entity)
        parents = [_epic_summary(epic)]
        siblings = [_summary("phase", p) for p in epic.phases if p.id != entity.id]
        children = [_summary("task", t) for t in epic.tasks_in_phase(entity.id)]
        tests = epic.tests_in_phase(entity.id)
    elif kind == "task":
        detail = _task_detail(entity)
        phase = epic.find_phase(entity.phase_id)
        parents = ([_summary("phase", phase)] if phase else []) + [_epic_summary(epic)]
        siblings = [_summary("task", t) for t in epic.tasks_in_phase(entity.phase_id) if t.id != entity.id]
        children = [_summary("test", t) for t in epic.tests_for_task(entity.id)]
        tests = epic.tests_for_task(entity.id)
    else:
        detail = _test_detail(entity)
        task = epic.find_task(entity.task_id)
        phase = epic.find_phase(entity.phase_id)
        parents = (
            ([_summary("task", task)] if task else [])
            + ([_summary("phase", phase)] if phase else [])
            + [_epic_summary(epic)]
        )
        siblings = [_summary("test", t) for t in epic.tests_for_task(entity.task_id) if t.id != entity.id]
        children = []
        tests = []

    data = {
        "epic": epic.id,
        "entity": detail,
        "parents": parents,
        "siblings": siblings,
        "children": children,
    }
    if kind != "test":
        data["progress"] = {
            "children_total": len(children),
            "children_settled": sum(1 for c in children if c["status"] in ("done", "cancelled")),
            "tests_total": len(tests),
            "tests_done": sum(1 for t in tests if t.test_status == TestStatus.DONE),
        }
    return data


def handoff(epic: Epic, event_limit: int = HANDOFF_EVENT_LIMIT, check_completion: bool = False) -> dict:
    c = counts(epic)
    data = {
        "epic": {**epic_ref(epic).to_dict(), "assignee": epic.assignee},
        "current": cursor_dict(epic),
        **c.to_dict(),
        "completion_percent": c.completion_percent,
        "recent_events": [event_dict(e) for e in epic.events[-event_limit:]] if event_limit > 0 else [],
        "blockers": {"failing_tests": failing(epic)["tests"]},
    }
    if check_completion:
        data["blockers"]["completion"] = completion(epic).to_dict()
    return data
