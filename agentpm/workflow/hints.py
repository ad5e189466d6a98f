"""Next-action hint stored in the cursor after every applied mutation."""

from agentpm.epic.models import (
    Epic,
    EpicStatus,
    PhaseStatus,
    TaskStatus,
    TestResult,
    TestStatus,
)
from agentpm.epic.journal import entity_label
from agentpm.lib.constants import MAX_HINT_TESTS

EPIC_COMPLETE = "Epic complete"


def failing_test_ids(epic: Epic) -> list[str]:
    return [
        t.id for t in epic.tests
        if t.test_result == TestResult.FAILING and t.test_status != TestStatus.CANCELLED
    ]


def next_action(epic: Epic) -> str:
    """What the collaborator should do next, as one line."""
    if epic.status == EpicStatus.PENDING:
        return "Start epic"
    if epic.status == EpicStatus.DONE:
        return EPIC_COMPLETE

    failing = failing_test_ids(epic)
    if failing:
        shown = ", ".join(failing[:MAX_HINT_TESTS])
        more = len(failing) - MAX_HINT_TESTS
        if more > 0:
            shown += f" (+{more} more)"
        return f"Fix failing tests: {shown}"

    active_task = epic.find_task(epic.cursor.active_task_id)
    if active_task is not None and active_task.status == TaskStatus.WIP:
        return f"Continue work on: {entity_label(active_task.id, active_task.name)}"

    phase = epic.active_phase()
    if phase is not None:
        wip = [t for t in epic.tasks_in_phase(phase.id) if t.status == TaskStatus.WIP]
        if wip:
            return f"Continue work on: {entity_label(wip[0].id, wip[0].name)}"
        pending = [t for t in epic.tasks_in_phase(phase.id) if t.status == TaskStatus.PENDING]
        if pending:
            return f"Start next task: {entity_label(pending[0].id, pending[0].name)}"
        return f"Complete phase {entity_label(phase.id, phase.name)}"

    upcoming = [p for p in epic.phases if p.status == PhaseStatus.PENDING]
    if upcoming:
        return f"Start next phase: {entity_label(upcoming[0].id, upcoming[0].name)}"
    return "Complete epic"
