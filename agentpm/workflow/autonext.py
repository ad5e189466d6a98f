"""
Auto-next: start whatever comes next without naming it.

Picks, in order:
    - nothing, if a task is already in progress
    - the first pending task of the active phase
    - nothing, if the active phase only needs completing
    - the first pending phase, and its first pending task
    - nothing, if all phases are done
"""

import logging
from datetime import datetime

from agentpm.epic.errors import EntityRef
from agentpm.epic.journal import entity_label
from agentpm.epic.models import Epic, EpicStatus, PhaseStatus, TaskStatus
from agentpm.workflow.engine import MutationResult, start_phase, start_task
from agentpm.workflow.hints import next_action

logger = logging.getLogger(__name__)

ALL_COMPLETE = "All phases and tasks completed. Epic ready for completion."


def _idle(epic: Epic, message: str) -> MutationResult:
    logger.debug(f"[ENGINE] {epic.id}: start_next is a no-op ({message})")
    return MutationResult(
        verb="start_next",
        entity=EntityRef(kind="epic", id=epic.id, name=epic.name, current_status=epic.status.value),
        changed=False,
        message=message,
        hint=next_action(epic),
    )


def start_next(epic: Epic, at: datetime, default_assignee: str = "") -> MutationResult:
    if epic.status == EpicStatus.PENDING:
        return _idle(epic, f"Epic {epic.id} has not been started")
    if epic.status == EpicStatus.DONE:
        return _idle(epic, f"Epic {epic.id} is already completed")

    wip_tasks = [t for t in epic.tasks if t.status == TaskStatus.WIP]
    if wip_tasks:
        task = epic.find_task(epic.cursor.active_task_id) or wip_tasks[0]
        return _idle(epic, f"Continue work on: {entity_label(task.id, task.name)}")

    phase = epic.active_phase()
    if phase is not None:
        pending = [t for t in epic.tasks_in_phase(phase.id) if t.status == TaskStatus.PENDING]
        if not pending:
            return _idle(epic, f"Complete phase {entity_label(phase.id, phase.name)}")
        result = start_task(epic, pending[0].id, at, default_assignee)
        result.verb = "start_next"
        result.message = f"Started task {pending[0].id} (auto-selected)"
        return result

    upcoming = [p for p in epic.phases if p.status == PhaseStatus.PENDING]
    if not upcoming:
        return _idle(epic, ALL_COMPLETE)

    phase = upcoming[0]
    result = start_phase(epic, phase.id, at)
    result.verb = "start_next"
    pending = [t for t in epic.tasks_in_phase(phase.id) if t.status == TaskStatus.PENDING]
    if not pending:
        result.message = f"Started phase {phase.id} (no tasks available)"
        return result

    task_result = start_task(epic, pending[0].id, at, default_assignee)
    return MutationResult(
        verb="start_next",
        entity=task_result.entity,
        changed=True,
        message=f"Started phase {phase.id} and task {pending[0].id} (auto-selected)",
        events=result.events + task_result.events,
        hint=task_result.hint,
    )
