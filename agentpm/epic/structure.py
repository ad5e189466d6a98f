"""
Whole-document structural validation.

Runs before every mutation and backs the `validate` command. Each check
records "pass", "fail" or "warning"; any failure makes the report
invalid, warnings never do.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from agentpm.epic.models import (
    Epic,
    EpicStatus,
    PhaseStatus,
    TaskStatus,
    TestResult,
    TestStatus,
)

logger = logging.getLogger(__name__)

PASS = "pass"
FAIL = "fail"
WARNING = "warning"

CHECK_NAMES = (
    "xml_structure",
    "status_values",
    "phase_dependencies",
    "task_phase_mapping",
    "test_coverage",
    "result_consistency",
    "cursor_state",
    "timestamp_consistency",
)


@dataclass
class ValidationReport:
    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    checks: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "checks": dict(self.checks),
        }


class _Check:
    """Collects messages for one named check."""

    def __init__(self, report: ValidationReport, name: str):
        self.report = report
        self.name = name
        self.failed = False
        self.warned = False

    def error(self, message: str) -> None:
        self.failed = True
        self.report.errors.append(message)

    def warn(self, message: str) -> None:
        self.warned = True
        self.report.warnings.append(message)

    def close(self) -> None:
        if self.failed:
            self.report.checks[self.name] = FAIL
            self.report.valid = False
        elif self.warned:
            self.report.checks[self.name] = WARNING
        else:
            self.report.checks[self.name] = PASS


def _duplicates(ids: list[str]) -> list[str]:
    return sorted(i for i, n in Counter(ids).items() if n > 1 and i)


def _check_structure(epic: Epic, check: _Check) -> None:
    if not epic.id:
        check.error("Epic is missing an id")
    if not epic.name:
        check.error(f"Epic {epic.id or '(no id)'} is missing a name")
    if epic.created_at is None:
        check.error(f"Epic {epic.id} is missing created_at")

    for category, items in (("phase", epic.phases), ("task", epic.tasks), ("test", epic.tests)):
        ids = [item.id for item in items]
        if any(not i for i in ids):
            check.error(f"{category.capitalize()} without an id")
        for dup in _duplicates(ids):
            check.error(f"Duplicate {category} id: {dup}")

    for dup in _duplicates([e.id for e in epic.events]):
        check.error(f"Duplicate event id: {dup}")


def _check_status_values(epic: Epic, check: _Check) -> None:
    def expect(value, enum_cls: type[Enum], where: str) -> None:
        if not isinstance(value, enum_cls):
            check.error(f"Invalid status '{value}' on {where}")

    expect(epic.status, EpicStatus, f"epic {epic.id}")
    for phase in epic.phases:
        expect(phase.status, PhaseStatus, f"phase {phase.id}")
    for task in epic.tasks:
        expect(task.status, TaskStatus, f"task {task.id}")
    for test in epic.tests:
        expect(test.test_status, TestStatus, f"test {test.id}")
        if test.test_result is not None:
            expect(test.test_result, TestResult, f"test {test.id} result")


def _check_phase_dependencies(epic: Epic, check: _Check) -> None:
    phase_ids = {p.id for p in epic.phases}
    for task in epic.tasks:
        if task.phase_id not in phase_ids:
            check.error(f"Task {task.id} references unknown phase {task.phase_id}")


def _check_task_phase_mapping(epic: Epic, check: _Check) -> None:
    tasks = {t.id: t for t in epic.tasks}
    phase_ids = {p.id for p in epic.phases}
    for test in epic.tests:
        task = tasks.get(test.task_id)
        if task is None:
            check.error(f"Test {test.id} references unknown task {test.task_id}")
            continue
        if test.phase_id not in phase_ids:
            check.error(f"Test {test.id} references unknown phase {test.phase_id or '(none)'}")
        elif test.phase_id != task.phase_id:
            check.error(
                f"Test {test.id} is in phase {test.phase_id} but its task "
                f"{task.id} is in phase {task.phase_id}"
            )


def _check_test_coverage(epic: Epic, check: _Check) -> None:
    tested = {t.task_id for t in epic.tests}
    for task in epic.tasks:
        if task.id not in tested:
            check.warn(f"Task {task.id} has no tests")


def _check_result_consistency(epic: Epic, check: _Check) -> None:
    for test in epic.tests:
        if test.test_status == TestStatus.DONE and test.test_result != TestResult.PASSING:
            check.error(f"Test {test.id} is done but not passing")


def _check_cursor(epic: Epic, check: _Check) -> None:
    cursor = epic.cursor
    if cursor.active_phase_id and epic.find_phase(cursor.active_phase_id) is None:
        check.error(f"Current state references unknown phase {cursor.active_phase_id}")
    if cursor.active_task_id:
        task = epic.find_task(cursor.active_task_id)
        if task is None:
            check.error(f"Current state references unknown task {cursor.active_task_id}")
        elif cursor.active_phase_id and task.phase_id != cursor.active_phase_id:
            check.error(
                f"Active task {task.id} is in phase {task.phase_id}, "
                f"not the active phase {cursor.active_phase_id}"
            )


def _check_timestamps(epic: Epic, check: _Check) -> None:
    for phase in epic.phases:
        if phase.status != PhaseStatus.DONE and phase.completed_at is not None:
            check.warn(f"Phase {phase.id} is {phase.status.value} but has completed_at")
    for task in epic.tasks:
        if task.status != TaskStatus.DONE and task.completed_at is not None:
            check.warn(f"Task {task.id} is {task.status.value} but has completed_at")
        if task.status != TaskStatus.CANCELLED and task.cancelled_at is not None:
            check.warn(f"Task {task.id} is {task.status.value} but has cancelled_at")
    for test in epic.tests:
        if test.test_status != TestStatus.DONE and test.passed_at is not None:
            check.warn(f"Test {test.id} is {test.test_status.value} but has passed_at")
        if test.test_status != TestStatus.CANCELLED and test.cancelled_at is not None:
            check.warn(f"Test {test.id} is {test.test_status.value} but has cancelled_at")


_CHECKS = {
    "xml_structure": _check_structure,
    "status_values": _check_status_values,
    "phase_dependencies": _check_phase_dependencies,
    "task_phase_mapping": _check_task_phase_mapping,
    "test_coverage": _check_test_coverage,
    "result_consistency": _check_result_consistency,
    "cursor_state": _check_cursor,
    "timestamp_consistency": _check_timestamps,
}


def validate_structure(epic: Epic) -> ValidationReport:
    """Run every structural check over `epic`."""
    report = ValidationReport()
    for name in CHECK_NAMES:
        check = _Check(report, name)
        _CHECKS[name](epic, check)
        check.close()

    if not report.valid:
        logger.info(f"[VALIDATE] {epic.id}: {len(report.errors)} structural errors")
    return report
