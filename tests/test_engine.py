"""Tests for agentpm.workflow.engine module."""

import logging

import pytest

from agentpm.epic import store
from agentpm.epic.errors import (
    CompletionBlocked,
    ConstraintViolation,
    InvalidTransition,
    MissingArgument,
    NotFound,
    SchemaViolation,
)
from agentpm.epic.models import (
    EpicStatus,
    EventType,
    PhaseStatus,
    TaskStatus,
    TestResult,
    TestStatus,
)
from agentpm.lib.clock import fixed_clock
from agentpm.workflow import engine
from agentpm.workflow.engine import EpicEngine

from conftest import NOW, STARTED, EpicBuilder, ts


def _batch_epic():
    """TEST1 and TEST2 wip in the active phase, TEST3 pending in P2."""
    return (
        EpicBuilder(status="wip")
        .phase("P1", "wip")
        .phase("P2")
        .task("T1", "P1", "wip")
        .task("T3", "P2")
        .test("TEST1", "T1", "wip")
        .test("TEST2", "T1", "wip")
        .test("TEST3", "T3")
        .cursor(phase="P1", task="T1")
    )


class TestScenarios:
    """End-to-end behaviour through the file-backed engine."""

    def test_start_epic_is_idempotent(self, epic_file, fresh_epic):
        store.save(fresh_epic, epic_file)
        eng = EpicEngine(epic_file)

        first = eng.start_epic(at=ts("2025-08-16T10:00:00Z"))
        assert first.changed
        epic = store.load(epic_file)
        assert epic.status == EpicStatus.WIP
        assert [e.type for e in epic.events] == [EventType.EPIC_STARTED]

        before = epic_file.read_bytes()
        second = eng.start_epic(at=ts("2025-08-16T10:05:00Z"))
        assert not second.changed
        assert "already started" in second.message
        assert second.events == []
        assert epic_file.read_bytes() == before

    def test_phase_completion_blocked_by_tests(self, epic_file):
        (
            EpicBuilder(status="wip")
            .phase("P1", "wip")
            .task("T1", "P1", "wip")
            .task("T2", "P1", "wip")
            .test("TEST1", "T1")
            .test("TEST2", "T1", "wip")
            .cursor(phase="P1")
            .write(epic_file)
        )
        before = epic_file.read_bytes()

        with pytest.raises(CompletionBlocked) as exc:
            EpicEngine(epic_file).done_phase("P1", at=NOW)

        err = exc.value
        assert "2 pending/wip tasks, 2 pending/wip tests" in err.message
        assert [(b.kind, b.id, b.current_status) for b in err.blockers] == [
            ("task", "T1", "wip"),
            ("task", "T2", "wip"),
            ("test", "TEST1", "pending"),
            ("test", "TEST2", "wip"),
        ]
        assert epic_file.read_bytes() == before

    def test_pass_test_happy_path(self, epic_file, working_epic):
        working_epic.find_test("TEST1").failure_note = "flaky"
        store.save(working_epic, epic_file)
        at = ts("2025-08-16T14:30:00Z")

        result = EpicEngine(epic_file).pass_test("TEST1", at=at)

        test = store.load(epic_file).find_test("TEST1")
        assert result.changed
        assert test.test_status == TestStatus.DONE
        assert test.test_result == TestResult.PASSING
        assert test.passed_at == at
        assert test.failure_note == ""
        assert [e.type for e in result.events] == [EventType.TEST_PASSED]
        assert result.events[0].timestamp == at

    def test_fail_resets_passing_test(self, epic_file, working_epic):
        test = working_epic.find_test("TEST1")
        test.test_status = TestStatus.DONE
        test.test_result = TestResult.PASSING
        test.passed_at = STARTED
        store.save(working_epic, epic_file)

        EpicEngine(epic_file).fail_test("TEST1", "regression", at=NOW)

        test = store.load(epic_file).find_test("TEST1")
        assert test.test_status == TestStatus.WIP
        assert test.test_result == TestResult.FAILING
        assert test.failed_at == NOW
        assert test.passed_at is None
        assert test.failure_note == "regression"
        assert store.load(epic_file).events[-1].type == EventType.TEST_FAILED

    def test_batch_pass_is_all_or_nothing(self, epic_file):
        _batch_epic().write(epic_file)
        before = epic_file.read_bytes()

        with pytest.raises(ConstraintViolation) as exc:
            EpicEngine(epic_file).batch("pass", ["TEST1", "TEST2", "TEST3"], at=NOW)

        assert [b.id for b in exc.value.blockers] == ["TEST3"]
        assert "Test TEST3 is in phase P2, not the active phase P1" in str(exc.value)
        assert epic_file.read_bytes() == before
        epic = store.load(epic_file)
        assert epic.events == []
        assert [t.test_status for t in epic.tests] == [TestStatus.WIP, TestStatus.WIP, TestStatus.PENDING]

    def test_batch_refused_for_unstarted_test_in_active_phase(self):
        epic = _batch_epic().build()
        epic.find_test("TEST2").test_status = TestStatus.PENDING
        with pytest.raises(InvalidTransition, match="TEST2 cannot move from pending to done"):
            engine.batch(epic, "pass", ["TEST1", "TEST2"], NOW)
        assert epic.find_test("TEST1").test_status == TestStatus.WIP
        assert epic.events == []

    def test_cancel_task_requires_reason(self, epic_file, working_epic):
        store.save(working_epic, epic_file)
        eng = EpicEngine(epic_file)
        before = epic_file.read_bytes()

        with pytest.raises(MissingArgument):
            eng.cancel_task("T1", "", at=NOW)
        assert epic_file.read_bytes() == before

        eng.cancel_task("T1", "deprioritized", at=NOW)
        epic = store.load(epic_file)
        task = epic.find_task("T1")
        assert task.status == TaskStatus.CANCELLED
        assert task.cancelled_at == NOW
        assert task.cancellation_reason == "deprioritized"
        assert epic.cursor.active_task_id is None
        assert epic.events[-1].type == EventType.TASK_CANCELLED
        assert epic.events[-1].data == "Task T1 (Task T1) cancelled: deprioritized"


class TestEpicVerbs:
    def test_start_epic_sets_started_at(self, fresh_epic):
        engine.start_epic(fresh_epic, NOW)
        assert fresh_epic.started_at == NOW
        assert fresh_epic.cursor.next_action_hint == "Start next phase: P1 (Phase P1)"

    def test_done_epic(self):
        epic = EpicBuilder(status="wip").phase("P1", "done").cursor(phase="P1").build()
        result = engine.done_epic(epic, NOW)
        assert epic.status == EpicStatus.DONE
        assert epic.completed_at == NOW
        assert epic.cursor.active_phase_id is None
        assert result.hint == "Epic complete"

    def test_done_epic_twice_is_noop(self):
        epic = EpicBuilder(status="done").build()
        result = engine.done_epic(epic, NOW)
        assert not result.changed
        assert epic.events == []

    def test_done_epic_blocked(self, working_epic):
        with pytest.raises(CompletionBlocked):
            engine.done_epic(working_epic, NOW)
        assert working_epic.status == EpicStatus.WIP


class TestPhaseVerbs:
    def test_start_phase_moves_cursor(self):
        epic = EpicBuilder(status="wip").phase("P1").task("T1", "P1").build()
        engine.start_phase(epic, "P1", NOW)
        assert epic.find_phase("P1").status == PhaseStatus.WIP
        assert epic.cursor.active_phase_id == "P1"
        assert epic.cursor.next_action_hint == "Start next task: T1 (Task T1)"

    def test_start_second_phase_refused(self, working_epic):
        with pytest.raises(ConstraintViolation):
            engine.start_phase(working_epic, "P2", NOW)

    def test_start_missing_phase(self, working_epic):
        with pytest.raises(NotFound, match="Phase P9 not found"):
            engine.start_phase(working_epic, "P9", NOW)

    def test_done_phase_clears_cursor(self):
        epic = (
            EpicBuilder(status="wip")
            .phase("P1", "wip")
            .phase("P2")
            .task("T1", "P1", "done")
            .test("TEST1", "T1", "done")
            .cursor(phase="P1")
            .build()
        )
        engine.done_phase(epic, "P1", NOW)
        assert epic.find_phase("P1").completed_at == NOW
        assert epic.cursor.active_phase_id is None
        assert epic.cursor.next_action_hint == "Start next phase: P2 (Phase P2)"


class TestTaskVerbs:
    def test_start_task_sets_cursor_and_assignee(self):
        epic = EpicBuilder(status="wip").phase("P1", "wip").task("T1", "P1").build()
        engine.start_task(epic, "T1", NOW, default_assignee="agent_claude")
        task = epic.find_task("T1")
        assert task.status == TaskStatus.WIP
        assert task.assignee == "agent_claude"
        assert epic.cursor.active_task_id == "T1"
        assert epic.cursor.active_phase_id == "P1"

    def test_start_task_keeps_existing_assignee(self):
        epic = EpicBuilder(status="wip").phase("P1", "wip").task("T1", "P1").build()
        epic.find_task("T1").assignee = "alice"
        engine.start_task(epic, "T1", NOW, default_assignee="agent")
        assert epic.find_task("T1").assignee == "alice"

    def test_start_task_again_is_noop(self, working_epic):
        result = engine.start_task(working_epic, "T1", NOW)
        assert not result.changed
        assert result.message == "Task T1 already started"

    def test_done_task(self):
        epic = (
            EpicBuilder(status="wip")
            .phase("P1", "wip")
            .task("T1", "P1", "wip")
            .task("T2", "P1")
            .test("TEST1", "T1", "done")
            .cursor(phase="P1", task="T1")
            .build()
        )
        engine.done_task(epic, "T1", NOW)
        assert epic.find_task("T1").status == TaskStatus.DONE
        assert epic.cursor.active_task_id is None
        assert epic.cursor.next_action_hint == "Start next task: T2 (Task T2)"

    def test_cancel_done_task_refused(self):
        epic = EpicBuilder(status="wip").phase("P1", "wip").task("T1", "P1", "done").build()
        with pytest.raises(InvalidTransition):
            engine.cancel_task(epic, "T1", "too late", NOW)


class TestTestVerbs:
    def test_start_test(self, working_epic):
        engine.start_test(working_epic, "TEST2", NOW)
        test = working_epic.find_test("TEST2")
        assert test.test_status == TestStatus.WIP
        assert test.started_at == NOW

    def test_pass_pending_test_refused(self, working_epic):
        """A test is started before it can pass."""
        with pytest.raises(InvalidTransition):
            engine.pass_test(working_epic, "TEST2", NOW)

    def test_pass_done_test_is_noop(self, working_epic):
        engine.pass_test(working_epic, "TEST1", NOW)
        again = engine.pass_test(working_epic, "TEST1", NOW)
        assert not again.changed
        assert len(working_epic.events) == 1

    def test_fail_pending_test_starts_it(self, working_epic):
        engine.fail_test(working_epic, "TEST2", "boom", NOW)
        test = working_epic.find_test("TEST2")
        assert test.test_status == TestStatus.WIP
        assert test.started_at == NOW
        assert working_epic.cursor.next_action_hint == "Fix failing tests: TEST2"

    def test_pass_after_fail_clears_failure(self, working_epic):
        engine.fail_test(working_epic, "TEST1", "boom", NOW)
        engine.pass_test(working_epic, "TEST1", NOW)
        test = working_epic.find_test("TEST1")
        assert test.failed_at is None
        assert test.failure_note == ""
        assert test.test_result == TestResult.PASSING

    def test_cancel_test(self, working_epic):
        engine.cancel_test(working_epic, "TEST2", "obsolete", NOW)
        test = working_epic.find_test("TEST2")
        assert test.test_status == TestStatus.CANCELLED
        assert test.cancellation_reason == "obsolete"

    def test_cancel_test_requires_reason(self, working_epic):
        with pytest.raises(MissingArgument):
            engine.cancel_test(working_epic, "TEST2", "  ", NOW)


class TestBatch:
    def test_batch_pass_emits_one_event_per_test(self):
        epic = _batch_epic().build()
        result = engine.batch(epic, "pass", ["TEST1", "TEST2"], NOW)
        assert result.changed
        assert result.message == "2 of 2 tests passed"
        assert [e.type for e in epic.events] == [EventType.TEST_PASSED, EventType.TEST_PASSED]

    def test_batch_skips_already_passing(self):
        epic = _batch_epic().build()
        engine.pass_test(epic, "TEST1", NOW)
        result = engine.batch(epic, "pass", ["TEST1", "TEST2"], NOW)
        assert result.message == "1 of 2 tests passed (1 already passing)"
        assert len(result.events) == 1

    def test_batch_fail_with_note(self):
        epic = _batch_epic().build()
        engine.batch(epic, "fail", ["TEST1", "TEST2"], NOW, note="ci red")
        assert {t.failure_note for t in epic.tests[:2]} == {"ci red"}
        assert epic.cursor.next_action_hint == "Fix failing tests: TEST1, TEST2"

    def test_batch_dedupes_ids(self):
        epic = _batch_epic().build()
        result = engine.batch(epic, "pass", ["TEST1", "TEST1"], NOW)
        assert len(result.events) == 1

    def test_empty_batch(self):
        with pytest.raises(MissingArgument):
            engine.batch(_batch_epic().build(), "pass", [], NOW)

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            engine.batch(_batch_epic().build(), "skip", ["TEST1"], NOW)


class TestLogNote:
    def test_log_note(self, working_epic):
        result = engine.log_note(working_epic, "  waiting on review  ", NOW)
        assert working_epic.events[-1].type == EventType.NOTE
        assert working_epic.events[-1].data == "waiting on review"
        assert result.changed

    def test_empty_note(self, working_epic):
        with pytest.raises(MissingArgument):
            engine.log_note(working_epic, "", NOW)


class TestProperties:
    """Event conservation, cursor soundness and determinism."""

    def test_refusal_appends_no_event(self, working_epic):
        with pytest.raises(ConstraintViolation):
            engine.start_task(working_epic, "T2", NOW)
        assert working_epic.events == []
        assert working_epic.find_task("T2").status == TaskStatus.PENDING

    def test_each_mutation_appends_one_event(self, fresh_epic):
        engine.start_epic(fresh_epic, NOW)
        engine.start_phase(fresh_epic, "P1", NOW)
        engine.start_task(fresh_epic, "T1", NOW)
        engine.start_test(fresh_epic, "TEST1", NOW)
        engine.pass_test(fresh_epic, "TEST1", NOW)
        assert len(fresh_epic.events) == 5
        assert len({e.id for e in fresh_epic.events}) == 5

    def test_cursor_points_at_wip_entities(self, fresh_epic):
        engine.start_epic(fresh_epic, NOW)
        engine.start_phase(fresh_epic, "P1", NOW)
        engine.start_task(fresh_epic, "T1", NOW)
        engine.cancel_task(fresh_epic, "T1", "split", NOW)
        cursor = fresh_epic.cursor
        assert fresh_epic.find_phase(cursor.active_phase_id).status == PhaseStatus.WIP
        assert cursor.active_task_id is None

    def test_same_clock_same_bytes(self, tmp_path, fresh_epic):
        outputs = []
        for run in ("a", "b"):
            path = tmp_path / f"{run}.xml"
            store.save(fresh_epic, path)
            eng = EpicEngine(path, clock=fixed_clock(NOW), default_assignee="agent")
            eng.start_epic()
            eng.start_phase("P1")
            eng.start_task("T1")
            eng.log_note("checkpoint")
            outputs.append(path.read_bytes())
        assert outputs[0] == outputs[1]


class TestEpicEngine:
    """File-backed pipeline."""

    def test_uses_clock_when_no_time_given(self, epic_file, fresh_epic):
        store.save(fresh_epic, epic_file)
        EpicEngine(epic_file, clock=fixed_clock(NOW)).start_epic()
        assert store.load(epic_file).started_at == NOW

    def test_explicit_time_wins(self, epic_file, fresh_epic):
        store.save(fresh_epic, epic_file)
        at = ts("2025-08-17T00:00:00Z")
        EpicEngine(epic_file, clock=fixed_clock(NOW)).start_epic(at=at)
        assert store.load(epic_file).started_at == at

    def test_default_assignee(self, epic_file, working_epic):
        working_epic.find_task("T1").status = TaskStatus.DONE
        store.save(working_epic, epic_file)
        EpicEngine(epic_file, default_assignee="agent_claude").start_task("T2", at=NOW)
        assert store.load(epic_file).find_task("T2").assignee == "agent_claude"

    def test_structurally_invalid_document_refused(self, epic_file, working_epic):
        working_epic.tasks[0].phase_id = "P9"
        store.save(working_epic, epic_file)
        with pytest.raises(SchemaViolation, match="failed structural validation"):
            EpicEngine(epic_file).log_note("hello", at=NOW)

    def test_missing_document(self, tmp_path):
        with pytest.raises(NotFound):
            EpicEngine(tmp_path / "none.xml").start_epic(at=NOW)

    def test_logs_applied_transition(self, epic_file, fresh_epic, caplog):
        store.save(fresh_epic, epic_file)
        with caplog.at_level(logging.INFO, logger="agentpm.workflow.engine"):
            EpicEngine(epic_file).start_epic(at=NOW)
        assert "[ENGINE] E1: epic E1 pending -> wip (start_epic)" in caplog.text

    def test_logs_refusal(self, epic_file, working_epic, caplog):
        store.save(working_epic, epic_file)
        with caplog.at_level(logging.INFO, logger="agentpm.workflow.engine"):
            with pytest.raises(CompletionBlocked):
                EpicEngine(epic_file).done_epic(at=NOW)
        assert "refused with completion_blocked" in caplog.text

    def test_result_dict(self, epic_file, fresh_epic):
        store.save(fresh_epic, epic_file)
        data = EpicEngine(epic_file).start_epic(at=NOW).to_dict()
        assert data["verb"] == "start_epic"
        assert data["changed"] is True
        assert data["entity"]["id"] == "E1"
        assert data["events"][0]["type"] == "epic_started"
        assert data["next_action"] == "Start next phase: P1 (Phase P1)"
