"""Tests for agentpm.workflow.fsm module."""

import logging

import pytest
from transitions import MachineError

from agentpm.workflow import fsm
from agentpm.workflow.fsm import StatusFSM


class TestTransitionTables:
    """Legality of (current, target) pairs."""

    @pytest.mark.parametrize("kind", ["epic", "phase"])
    def test_linear_kinds(self, kind):
        assert fsm.is_legal(kind, "pending", "wip")
        assert fsm.is_legal(kind, "wip", "done")
        assert not fsm.is_legal(kind, "pending", "done")
        assert not fsm.is_legal(kind, "done", "wip")

    def test_task_can_be_cancelled_before_done(self):
        assert fsm.is_legal("task", "pending", "cancelled")
        assert fsm.is_legal("task", "wip", "cancelled")
        assert not fsm.is_legal("task", "done", "cancelled")

    def test_cancelled_task_is_terminal(self):
        assert fsm.allowed_targets("task", "cancelled") == []

    def test_done_test_can_reopen(self):
        """A regression moves a done test back to wip."""
        assert fsm.is_legal("test", "done", "wip")
        assert fsm.trigger_for("test", "done", "wip") == "reopen"

    def test_cancelled_test_is_terminal(self):
        assert fsm.allowed_targets("test", "cancelled") == []

    def test_first_trigger_wins(self):
        """pending -> wip on a test is 'start', not 'fail'."""
        assert fsm.trigger_for("test", "pending", "wip") == "start"

    def test_unknown_pair_has_no_trigger(self):
        assert fsm.trigger_for("epic", "done", "pending") is None

    def test_allowed_targets_in_table_order(self):
        assert fsm.allowed_targets("task", "wip") == ["done", "cancelled"]

    def test_terminal_states_have_no_exits(self):
        for kind, terminal in fsm.TERMINAL.items():
            for state in terminal:
                assert fsm.allowed_targets(kind, state) == [], (kind, state)


class TestStatusFSM:
    """StatusFSM wraps a transitions Machine."""

    def test_starts_in_initial_state(self):
        assert StatusFSM("task", "wip").state == "wip"

    def test_fire_moves_state(self):
        machine = StatusFSM("task", "pending")
        assert machine.fire("start") == "wip"
        assert machine.fire("complete") == "done"

    def test_fire_invalid_trigger_raises(self):
        machine = StatusFSM("epic", "done")
        with pytest.raises(MachineError):
            machine.fire("start")

    def test_can(self):
        machine = StatusFSM("test", "done")
        assert machine.can("fail")
        assert machine.can("reopen")
        assert not machine.can("complete")

    def test_fail_keeps_wip(self):
        assert StatusFSM("test", "wip").fire("fail") == "wip"

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown entity kind"):
            StatusFSM("milestone", "pending")

    def test_unknown_status(self):
        with pytest.raises(ValueError, match="Unknown phase status 'cancelled'"):
            StatusFSM("phase", "cancelled")

    def test_no_auto_transitions(self):
        """Only the declared triggers exist."""
        machine = StatusFSM("phase", "pending")
        assert not hasattr(machine, "to_done")

    def test_logs_state_change(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="agentpm.workflow.fsm"):
            StatusFSM("task", "pending", label="task T1").fire("start")
        assert "[FSM] task T1: pending -> wip (start)" in caplog.text


class TestAdvance:
    def test_advance_returns_new_status(self):
        assert fsm.advance("phase", "pending", "start") == "wip"

    def test_advance_rejects_illegal_trigger(self):
        with pytest.raises(MachineError):
            fsm.advance("task", "cancelled", "start")
