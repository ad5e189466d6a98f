"""Tests for agentpm.lib.output and agentpm.epic.journal modules."""

import json
import xml.etree.ElementTree as ET

from agentpm.epic.errors import Blocker, CompletionBlocked
from agentpm.epic.journal import append_event, event_id, render_payload
from agentpm.epic.models import EventType
from agentpm.lib.output import Output, item_line, to_xml

from conftest import NOW, EpicBuilder


class TestToXml:
    def test_nested_dicts_and_lists(self):
        root = ET.fromstring(to_xml("pending", {
            "total": 2,
            "phases": [{"phase": "P1", "tasks": [{"id": "T1"}, {"id": "T2"}]}],
        }))
        assert root.findtext("total") == "2"
        assert [t.findtext("id") for t in root.findall("phases/phase/tasks/task")] == ["T1", "T2"]

    def test_none_skipped_and_bools_lowercase(self):
        root = ET.fromstring(to_xml("r", {"a": None, "ok": True}))
        assert root.find("a") is None
        assert root.findtext("ok") == "true"

    def test_unknown_list_uses_item(self):
        root = ET.fromstring(to_xml("r", {"things": ["x"]}))
        assert root.findtext("things/item") == "x"


class TestItemLine:
    def test_markup(self):
        assert item_line("T1", "Build", "done") == "\\[x] T1 Build ([green]done[/green])"

    def test_result_appended(self):
        line = item_line("TEST1", "Lint", "wip", "failing")
        assert line.endswith("([yellow]wip[/yellow], [red]failing[/red])")


class TestOutputError:
    """Errors go to stderr in the selected format."""

    def _error(self):
        return CompletionBlocked(
            "Epic E1 cannot be completed: 1 pending/wip phase",
            blockers=[Blocker(kind="phase", id="P1", name="Setup", current_status="wip")],
            suggestion="Complete all phases before completing the epic",
        )

    def test_text(self, capsys):
        Output("text").error(self._error())
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err.splitlines() == [
            "ERROR: Epic E1 cannot be completed: 1 pending/wip phase",
            "Blocked by:",
            "  [>] phase P1 Setup (wip)",
            "Suggestion: Complete all phases before completing the epic",
        ]

    def test_json(self, capsys):
        Output("json").error(self._error())
        data = json.loads(capsys.readouterr().err)
        assert data["error"]["kind"] == "completion_blocked"
        assert data["error"]["blockers"][0]["id"] == "P1"


class TestJournal:
    """Event ids and payloads."""

    def test_event_id(self):
        assert event_id(EventType.TASK_STARTED, NOW, 4) == "task_started_1755338400_4"

    def test_same_second_events_get_distinct_ids(self):
        epic = EpicBuilder().build()
        first = append_event(epic, EventType.NOTE, NOW, detail="a")
        second = append_event(epic, EventType.NOTE, NOW, detail="b")
        assert first.id != second.id

    def test_payloads(self):
        assert render_payload(EventType.TEST_FAILED, "TEST1", "Lint", "timeout") == "Test TEST1 (Lint) failed: timeout"
        assert render_payload(EventType.PHASE_STARTED, "P1") == "Phase P1 started"
        assert render_payload(EventType.NOTE, detail="hello") == "hello"
