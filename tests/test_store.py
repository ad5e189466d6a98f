"""Tests for agentpm.epic.store module."""

import pytest

from agentpm.epic import store
from agentpm.epic.errors import IOFailure, MalformedDocument, NotFound, SchemaMismatch
from agentpm.epic.models import (
    EpicStatus,
    EventType,
    TestResult,
    TestStatus,
)
from agentpm.epic.journal import append_event

from conftest import NOW, EpicBuilder


SAMPLE = """<?xml version="1.0" encoding="UTF-8"?>
<epic id="8" name="Schema Validation" status="wip" created_at="2025-08-15T09:00:00Z">
    <assignee>agent_claude</assignee>
    <description>Validate <b>all</b> inputs</description>
    <workflow>Phases run in order</workflow>
    <metadata>
        <created>2025-08-15T09:00:00Z</created>
        <assignee>agent_claude</assignee>
        <estimated_effort>3 days</estimated_effort>
    </metadata>
    <current_state>
        <active_phase>1A</active_phase>
        <active_task>1A_1</active_task>
        <next_action>Continue work on: 1A_1</next_action>
    </current_state>
    <phases>
        <phase id="1A" name="Setup" status="wip">
            <description>Project setup</description>
            <started_at>2025-08-15T10:00:00Z</started_at>
        </phase>
        <phase id="1B" name="Build" status="pending"/>
    </phases>
    <tasks>
        <task id="1A_1" phase_id="1A" name="Init" status="wip" assignee="agent_claude">
            <acceptance_criteria>Repo exists</acceptance_criteria>
            <started_at>2025-08-15T10:05:00Z</started_at>
        </task>
    </tasks>
    <tests>
        <test id="T1A_1" task_id="1A_1" phase_id="1A" name="Repo check" test_status="wip" result="failing">
            <started_at>2025-08-15T10:06:00Z</started_at>
            <failed_at>2025-08-15T10:07:00Z</failed_at>
            <failure_note>missing README</failure_note>
        </test>
        <test id="T1A_2" task_id="1A_1" phase_id="1A" name="Lint" test_status="pending"/>
    </tests>
    <events>
        <event id="epic_started_1723712400_1" type="epic_started" timestamp="2025-08-15T09:00:00Z">Epic 8 (Schema Validation) started</event>
    </events>
</epic>
"""


class TestParse:
    """Parsing document text into the model."""

    def test_parses_identity_and_status(self):
        """Root attributes map onto the epic."""
        epic = store.parse_epic(SAMPLE)
        assert epic.id == "8"
        assert epic.name == "Schema Validation"
        assert epic.status == EpicStatus.WIP
        assert epic.assignee == "agent_claude"

    def test_keeps_nested_markup_in_text(self):
        """Inner markup in free-text fields is kept verbatim."""
        epic = store.parse_epic(SAMPLE)
        assert epic.description == "Validate <b>all</b> inputs"

    def test_parses_cursor(self):
        epic = store.parse_epic(SAMPLE)
        assert epic.cursor.active_phase_id == "1A"
        assert epic.cursor.active_task_id == "1A_1"
        assert epic.cursor.next_action_hint == "Continue work on: 1A_1"

    def test_parses_metadata(self):
        epic = store.parse_epic(SAMPLE)
        assert epic.metadata.estimated_effort == "3 days"
        assert epic.metadata.assignee == "agent_claude"

    def test_parses_test_status_and_result(self):
        """test_status and result are separate fields."""
        epic = store.parse_epic(SAMPLE)
        failing = epic.find_test("T1A_1")
        assert failing.test_status == TestStatus.WIP
        assert failing.test_result == TestResult.FAILING
        assert failing.failure_note == "missing README"

    def test_pending_test_has_no_result(self):
        epic = store.parse_epic(SAMPLE)
        assert epic.find_test("T1A_2").test_result is None

    def test_old_status_attribute_on_tests(self):
        """A test carrying only `status` is still read."""
        text = SAMPLE.replace('name="Lint" test_status="pending"', 'name="Lint" status="wip"')
        epic = store.parse_epic(text)
        assert epic.find_test("T1A_2").test_status == TestStatus.WIP

    def test_events_keep_order(self):
        epic = store.parse_epic(SAMPLE)
        assert [e.type for e in epic.events] == [EventType.EPIC_STARTED]


class TestParseErrors:
    """Documents that cannot become an epic."""

    def test_not_xml(self):
        with pytest.raises(MalformedDocument, match="not well-formed"):
            store.parse_epic("<epic id='1'")

    def test_wrong_root(self):
        with pytest.raises(SchemaMismatch, match="root element is <project>"):
            store.parse_epic("<project id='1'/>")

    def test_schema_mismatch_is_malformed(self):
        """SchemaMismatch is reported with the malformed kind."""
        with pytest.raises(MalformedDocument):
            store.parse_epic("<project id='1'/>")

    def test_missing_epic_id(self):
        with pytest.raises(SchemaMismatch, match="'id'"):
            store.parse_epic("<epic name='x'/>")

    def test_task_without_phase_id(self):
        text = SAMPLE.replace('<task id="1A_1" phase_id="1A"', '<task id="1A_1"')
        with pytest.raises(SchemaMismatch, match="phase_id"):
            store.parse_epic(text)

    @pytest.mark.parametrize("legacy", ["planning", "active", "completed", "on_hold"])
    def test_legacy_status_rejected(self, legacy):
        """The old status vocabulary is not accepted."""
        text = SAMPLE.replace('<phase id="1B" name="Build" status="pending"/>',
                              f'<phase id="1B" name="Build" status="{legacy}"/>')
        with pytest.raises(MalformedDocument, match="Legacy status"):
            store.parse_epic(text)

    def test_unknown_status_rejected(self):
        text = SAMPLE.replace('status="wip" created_at', 'status="paused" created_at')
        with pytest.raises(MalformedDocument, match="Unknown value 'paused'"):
            store.parse_epic(text)

    def test_bad_timestamp(self):
        text = SAMPLE.replace("2025-08-15T10:05:00Z", "yesterday")
        with pytest.raises(MalformedDocument, match="Invalid timestamp 'yesterday'"):
            store.parse_epic(text)


class TestRoundTrip:
    """parse(serialize(epic)) gives the same epic back."""

    def test_sample_round_trips(self):
        epic = store.parse_epic(SAMPLE)
        assert store.parse_epic(store.serialize_epic(epic)) == epic

    def test_built_epic_round_trips(self, working_epic):
        append_event(working_epic, EventType.NOTE, NOW, detail="checkpoint")
        again = store.parse_epic(store.serialize_epic(working_epic))
        assert again == working_epic

    def test_serialization_is_deterministic(self, working_epic):
        assert store.serialize_epic(working_epic) == store.serialize_epic(working_epic)

    def test_reserialize_is_stable(self):
        """Serializing a loaded document twice yields the same text."""
        once = store.serialize_epic(store.parse_epic(SAMPLE))
        twice = store.serialize_epic(store.parse_epic(once))
        assert once == twice

    def test_nested_markup_kept_as_written(self, working_epic):
        working_epic.description = "<b>x</b><i>y</i>"
        working_epic.phases[0].deliverables = "Docs: <ul><li>a</li><li>b</li></ul> done"
        again = store.parse_epic(store.serialize_epic(working_epic))
        assert again.description == "<b>x</b><i>y</i>"
        assert again.phases[0].deliverables == "Docs: <ul><li>a</li><li>b</li></ul> done"

    def test_nested_markup_survives_repeated_saves(self, working_epic):
        working_epic.description = "<b>x</b><i>y</i>"
        once = store.serialize_epic(working_epic)
        assert "<description><b>x</b><i>y</i></description>" in once
        assert store.serialize_epic(store.parse_epic(once)) == once

    def test_fractional_seconds_survive(self, working_epic):
        working_epic.started_at = NOW.replace(microsecond=250000)
        again = store.parse_epic(store.serialize_epic(working_epic))
        assert again.started_at == working_epic.started_at

    def test_result_attribute_omitted_when_unset(self, fresh_epic):
        text = store.serialize_epic(fresh_epic)
        assert "result=" not in text

    def test_empty_sections_written(self):
        epic = EpicBuilder().build()
        text = store.serialize_epic(epic)
        for section in ("<phases", "<tasks", "<tests", "<events", "<current_state"):
            assert section in text


class TestFiles:
    """load / save / exists against the filesystem."""

    def test_exists(self, epic_file, fresh_epic):
        assert not store.exists(epic_file)
        store.save(fresh_epic, epic_file)
        assert store.exists(epic_file)

    def test_save_then_load(self, epic_file, fresh_epic):
        store.save(fresh_epic, epic_file)
        assert store.load(epic_file) == fresh_epic

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(NotFound, match="Epic file not found"):
            store.load(tmp_path / "nope.xml")

    def test_save_leaves_no_temp_files(self, tmp_path, fresh_epic):
        """Atomic save renames its temp file over the target."""
        target = tmp_path / "epic.xml"
        store.save(fresh_epic, target)
        store.save(fresh_epic, target)
        assert [p.name for p in tmp_path.iterdir()] == ["epic.xml"]

    def test_save_creates_parent_directory(self, tmp_path, fresh_epic):
        target = tmp_path / "epics" / "epic.xml"
        store.save(fresh_epic, target)
        assert store.load(target) == fresh_epic

    def test_save_failure_is_io_failure(self, tmp_path, fresh_epic):
        (tmp_path / "blocker").write_text("a file, not a directory")
        with pytest.raises(IOFailure, match="Failed to write"):
            store.save(fresh_epic, tmp_path / "blocker" / "epic.xml")

    def test_written_file_has_declaration(self, epic_file, fresh_epic):
        store.save(fresh_epic, epic_file)
        assert epic_file.read_text().startswith('<?xml version="1.0" encoding="UTF-8"?>')

    def test_load_document(self, epic_file, fresh_epic):
        store.save(fresh_epic, epic_file)
        root = store.load_document(epic_file)
        assert root.tag == "epic"
        assert [p.get("id") for p in root.findall("phases/phase")] == ["P1", "P2"]

    def test_load_document_errors_match_load(self, tmp_path):
        with pytest.raises(NotFound):
            store.load_document(tmp_path / "nope.xml")
        (tmp_path / "other.xml").write_text("<project/>")
        with pytest.raises(SchemaMismatch):
            store.load_document(tmp_path / "other.xml")
