"""
Epic document store.

Reads and writes the single XML document that holds an epic. No caching:
every command loads fresh, mutates, and saves with an atomic replace.

Document shape:

    <epic id="..." name="..." status="pending" created_at="...">
        <assignee/> <description/> <workflow/> <requirements/> <dependencies/>
        <started_at/> <completed_at/>
        <metadata><created/><assignee/><estimated_effort/></metadata>
        <current_state><active_phase/><active_task/><next_action/></current_state>
        <phases><phase id name status>...</phase></phases>
        <tasks><task id phase_id name status [assignee]>...</task></tasks>
        <tests><test id task_id phase_id name test_status [result]>...</test></tests>
        <events><event id type timestamp>data</event></events>
    </epic>
"""

import logging
import xml.etree.ElementTree as ET
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TypeVar

from agentpm.epic.errors import IOFailure, MalformedDocument, NotFound, SchemaMismatch
from agentpm.epic.models import (
    LEGACY_STATUSES,
    Cursor,
    Epic,
    EpicMetadata,
    EpicStatus,
    Event,
    EventType,
    Phase,
    PhaseStatus,
    Task,
    TaskStatus,
    Test,
    TestResult,
    TestStatus,
)
from agentpm.lib.clock import format_timestamp, parse_timestamp
from agentpm.lib.fileio import atomic_write

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

INDENT = "    "

# Elements whose children are document structure; everything else is content.
STRUCTURAL_TAGS = {
    "epic", "metadata", "current_state",
    "phases", "phase", "tasks", "task", "tests", "test", "events",
}


# ─────────────────────────────────────────────────────────────────────────────
# Reading
# ─────────────────────────────────────────────────────────────────────────────

def _inner_xml(elem: ET.Element | None) -> str:
    """Text of an element, keeping any nested markup verbatim."""
    if elem is None:
        return ""
    if len(elem) == 0:
        return (elem.text or "").strip()
    parts = [elem.text or ""]
    for child in elem:
        parts.append(ET.tostring(child, encoding="unicode"))
    return "".join(parts).strip()


def _child_text(parent: ET.Element, tag: str) -> str:
    return _inner_xml(parent.find(tag))


def _timestamp(raw: str | None, where: str) -> datetime | None:
    if raw is None or not raw.strip():
        return None
    try:
        return parse_timestamp(raw)
    except ValueError:
        raise MalformedDocument(f"Invalid timestamp '{raw}' in {where}") from None


def _child_timestamp(parent: ET.Element, tag: str, where: str) -> datetime | None:
    elem = parent.find(tag)
    return _timestamp(elem.text if elem is not None else None, f"{where} <{tag}>")


def _enum(enum_cls: type[E], raw: str | None, where: str, default: E | None = None) -> E | None:
    if raw is None or raw == "":
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        if raw in LEGACY_STATUSES:
            raise MalformedDocument(
                f"Legacy status '{raw}' in {where}; expected one of "
                f"{', '.join(m.value for m in enum_cls)}"
            ) from None
        raise MalformedDocument(f"Unknown value '{raw}' in {where}") from None


def _require_attr(elem: ET.Element, attr: str, where: str) -> str:
    value = elem.get(attr)
    if value is None:
        raise SchemaMismatch(f"Missing '{attr}' attribute on {where}")
    return value


def _parse_phase(elem: ET.Element) -> Phase:
    phase_id = _require_attr(elem, "id", "<phase>")
    where = f"phase {phase_id}"
    return Phase(
        id=phase_id,
        name=elem.get("name", ""),
        description=_child_text(elem, "description"),
        deliverables=_child_text(elem, "deliverables"),
        status=_enum(PhaseStatus, elem.get("status"), where, PhaseStatus.PENDING),
        started_at=_child_timestamp(elem, "started_at", where),
        completed_at=_child_timestamp(elem, "completed_at", where),
    )


def _parse_task(elem: ET.Element) -> Task:
    task_id = _require_attr(elem, "id", "<task>")
    where = f"task {task_id}"
    return Task(
        id=task_id,
        phase_id=_require_attr(elem, "phase_id", where),
        name=elem.get("name", ""),
        description=_child_text(elem, "description"),
        acceptance_criteria=_child_text(elem, "acceptance_criteria"),
        status=_enum(TaskStatus, elem.get("status"), where, TaskStatus.PENDING),
        assignee=elem.get("assignee", ""),
        started_at=_child_timestamp(elem, "started_at", where),
        completed_at=_child_timestamp(elem, "completed_at", where),
        cancelled_at=_child_timestamp(elem, "cancelled_at", where),
        cancellation_reason=_child_text(elem, "cancellation_reason"),
    )


def _parse_test(elem: ET.Element) -> Test:
    test_id = _require_attr(elem, "id", "<test>")
    where = f"test {test_id}"
    # Older documents carry the lifecycle in `status`; `test_status` wins when both exist
    raw_status = elem.get("test_status") or elem.get("status")
    return Test(
        id=test_id,
        task_id=_require_attr(elem, "task_id", where),
        phase_id=elem.get("phase_id", ""),
        name=elem.get("name", ""),
        description=_child_text(elem, "description"),
        test_status=_enum(TestStatus, raw_status, where, TestStatus.PENDING),
        test_result=_enum(TestResult, elem.get("result"), where),
        started_at=_child_timestamp(elem, "started_at", where),
        passed_at=_child_timestamp(elem, "passed_at", where),
        failed_at=_child_timestamp(elem, "failed_at", where),
        cancelled_at=_child_timestamp(elem, "cancelled_at", where),
        failure_note=_child_text(elem, "failure_note"),
        cancellation_reason=_child_text(elem, "cancellation_reason"),
    )


def _parse_event(elem: ET.Element) -> Event:
    event_id = elem.get("id", "")
    where = f"event {event_id or '(no id)'}"
    timestamp = _timestamp(elem.get("timestamp"), where)
    if timestamp is None:
        raise SchemaMismatch(f"Missing 'timestamp' attribute on {where}")
    return Event(
        id=event_id,
        type=_enum(EventType, _require_attr(elem, "type", where), where),
        timestamp=timestamp,
        data=_inner_xml(elem),
    )


def _parse_metadata(elem: ET.Element | None) -> EpicMetadata | None:
    if elem is None:
        return None
    return EpicMetadata(
        created=_child_timestamp(elem, "created", "metadata"),
        assignee=_child_text(elem, "assignee"),
        estimated_effort=_child_text(elem, "estimated_effort"),
    )


def _parse_cursor(elem: ET.Element | None) -> Cursor:
    if elem is None:
        return Cursor()
    return Cursor(
        active_phase_id=_child_text(elem, "active_phase") or None,
        active_task_id=_child_text(elem, "active_task") or None,
        next_action_hint=_child_text(elem, "next_action") or None,
    )


def _section(root: ET.Element, section: str, item: str) -> list[ET.Element]:
    elem = root.find(section)
    return [] if elem is None else elem.findall(item)


def _parse_root(text: str) -> ET.Element:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise MalformedDocument(f"Epic document is not well-formed XML: {e}") from None
    if root.tag != "epic":
        raise SchemaMismatch(f"Invalid epic document: root element is <{root.tag}>, expected <epic>")
    return root


def parse_epic(text: str) -> Epic:
    """Parse document text into an Epic.

    Raises:
        MalformedDocument: not well-formed XML, or bad values
        SchemaMismatch: well-formed, but not an epic document
    """
    root = _parse_root(text)
    epic_id = _require_attr(root, "id", "<epic>")
    return Epic(
        id=epic_id,
        name=root.get("name", ""),
        status=_enum(EpicStatus, root.get("status"), f"epic {epic_id}", EpicStatus.PENDING),
        created_at=_timestamp(root.get("created_at"), f"epic {epic_id}"),
        started_at=_child_timestamp(root, "started_at", f"epic {epic_id}"),
        completed_at=_child_timestamp(root, "completed_at", f"epic {epic_id}"),
        assignee=_child_text(root, "assignee"),
        description=_child_text(root, "description"),
        workflow=_child_text(root, "workflow"),
        requirements=_child_text(root, "requirements"),
        dependencies=_child_text(root, "dependencies"),
        metadata=_parse_metadata(root.find("metadata")),
        cursor=_parse_cursor(root.find("current_state")),
        phases=[_parse_phase(e) for e in _section(root, "phases", "phase")],
        tasks=[_parse_task(e) for e in _section(root, "tasks", "task")],
        tests=[_parse_test(e) for e in _section(root, "tests", "test")],
        events=[_parse_event(e) for e in _section(root, "events", "event")],
    )


# ─────────────────────────────────────────────────────────────────────────────
# Writing
# ─────────────────────────────────────────────────────────────────────────────

def _set_inner_xml(elem: ET.Element, content: str) -> None:
    """Set element content, re-materializing nested markup when it parses."""
    if "<" in content:
        try:
            wrapper = ET.fromstring(f"<wrapper>{content}</wrapper>")
        except ET.ParseError:
            elem.text = content
            return
        elem.text = wrapper.text
        elem.extend(list(wrapper))
        return
    elem.text = content


def _add_text(parent: ET.Element, tag: str, content: str, always: bool = False) -> None:
    if content or always:
        _set_inner_xml(ET.SubElement(parent, tag), content)


def _add_timestamp(parent: ET.Element, tag: str, value: datetime | None) -> None:
    if value is not None:
        ET.SubElement(parent, tag).text = format_timestamp(value)


def _build_phase(parent: ET.Element, phase: Phase) -> None:
    elem = ET.SubElement(parent, "phase", {
        "id": phase.id,
        "name": phase.name,
        "status": phase.status.value,
    })
    _add_text(elem, "description", phase.description)
    _add_text(elem, "deliverables", phase.deliverables)
    _add_timestamp(elem, "started_at", phase.started_at)
    _add_timestamp(elem, "completed_at", phase.completed_at)


def _build_task(parent: ET.Element, task: Task) -> None:
    attrs = {
        "id": task.id,
        "phase_id": task.phase_id,
        "name": task.name,
        "status": task.status.value,
    }
    if task.assignee:
        attrs["assignee"] = task.assignee
    elem = ET.SubElement(parent, "task", attrs)
    _add_text(elem, "description", task.description)
    _add_text(elem, "acceptance_criteria", task.acceptance_criteria)
    _add_timestamp(elem, "started_at", task.started_at)
    _add_timestamp(elem, "completed_at", task.completed_at)
    _add_timestamp(elem, "cancelled_at", task.cancelled_at)
    _add_text(elem, "cancellation_reason", task.cancellation_reason)


def _build_test(parent: ET.Element, test: Test) -> None:
    attrs = {
        "id": test.id,
        "task_id": test.task_id,
        "phase_id": test.phase_id,
        "name": test.name,
        "test_status": test.test_status.value,
    }
    if test.test_result is not None:
        attrs["result"] = test.test_result.value
    elem = ET.SubElement(parent, "test", attrs)
    _add_text(elem, "description", test.description)
    _add_timestamp(elem, "started_at", test.started_at)
    _add_timestamp(elem, "passed_at", test.passed_at)
    _add_timestamp(elem, "failed_at", test.failed_at)
    _add_timestamp(elem, "cancelled_at", test.cancelled_at)
    _add_text(elem, "failure_note", test.failure_note)
    _add_text(elem, "cancellation_reason", test.cancellation_reason)


def _build_event(parent: ET.Element, event: Event) -> None:
    elem = ET.SubElement(parent, "event", {
        "id": event.id,
        "type": event.type.value,
        "timestamp": format_timestamp(event.timestamp),
    })
    elem.text = event.data


def _indent(elem: ET.Element, level: int = 0) -> None:
    """Indent the document skeleton. Free-text fields keep their content as written."""
    children = list(elem)
    if not children or elem.tag not in STRUCTURAL_TAGS:
        return
    pad = "\n" + INDENT * (level + 1)
    if not (elem.text or "").strip():
        elem.text = pad
    for child in children:
        _indent(child, level + 1)
        child.tail = pad
    children[-1].tail = "\n" + INDENT * level


def serialize_epic(epic: Epic) -> str:
    """Render an Epic as document text (indented, with XML declaration)."""
    attrs = {"id": epic.id, "name": epic.name, "status": epic.status.value}
    if epic.created_at is not None:
        attrs["created_at"] = format_timestamp(epic.created_at)
    root = ET.Element("epic", attrs)

    _add_text(root, "assignee", epic.assignee)
    _add_text(root, "description", epic.description)
    _add_text(root, "workflow", epic.workflow)
    _add_text(root, "requirements", epic.requirements)
    _add_text(root, "dependencies", epic.dependencies)
    _add_timestamp(root, "started_at", epic.started_at)
    _add_timestamp(root, "completed_at", epic.completed_at)

    if epic.metadata is not None:
        meta = ET.SubElement(root, "metadata")
        _add_timestamp(meta, "created", epic.metadata.created)
        _add_text(meta, "assignee", epic.metadata.assignee)
        _add_text(meta, "estimated_effort", epic.metadata.estimated_effort)

    state = ET.SubElement(root, "current_state")
    _add_text(state, "active_phase", epic.cursor.active_phase_id or "")
    _add_text(state, "active_task", epic.cursor.active_task_id or "")
    _add_text(state, "next_action", epic.cursor.next_action_hint or "")

    phases = ET.SubElement(root, "phases")
    for phase in epic.phases:
        _build_phase(phases, phase)
    tasks = ET.SubElement(root, "tasks")
    for task in epic.tasks:
        _build_task(tasks, task)
    tests = ET.SubElement(root, "tests")
    for test in epic.tests:
        _build_test(tests, test)
    events = ET.SubElement(root, "events")
    for event in epic.events:
        _build_event(events, event)

    _indent(root)
    body = ET.tostring(root, encoding="unicode", short_empty_elements=True)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n"


# ─────────────────────────────────────────────────────────────────────────────
# File operations
# ─────────────────────────────────────────────────────────────────────────────

def exists(path: Path) -> bool:
    return Path(path).is_file()


def _read(path: Path) -> str:
    if not path.exists():
        raise NotFound(
            f"Epic file not found: {path}",
            suggestion="Check --file or run 'agentpm switch <file>'",
        )
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise IOFailure(f"Failed to read epic file {path}: {e}") from e


def load(path: Path) -> Epic:
    """Load the epic at `path`.

    Raises:
        NotFound: no document at path
        MalformedDocument / SchemaMismatch: document cannot be parsed to the model
        IOFailure: the file exists but could not be read
    """
    path = Path(path)
    epic = parse_epic(_read(path))
    logger.debug(f"[STORE] Loaded {epic.id} from {path}")
    return epic


def load_document(path: Path) -> ET.Element:
    """Load the epic at `path` as a bare element tree, for path queries.

    Raises the same errors as load() for a missing, unreadable or
    non-epic document, but does not build the model.
    """
    root = _parse_root(_read(Path(path)))
    logger.debug(f"[STORE] Loaded document {root.get('id')} from {path}")
    return root


def save(epic: Epic, path: Path) -> None:
    """Write the epic atomically (sibling temp file, fsync, rename)."""
    path = Path(path)
    try:
        atomic_write(path, serialize_epic(epic))
    except OSError as e:
        raise IOFailure(f"Failed to write epic file {path}: {e}") from e
    logger.debug(f"[STORE] Saved {epic.id} to {path}")
