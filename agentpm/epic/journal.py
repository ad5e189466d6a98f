"""
Append-only event journal kept inside the epic document.

Appending is the last step of every applied mutation, and never happens
for a refused one. Event ids are derived from the type, the timestamp and
the event's position in the journal, so replaying the same operations
with the same clock yields the same ids.
"""

from datetime import datetime

from agentpm.epic.models import Epic, Event, EventType
from agentpm.lib.clock import ensure_utc

# One-line payload per event type. {label} is "ID (Name)" or just "ID".
_TEMPLATES = {
    EventType.EPIC_STARTED: "Epic {label} started",
    EventType.EPIC_COMPLETED: "Epic {label} completed",
    EventType.PHASE_STARTED: "Phase {label} started",
    EventType.PHASE_COMPLETED: "Phase {label} completed",
    EventType.TASK_STARTED: "Task {label} started",
    EventType.TASK_COMPLETED: "Task {label} completed",
    EventType.TASK_CANCELLED: "Task {label} cancelled",
    EventType.TEST_STARTED: "Test {label} started",
    EventType.TEST_PASSED: "Test {label} passed",
    EventType.TEST_FAILED: "Test {label} failed",
    EventType.TEST_CANCELLED: "Test {label} cancelled",
}


def event_id(event_type: EventType, timestamp: datetime, sequence: int) -> str:
    """Deterministic id: <type>_<unix seconds>_<sequence>."""
    return f"{event_type.value}_{int(ensure_utc(timestamp).timestamp())}_{sequence}"


def entity_label(entity_id: str, name: str = "") -> str:
    return f"{entity_id} ({name})" if name else entity_id


def render_payload(event_type: EventType, entity_id: str = "", name: str = "", detail: str = "") -> str:
    """One-line human payload for an event."""
    if event_type == EventType.NOTE:
        return detail
    text = _TEMPLATES[event_type].format(label=entity_label(entity_id, name))
    if detail:
        text += f": {detail}"
    return text


def make_event(epic: Epic, event_type: EventType, timestamp: datetime, data: str) -> Event:
    """Build the next event for `epic` without appending it."""
    timestamp = ensure_utc(timestamp)
    sequence = len(epic.events) + 1
    return Event(
        id=event_id(event_type, timestamp, sequence),
        type=event_type,
        timestamp=timestamp,
        data=data,
    )


def append_event(
    epic: Epic,
    event_type: EventType,
    timestamp: datetime,
    entity_id: str = "",
    name: str = "",
    detail: str = "",
) -> Event:
    """Render, build and append one event. Returns the appended event."""
    event = make_event(epic, event_type, timestamp, render_payload(event_type, entity_id, name, detail))
    epic.events.append(event)
    return event
