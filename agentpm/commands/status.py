"""
agentpm status / current - Show epic progress and the cursor.
"""

from pathlib import Path

from rich.markup import escape

from agentpm.epic import query, store
from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output, status_markup


def _active_line(current: dict) -> str:
    parts = []
    if current.get("active_phase"):
        parts.append(f"phase {current['active_phase']} {current.get('active_phase_name') or ''}".strip())
    if current.get("active_task"):
        parts.append(f"task {current['active_task']} {current.get('active_task_name') or ''}".strip())
    return escape(", ".join(parts)) if parts else "[dim]none[/dim]"


def _status_lines(data: dict) -> list[str]:
    epic = data["epic"]
    phases, tasks, tests = data["phases"], data["tasks"], data["tests"]
    return [
        f"Epic: {escape(epic['id'])} {escape(epic['name'])}",
        "=" * 60,
        f"Status:     {status_markup(epic['status'])}",
        f"Progress:   {phases['done']}/{phases['total']} phases ({data['completion_percent']}%)",
        f"Tasks:      {tasks['done']} done, {tasks['cancelled']} cancelled, {tasks['total']} total",
        f"Tests:      {tests['passing']} passing, {tests['failing']} failing, "
        f"{tests['pending']} pending, {tests['cancelled']} cancelled",
        f"Active:     {_active_line(data['current'])}",
        f"Next:       {escape(data['current']['next_action'])}",
    ]


def cmd_status(args, epic_path: Path, out: Output) -> int:
    """Show epic status and progress counts."""
    epic = store.load(epic_path)
    out.emit("status", query.status(epic), _status_lines)
    return EXIT_OK


def _current_lines(data: dict) -> list[str]:
    return [
        f"Epic:       {escape(data['epic'])} ({status_markup(data['epic_status'])})",
        f"Active:     {_active_line(data)}",
        f"Next:       {escape(data['next_action'])}",
    ]


def cmd_current(args, epic_path: Path, out: Output) -> int:
    """Show where work currently is."""
    epic = store.load(epic_path)
    out.emit("current", query.current(epic), _current_lines)
    return EXIT_OK
