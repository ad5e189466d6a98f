"""
agentpm pending / failing - List open tasks and failing tests.
"""

from pathlib import Path

from rich.markup import escape

from agentpm.epic import query, store
from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output, item_line, status_markup


def _pending_lines(data: dict) -> list[str]:
    if not data["phases"]:
        return ["No pending tasks"]
    lines = [f"{data['total']} pending task{'' if data['total'] == 1 else 's'}"]
    for group in data["phases"]:
        lines.append("")
        lines.append(
            f"Phase {escape(group['phase'])} {escape(group['phase_name'])} "
            f"({status_markup(group['phase_status'])})"
        )
        for task in group["tasks"]:
            lines.append("  " + item_line(task["id"], task["name"], task["status"]))
    return lines


def cmd_pending(args, epic_path: Path, out: Output) -> int:
    """List pending and wip tasks grouped by phase."""
    epic = store.load(epic_path)
    out.emit("pending", query.pending(epic), _pending_lines)
    return EXIT_OK


def _failing_lines(data: dict) -> list[str]:
    if not data["tests"]:
        return ["[green]No failing tests[/green]"]
    lines = [f"{data['total']} failing test{'' if data['total'] == 1 else 's'}"]
    for test in data["tests"]:
        lines.append(
            f"  [red]x[/red] {escape(test['id'])} {escape(test['name'])} "
            f"(task {escape(test['task_id'])}, phase {escape(test['phase_id'])})"
        )
        if test["failure_note"]:
            lines.append(f"      {escape(test['failure_note'])}")
    return lines


def cmd_failing(args, epic_path: Path, out: Output) -> int:
    """List failing tests with their failure notes."""
    epic = store.load(epic_path)
    out.emit("failing", query.failing(epic), _failing_lines)
    return EXIT_OK
