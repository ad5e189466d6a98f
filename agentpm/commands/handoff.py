"""
agentpm handoff - Everything the next collaborator needs to pick up the epic.
"""

from pathlib import Path

from rich.markup import escape

from agentpm.epic import store
from agentpm.epic.context import handoff
from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output, event_line, item_line, status_markup


def _handoff_lines(data: dict) -> list[str]:
    epic, current = data["epic"], data["current"]
    phases, tests = data["phases"], data["tests"]
    lines = [
        f"Handoff: {escape(epic['id'])} {escape(epic['name'])}",
        "=" * 60,
        f"Status:     {status_markup(epic['current_status'])}",
        f"Progress:   {phases['done']}/{phases['total']} phases ({data['completion_percent']}%)",
        f"Tests:      {tests['passing']} passing, {tests['failing']} failing, {tests['pending']} pending",
    ]
    if current.get("active_phase"):
        lines.append(f"Phase:      {escape(current['active_phase'])} {escape(current.get('active_phase_name') or '')}")
    if current.get("active_task"):
        lines.append(f"Task:       {escape(current['active_task'])} {escape(current.get('active_task_name') or '')}")
    lines.append(f"Next:       {escape(current['next_action'])}")

    failing = data["blockers"]["failing_tests"]
    if failing:
        lines.append("")
        lines.append("Failing tests")
        lines.append("-" * 40)
        for test in failing:
            note = f" - {test['failure_note']}" if test["failure_note"] else ""
            lines.append(f"  [red]x[/red] {escape(test['id'])} {escape(test['name'])}{escape(note)}")

    completion = data["blockers"].get("completion")
    if completion is not None:
        lines.append("")
        verdict = "[green]yes[/green]" if completion["can_complete"] else "[red]no[/red]"
        lines.append(f"Can complete: {verdict} - {escape(completion['message'])}")
        for b in completion["blockers"]:
            lines.append("  " + item_line(f"{b['kind']} {b['id']}", b["name"], b["current_status"]))

    if data["recent_events"]:
        lines.append("")
        lines.append("Recent events")
        lines.append("-" * 40)
        lines.extend("  " + event_line(e) for e in data["recent_events"])
    return lines


def cmd_handoff(args, epic_path: Path, out: Output) -> int:
    """Summarize the epic for whoever picks it up next."""
    epic = store.load(epic_path)
    data = handoff(epic, event_limit=args.limit, check_completion=args.check_completion)
    out.emit("handoff", data, _handoff_lines)
    return EXIT_OK
