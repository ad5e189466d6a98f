"""
agentpm events - Show the event journal.
"""

from pathlib import Path

from agentpm.epic import query, store
from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output, event_line


def _event_lines(data: dict) -> list[str]:
    if not data["events"]:
        return ["No events"]
    lines = [f"Events ({data['shown']} of {data['total']})"]
    lines.extend(event_line(e) for e in data["events"])
    return lines


def cmd_events(args, epic_path: Path, out: Output) -> int:
    """Show the most recent events."""
    epic = store.load(epic_path)
    data = query.events(epic, limit=args.limit, newest_first=args.newest_first)
    out.emit("events", data, _event_lines)
    return EXIT_OK
