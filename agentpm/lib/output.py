"""
Output rendering for agentpm commands.

Three formats share one data shape (a plain dict):
- text: human summary via a rich Console, with Rich markup for status colors
- json: json.dumps of the dict
- xml:  an ElementTree rendering of the same dict

Successful output goes to stdout, errors to stderr.
"""

import json
import xml.etree.ElementTree as ET
from typing import Callable

from rich.console import Console
from rich.markup import escape

from agentpm.epic.errors import EpicError

STATUS_COLORS = {
    "pending": "dim",
    "wip": "yellow",
    "done": "green",
    "cancelled": "dim",
    "passing": "green",
    "failing": "red",
}

STATUS_SYMBOLS = {
    "pending": " ",
    "wip": ">",
    "done": "x",
    "cancelled": "-",
}

EVENT_COLORS = {
    "epic_started": "cyan",
    "epic_completed": "blue",
    "phase_started": "cyan",
    "phase_completed": "blue",
    "task_started": "yellow",
    "task_completed": "green",
    "task_cancelled": "dim",
    "test_started": "yellow",
    "test_passed": "green",
    "test_failed": "red",
    "test_cancelled": "dim",
    "note": "magenta",
}

EVENT_SYMBOLS = {
    "epic_started": "+",
    "epic_completed": "*",
    "phase_started": "+",
    "phase_completed": "*",
    "task_started": ">",
    "task_completed": "*",
    "task_cancelled": "-",
    "test_started": ">",
    "test_passed": "*",
    "test_failed": "x",
    "test_cancelled": "-",
    "note": "#",
}

# Singular element names for list items in the xml rendering
_ITEM_TAGS = {
    "phases": "phase",
    "tasks": "task",
    "tests": "test",
    "events": "event",
    "recent_events": "event",
    "failing_tests": "test",
    "blockers": "blocker",
    "parents": "parent",
    "siblings": "sibling",
    "children": "child",
    "errors": "error",
    "warnings": "warning",
    "matches": "match",
}


def status_markup(status: str | None) -> str:
    """A status word in its color."""
    if not status:
        return "[dim]-[/dim]"
    color = STATUS_COLORS.get(status, "")
    return f"[{color}]{status}[/{color}]" if color else escape(status)


def item_line(item_id: str, name: str, status: str, result: str | None = None) -> str:
    """One checklist line: [x] T1 Name (done)."""
    symbol = STATUS_SYMBOLS.get(status, "?")
    label = escape(f"{item_id} {name}".strip())
    suffix = status_markup(status)
    if result:
        suffix += f", {status_markup(result)}"
    return f"\\[{symbol}] {label} ({suffix})"


def event_line(event: dict) -> str:
    symbol = EVENT_SYMBOLS.get(event["type"], "?")
    color = EVENT_COLORS.get(event["type"], "")
    marker = f"[{color}]\\[{symbol}][/{color}]" if color else f"\\[{symbol}]"
    return f"[dim]{event['timestamp']}[/dim] {marker} {escape(event['data'])}"


# ─────────────────────────────────────────────────────────────────────────────
# XML rendering
# ─────────────────────────────────────────────────────────────────────────────

def _xml_text(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _fill(elem: ET.Element, value, tag: str) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            if child is None:
                continue
            _fill(ET.SubElement(elem, key), child, key)
    elif isinstance(value, (list, tuple)):
        item_tag = _ITEM_TAGS.get(tag, "item")
        for child in value:
            _fill(ET.SubElement(elem, item_tag), child, item_tag)
    else:
        elem.text = _xml_text(value)


def to_xml(root_tag: str, data: dict) -> str:
    """Render a dict as an indented XML document rooted at `root_tag`."""
    root = ET.Element(root_tag)
    _fill(root, data, root_tag)
    ET.indent(root, space="    ")
    return ET.tostring(root, encoding="unicode")


# ─────────────────────────────────────────────────────────────────────────────
# Output
# ─────────────────────────────────────────────────────────────────────────────

class Output:
    """Writes command results in the selected format."""

    def __init__(self, fmt: str = "text"):
        self.format = fmt
        # file=None means "whatever sys.stdout/stderr is at write time"
        self.console = Console(highlight=False, emoji=False, soft_wrap=True)
        self.err_console = Console(stderr=True, highlight=False, emoji=False, soft_wrap=True)

    def emit(self, root_tag: str, data: dict, text: Callable[[dict], list[str]]) -> None:
        """Render `data`; `text` turns it into markup lines for the text format."""
        if self.format == "json":
            self.console.print(json.dumps(data, indent=2), markup=False)
        elif self.format == "xml":
            self.console.print(to_xml(root_tag, data), markup=False)
        else:
            for line in text(data):
                self.console.print(line)

    def mutation(self, result) -> None:
        """Render a MutationResult."""
        def lines(data: dict) -> list[str]:
            prefix = "[green]OK[/green]" if data["changed"] else "[dim]OK[/dim]"
            out = [f"{prefix} {escape(data['message'])}"]
            if data.get("next_action"):
                out.append(f"Next: {escape(data['next_action'])}")
            return out

        self.emit("result", result.to_dict(), lines)

    def error(self, error: EpicError) -> None:
        data = error.to_dict()
        if self.format == "json":
            self.err_console.print(json.dumps({"error": data}, indent=2), markup=False)
            return
        if self.format == "xml":
            self.err_console.print(to_xml("error", data), markup=False)
            return

        self.err_console.print(f"[red]ERROR:[/red] {escape(error.message)}")
        if error.blockers:
            self.err_console.print("Blocked by:")
            for b in error.blockers:
                self.err_console.print(
                    "  " + item_line(f"{b.kind} {b.id}", b.name, b.current_status, b.test_result)
                )
        if error.suggestion:
            self.err_console.print(f"Suggestion: {escape(error.suggestion)}")
