"""
agentpm show - Show a phase, task or test with its surroundings.
"""

from pathlib import Path

from rich.markup import escape

from agentpm.epic import store
from agentpm.epic.context import context
from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output, item_line, status_markup

# Detail fields shown in text output, in order
_TEXT_FIELDS = (
    "description",
    "deliverables",
    "acceptance_criteria",
    "assignee",
    "started_at",
    "passed_at",
    "failed_at",
    "completed_at",
    "cancelled_at",
    "failure_note",
    "cancellation_reason",
)


def _summary_line(item: dict) -> str:
    return item_line(f"{item['kind']} {item['id']}", item["name"], item["status"], item.get("result"))


def _context_lines(data: dict) -> list[str]:
    entity = data["entity"]
    lines = [
        f"{entity['kind'].capitalize()}: {escape(entity['id'])} {escape(entity['name'])}",
        "=" * 60,
        f"Status:     {status_markup(entity['status'])}"
        + (f", {status_markup(entity['result'])}" if entity.get("result") else ""),
    ]
    for key in _TEXT_FIELDS:
        value = entity.get(key)
        if value:
            label = key.replace("_", " ").capitalize() + ":"
            lines.append(f"{label:<12}{escape(str(value))}")

    for section in ("parents", "siblings", "children"):
        items = data[section]
        if not items:
            continue
        lines.append("")
        lines.append(section.capitalize())
        lines.append("-" * 40)
        lines.extend("  " + _summary_line(item) for item in items)

    progress = data.get("progress")
    if progress:
        lines.append("")
        lines.append(
            f"Progress:   {progress['children_settled']}/{progress['children_total']} settled, "
            f"{progress['tests_done']}/{progress['tests_total']} tests done"
        )
    return lines


def cmd_show(args, epic_path: Path, out: Output) -> int:
    """Show an entity, its parents, siblings and children."""
    epic = store.load(epic_path)
    data = context(epic, args.id, kind=args.kind)
    out.emit("context", data, _context_lines)
    return EXIT_OK
