"""
agentpm validate - Run the structural checks over the epic document.
"""

from pathlib import Path

from rich.markup import escape

from agentpm.epic import store
from agentpm.epic.structure import FAIL, PASS, validate_structure
from agentpm.lib.constants import EXIT_BLOCKED, EXIT_OK
from agentpm.lib.output import Output

_CHECK_MARKUP = {
    PASS: "[green]pass[/green]",
    FAIL: "[red]fail[/red]",
}


def _report_lines(data: dict) -> list[str]:
    verdict = "[green]valid[/green]" if data["valid"] else "[red]invalid[/red]"
    lines = [f"Epic {escape(data['epic'])} is {verdict}", ""]
    for name, result in data["checks"].items():
        lines.append(f"  {name:<24}{_CHECK_MARKUP.get(result, '[yellow]warning[/yellow]')}")
    if data["errors"]:
        lines.append("")
        lines.append("Errors")
        lines.extend(f"  [red]x[/red] {escape(e)}" for e in data["errors"])
    if data["warnings"]:
        lines.append("")
        lines.append("Warnings")
        lines.extend(f"  [yellow]![/yellow] {escape(w)}" for w in data["warnings"])
    return lines


def cmd_validate(args, epic_path: Path, out: Output) -> int:
    """Validate the epic document. Exit 1 when any check fails."""
    epic = store.load(epic_path)
    report = validate_structure(epic)
    data = {"epic": epic.id, **report.to_dict()}
    out.emit("validation", data, _report_lines)
    return EXIT_OK if report.valid else EXIT_BLOCKED
