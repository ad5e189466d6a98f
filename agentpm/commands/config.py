"""
agentpm config - Show the project configuration.
"""

from pathlib import Path

from rich.markup import escape

from agentpm.epic import store
from agentpm.lib.config import default_config_path, load_project_config
from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output


def _config_lines(data: dict) -> list[str]:
    lines = [
        f"Configuration ({escape(Path(data['config_file']).name)})",
        "-" * 40,
        f"  Config file:      {escape(data['config_file'])}",
        f"  Current epic:     {escape(data['current_epic'])}",
    ]
    if data.get("previous_epic"):
        lines.append(f"  Previous epic:    {escape(data['previous_epic'])}")
    if data.get("project_name"):
        lines.append(f"  Project name:     {escape(data['project_name'])}")
    lines.append(f"  Default assignee: {escape(data['default_assignee'])}")
    for warning in data["warnings"]:
        lines.append("")
        lines.append(f"[yellow]Warning:[/yellow] {escape(warning)}")
    return lines


def cmd_config(args, config_path: Path | None, out: Output) -> int:
    """Show .agentpm.env, warning when the current epic file is missing."""
    config = load_project_config(config_path or default_config_path())
    epic_path = config.epic_path()
    warnings = []
    if not store.exists(epic_path):
        warnings.append(f"Epic file not found: {epic_path}")

    data = {
        "config_file": str(config.path),
        "current_epic": config.current_epic,
        "epic_path": str(epic_path),
        "previous_epic": config.previous_epic or None,
        "project_name": config.project_name or None,
        "default_assignee": config.default_assignee,
        "warnings": warnings,
    }
    out.emit("config", data, _config_lines)
    return EXIT_OK
