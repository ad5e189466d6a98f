"""
agentpm switch - Change the current epic.
"""

from pathlib import Path

from rich.markup import escape

from agentpm.epic import store
from agentpm.epic.errors import MissingArgument
from agentpm.lib.config import (
    ProjectConfig,
    config_exists,
    default_config_path,
    load_project_config,
    save_project_config,
    switch_back,
    switch_epic,
)
from agentpm.lib.constants import EXIT_OK
from agentpm.lib.output import Output


def _switch_lines(data: dict) -> list[str]:
    lines = [f"[green]OK[/green] Switched to {escape(data['current_epic'])} ({escape(data['epic_id'])})"]
    if data.get("previous_epic"):
        lines.append(f"Previous:   {escape(data['previous_epic'])}")
    return lines


def cmd_switch(args, config_path: Path | None, out: Output) -> int:
    """Make another epic current, or swap back with --back."""
    config_path = config_path or default_config_path()
    if config_exists(config_path):
        config = load_project_config(config_path)
    elif args.epic:
        config = ProjectConfig(current_epic=args.epic, path=config_path)
    else:
        config = load_project_config(config_path)  # raises NotFound

    if args.back:
        switch_back(config)
    elif args.epic:
        switch_epic(config, args.epic)
    else:
        raise MissingArgument("Name an epic file or pass --back", suggestion="agentpm switch <epic-file>")

    # The target must be a loadable epic before the config changes
    epic = store.load(config.epic_path())
    save_project_config(config, config_path)

    data = {
        "current_epic": config.current_epic,
        "previous_epic": config.previous_epic,
        "epic_id": epic.id,
        "epic_name": epic.name,
        "epic_status": epic.status.value,
    }
    out.emit("switch_result", data, _switch_lines)
    return EXIT_OK
