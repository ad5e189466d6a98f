"""
agentpm init - Point the project at an epic document.
"""

import logging
from pathlib import Path

from rich.markup import escape

from agentpm.epic import store
from agentpm.epic.errors import MissingArgument, NotFound
from agentpm.epic.models import new_epic
from agentpm.lib.clock import fixed_clock, utc_now
from agentpm.lib.config import (
    ProjectConfig,
    config_exists,
    default_config_path,
    load_project_config,
    save_project_config,
)
from agentpm.lib.constants import DEFAULT_ASSIGNEE, EXIT_OK
from agentpm.lib.output import Output

logger = logging.getLogger(__name__)


def _init_lines(data: dict) -> list[str]:
    lines = ["[green]OK[/green] Project initialized"]
    if data["epic_created"]:
        lines.append(f"Created epic: {escape(data['current_epic'])}")
    lines.append(f"Config file:  {escape(data['config_file'])}")
    lines.append(f"Current epic: {escape(data['current_epic'])}")
    return lines


def cmd_init(args, config_path: Path | None, out: Output) -> int:
    """Write the project config with `--epic` as the current epic.

    With --create, a missing epic file is created empty first.
    """
    config_path = config_path or default_config_path()
    epic_file = Path(args.epic)
    # Relative epic paths are stored relative to the config file
    epic_on_disk = epic_file if epic_file.is_absolute() else config_path.parent / epic_file

    created = False
    if not store.exists(epic_on_disk):
        if not args.create:
            raise NotFound(
                f"Epic file not found: {args.epic}",
                suggestion="Pass --create --id ID --name NAME to start a new epic",
            )
        if not args.id or not args.name:
            raise MissingArgument("Creating an epic needs --id and --name")
        clock = fixed_clock(args.time) if args.time else utc_now
        epic = new_epic(args.id, args.name, clock=clock, assignee=args.assignee or "")
        store.save(epic, epic_on_disk)
        created = True
        logger.info(f"[CONFIG] Created epic {epic.id} at {epic_on_disk}")
    else:
        # Refuse to point at something that is not an epic
        store.load(epic_on_disk)

    config = ProjectConfig(current_epic=str(args.epic), default_assignee=DEFAULT_ASSIGNEE)
    if config_exists(config_path):
        existing = load_project_config(config_path)
        config.project_name = existing.project_name
        config.default_assignee = existing.default_assignee
        if existing.current_epic != config.current_epic:
            config.previous_epic = existing.current_epic
    if args.project_name:
        config.project_name = args.project_name
    if args.assignee:
        config.default_assignee = args.assignee

    save_project_config(config, config_path)
    data = {
        "project_created": True,
        "epic_created": created,
        "config_file": str(config_path),
        "current_epic": config.current_epic,
        "project_name": config.project_name,
        "default_assignee": config.default_assignee,
    }
    out.emit("init_result", data, _init_lines)
    return EXIT_OK
