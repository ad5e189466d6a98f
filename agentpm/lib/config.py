"""
Project configuration for agentpm.

Records which epic document is current, in a small KEY=value file
(.agentpm.env). Commands read it only to find the epic document when no
explicit --file is given; `init` and `switch` write it.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from agentpm.epic.errors import IOFailure, MalformedDocument, NotFound
from agentpm.lib import envparse
from agentpm.lib import validate
from agentpm.lib.constants import CONFIG_FILENAME, DEFAULT_ASSIGNEE
from agentpm.lib.fileio import atomic_write

logger = logging.getLogger(__name__)


@dataclass
class ProjectConfig:
    """Project-level configuration from .agentpm.env"""
    current_epic: str
    previous_epic: str = ""
    project_name: str = ""
    default_assignee: str = DEFAULT_ASSIGNEE
    path: Path | None = None  # Where this config was loaded from

    def epic_path(self) -> Path:
        """Current epic path, resolved against the config file's directory."""
        return _resolve(self.current_epic, self.path)


def _resolve(epic: str, config_path: Path | None) -> Path:
    epic_path = Path(epic)
    if epic_path.is_absolute() or config_path is None:
        return epic_path
    return config_path.parent / epic_path


def default_config_path() -> Path:
    return Path.cwd() / CONFIG_FILENAME


def config_exists(config_path: Path | None = None) -> bool:
    return (config_path or default_config_path()).is_file()


def load_project_config(config_path: Path | None = None) -> ProjectConfig:
    """Load .agentpm.env and return ProjectConfig.

    Raises:
        NotFound: no config file
        MalformedDocument: unparseable or schema-invalid config
    """
    config_path = config_path or default_config_path()
    try:
        env = envparse.load_env(str(config_path))
    except FileNotFoundError:
        raise NotFound(
            f"Config file not found: {config_path}",
            suggestion="Run 'agentpm init --epic <file>' or pass --file",
        ) from None
    except ValueError as e:
        raise MalformedDocument(f"Invalid config file {config_path}: {e}") from None

    validate.validate(env, "config", config_path)

    return ProjectConfig(
        current_epic=env["CURRENT_EPIC"],
        previous_epic=env.get("PREVIOUS_EPIC", ""),
        project_name=env.get("PROJECT_NAME", ""),
        default_assignee=env.get("DEFAULT_ASSIGNEE", DEFAULT_ASSIGNEE),
        path=config_path,
    )


def save_project_config(config: ProjectConfig, config_path: Path | None = None) -> Path:
    """Write ProjectConfig atomically. Returns the path written."""
    config_path = config_path or config.path or default_config_path()
    env = {
        "CURRENT_EPIC": config.current_epic,
        "PREVIOUS_EPIC": config.previous_epic or None,
        "PROJECT_NAME": config.project_name or None,
        "DEFAULT_ASSIGNEE": config.default_assignee or DEFAULT_ASSIGNEE,
    }
    validate.validate_before_write(
        {k: v for k, v in env.items() if v is not None}, "config", config_path
    )
    try:
        content = envparse.dump_env(env)
    except ValueError as e:
        raise MalformedDocument(f"Invalid config for {config_path}: {e}") from None
    try:
        atomic_write(config_path, content)
    except OSError as e:
        raise IOFailure(f"Failed to write config file {config_path}: {e}") from e
    config.path = config_path
    logger.debug(f"[CONFIG] Wrote {config_path}")
    return config_path


def resolve_epic_path(explicit: str | None, config_path: Path | None = None) -> Path:
    """Resolve the epic document: explicit --file wins, else config."""
    if explicit:
        return Path(explicit)
    if not config_exists(config_path):
        raise NotFound(
            "No epic file specified",
            suggestion="Use --file or run 'agentpm init --epic <file>'",
        )
    return load_project_config(config_path).epic_path()


def switch_epic(config: ProjectConfig, epic: str) -> ProjectConfig:
    """Make `epic` current, remembering the old one as previous."""
    if epic != config.current_epic:
        config.previous_epic = config.current_epic
        config.current_epic = epic
    logger.info(f"[CONFIG] Current epic: {config.current_epic}")
    return config


def switch_back(config: ProjectConfig) -> ProjectConfig:
    """Swap current and previous epic."""
    if not config.previous_epic:
        raise NotFound(
            "No previous epic to switch back to",
            suggestion="Use 'agentpm switch <file>' first",
        )
    config.current_epic, config.previous_epic = config.previous_epic, config.current_epic
    logger.info(f"[CONFIG] Switched back to {config.current_epic}")
    return config
