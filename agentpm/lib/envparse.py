"""
Safe .env file parser.

Parses KEY=value files without shell execution.
Rejects dangerous patterns that could enable injection, so a config file
can be sourced by shell tooling without surprises.
"""

import re
from pathlib import Path

FORBIDDEN_PATTERNS = [
    r'`',           # backticks
    r'\$\(',        # command substitution
    r'\$\{',        # variable expansion
    r';',           # command chaining
    r'&&',          # AND chaining
    r'\|\|',        # OR chaining
    r'\|',          # pipe
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')


def _check_value(value: str, where: str) -> None:
    for pattern in FORBIDDEN_PATTERNS:
        if re.search(pattern, value):
            raise ValueError(f"{where}: Forbidden pattern in value")
    if "\n" in value or '"' in value:
        raise ValueError(f"{where}: Value must be a single line without double quotes")


def parse_env(text: str) -> dict[str, str]:
    """
    Parse env file content, return dict.

    Raises:
        ValueError: if syntax invalid or forbidden pattern found
    """
    result = {}

    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()

        # Skip empty and comments
        if not line or line.startswith('#'):
            continue

        if '=' not in line:
            raise ValueError(f"Line {lineno}: Invalid syntax (no '=')")

        key, _, value = line.partition('=')
        key = key.strip()
        value = value.strip()

        if not KEY_PATTERN.match(key):
            raise ValueError(f"Line {lineno}: Invalid key '{key}'")

        # Strip quotes if present
        if len(value) >= 2:
            if (value.startswith('"') and value.endswith('"')) or \
               (value.startswith("'") and value.endswith("'")):
                value = value[1:-1]

        _check_value(value, f"Line {lineno}")
        result[key] = value

    return result


def load_env(filepath: str) -> dict[str, str]:
    """
    Parse env file safely, return dict.

    Raises:
        FileNotFoundError: if file doesn't exist
        ValueError: if syntax invalid or forbidden pattern found
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {filepath}")
    return parse_env(path.read_text(encoding="utf-8"))


def dump_env(values: dict[str, str | None]) -> str:
    """Render a dict as env file content. None values are omitted."""
    lines = []
    for key, value in values.items():
        if value is None:
            continue
        if not KEY_PATTERN.match(key):
            raise ValueError(f"Invalid key '{key}'")
        _check_value(value, key)
        lines.append(f'{key}="{value}"')
    return "\n".join(lines) + "\n"
