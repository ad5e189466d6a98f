"""
Schema validation for agentpm.

Project configuration is checked against a JSON Schema when it is read and
again before it is written. A mismatch raises ValidationError, which is a
MalformedDocument: callers get the same error kind and exit code as for a
file that does not parse at all.
"""

import json
from pathlib import Path

import jsonschema

from agentpm.epic.errors import MalformedDocument

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"


class ValidationError(MalformedDocument):
    """Data does not match its schema."""

    def __init__(
        self,
        schema_name: str,
        message: str,
        field: str | None = None,
        source: Path | None = None,
    ):
        self.schema_name = schema_name
        self.field = field
        self.source = source
        where = f" {source}" if source else ""
        at = f" (at {field})" if field else ""
        super().__init__(f"Invalid {schema_name} file{where}: {message}{at}")


# Cache loaded schemas
_schema_cache: dict[str, dict] = {}


def _load_schema(schema_name: str) -> dict:
    """Load schema by name, with caching."""
    if schema_name not in _schema_cache:
        schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise ValidationError(schema_name, f"Schema file not found: {schema_path}")
        _schema_cache[schema_name] = json.loads(schema_path.read_text(encoding="utf-8"))
    return _schema_cache[schema_name]


def _schema_error(data: dict, schema_name: str) -> tuple[str, str] | None:
    """First schema error as (message, dotted field path), or None."""
    try:
        jsonschema.validate(instance=data, schema=_load_schema(schema_name))
    except jsonschema.ValidationError as e:
        field = ".".join(str(p) for p in e.absolute_path) or "(root)"
        return e.message, field
    return None


def validate(data: dict, schema_name: str, source: Path | None = None) -> None:
    """
    Validate data against named schema.

    Args:
        data: Dictionary to validate
        schema_name: Schema name (e.g., "config")
        source: File the data was read from, for the error message

    Raises:
        ValidationError: If validation fails
    """
    error = _schema_error(data, schema_name)
    if error is not None:
        message, field = error
        raise ValidationError(schema_name, message, field, source)


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """
    Validate data before writing to file. Ensures we never write invalid data.

    Raises:
        ValidationError: If data doesn't match schema
    """
    error = _schema_error(data, schema_name)
    if error is not None:
        message, field = error
        raise ValidationError(schema_name, f"refusing to write, {message}", field, filepath)
