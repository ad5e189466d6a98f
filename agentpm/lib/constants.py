"""Shared constants for agentpm."""

# Exit codes
EXIT_OK = 0
EXIT_BLOCKED = 1  # Refused by a validator; document untouched
EXIT_ERROR = 2  # Not found, malformed document, I/O or config error

CONFIG_FILENAME = ".agentpm.env"
DEFAULT_ASSIGNEE = "agent"

OUTPUT_FORMATS = ("text", "json", "xml")

DEFAULT_EVENT_LIMIT = 10
HANDOFF_EVENT_LIMIT = 5
MAX_HINT_TESTS = 3
