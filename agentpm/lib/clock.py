"""
Timestamps and the injected clock.

The clock is the engine's only source of non-determinism. Production
uses wall time; tests pass a fixed instant. All instants are UTC.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def fixed_clock(instant: datetime) -> Clock:
    """Clock that always returns `instant`."""
    instant = ensure_utc(instant)
    return lambda: instant


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(text: str) -> datetime:
    """Parse an ISO-8601 instant. Raises ValueError on bad input."""
    text = text.strip()
    if not text:
        raise ValueError("empty timestamp")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_timestamp(value: datetime) -> str:
    """Format as YYYY-MM-DDTHH:MM:SSZ, keeping fractional seconds if any."""
    value = ensure_utc(value)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}"
    return text + "Z"
