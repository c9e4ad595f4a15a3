"""Fixed instants and clocks shared by the engine tests."""

from datetime import datetime, timezone

FIXED_NOW = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)


def at(day: int, hour: int, minute: int = 0, month: int = 10) -> datetime:
    """An aware UTC instant in 2026, for readable test intervals."""
    return datetime(2026, month, day, hour, minute, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW
