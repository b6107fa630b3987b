"""UTC timestamp helpers shared by the history log and the retry queue."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to a fixed-width ISO 8601 string (sorts chronologically)."""
    if dt is None:
        return None
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to datetime."""
    if s is None:
        return None
    return datetime.fromisoformat(s)


def epoch_millis(dt: datetime | None = None) -> int:
    """Milliseconds since the epoch for ``dt`` (default: now)."""
    return int((dt or utc_now()).timestamp() * 1000)
