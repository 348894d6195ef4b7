# postflow/clock.py
from datetime import datetime, timezone


def utcnow() -> datetime:
    # naive UTC everywhere; sqlite drops tzinfo on the way back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_iso_z(value: datetime) -> str:
    """Second-precision ISO-8601 with a trailing Z, e.g. 2025-01-02T10:00:00Z."""
    return to_naive_utc(value).replace(microsecond=0).isoformat() + "Z"
