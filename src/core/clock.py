"""Clock helpers - Minutes since midnight <-> time of day."""

from datetime import datetime, time, tzinfo

MINUTES_PER_DAY = 24 * 60


def to_minutes(value: time) -> int:
    """Minutes since midnight for a time of day (seconds are dropped)."""
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    """Time of day for a minute offset, clamped to 00:00-23:59.

    Callers keep the exact minute count alongside; a time of day cannot
    express a projection that runs past midnight.
    """
    minutes = max(0, min(minutes, MINUTES_PER_DAY - 1))
    return time(minutes // 60, minutes % 60)


def minutes_of(moment: datetime, tz: tzinfo | None = None) -> int:
    """Minutes since midnight of a timestamp, seen from ``tz`` when given."""
    if tz is not None and moment.tzinfo is not None:
        moment = moment.astimezone(tz)
    return to_minutes(moment.time())
