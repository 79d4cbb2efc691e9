"""UTC helpers. Timestamps are stored as naive UTC datetimes."""

from datetime import date, datetime, time, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive input is assumed UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open [start, end) range covering one UTC calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def previous_utc_day(now: datetime | None = None) -> date:
    """The UTC day that has just ended."""
    return ((now or utcnow()) - timedelta(days=1)).date()


def floor_to_bucket(ts: datetime, minutes: int) -> datetime:
    """Floor a timestamp to the start of its fixed-size bucket."""
    epoch = datetime(1970, 1, 1)
    size = timedelta(minutes=minutes)
    return epoch + ((ts - epoch) // size) * size
