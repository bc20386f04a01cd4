"""Day-key clock: one daily reset boundary (UTC) shared by every user."""

from datetime import datetime, time, timedelta, timezone

from rewardman.exceptions import ValidationError

DAY_KEY_FORMAT = "%Y-%m-%d"


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValidationError(
            "INVALID_INPUT",
            message="Day keys require timezone-aware datetimes",
            instant=instant.isoformat(),
        )
    return instant.astimezone(timezone.utc)


def day_key(instant: datetime) -> str:
    """Sortable UTC calendar date for ``instant``, e.g. ``"2026-10-19"``."""
    return _as_utc(instant).strftime(DAY_KEY_FORMAT)


def start_of_day(instant: datetime) -> datetime:
    return datetime.combine(_as_utc(instant).date(), time.min, tzinfo=timezone.utc)


def next_reset(instant: datetime) -> datetime:
    """Start of the next UTC day after ``instant``."""
    return start_of_day(instant) + timedelta(days=1)
