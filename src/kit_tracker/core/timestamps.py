"""UTC normalization and day-boundary helpers for temporal queries."""

from __future__ import annotations

from datetime import UTC, date, datetime, time

from kit_tracker.core.errors import ValidationError

END_OF_DAY = time(23, 59, 59, 999999)


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, END_OF_DAY, tzinfo=UTC)


def parse_day(value: date | datetime | str | None, name: str) -> date:
    """Parse a calendar-day bound.

    Args:
        value: A date, a datetime (its UTC date is used) or an ISO-8601 string.
        name: Name of the bound, used in error messages.

    Raises:
        ValidationError: If the value is missing or cannot be parsed.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{name} date is required", field=name)
    if isinstance(value, datetime):
        return to_utc(value).date()
    if isinstance(value, date):
        return value
    text = value.strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return to_utc(datetime.fromisoformat(text)).date()
    except ValueError as exc:
        raise ValidationError(f"Invalid {name} date: {value!r}", field=name) from exc


def parse_as_of(value: date | datetime | str | None, name: str = "date") -> datetime:
    """Parse a point-in-time parameter.

    A bare calendar day means the end of that UTC day, so everything committed
    during the day is included. A full datetime is used as given.

    Raises:
        ValidationError: If the value is missing or cannot be parsed.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{name} is required", field=name)
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return end_of_day(value)
    text = value.strip()
    try:
        if len(text) == 10:
            return end_of_day(date.fromisoformat(text))
        return to_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise ValidationError(f"Invalid {name}: {value!r}", field=name) from exc
