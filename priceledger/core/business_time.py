"""Business timezone boundary conversion.

User-facing effective dates are naive wall-clock strings
(``YYYY-MM-DDTHH:mm``) in a fixed UTC+7 zone with no daylight saving.
Conversion happens only here: parsing input into a stored UTC instant and
formatting a stored instant back for display.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone

from priceledger.core.clock import ensure_utc
from priceledger.exceptions import ValidationError

LOCAL_INPUT_FORMAT = "%Y-%m-%dT%H:%M"
DEFAULT_OFFSET_HOURS = 7


def business_tz(offset_hours: int = DEFAULT_OFFSET_HOURS) -> timezone:
    """Fixed-offset business timezone."""
    return timezone(timedelta(hours=offset_hours))


def parse_local(value: str, offset_hours: int = DEFAULT_OFFSET_HOURS) -> datetime:
    """Parse a local ``YYYY-MM-DDTHH:mm`` string into an aware UTC datetime.

    Seconds (``YYYY-MM-DDTHH:mm:ss``) are tolerated since browsers emit them
    for some datetime-local inputs.

    Raises:
        ValidationError: If the value is empty or not in the expected format
    """
    if not value or not value.strip():
        raise ValidationError("effective_from is required")

    text = value.strip()
    for fmt in (LOCAL_INPUT_FORMAT, LOCAL_INPUT_FORMAT + ":%S"):
        try:
            naive = datetime.strptime(text, fmt)
            break
        except ValueError:
            continue
    else:
        raise ValidationError(
            f"effective_from must look like YYYY-MM-DDTHH:mm, got {value!r}"
        )

    return naive.replace(tzinfo=business_tz(offset_hours)).astimezone(timezone.utc)


def format_local(instant: datetime, offset_hours: int = DEFAULT_OFFSET_HOURS) -> str:
    """Format a stored UTC instant as local ``YYYY-MM-DDTHH:mm`` text."""
    local = ensure_utc(instant).astimezone(business_tz(offset_hours))
    return local.strftime(LOCAL_INPUT_FORMAT)


def start_of_next_local_day(
    now: datetime, offset_hours: int = DEFAULT_OFFSET_HOURS
) -> datetime:
    """Return the UTC instant of tomorrow 00:00 in the business timezone."""
    tz = business_tz(offset_hours)
    local_today = ensure_utc(now).astimezone(tz).date()
    midnight = datetime.combine(local_today + timedelta(days=1), time.min, tzinfo=tz)
    return midnight.astimezone(timezone.utc)


def to_utc_instant(
    value: str | datetime, offset_hours: int = DEFAULT_OFFSET_HOURS
) -> datetime:
    """Accept either local wall-clock text or an instant, return UTC.

    Naive datetimes are treated as business-local wall clock, the same way
    the text form is.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=business_tz(offset_hours)).astimezone(
                timezone.utc
            )
        return value.astimezone(timezone.utc)
    return parse_local(value, offset_hours)
