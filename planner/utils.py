from __future__ import annotations
import datetime as dt

from dateutil import parser as date_parser

from .config import DATE_FMT, TIME_FMT


def now() -> dt.datetime:
    return dt.datetime.now()


def to_local_date(value) -> dt.date | None:
    """Reduce a date, datetime or ISO string to its local calendar date.

    Timezone-aware values are converted to local time first, so a row stored
    as ``2026-02-02T23:30:00-05:00`` lands on the day the user saw, not the
    UTC day.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = date_parser.isoparse(value.strip())
    if isinstance(value, dt.datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    if isinstance(value, dt.date):
        return value
    raise TypeError(f"not a date: {value!r}")


def parse_time(value) -> dt.time | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.time):
        return value
    if isinstance(value, dt.datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.time().replace(second=0, microsecond=0)
    return dt.datetime.strptime(value.strip(), TIME_FMT).time()


def parse_timestamp(value) -> dt.datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value
    return date_parser.isoparse(value)


def date_key(value) -> str:
    """Canonical ``YYYY-MM-DD`` form used for completed/excluded sets and instance ids."""
    return to_local_date(value).strftime(DATE_FMT)


def format_due(day: dt.date, at: dt.time | None = None) -> str:
    if at is None:
        return day.strftime(DATE_FMT)
    return f"{day.strftime(DATE_FMT)}T{at.strftime(TIME_FMT)}"


def month_bounds(year: int, month: int) -> tuple[dt.date, dt.date]:
    first = dt.date(year, month, 1)
    nxt = dt.date(year + 1, 1, 1) if month == 12 else dt.date(year, month + 1, 1)
    return first, nxt - dt.timedelta(days=1)
