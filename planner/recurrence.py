"""Recurrence expansion: template schedule -> ordered calendar dates.

Two rule shapes exist. A non-empty weekday set walks the range day by day;
otherwise the template repeats every ``interval_months`` whole months from
its start date (one month when no rule is given at all).
"""
from __future__ import annotations
import datetime as dt
import logging
from typing import Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from .config import DEFAULT_SPAN_MONTHS
from .models import Task, WEEKDAYS
from .utils import to_local_date

logger = logging.getLogger(__name__)


def weekday_numbers(days: Iterable) -> set[int]:
    """Accept weekday names ("Monday") or ``date.weekday()`` integers."""
    nums = set()
    for d in days:
        if isinstance(d, int):
            nums.add(d % 7)
        else:
            name = str(d).strip().capitalize()
            if name not in WEEKDAYS:
                raise ValueError(f"unknown weekday: {d!r}")
            nums.add(WEEKDAYS.index(name))
    return nums


def expand(start_date, end_date, weekdays: Optional[Iterable] = None,
           interval_months: Optional[int] = None) -> List[dt.date]:
    start = to_local_date(start_date)
    end = to_local_date(end_date)
    if start is None or end is None or end < start:
        return []

    wanted = weekday_numbers(weekdays) if weekdays else set()
    if wanted:
        out = []
        day = start
        while day <= end:
            if day.weekday() in wanted:
                out.append(day)
            day += dt.timedelta(days=1)
        return out

    step = interval_months or 1
    if step < 1:
        raise ValueError(f"recurrence interval must be >= 1 month, got {step}")
    out = []
    k = 0
    # offsets from the start date clamp to month end without drifting (Jan 31 -> Feb 28 -> Mar 31)
    while True:
        day = start + relativedelta(months=k * step)
        if day > end:
            break
        out.append(day)
        k += 1
    return out


def default_end_date(start_date: dt.date) -> dt.date:
    return start_date + relativedelta(months=DEFAULT_SPAN_MONTHS)


def template_start(template: Task) -> Optional[dt.date]:
    return template.start_date or template.due_date


def template_end(template: Task) -> Optional[dt.date]:
    if template.end_date is not None:
        return template.end_date
    start = template_start(template)
    return default_end_date(start) if start is not None else None


def expand_template(template: Task) -> List[dt.date]:
    dates = expand(template_start(template), template_end(template),
                   template.days_selected, template.recurrence_interval)
    logger.debug("expanded template %s into %d dates", template.id, len(dates))
    return dates
