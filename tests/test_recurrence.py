import datetime as dt
import pytest
from planner.recurrence import expand, expand_template, weekday_numbers
from planner.models import Task

D = dt.date


def test_weekday_expansion_mon_wed():
    days = expand(D(2026, 2, 1), D(2026, 2, 10), ["Monday", "Wednesday"])
    assert days == [D(2026, 2, 2), D(2026, 2, 4), D(2026, 2, 9)]


def test_month_interval_expansion_is_inclusive():
    days = expand(D(2026, 1, 15), D(2026, 7, 15), interval_months=3)
    assert days == [D(2026, 1, 15), D(2026, 4, 15), D(2026, 7, 15)]


def test_no_rule_defaults_to_monthly():
    days = expand(D(2026, 1, 10), D(2026, 4, 1))
    assert days == [D(2026, 1, 10), D(2026, 2, 10), D(2026, 3, 10)]


def test_month_end_clamps_without_drift():
    days = expand(D(2026, 1, 31), D(2026, 4, 30), interval_months=1)
    assert days == [D(2026, 1, 31), D(2026, 2, 28), D(2026, 3, 31), D(2026, 4, 30)]


def test_end_before_start_is_empty():
    assert expand(D(2026, 3, 1), D(2026, 2, 1), ["Monday"]) == []
    assert expand(D(2026, 3, 1), D(2026, 2, 1), interval_months=1) == []


def test_weekday_set_matching_nothing_in_range_is_empty():
    # Thursday through Saturday
    assert expand(D(2026, 2, 5), D(2026, 2, 7), ["Monday"]) == []


def test_datetimes_are_normalized_to_their_day():
    days = expand(dt.datetime(2026, 2, 2, 18, 30), dt.datetime(2026, 2, 4, 0, 1), ["Monday", "Wednesday"])
    assert days == [D(2026, 2, 2), D(2026, 2, 4)]


def test_every_date_in_range_and_on_selected_weekday():
    start, end = D(2026, 1, 1), D(2026, 6, 30)
    days = expand(start, end, ["Tuesday", "Saturday"])
    assert days
    assert all(start <= d <= end for d in days)
    assert {d.weekday() for d in days} == {1, 5}
    assert days == sorted(days)


def test_weekday_numbers_accepts_names_and_ints():
    assert weekday_numbers(["monday", 2, "Sunday"]) == {0, 2, 6}
    with pytest.raises(ValueError):
        weekday_numbers(["Funday"])


def test_expand_template_defaults_end_to_three_months():
    t = Task(id="t1", user_id="u", title="Water plants", type="long_interval",
             due_date=D(2026, 1, 15), is_template=True, start_date=D(2026, 1, 15),
             recurrence_interval=1)
    assert expand_template(t) == [D(2026, 1, 15), D(2026, 2, 15), D(2026, 3, 15), D(2026, 4, 15)]


def test_expansion_is_rederivable():
    args = (D(2026, 2, 1), D(2026, 3, 31), ["Friday"])
    assert expand(*args) == expand(*args)
