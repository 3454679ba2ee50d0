import datetime as dt
import pytest
from planner.models import Task

USER = "9dfa5616-322a-4287-a980-d33754320861"
STAMP = dt.datetime(2026, 2, 1, 10, 0)


def make_template(**kw):
    fields = dict(
        id="tmpl-gym", user_id=USER, title="Gym", type="routine", due_date=dt.date(2026, 2, 1),
        notes="legs", is_template=True, start_date=dt.date(2026, 2, 1), end_date=dt.date(2026, 2, 10),
        days_selected=["Monday", "Wednesday"], created_at=STAMP, updated_at=STAMP,
    )
    fields.update(kw)
    return Task(**fields)


def make_task(**kw):
    fields = dict(id="plain-1", user_id=USER, title="Pay rent", type="basic", due_date=dt.date(2026, 2, 20),
                  created_at=STAMP, updated_at=STAMP)
    fields.update(kw)
    return Task(**fields)


@pytest.fixture
def template():
    return make_template()
