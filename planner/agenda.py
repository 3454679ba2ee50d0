from __future__ import annotations
import logging, datetime as dt
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional

from .collection import TaskCollection
from .config import UPCOMING_LIMIT
from .coordinator import MutationCoordinator
from .errors import StoreError
from .instances import build_occurrences, clip_to_range, sort_key
from .models import Task
from .recurrence import template_end, template_start
from .storage import RecordStore, SQLiteRecordStore, row_to_task
from .utils import month_bounds, now

logger = logging.getLogger(__name__)


class Agenda:
    """A user's working set: loads rows, materializes occurrences, routes edits."""

    def __init__(self, user_id: str, store: Optional[RecordStore] = None, writer=None,
                 clock: Callable[[], dt.datetime] = now, **coordinator_kw):
        self.user_id = user_id
        self.store = store or SQLiteRecordStore()
        self.clock = clock
        self.collection = TaskCollection()
        self.coordinator = MutationCoordinator(self.store, self.collection, user_id,
                                               writer=writer, clock=clock, **coordinator_kw)

    # -------------------- loading --------------------
    def load(self) -> bool:
        """Replace the working set with every row of the user.

        A failed read leaves the current working set untouched.
        """
        try:
            rows = self.store.select([("user_id", "eq", self.user_id)])
        except StoreError as e:
            logger.error("loading tasks for %s failed: %s", self.user_id, e)
            return False
        built = build_occurrences(row_to_task(r) for r in rows)
        self.collection.reset(built.templates, built.occurrences, built.orphans)
        logger.info("loaded %d templates, %d tasks (%d parked overrides)",
                    len(built.templates), len(built.occurrences), len(built.orphans))
        return True

    def tasks_for_month(self, year: int, month: int) -> List[Task]:
        """Reconciled occurrences and plain tasks due in one calendar month.

        Templates are expanded over their whole range and reconciled before
        the result is clipped to the month. The working set is not changed.
        """
        first, last = month_bounds(year, month)
        user = ("user_id", "eq", self.user_id)
        try:
            plain = self.store.select([user, ("is_template", "eq", False),
                                       ("due_date", "gte", first),
                                       ("due_date", "lt", last + dt.timedelta(days=1))])
            templates = [r for r in self.store.select([user, ("is_template", "eq", True)])
                         if _overlaps(row_to_task(r), first, last)]
            overrides = []
            if templates:
                overrides = self.store.select([user, ("is_template", "eq", False),
                                               ("type", "neq", "related"),
                                               ("parent_task_id", "in", [r["id"] for r in templates])])
        except StoreError as e:
            logger.error("loading %04d-%02d failed: %s", year, month, e)
            return []
        rows: Dict[str, Dict[str, Any]] = {}
        for r in plain + templates + overrides:
            rows[r["id"]] = r
        built = build_occurrences(row_to_task(r) for r in rows.values())
        return clip_to_range(built.occurrences, first, last)

    # -------------------- views --------------------
    def tasks(self) -> List[Task]:
        return self.collection.tasks()

    def today(self, day: Optional[dt.date] = None) -> List[Task]:
        day = day or self.clock().date()
        return [t for t in self.collection.tasks() if t.due_date == day]

    def upcoming(self, day: Optional[dt.date] = None, limit: int = UPCOMING_LIMIT) -> List[Task]:
        day = day or self.clock().date()
        later = [t for t in self.collection.tasks() if t.due_date > day]
        return sorted(later, key=sort_key)[:limit]

    def progress(self, day: Optional[dt.date] = None) -> float:
        """Percentage of the day's tasks that are done (0 when there are none)."""
        todays = self.today(day)
        if not todays:
            return 0.0
        return 100.0 * sum(1 for t in todays if t.completed) / len(todays)

    # -------------------- mutations --------------------
    def create(self, title: str, type: str = "basic", due_date=None, **fields) -> Future:
        return self.coordinator.create(title, type, due_date, **fields)

    def toggle(self, task_id: str) -> Future:
        return self.coordinator.toggle(task_id)

    def update(self, task_id: str, fields) -> Future:
        return self.coordinator.update(task_id, fields)

    def reschedule(self, task_id: str, new_date, new_time=None) -> Future:
        return self.coordinator.reschedule(task_id, new_date, new_time)

    def delete(self, task_id: str) -> Future:
        return self.coordinator.delete(task_id)

    def close(self, timeout: Optional[float] = None) -> None:
        self.coordinator.writer.stop(timeout)


def _overlaps(template: Task, first: dt.date, last: dt.date) -> bool:
    start, end = template_start(template), template_end(template)
    return start is not None and start <= last and end is not None and end >= first
