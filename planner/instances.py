"""Instance materialization and override reconciliation.

A template's expanded dates become virtual instances; a persisted override
for the same ``(template, date)`` pair replaces its virtual twin, so every
eligible date is represented exactly once.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
import datetime as dt
import logging

from .models import InstanceRef, RecordId, Task, TaskKind, classify
from .recurrence import expand_template
from .utils import date_key

logger = logging.getLogger(__name__)

OverrideKey = Tuple[str, str]


def materialize(template: Task, dates: Iterable[dt.date]) -> List[Task]:
    out = []
    for day in dates:
        key = date_key(day)
        if key in template.excluded_dates:
            continue
        ref = InstanceRef(RecordId(template.id), day)
        out.append(Task(
            id=ref.task_id,
            user_id=template.user_id,
            title=template.title,
            type=template.type,
            due_date=day,
            completed=key in template.completed_dates,
            notes=template.notes,
            due_time=template.due_time,
            is_template=False,
            parent_task_id=template.id,
            created_at=template.created_at,
            updated_at=template.updated_at,
            instance_ref=ref,
        ))
    return out


class OverrideIndex:
    """Overrides keyed by ``(parent_task_id, YYYY-MM-DD)``."""

    def __init__(self, overrides: Iterable[Task] = ()):
        self._by_key: Dict[OverrideKey, Task] = {}
        for row in overrides:
            self.add(row)

    def add(self, row: Task) -> None:
        key = (row.parent_task_id, row.day_key)
        current = self._by_key.get(key)
        if current is not None and current.id != row.id:
            # two overrides for one occurrence: the most recently written wins
            logger.warning("duplicate overrides %s and %s for %s on %s", current.id, row.id, *key)
            if (current.updated_at or dt.datetime.min) > (row.updated_at or dt.datetime.min):
                return
        self._by_key[key] = row

    def get(self, template_id: str, day_key: str) -> Optional[Task]:
        return self._by_key.get((template_id, day_key))

    def for_template(self, template_id: str) -> List[Task]:
        return [t for (parent, _), t in self._by_key.items() if parent == template_id]

    def __len__(self) -> int:
        return len(self._by_key)


@dataclass
class Partition:
    templates: List[Task] = field(default_factory=list)
    plain: List[Task] = field(default_factory=list)
    overrides: List[Task] = field(default_factory=list)


def partition_rows(tasks: Iterable[Task]) -> Partition:
    part = Partition()
    for task in tasks:
        kind = classify(task)
        if kind is TaskKind.TEMPLATE:
            part.templates.append(task)
        elif kind is TaskKind.OVERRIDE:
            part.overrides.append(task)
        elif kind is TaskKind.PLAIN:
            part.plain.append(task)
        else:
            logger.warning("ignoring virtual instance %s among persisted rows", task.id)
    return part


def reconcile(template: Task, virtuals: Iterable[Task], index: OverrideIndex) -> List[Task]:
    return [index.get(template.id, v.day_key) or v for v in virtuals]


def reconcile_template(template: Task, index: OverrideIndex) -> List[Task]:
    return reconcile(template, materialize(template, expand_template(template)), index)


@dataclass
class Materialized:
    templates: List[Task]
    occurrences: List[Task]
    # overrides whose (template, date) is not an eligible occurrence
    orphans: List[Task]


def build_occurrences(tasks: Iterable[Task]) -> Materialized:
    """Run expand -> materialize -> reconcile over a set of persisted rows."""
    part = partition_rows(tasks)
    index = OverrideIndex(part.overrides)
    occurrences = list(part.plain)
    surfaced = set()
    for template in part.templates:
        for occ in reconcile_template(template, index):
            if occ.instance_ref is None:
                surfaced.add(occ.id)
            occurrences.append(occ)
    orphans = [o for o in part.overrides if o.id not in surfaced]
    if orphans:
        logger.debug("%d override(s) not surfaced", len(orphans))
    occurrences.sort(key=sort_key)
    return Materialized(part.templates, occurrences, orphans)


def sort_key(task: Task):
    return (task.due_date, task.due_time or dt.time.min, task.title, task.id)


def clip_to_range(tasks: Iterable[Task], start: dt.date, end: dt.date) -> List[Task]:
    return [t for t in tasks if start <= t.due_date <= end]
