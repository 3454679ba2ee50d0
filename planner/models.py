from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import NewType, Optional
import datetime as dt
import re

from .config import DATE_FMT

RecordId = NewType("RecordId", str)

TASK_TYPES = ("basic", "routine", "related", "long_interval")

# index matches dt.date.weekday()
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

SCHEDULE_FIELDS = frozenset({"start_date", "end_date", "days_selected", "recurrence_interval"})
TEXT_FIELDS = frozenset({"title", "notes"})
EDITABLE_FIELDS = TEXT_FIELDS | SCHEDULE_FIELDS | {"due_date", "due_time"}

_INSTANCE_ID_RE = re.compile(r"^(?P<template>.+)_(?P<day>\d{4}-\d{2}-\d{2})$")


class TaskKind(Enum):
    PLAIN = "plain"
    TEMPLATE = "template"
    OVERRIDE = "override"
    VIRTUAL = "virtual"


@dataclass(frozen=True)
class InstanceRef:
    """Identity of a virtual occurrence: a template and one of its dates.

    Never persisted; ``task_id`` is recomputed on every expansion.
    """
    template_id: RecordId
    day: dt.date

    @property
    def task_id(self) -> str:
        return f"{self.template_id}_{self.day.strftime(DATE_FMT)}"

    @classmethod
    def parse(cls, task_id: str) -> Optional["InstanceRef"]:
        m = _INSTANCE_ID_RE.match(task_id)
        if m is None:
            return None
        try:
            day = dt.datetime.strptime(m.group("day"), DATE_FMT).date()
        except ValueError:
            return None
        return cls(RecordId(m.group("template")), day)


@dataclass
class Task:
    id: str
    user_id: str
    title: str
    type: str  # 'basic' | 'routine' | 'related' | 'long_interval'
    due_date: dt.date
    completed: bool = False
    notes: Optional[str] = None
    due_time: Optional[dt.time] = None
    is_template: bool = False
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    days_selected: Optional[list[str]] = None
    recurrence_interval: Optional[int] = None  # whole months
    completed_dates: set[str] = field(default_factory=set)
    excluded_dates: set[str] = field(default_factory=set)
    parent_task_id: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None
    instance_ref: Optional[InstanceRef] = None

    @property
    def kind(self) -> TaskKind:
        return classify(self)

    @property
    def day_key(self) -> str:
        return self.due_date.strftime(DATE_FMT)

    def copy(self, **changes) -> "Task":
        """Copy with independent date sets so patches never leak between records."""
        clone = replace(self, **changes)
        if "completed_dates" not in changes:
            clone.completed_dates = set(self.completed_dates)
        if "excluded_dates" not in changes:
            clone.excluded_dates = set(self.excluded_dates)
        if clone.days_selected is not None and "days_selected" not in changes:
            clone.days_selected = list(clone.days_selected)
        return clone


def classify(task: Task) -> TaskKind:
    """Tag a record with the write path that owns it.

    ``related`` tasks carry a ``parent_task_id`` too but are plain tasks.
    Virtual instances are recognised by their ``instance_ref``; ids are
    never inspected here.
    """
    if task.is_template:
        return TaskKind.TEMPLATE
    if task.parent_task_id and task.type != "related":
        return TaskKind.VIRTUAL if task.instance_ref is not None else TaskKind.OVERRIDE
    return TaskKind.PLAIN
