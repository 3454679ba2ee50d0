"""Routing of toggle / update / delete to the right write path.

Every action is a :class:`Mutation`: the records it touches are captured,
the working set is patched immediately, and the store writes are queued.
The returned Future resolves to the same Mutation once the writes either
committed or failed; on failure only that mutation's own change is undone,
so later edits of the same records survive.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from concurrent.futures import Future
from typing import Any, Callable, Iterable, Mapping, Optional
import datetime as dt
import logging
import uuid

from .collection import Snapshot, TaskCollection
from .errors import StoreError, UnknownTaskError, ValidationError
from .instances import OverrideIndex, reconcile_template
from .models import (
    EDITABLE_FIELDS, SCHEDULE_FIELDS, TASK_TYPES, TEXT_FIELDS, InstanceRef, Task, TaskKind, classify,
)
from .recurrence import default_end_date, weekday_numbers
from .storage import RecordStore, patch_for, task_to_row
from .utils import now, parse_time, to_local_date
from .writer import WriteQueue

logger = logging.getLogger(__name__)

RECURRING_TYPES = ("routine", "long_interval")


class Outcome(Enum):
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    SKIPPED = "skipped"


@dataclass
class Mutation:
    action: str
    task_id: str
    kind: Optional[TaskKind] = None
    before: Snapshot = field(default_factory=Snapshot)
    after: Snapshot = field(default_factory=Snapshot)
    outcome: Optional[Outcome] = None
    error: Optional[Exception] = None
    # id of the row a create or a promotion inserted
    created_id: Optional[str] = None

    @property
    def committed(self) -> bool:
        return self.outcome is Outcome.COMMITTED


def _by_id(task_id: str):
    return [("id", "eq", task_id)]


class MutationCoordinator:
    def __init__(self, store: RecordStore, collection: TaskCollection, user_id: str = "",
                 writer: Optional[Any] = None, clock: Callable[[], dt.datetime] = now,
                 new_id: Callable[[], str] = lambda: str(uuid.uuid4())):
        self.store = store
        self.collection = collection
        self.user_id = user_id
        self.writer = writer if writer is not None else WriteQueue()
        self.clock = clock
        self.new_id = new_id

    # -------------------- plumbing --------------------
    def _run(self, mutation: Mutation, touched: Iterable[str], apply: Callable[[], None],
             write: Callable[[], None]) -> Future:
        with self.collection.lock:
            touched = list(touched)
            mutation.before = self.collection.capture(touched)
            apply()
            mutation.after = self.collection.capture(touched)

        def job() -> Mutation:
            try:
                write()
            except StoreError as e:
                mutation.error = e
                mutation.outcome = Outcome.ROLLED_BACK
                logger.error("%s %s failed, reverting: %s", mutation.action, mutation.task_id, e)
                self.collection.revert(mutation.before, mutation.after)
            else:
                mutation.outcome = Outcome.COMMITTED
                logger.info("%s %s committed", mutation.action, mutation.task_id)
            return mutation

        return self.writer.submit(job)

    @staticmethod
    def _skipped(mutation: Mutation) -> Future:
        mutation.outcome = Outcome.SKIPPED
        fut: Future = Future()
        fut.set_result(mutation)
        return fut

    def _resolve(self, task_id: str):
        task = self.collection.get(task_id)
        if task is None:
            ref = InstanceRef.parse(task_id)
            if ref is not None and self.collection.template(ref.template_id) is None:
                raise UnknownTaskError(f"{task_id}: template {ref.template_id} is not loaded")
            raise UnknownTaskError(f"unknown task: {task_id}")
        return task, classify(task)

    def _template_for(self, task: Task) -> Task:
        template = self.collection.template(task.parent_task_id)
        if template is None:
            raise UnknownTaskError(f"{task.id}: template {task.parent_task_id} is not loaded")
        return template

    def _rewrite_date_set(self, template_id: str, column: str, day_key: str, add: bool) -> None:
        # read-modify-write; safe because one writer drains all jobs
        rows = self.store.select(_by_id(template_id))
        if not rows:
            raise StoreError(f"template {template_id} not found")
        dates = set(rows[0].get(column) or ())
        if add:
            dates.add(day_key)
        else:
            dates.discard(day_key)
        self.store.update(_by_id(template_id), {column: sorted(dates), "updated_at": self.clock()})

    def _unlink_related(self, parent_id: str) -> None:
        self.store.update([("parent_task_id", "eq", parent_id), ("type", "eq", "related")],
                          {"parent_task_id": None, "updated_at": self.clock()})

    # -------------------- toggle --------------------
    def toggle(self, task_id: str) -> Future:
        with self.collection.lock:
            task, kind = self._resolve(task_id)
            mutation = Mutation("toggle", task_id, kind)
            if kind is TaskKind.TEMPLATE:
                # a template has no done state of its own
                return self._skipped(mutation)
            done = not task.completed

            if kind is TaskKind.VIRTUAL:
                template = self._template_for(task)
                key = task.day_key

                def apply():
                    self.collection.put(task.copy(completed=done))
                    dates = set(template.completed_dates)
                    if done:
                        dates.add(key)
                    else:
                        dates.discard(key)
                    self.collection.put(template.copy(completed_dates=dates))

                def write():
                    self._rewrite_date_set(template.id, "completed_dates", key, add=done)

                return self._run(mutation, [task.id, template.id], apply, write)

            stamp = self.clock()

            def apply():
                self.collection.put(task.copy(completed=done, updated_at=stamp))

            def write():
                self.store.update(_by_id(task.id), {"completed": done, "updated_at": stamp})

            return self._run(mutation, [task.id], apply, write)

    # -------------------- update --------------------
    def update(self, task_id: str, fields: Mapping[str, Any]) -> Future:
        changes = _normalize(fields)
        with self.collection.lock:
            task, kind = self._resolve(task_id)
            mutation = Mutation("update", task_id, kind)

            if kind is not TaskKind.TEMPLATE:
                dropped = set(changes) & SCHEDULE_FIELDS
                if kind in (TaskKind.VIRTUAL, TaskKind.OVERRIDE) and changes.get("due_date", task.due_date) != task.due_date:
                    # the occurrence date keys the override; it cannot move
                    dropped.add("due_date")
                if dropped:
                    logger.warning("update %s: ignoring %s", task_id, ", ".join(sorted(dropped)))
                    for name in dropped:
                        changes.pop(name, None)
            else:
                _check_schedule(task.copy(**changes))
            changes = {k: v for k, v in changes.items() if getattr(task, k) != v}
            if not changes:
                return self._skipped(mutation)

            stamp = self.clock()
            if kind is TaskKind.VIRTUAL:
                return self._promote(mutation, task, changes, stamp)
            if kind is TaskKind.TEMPLATE:
                return self._update_template(mutation, task, changes, stamp)

            updated = task.copy(updated_at=stamp, **changes)

            def apply():
                self.collection.put(updated)

            def write():
                self.store.update(_by_id(task.id), patch_for(updated, changes))

            return self._run(mutation, [task.id], apply, write)

    def _promote(self, mutation: Mutation, virtual: Task, changes: Mapping[str, Any], stamp: dt.datetime) -> Future:
        promoted = virtual.copy(id=self.new_id(), instance_ref=None, created_at=stamp, updated_at=stamp, **changes)
        mutation.created_id = promoted.id
        logger.debug("promoting %s to override %s", virtual.id, promoted.id)

        def apply():
            self.collection.remove(virtual.id)
            self.collection.put(promoted)

        def write():
            self.store.insert(task_to_row(promoted))

        return self._run(mutation, [virtual.id, promoted.id], apply, write)

    def _update_template(self, mutation: Mutation, template: Task, changes: Mapping[str, Any],
                         stamp: dt.datetime) -> Future:
        updated = template.copy(updated_at=stamp, **changes)
        current = self.collection.occurrences_of(template.id)
        reschedule = bool(set(changes) & SCHEDULE_FIELDS) or ("due_date" in changes and template.start_date is None)

        if reschedule:
            overrides = [o for o in current if o.kind is TaskKind.OVERRIDE]
            parked = self.collection.parked_overrides(template.id)
            fresh = reconcile_template(updated, OverrideIndex(overrides + parked))
            surfaced = {o.id for o in fresh}
            # overrides that were on the old schedule and are not on the new one
            orphans = [o.id for o in overrides if o.id not in surfaced]
            touched = [template.id] + [o.id for o in current + parked + fresh]

            def apply():
                for occ in current:
                    self.collection.remove(occ.id)
                self.collection.put(updated)
                for occ in fresh:
                    self.collection.put(occ)

            def write():
                self.store.update(_by_id(template.id), patch_for(updated, changes))
                if orphans:
                    logger.info("template %s: deleting %d override(s) off the new schedule", template.id, len(orphans))
                    self.store.delete([("id", "in", orphans)])

            return self._run(mutation, touched, apply, write)

        # overrides keep their own edited copy
        carried = {k: v for k, v in changes.items() if k in TEXT_FIELDS or k == "due_time"}
        virtuals = [o for o in current if o.kind is TaskKind.VIRTUAL]

        def apply():
            self.collection.put(updated)
            if carried:
                for v in virtuals:
                    self.collection.put(v.copy(**carried))

        def write():
            self.store.update(_by_id(template.id), patch_for(updated, changes))

        return self._run(mutation, [template.id] + [v.id for v in virtuals], apply, write)

    def reschedule(self, task_id: str, new_date, new_time=None) -> Future:
        fields = {"due_date": new_date}
        if new_time is not None:
            fields["due_time"] = new_time
        return self.update(task_id, fields)

    # -------------------- delete --------------------
    def delete(self, task_id: str) -> Future:
        with self.collection.lock:
            task, kind = self._resolve(task_id)
            mutation = Mutation("delete", task_id, kind)

            if kind in (TaskKind.VIRTUAL, TaskKind.OVERRIDE):
                template = self._template_for(task)
                key = task.day_key

                def apply():
                    self.collection.remove(task.id)
                    self.collection.put(template.copy(excluded_dates=template.excluded_dates | {key}))

                def write():
                    if kind is TaskKind.OVERRIDE:
                        self.store.delete(_by_id(task.id))
                    self._rewrite_date_set(template.id, "excluded_dates", key, add=True)

                return self._run(mutation, [task.id, template.id], apply, write)

            children = self.collection.related_children(task.id)
            occurrences = []
            if kind is TaskKind.TEMPLATE:
                occurrences = self.collection.occurrences_of(task.id) + self.collection.parked_overrides(task.id)
            touched = [task.id] + [o.id for o in occurrences] + [c.id for c in children]

            def apply():
                for occ in occurrences:
                    self.collection.remove(occ.id)
                self.collection.remove(task.id)
                for child in children:
                    self.collection.put(child.copy(parent_task_id=None))

            def write():
                if kind is TaskKind.TEMPLATE:
                    self.store.delete([("parent_task_id", "eq", task.id), ("is_template", "eq", False),
                                       ("type", "neq", "related")])
                self.store.delete(_by_id(task.id))
                self._unlink_related(task.id)

            return self._run(mutation, touched, apply, write)

    # -------------------- create --------------------
    def create(self, title: str, type: str = "basic", due_date=None, *, notes: Optional[str] = None,
               due_time=None, start_date=None, end_date=None, days_selected=None,
               recurrence_interval: Optional[int] = None, parent_task_id: Optional[str] = None) -> Future:
        """Add a plain task, a related task, or a recurring template.

        ``routine`` and ``long_interval`` tasks become templates; an omitted
        end date runs the template for the default span.
        """
        if not title or not title.strip():
            raise ValidationError("title is required")
        if type not in TASK_TYPES:
            raise ValidationError(f"unknown task type: {type}")
        if type == "related" and not parent_task_id:
            raise ValidationError("related tasks need a parent_task_id")
        if type != "related" and parent_task_id:
            raise ValidationError("only related tasks may reference a parent")

        stamp = self.clock()
        due = to_local_date(due_date)
        task = Task(
            id=self.new_id(), user_id=self.user_id, title=title.strip(), type=type,
            due_date=due or stamp.date(), notes=notes, due_time=parse_time(due_time),
            parent_task_id=parent_task_id, created_at=stamp, updated_at=stamp,
        )
        if type in RECURRING_TYPES:
            start = to_local_date(start_date) or due or stamp.date()
            task = task.copy(
                is_template=True, due_date=start, start_date=start,
                end_date=to_local_date(end_date) or default_end_date(start),
                days_selected=list(days_selected) if days_selected else None,
                recurrence_interval=int(recurrence_interval) if recurrence_interval else None,
            )
            _check_schedule(task)
        mutation = Mutation("create", task.id, classify(task), created_id=task.id)
        fresh = reconcile_template(task, OverrideIndex()) if task.is_template else []

        def apply():
            self.collection.put(task)
            for occ in fresh:
                self.collection.put(occ)

        def write():
            self.store.insert(task_to_row(task))

        return self._run(mutation, [task.id] + [o.id for o in fresh], apply, write)


def _normalize(fields: Mapping[str, Any]) -> dict:
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"not editable: {', '.join(sorted(unknown))}")
    out = {}
    for name, value in fields.items():
        if name in ("due_date", "start_date", "end_date"):
            value = to_local_date(value)
            if value is None and name != "end_date":
                raise ValidationError(f"{name} cannot be cleared")
        elif name == "due_time":
            value = parse_time(value)
        elif name == "days_selected":
            value = list(value) if value else None
        elif name == "recurrence_interval":
            value = int(value) if value else None
        elif name == "title":
            if not value or not str(value).strip():
                raise ValidationError("title is required")
            value = str(value).strip()
        out[name] = value
    return out


def _check_schedule(template: Task) -> None:
    if template.days_selected and template.recurrence_interval:
        raise ValidationError("a template repeats on weekdays or every N months, not both")
    if template.days_selected:
        try:
            weekday_numbers(template.days_selected)
        except ValueError as e:
            raise ValidationError(str(e)) from e
    if template.recurrence_interval is not None and template.recurrence_interval < 1:
        raise ValidationError("recurrence_interval must be at least 1 month")
