"""In-memory working set shared by the loader and the mutation coordinator."""
from __future__ import annotations
import dataclasses
import logging
import threading
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .instances import sort_key
from .models import Task, TaskKind

logger = logging.getLogger(__name__)

# fields holding date sets; reverting one undoes only the keys a mutation added or removed
SET_FIELDS = ("completed_dates", "excluded_dates")


class Snapshot(dict):
    """Copies of records keyed by id (None where absent) at one point in time."""

    def __init__(self, *args, **kw):
        super().__init__(*args, **kw)
        # ids that were parked overrides when captured
        self.parked: Set[str] = set()


class TaskCollection:
    """Templates plus the visible tasks (plain tasks, overrides, virtual instances).

    Occurrences are indexed by ``(parent_task_id, YYYY-MM-DD)``; putting an
    occurrence evicts whatever record held that slot, so a template date is
    never represented twice. Overrides whose date the template does not
    produce are parked: kept out of every view, but available when the
    schedule changes. Rollbacks run on the writer thread, hence the
    re-entrant lock.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._templates: Dict[str, Task] = {}
        self._tasks: Dict[str, Task] = {}
        self._parked: Dict[str, Task] = {}
        self._slots: Dict[Tuple[str, str], str] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks or task_id in self._templates

    # -------------------- loading --------------------
    def reset(self, templates: Iterable[Task], tasks: Iterable[Task], parked: Iterable[Task] = ()) -> None:
        with self.lock:
            self._templates.clear()
            self._tasks.clear()
            self._parked.clear()
            self._slots.clear()
            for t in templates:
                self.put(t)
            for t in tasks:
                self.put(t)
            for t in parked:
                self.park(t)

    # -------------------- queries --------------------
    def get(self, task_id: str) -> Optional[Task]:
        with self.lock:
            return self._tasks.get(task_id) or self._templates.get(task_id)

    def template(self, template_id: str) -> Optional[Task]:
        with self.lock:
            return self._templates.get(template_id)

    def templates(self) -> List[Task]:
        with self.lock:
            return list(self._templates.values())

    def tasks(self) -> List[Task]:
        with self.lock:
            return sorted(self._tasks.values(), key=sort_key)

    def occurrence(self, template_id: str, day_key: str) -> Optional[Task]:
        with self.lock:
            task_id = self._slots.get((template_id, day_key))
            return self._tasks.get(task_id) if task_id else None

    def occurrences_of(self, template_id: str) -> List[Task]:
        with self.lock:
            return [self._tasks[i] for (parent, _), i in self._slots.items() if parent == template_id]

    def parked_overrides(self, template_id: str) -> List[Task]:
        with self.lock:
            return [t for t in self._parked.values() if t.parent_task_id == template_id]

    def related_children(self, parent_id: str) -> List[Task]:
        with self.lock:
            return [t for t in self._tasks.values() if t.type == "related" and t.parent_task_id == parent_id]

    # -------------------- mutation --------------------
    def put(self, task: Task) -> None:
        with self.lock:
            self._unindex(task.id)
            self._parked.pop(task.id, None)
            if task.kind is TaskKind.TEMPLATE:
                self._tasks.pop(task.id, None)
                self._templates[task.id] = task
                return
            self._templates.pop(task.id, None)
            if task.kind in (TaskKind.VIRTUAL, TaskKind.OVERRIDE):
                slot = (task.parent_task_id, task.day_key)
                holder = self._slots.get(slot)
                if holder is not None and holder != task.id:
                    logger.debug("%s replaces %s on %s", task.id, holder, slot)
                    self._tasks.pop(holder, None)
                self._slots[slot] = task.id
            self._tasks[task.id] = task

    def park(self, task: Task) -> None:
        with self.lock:
            self._unindex(task.id)
            self._tasks.pop(task.id, None)
            self._templates.pop(task.id, None)
            self._parked[task.id] = task

    def remove(self, task_id: str) -> Optional[Task]:
        with self.lock:
            self._unindex(task_id)
            return (self._tasks.pop(task_id, None) or self._templates.pop(task_id, None)
                    or self._parked.pop(task_id, None))

    def _unindex(self, task_id: str) -> None:
        old = self._tasks.get(task_id)
        if old is None or old.parent_task_id is None:
            return
        slot = (old.parent_task_id, old.day_key)
        if self._slots.get(slot) == task_id:
            del self._slots[slot]

    def _lookup(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id) or self._templates.get(task_id) or self._parked.get(task_id)

    # -------------------- checkpoints --------------------
    def capture(self, task_ids: Iterable[str]) -> Snapshot:
        """Copies of the given records, parked ones included; absent ids map to None."""
        with self.lock:
            snap = Snapshot()
            for task_id in task_ids:
                current = self._lookup(task_id)
                snap[task_id] = current.copy() if current is not None else None
                if task_id in self._parked:
                    snap.parked.add(task_id)
            return snap

    def revert(self, before: Snapshot, after: Snapshot) -> None:
        """Undo the change that turned ``before`` into ``after``.

        Only what that change touched is put back: a field is reset when it
        still holds the value the change wrote, date sets lose the keys the
        change added and regain the ones it removed, and records the change
        removed come back unless their template or their slot is gone.
        Later changes to the same records are left alone.
        """
        with self.lock:
            # records the change created go first, freeing their slots
            for task_id in after:
                if before.get(task_id) is None and after[task_id] is not None:
                    self.remove(task_id)
            ordered = sorted(before, key=lambda i: before[i] is None or before[i].kind is not TaskKind.TEMPLATE)
            for task_id in ordered:
                old = before[task_id]
                if old is None:
                    continue
                new = after.get(task_id)
                if new is None:
                    self._bring_back(old, task_id in before.parked)
                    continue
                current = self._lookup(task_id)
                if current is None:
                    # removed since; that later change wins
                    continue
                patched = current.copy(**_undo_fields(old, new, current))
                if task_id in before.parked and task_id not in after.parked:
                    self.park(patched)
                elif task_id in self._parked and task_id not in before.parked:
                    self.put(patched)
                elif task_id in self._parked:
                    self._parked[task_id] = patched
                else:
                    self.put(patched)

    def _bring_back(self, task: Task, parked: bool) -> None:
        if self._lookup(task.id) is not None:
            return
        if task.kind in (TaskKind.VIRTUAL, TaskKind.OVERRIDE):
            if task.parent_task_id not in self._templates:
                logger.debug("not restoring %s: template %s is gone", task.id, task.parent_task_id)
                return
            if not parked and self._slots.get((task.parent_task_id, task.day_key)) is not None:
                logger.debug("not restoring %s: its date is taken", task.id)
                return
        if parked:
            self.park(task.copy())
        else:
            self.put(task.copy())


def _undo_fields(old: Task, new: Task, current: Task) -> dict:
    changes = {}
    for f in dataclasses.fields(Task):
        was, wrote, now = getattr(old, f.name), getattr(new, f.name), getattr(current, f.name)
        if was == wrote:
            continue
        if f.name in SET_FIELDS:
            changes[f.name] = (set(now) - (wrote - was)) | (was - wrote)
        elif now == wrote:
            changes[f.name] = was
    return changes
