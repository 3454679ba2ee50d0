from __future__ import annotations
import abc, json, sqlite3, pathlib, datetime as dt
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import DB_PATH
from .errors import StoreError
from .models import Task
from .utils import format_due, parse_time, parse_timestamp, to_local_date

Row = Dict[str, Any]
# (column, op, value); op in OPS
Filter = Tuple[str, str, Any]

COLUMNS = (
    "id", "user_id", "title", "type", "due_date", "completed", "notes",
    "is_template", "start_date", "end_date", "days_selected", "recurrence_interval",
    "completed_dates", "excluded_dates", "parent_task_id", "created_at", "updated_at",
)
JSON_COLUMNS = {"days_selected", "completed_dates", "excluded_dates"}
BOOL_COLUMNS = {"completed", "is_template"}

DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'basic',
    due_date TEXT NOT NULL,
    completed INTEGER NOT NULL DEFAULT 0,
    notes TEXT DEFAULT NULL,
    is_template INTEGER NOT NULL DEFAULT 0,
    start_date TEXT DEFAULT NULL,
    end_date TEXT DEFAULT NULL,
    days_selected TEXT DEFAULT NULL,
    recurrence_interval INTEGER DEFAULT NULL,
    completed_dates TEXT DEFAULT NULL,
    excluded_dates TEXT DEFAULT NULL,
    parent_task_id TEXT DEFAULT NULL,
    created_at TEXT DEFAULT NULL,
    updated_at TEXT DEFAULT NULL
);
CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id);
CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_task_id);
"""


class RecordStore(abc.ABC):
    """Flat task rows behind select/insert/update/delete.

    Filters are ``(column, op, value)`` triples combined with AND. Supported
    ops: ``eq``, ``neq``, ``gte``, ``lt``, ``lte``, ``in`` and ``is_null`` (value is a
    bool). Any failure is reported as :class:`StoreError`.
    """

    OPS = ("eq", "neq", "gte", "lt", "lte", "in", "is_null")

    @abc.abstractmethod
    def select(self, filters: Sequence[Filter] = ()) -> List[Row]: ...

    @abc.abstractmethod
    def insert(self, row: Mapping[str, Any]) -> None: ...

    @abc.abstractmethod
    def update(self, filters: Sequence[Filter], patch: Mapping[str, Any]) -> int: ...

    @abc.abstractmethod
    def delete(self, filters: Sequence[Filter]) -> int: ...


def _where(filters: Sequence[Filter]) -> Tuple[str, list]:
    if not filters:
        return "", []
    clauses, params = [], []
    for column, op, value in filters:
        if column not in COLUMNS:
            raise StoreError(f"unknown column: {column}")
        if op == "eq":
            clauses.append(f"{column} = ?"); params.append(_encode(column, value))
        elif op == "neq":
            # NULL never equals anything; keep rows where the column is unset
            clauses.append(f"({column} IS NULL OR {column} != ?)"); params.append(_encode(column, value))
        elif op == "gte":
            clauses.append(f"{column} >= ?"); params.append(_encode(column, value))
        elif op == "lt":
            clauses.append(f"{column} < ?"); params.append(_encode(column, value))
        elif op == "lte":
            clauses.append(f"{column} <= ?"); params.append(_encode(column, value))
        elif op == "in":
            values = list(value)
            if not values:
                clauses.append("0")
                continue
            clauses.append(f"{column} IN ({','.join('?' * len(values))})")
            params.extend(_encode(column, v) for v in values)
        elif op == "is_null":
            clauses.append(f"{column} IS {'' if value else 'NOT '}NULL")
        else:
            raise StoreError(f"unsupported filter op: {op}")
    return " WHERE " + " AND ".join(clauses), params


def _encode(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in JSON_COLUMNS:
        return json.dumps(sorted(value) if isinstance(value, (set, frozenset)) else list(value))
    if column in BOOL_COLUMNS:
        return 1 if value else 0
    if isinstance(value, dt.datetime):
        return value.isoformat(timespec="seconds")
    if isinstance(value, dt.date):
        return value.isoformat()
    return value


def _decode(row: sqlite3.Row) -> Row:
    out: Row = {}
    for column in row.keys():
        value = row[column]
        if column in JSON_COLUMNS and value is not None:
            value = json.loads(value)
        elif column in BOOL_COLUMNS:
            value = bool(value)
        out[column] = value
    return out


class SQLiteRecordStore(RecordStore):
    def __init__(self, db_path: Optional[pathlib.Path] = None):
        self.db_path = pathlib.Path(db_path or DB_PATH)

    def connect(self):
        con = sqlite3.connect(self.db_path)
        con.execute("PRAGMA journal_mode=WAL;")
        con.row_factory = sqlite3.Row
        con.executescript(DDL)
        return con

    def _run(self, sql: str, params: Iterable = ()) -> int:
        con = None
        try:
            con = self.connect()
            with con:
                return con.execute(sql, tuple(params)).rowcount
        except sqlite3.Error as e:
            raise StoreError(f"{sql.split()[0].lower()} failed: {e}") from e
        finally:
            if con is not None:
                con.close()

    def select(self, filters: Sequence[Filter] = ()) -> List[Row]:
        where, params = _where(filters)
        con = None
        try:
            con = self.connect()
            cur = con.execute(f"SELECT * FROM tasks{where} ORDER BY created_at DESC", params)
            return [_decode(r) for r in cur.fetchall()]
        except sqlite3.Error as e:
            raise StoreError(f"select failed: {e}") from e
        finally:
            if con is not None:
                con.close()

    def insert(self, row: Mapping[str, Any]) -> None:
        cols = [c for c in COLUMNS if c in row]
        self._run(
            f"INSERT INTO tasks({', '.join(cols)}) VALUES ({','.join('?' * len(cols))})",
            [_encode(c, row[c]) for c in cols],
        )

    def update(self, filters: Sequence[Filter], patch: Mapping[str, Any]) -> int:
        if not patch:
            return 0
        unknown = set(patch) - set(COLUMNS)
        if unknown:
            raise StoreError(f"unknown column(s): {', '.join(sorted(unknown))}")
        where, params = _where(filters)
        set_clause = ", ".join(f"{c} = ?" for c in patch)
        return self._run(f"UPDATE tasks SET {set_clause}{where}", [_encode(c, v) for c, v in patch.items()] + params)

    def delete(self, filters: Sequence[Filter]) -> int:
        where, params = _where(filters)
        if not where:
            raise StoreError("refusing to delete without filters")
        return self._run(f"DELETE FROM tasks{where}", params)


# --- row <-> Task ---

def row_to_task(row: Mapping[str, Any]) -> Task:
    due = row.get("due_date")
    due_time = None
    if isinstance(due, str) and "T" in due:
        due_time = parse_time(parse_timestamp(due))
    return Task(
        id=row["id"],
        user_id=row.get("user_id") or "",
        title=row.get("title") or "",
        type=row.get("type") or "basic",
        due_date=to_local_date(due),
        completed=bool(row.get("completed")),
        notes=row.get("notes"),
        due_time=due_time,
        is_template=bool(row.get("is_template")),
        start_date=to_local_date(row.get("start_date")),
        end_date=to_local_date(row.get("end_date")),
        days_selected=list(row["days_selected"]) if row.get("days_selected") else None,
        recurrence_interval=row.get("recurrence_interval"),
        completed_dates={str(d)[:10] for d in row.get("completed_dates") or ()},
        excluded_dates={str(d)[:10] for d in row.get("excluded_dates") or ()},
        parent_task_id=row.get("parent_task_id"),
        created_at=parse_timestamp(row.get("created_at")),
        updated_at=parse_timestamp(row.get("updated_at")),
    )


def task_to_row(task: Task) -> Row:
    """Persisted form of a task. Virtual instances have no row."""
    if task.instance_ref is not None:
        raise ValueError(f"virtual instance {task.id} cannot be persisted")
    row: Row = {
        "id": task.id,
        "user_id": task.user_id,
        "title": task.title,
        "type": task.type,
        "due_date": format_due(task.due_date, task.due_time),
        "completed": task.completed,
        "notes": task.notes,
        "is_template": task.is_template,
        "parent_task_id": task.parent_task_id,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }
    if task.is_template:
        row.update(
            start_date=task.start_date,
            end_date=task.end_date,
            days_selected=task.days_selected,
            recurrence_interval=task.recurrence_interval,
            completed_dates=task.completed_dates,
            excluded_dates=task.excluded_dates,
        )
    return row


def patch_for(task: Task, fields: Iterable[str]) -> Row:
    """Column patch carrying ``fields`` of ``task`` (due_date/due_time share a column)."""
    row = task_to_row(task)
    patch: Row = {}
    for name in fields:
        column = "due_date" if name == "due_time" else name
        patch[column] = row.get(column, getattr(task, name, None))
    patch["updated_at"] = task.updated_at
    return patch
