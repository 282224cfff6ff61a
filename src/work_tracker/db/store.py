"""SQLite-backed implementation of the storage port."""

import functools
import json
import sqlite3
from contextlib import contextmanager, suppress
from datetime import datetime
from pathlib import Path

from work_tracker.core.errors import EntityNotFoundError, StorageError
from work_tracker.db.engine import get_db
from work_tracker.db.models import Approval, Project, Task, Worker
from work_tracker.db.port import StoragePort

_TASK_COLUMNS = (
    "id", "project_id", "title", "owner_id", "status", "priority", "blocked_by",
    "description", "context", "goal", "deliverable", "approval", "metadata",
    "created_at", "updated_at", "completed_at",
)


def _wrap_errors(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except sqlite3.Error as e:
            # Drop the half-written statements so a later commit cannot persist them.
            with suppress(sqlite3.Error):
                self.db.rollback()
            raise StorageError(f"{method.__name__}: {e}") from e

    return wrapper


class SqliteStore(StoragePort):
    def __init__(self, db: sqlite3.Connection):
        self.db = db

    # ── Workers ──

    @_wrap_errors
    def get_worker(self, worker_id):
        row = self.db.execute("SELECT * FROM workers WHERE id = ?", (worker_id,)).fetchone()
        return _row_to_worker(row) if row else None

    @_wrap_errors
    def save_worker(self, worker):
        self.db.execute(
            """INSERT INTO workers (id, name, type, roles, permissions, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name,
                   type = excluded.type,
                   roles = excluded.roles,
                   permissions = excluded.permissions,
                   updated_at = excluded.updated_at""",
            (
                worker.id,
                worker.name,
                worker.type,
                json.dumps(list(worker.roles)),
                json.dumps(list(worker.permissions)),
                _fmt_dt(worker.created_at),
                _fmt_dt(worker.updated_at),
            ),
        )
        self.db.commit()

    @_wrap_errors
    def delete_worker(self, worker_id):
        cur = self.db.execute("DELETE FROM workers WHERE id = ?", (worker_id,))
        self.db.commit()
        if cur.rowcount == 0:
            raise EntityNotFoundError(f"Worker not found: {worker_id}")

    @_wrap_errors
    def list_workers(self, type=None):
        query = "SELECT * FROM workers"
        params: list = []
        if type:
            query += " WHERE type = ?"
            params.append(type)
        query += " ORDER BY created_at ASC, id ASC"
        return [_row_to_worker(r) for r in self.db.execute(query, params).fetchall()]

    # ── Projects ──

    @_wrap_errors
    def get_project(self, project_id):
        row = self.db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return self._row_to_project(row) if row else None

    @_wrap_errors
    def save_project(self, project):
        self.db.execute(
            """INSERT INTO projects (id, name, description, parent_id, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name,
                   description = excluded.description,
                   parent_id = excluded.parent_id,
                   status = excluded.status,
                   updated_at = excluded.updated_at""",
            (
                project.id,
                project.name,
                project.description,
                project.parent_id,
                project.status,
                _fmt_dt(project.created_at),
                _fmt_dt(project.updated_at),
            ),
        )
        self.db.execute("DELETE FROM project_members WHERE project_id = ?", (project.id,))
        self.db.executemany(
            "INSERT INTO project_members (project_id, worker_id, position) VALUES (?, ?, ?)",
            [(project.id, wid, i) for i, wid in enumerate(project.member_ids)],
        )
        self.db.commit()

    @_wrap_errors
    def delete_project(self, project_id):
        cur = self.db.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        self.db.commit()
        if cur.rowcount == 0:
            raise EntityNotFoundError(f"Project not found: {project_id}")

    @_wrap_errors
    def list_projects(self, status=None, parent_id=None):
        query = "SELECT * FROM projects WHERE 1 = 1"
        params: list = []
        if status:
            query += " AND status = ?"
            params.append(status)
        if parent_id is not None:
            query += " AND parent_id = ?"
            params.append(parent_id)
        query += " ORDER BY created_at ASC, id ASC"
        return [self._row_to_project(r) for r in self.db.execute(query, params).fetchall()]

    def get_sub_projects(self, parent_id):
        return self.list_projects(parent_id=parent_id)

    # ── Tasks ──

    @_wrap_errors
    def get_task(self, task_id):
        row = self.db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    @_wrap_errors
    def save_task(self, task):
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _TASK_COLUMNS if c not in ("id", "created_at"))
        self.db.execute(
            f"""INSERT INTO tasks ({', '.join(_TASK_COLUMNS)}) VALUES ({placeholders})
                ON CONFLICT(id) DO UPDATE SET {updates}""",
            (
                task.id,
                task.project_id,
                task.title,
                task.owner_id,
                task.status,
                task.priority,
                json.dumps(list(task.blocked_by)),
                task.description,
                task.context,
                task.goal,
                task.deliverable,
                json.dumps(_approval_to_dict(task.approval)) if task.approval else None,
                json.dumps(task.metadata) if task.metadata is not None else None,
                _fmt_dt(task.created_at),
                _fmt_dt(task.updated_at),
                _fmt_dt(task.completed_at),
            ),
        )
        self.db.execute("DELETE FROM task_dependencies WHERE task_id = ?", (task.id,))
        self.db.executemany(
            "INSERT INTO task_dependencies (task_id, depends_on_task_id, position) VALUES (?, ?, ?)",
            [(task.id, dep_id, i) for i, dep_id in enumerate(task.dependencies)],
        )
        self.db.commit()

    @_wrap_errors
    def delete_task(self, task_id):
        cur = self.db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        self.db.commit()
        if cur.rowcount == 0:
            raise EntityNotFoundError(f"Task not found: {task_id}")

    @_wrap_errors
    def list_tasks(self, project_id=None, owner_id=None, status=None, priority=None):
        query = "SELECT * FROM tasks WHERE 1 = 1"
        params: list = []
        for column, value in (
            ("project_id", project_id),
            ("owner_id", owner_id),
            ("status", status),
            ("priority", priority),
        ):
            if value is not None:
                query += f" AND {column} = ?"
                params.append(value)
        query += " ORDER BY priority ASC, created_at ASC, id ASC"
        return [self._row_to_task(r) for r in self.db.execute(query, params).fetchall()]

    @_wrap_errors
    def get_dependents(self, task_id):
        rows = self.db.execute(
            """SELECT t.* FROM tasks t
               JOIN task_dependencies d ON d.task_id = t.id
               WHERE d.depends_on_task_id = ?
               ORDER BY t.priority ASC, t.created_at ASC, t.id ASC""",
            (task_id,),
        ).fetchall()
        return [self._row_to_task(r) for r in rows]

    # ── Row-to-model helpers ──

    def _row_to_project(self, row: sqlite3.Row) -> Project:
        members = self.db.execute(
            "SELECT worker_id FROM project_members WHERE project_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()
        return Project(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            parent_id=row["parent_id"],
            member_ids=tuple(m["worker_id"] for m in members),
            status=row["status"],
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        deps = self.db.execute(
            "SELECT depends_on_task_id FROM task_dependencies WHERE task_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()
        return Task(
            id=row["id"],
            project_id=row["project_id"],
            title=row["title"],
            owner_id=row["owner_id"],
            status=row["status"],
            priority=row["priority"] if row["priority"] is not None else 3,
            dependencies=tuple(d["depends_on_task_id"] for d in deps),
            blocked_by=tuple(json.loads(row["blocked_by"] or "[]")),
            description=row["description"] or "",
            context=row["context"],
            goal=row["goal"],
            deliverable=row["deliverable"],
            approval=_approval_from_dict(json.loads(row["approval"])) if row["approval"] else None,
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
            completed_at=_parse_dt(row["completed_at"]),
        )


@contextmanager
def open_store(db_path: Path):
    """Open a SqliteStore on ``db_path`` for the duration of the block."""
    with get_db(db_path) as db:
        yield SqliteStore(db)


def _row_to_worker(row: sqlite3.Row) -> Worker:
    return Worker(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        roles=tuple(json.loads(row["roles"] or "[]")),
        permissions=tuple(json.loads(row["permissions"] or "[]")),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _approval_to_dict(approval: Approval) -> dict:
    return {
        "state": approval.state,
        "approver_id": approval.approver_id,
        "approved_at": _fmt_dt(approval.approved_at),
        "policy": approval.policy,
    }


def _approval_from_dict(data: dict) -> Approval:
    return Approval(
        state=data["state"],
        approver_id=data.get("approver_id"),
        approved_at=_parse_dt(data.get("approved_at")),
        policy=data.get("policy", "manual"),
    )


def _fmt_dt(val: datetime | None) -> str | None:
    if val is None:
        return None
    return val.isoformat()


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
