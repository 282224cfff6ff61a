"""Tests for the sqlite3 storage backend."""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from work_tracker.core import projects as projects_mod
from work_tracker.core import tasks as tasks_mod
from work_tracker.core import workers as workers_mod
from work_tracker.core.auth import ALL_PERMISSIONS
from work_tracker.core.errors import EntityNotFoundError, ErrorCode, StorageError
from work_tracker.db.engine import init_db
from work_tracker.db.models import Approval, ExecutionContext, Project, Task, Worker, utcnow
from work_tracker.db.store import SqliteStore, open_store

ADMIN = ExecutionContext(actor_id="admin", permissions=ALL_PERMISSIONS)


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp) / "test.db"


@pytest.fixture
def store(db_path):
    conn = init_db(db_path)
    yield SqliteStore(conn)
    conn.close()


class TestSchema:
    def test_tables_created(self, store):
        tables = {
            r["name"]
            for r in store.db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        }
        assert {"workers", "projects", "project_members", "tasks", "task_dependencies"} <= tables

    def test_init_is_idempotent(self, db_path):
        init_db(db_path).close()
        init_db(db_path).close()


class TestRoundTrip:
    def test_worker(self, store):
        now = utcnow()
        worker = Worker(
            id="bot", name="Bot", type="agent", roles=("qa",),
            permissions=("task:auto-approve",), created_at=now, updated_at=now,
        )
        store.save_worker(worker)
        assert store.get_worker("bot") == worker
        assert store.get_worker("nope") is None

    def test_project_with_members(self, store):
        store.save_project(Project(id="root", name="Root"))
        child = Project(
            id="child", name="Child", description="desc", parent_id="root",
            member_ids=("b", "a"), created_at=utcnow(),
        )
        store.save_project(child)
        assert store.get_project("child") == child
        assert store.get_sub_projects("root") == [child]

        store.save_project(Project(id="child", name="Child", parent_id="root", member_ids=("a",)))
        assert store.get_project("child").member_ids == ("a",)

    def test_task(self, store):
        now = utcnow()
        store.save_task(Task(id="a", project_id="p", title="A", owner_id="w"))
        task = Task(
            id="b", project_id="p", title="B", owner_id="w", status="done", priority=1,
            dependencies=("a",), blocked_by=(), goal="goal",
            approval=Approval(state="approved", approver_id="r", approved_at=now),
            metadata={"source": "import", "points": 3},
            created_at=now, updated_at=now, completed_at=now,
        )
        store.save_task(task)
        assert store.get_task("b") == task

    def test_upsert_keeps_one_row(self, store):
        store.save_task(Task(id="a", project_id="p", title="A", owner_id="w"))
        store.save_task(Task(id="a", project_id="p", title="A2", owner_id="w", status="ready"))
        assert [t.title for t in store.list_tasks()] == ["A2"]

    def test_invalid_status_is_storage_error(self, store):
        with pytest.raises(StorageError):
            store.save_task(Task(id="x", project_id="p", title="X", owner_id="w", status="weird"))

    def test_failed_save_leaves_no_partial_row(self, store):
        store.save_task(Task(id="a", project_id="p", title="A", owner_id="w"))
        # The task row is written before the repeated dependency breaks the primary key.
        with pytest.raises(StorageError):
            store.save_task(Task(id="x", project_id="p", title="X", owner_id="w", dependencies=("a", "a")))
        assert store.get_task("x") is None

        store.save_task(Task(id="y", project_id="p", title="Y", owner_id="w"))
        assert store.get_task("x") is None
        assert {t.id for t in store.list_tasks()} == {"a", "y"}


class TestQueries:
    def test_dependents(self, store):
        store.save_task(Task(id="a", project_id="p", title="A", owner_id="w"))
        store.save_task(Task(id="b", project_id="p", title="B", owner_id="w", dependencies=("a",)))
        store.save_task(Task(id="c", project_id="p", title="C", owner_id="w", dependencies=("b", "a")))
        assert {t.id for t in store.get_dependents("a")} == {"b", "c"}
        assert [t.id for t in store.get_dependents("c")] == []

    def test_list_tasks_filters_and_order(self, store):
        store.save_task(Task(id="low", project_id="p", title="L", owner_id="w", priority=4))
        store.save_task(Task(id="high", project_id="p", title="H", owner_id="w", priority=1))
        store.save_task(Task(id="other", project_id="q", title="O", owner_id="v", priority=2))
        assert [t.id for t in store.list_tasks(project_id="p")] == ["high", "low"]
        assert [t.id for t in store.list_tasks(owner_id="v")] == ["other"]
        assert [t.id for t in store.list_tasks(priority=4)] == ["low"]

    def test_tasks_by_ids(self, store):
        store.save_task(Task(id="a", project_id="p", title="A", owner_id="w"))
        found = store.get_tasks_by_ids(["a", "ghost"])
        assert list(found) == ["a"]


class TestDelete:
    def test_delete_task_drops_dependency_rows(self, store):
        store.save_task(Task(id="a", project_id="p", title="A", owner_id="w"))
        store.save_task(Task(id="b", project_id="p", title="B", owner_id="w", dependencies=("a",)))
        store.delete_task("b")
        assert store.get_dependents("a") == []

    def test_delete_missing_raises(self, store):
        with pytest.raises(EntityNotFoundError):
            store.delete_task("ghost")
        with pytest.raises(EntityNotFoundError):
            store.delete_project("ghost")
        with pytest.raises(EntityNotFoundError):
            store.delete_worker("ghost")


class TestEngineOnSqlite:
    def test_blocking_flow_persists(self, db_path):
        with open_store(db_path) as storage:
            workers_mod.create_worker(
                ADMIN, {"name": "Bot", "permissions": ["task:auto-approve"]}, storage
            ).unwrap()
            projects_mod.create_project(ADMIN, {"name": "Demo", "member_ids": ["bot"]}, storage).unwrap()
            for title, deps in (("A", []), ("B", ["a"])):
                params = {"project_id": "demo", "title": title, "owner_id": "bot", "dependencies": deps}
                tasks_mod.create_task(ADMIN, params, storage).unwrap()

        with open_store(db_path) as storage:
            assert storage.get_task("b").status == "blocked"
            tasks_mod.start_task(ADMIN, {"task_id": "a"}, storage).unwrap()
            tasks_mod.complete_task(ADMIN, {"task_id": "a"}, storage).unwrap()

        with open_store(db_path) as storage:
            b = storage.get_task("b")
            assert b.status == "ready"
            assert b.blocked_by == ()
            result = tasks_mod.delete_task(ADMIN, {"task_id": "a"}, storage)
            assert result.error.code is ErrorCode.CONFLICT

    def test_closed_connection_becomes_internal_error(self, db_path):
        conn = init_db(db_path)
        storage = SqliteStore(conn)
        conn.close()
        result = workers_mod.list_workers(ADMIN, {}, storage)
        assert result.error.code is ErrorCode.INTERNAL_ERROR
        assert result.error.retryable

    def test_wrapped_error_keeps_cause(self, db_path):
        conn = init_db(db_path)
        storage = SqliteStore(conn)
        conn.close()
        with pytest.raises(StorageError) as exc:
            storage.get_task("a")
        assert isinstance(exc.value.__cause__, sqlite3.Error)
