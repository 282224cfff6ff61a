"""Tests for task lifecycle operations."""

from dataclasses import replace

import pytest

from work_tracker.core import projects as projects_mod
from work_tracker.core import tasks as tasks_mod
from work_tracker.core import workers as workers_mod
from work_tracker.core.auth import ALL_PERMISSIONS
from work_tracker.core.errors import ErrorCode, StorageError
from work_tracker.db.memory import InMemoryStore
from work_tracker.db.models import ExecutionContext

ADMIN = ExecutionContext(actor_id="admin", permissions=ALL_PERMISSIONS)


def _as(actor_id, drop=()):
    return ExecutionContext(actor_id=actor_id, permissions=ALL_PERMISSIONS - set(drop))


@pytest.fixture
def store():
    """In-memory store with three workers and a project they all belong to."""
    storage = InMemoryStore()
    workers_mod.create_worker(ADMIN, {"name": "Alice"}, storage).unwrap()
    workers_mod.create_worker(ADMIN, {"name": "Bob"}, storage).unwrap()
    workers_mod.create_worker(
        ADMIN,
        {"name": "Auto Bot", "type": "agent", "permissions": ["task:auto-approve"]},
        storage,
    ).unwrap()
    projects_mod.create_project(
        ADMIN, {"name": "Demo", "member_ids": ["alice", "bob", "auto-bot"]}, storage
    ).unwrap()
    return storage


def _task(storage, title, owner="alice", deps=(), **extra):
    params = {"project_id": "demo", "title": title, "owner_id": owner, "dependencies": list(deps)}
    params.update(extra)
    return tasks_mod.create_task(ADMIN, params, storage).unwrap()


def _finish(storage, task_id):
    """Start and complete a task owned by the auto-approving worker."""
    tasks_mod.start_task(ADMIN, {"task_id": task_id}, storage).unwrap()
    return tasks_mod.complete_task(ADMIN, {"task_id": task_id}, storage)


class TestSlugify:
    def test_basic(self):
        assert tasks_mod.slugify("Hello World") == "hello-world"

    def test_special_chars(self):
        assert tasks_mod.slugify("Auth: Login & Signup!") == "auth-login-signup"

    def test_multiple_spaces(self):
        assert tasks_mod.slugify("  too   many   spaces  ") == "too-many-spaces"

    def test_truncation(self):
        assert len(tasks_mod.slugify("a" * 100)) <= 60


class TestCreateTask:
    def test_create_task(self, store):
        task = _task(store, "Build login page", priority=2)
        assert task.id == "build-login-page"
        assert task.status == "backlog"
        assert task.priority == 2
        assert task.project_id == "demo"
        assert store.get_task("build-login-page") == task

    def test_create_duplicate_gets_suffix(self, store):
        t1 = _task(store, "Build login page")
        t2 = _task(store, "Build login page")
        assert t1.id == "build-login-page"
        assert t2.id == "build-login-page-2"

    def test_default_priority(self, store):
        assert _task(store, "Plain").priority == 3

    def test_unfinished_dependency_blocks(self, store):
        _task(store, "A")
        task = _task(store, "B", deps=["a"])
        assert task.status == "blocked"
        assert task.blocked_by == ("a",)
        assert task.dependencies == ("a",)

    def test_finished_dependency_does_not_block(self, store):
        _task(store, "A", owner="auto-bot")
        _finish(store, "a").unwrap()
        task = _task(store, "B", deps=["a"])
        assert task.status == "backlog"
        assert task.blocked_by == ()

    def test_duplicate_dependencies_collapse(self, store):
        _task(store, "A")
        task = _task(store, "B", deps=["a", "a"])
        assert task.dependencies == ("a",)

    def test_missing_project(self, store):
        result = tasks_mod.create_task(
            ADMIN, {"project_id": "nope", "title": "X", "owner_id": "alice"}, store
        )
        assert result.error.code is ErrorCode.NOT_FOUND

    def test_missing_dependency(self, store):
        result = tasks_mod.create_task(
            ADMIN,
            {"project_id": "demo", "title": "X", "owner_id": "alice", "dependencies": ["ghost"]},
            store,
        )
        assert result.error.code is ErrorCode.NOT_FOUND
        assert "ghost" in result.error.message

    def test_owner_must_be_member(self, store):
        workers_mod.create_worker(ADMIN, {"name": "Carol"}, store).unwrap()
        result = tasks_mod.create_task(
            ADMIN, {"project_id": "demo", "title": "X", "owner_id": "carol"}, store
        )
        assert result.error.code is ErrorCode.FORBIDDEN

    def test_archived_project(self, store):
        projects_mod.archive_project(ADMIN, {"project_id": "demo"}, store).unwrap()
        result = tasks_mod.create_task(
            ADMIN, {"project_id": "demo", "title": "X", "owner_id": "alice"}, store
        )
        assert result.error.code is ErrorCode.CONFLICT

    def test_invalid_priority(self, store):
        result = tasks_mod.create_task(
            ADMIN, {"project_id": "demo", "title": "X", "owner_id": "alice", "priority": 5}, store
        )
        assert result.error.code is ErrorCode.INVALID_INPUT
        assert "priority" in result.error.message

    def test_empty_title(self, store):
        result = tasks_mod.create_task(
            ADMIN, {"project_id": "demo", "title": "   ", "owner_id": "alice"}, store
        )
        assert result.error.code is ErrorCode.INVALID_INPUT

    def test_unauthenticated(self, store):
        anon = ExecutionContext(actor_id=None, permissions=ALL_PERMISSIONS)
        result = tasks_mod.create_task(
            anon, {"project_id": "demo", "title": "X", "owner_id": "alice"}, store
        )
        assert result.error.code is ErrorCode.UNAUTHORIZED
        assert store.list_tasks() == []


class TestStateMachine:
    def test_start_from_backlog(self, store):
        _task(store, "A")
        task = tasks_mod.start_task(_as("alice"), {"task_id": "a"}, store).unwrap()
        assert task.status == "active"

    def test_start_blocked_task_conflicts(self, store):
        _task(store, "A")
        _task(store, "B", deps=["a"])
        result = tasks_mod.start_task(ADMIN, {"task_id": "b"}, store)
        assert result.error.code is ErrorCode.CONFLICT

    def test_start_twice_conflicts(self, store):
        _task(store, "A")
        tasks_mod.start_task(ADMIN, {"task_id": "a"}, store).unwrap()
        result = tasks_mod.start_task(ADMIN, {"task_id": "a"}, store)
        assert result.error.code is ErrorCode.CONFLICT
        assert result.error.message == "Cannot start task with status: active"

    def test_complete_requires_active(self, store):
        _task(store, "A")
        result = tasks_mod.complete_task(ADMIN, {"task_id": "a"}, store)
        assert result.error.code is ErrorCode.CONFLICT
        assert store.get_task("a").status == "backlog"

    def test_complete_goes_to_review(self, store):
        _task(store, "A")
        tasks_mod.start_task(ADMIN, {"task_id": "a"}, store).unwrap()
        task = tasks_mod.complete_task(_as("alice"), {"task_id": "a"}, store).unwrap()
        assert task.status == "review"
        assert task.approval is None
        assert task.completed_at is None

    def test_auto_approved_owner_goes_to_done(self, store):
        _task(store, "A", owner="auto-bot")
        task = _finish(store, "a").unwrap()
        assert task.status == "done"
        assert task.approval.state == "auto_approved"
        assert task.approval.policy == "self"
        assert task.approval.approver_id == "auto-bot"
        assert task.completed_at is not None

    def test_approve(self, store):
        _task(store, "A")
        tasks_mod.start_task(ADMIN, {"task_id": "a"}, store).unwrap()
        tasks_mod.complete_task(ADMIN, {"task_id": "a"}, store).unwrap()
        task = tasks_mod.approve_task(_as("bob"), {"task_id": "a"}, store).unwrap()
        assert task.status == "done"
        assert task.approval.state == "approved"
        assert task.approval.approver_id == "bob"
        assert task.completed_at is not None

    def test_approve_requires_review(self, store):
        _task(store, "A")
        result = tasks_mod.approve_task(ADMIN, {"task_id": "a"}, store)
        assert result.error.code is ErrorCode.CONFLICT

    def test_approve_requires_permission(self, store):
        _task(store, "A")
        tasks_mod.start_task(ADMIN, {"task_id": "a"}, store).unwrap()
        tasks_mod.complete_task(ADMIN, {"task_id": "a"}, store).unwrap()
        result = tasks_mod.approve_task(_as("bob", drop={"task:approve"}), {"task_id": "a"}, store)
        assert result.error.code is ErrorCode.FORBIDDEN
        assert result.error.message == "Missing permission: task:approve"

    def test_reject_returns_to_active(self, store):
        _task(store, "A")
        tasks_mod.start_task(ADMIN, {"task_id": "a"}, store).unwrap()
        tasks_mod.complete_task(ADMIN, {"task_id": "a"}, store).unwrap()
        task = tasks_mod.reject_task(_as("bob"), {"task_id": "a"}, store).unwrap()
        assert task.status == "active"
        assert task.approval.state == "rejected"

    def test_reopen(self, store):
        _task(store, "A", owner="auto-bot")
        _finish(store, "a").unwrap()
        task = tasks_mod.reopen_task(ADMIN, {"task_id": "a"}, store).unwrap()
        assert task.status == "ready"
        assert task.approval is None
        assert task.completed_at is None
        assert tasks_mod.start_task(ADMIN, {"task_id": "a"}, store).ok

    def test_reopen_requires_done(self, store):
        _task(store, "A")
        result = tasks_mod.reopen_task(ADMIN, {"task_id": "a"}, store)
        assert result.error.code is ErrorCode.CONFLICT

    def test_missing_task(self, store):
        result = tasks_mod.start_task(ADMIN, {"task_id": "nope"}, store)
        assert result.error.code is ErrorCode.NOT_FOUND
        assert result.error.message == "Task not found: nope"


class TestOwnership:
    def test_non_owner_cannot_start(self, store):
        _task(store, "A")
        result = tasks_mod.start_task(_as("bob", drop={"task:manage"}), {"task_id": "a"}, store)
        assert result.error.code is ErrorCode.FORBIDDEN
        assert result.error.message == "Only task owner can start the task"
        assert store.get_task("a").status == "backlog"

    def test_non_owner_cannot_complete(self, store):
        _task(store, "A")
        tasks_mod.start_task(_as("alice"), {"task_id": "a"}, store).unwrap()
        result = tasks_mod.complete_task(_as("bob", drop={"task:manage"}), {"task_id": "a"}, store)
        assert result.error.code is ErrorCode.FORBIDDEN
        assert store.get_task("a").status == "active"

    def test_manager_may_act_for_owner(self, store):
        _task(store, "A")
        assert tasks_mod.start_task(_as("bob"), {"task_id": "a"}, store).ok

    def test_missing_permission_checked_first(self, store):
        _task(store, "A")
        result = tasks_mod.start_task(_as("alice", drop={"task:start"}), {"task_id": "a"}, store)
        assert result.error.code is ErrorCode.FORBIDDEN
        assert result.error.message == "Missing permission: task:start"


class TestPropagation:
    def test_unblocks_after_all_dependencies_done(self, store):
        _task(store, "A", owner="auto-bot")
        _task(store, "B", owner="auto-bot")
        _task(store, "C", deps=["a", "b"])
        assert store.get_task("c").blocked_by == ("a", "b")

        _finish(store, "a").unwrap()
        c = store.get_task("c")
        assert c.status == "blocked"
        assert c.blocked_by == ("b",)

        _finish(store, "b").unwrap()
        c = store.get_task("c")
        assert c.status == "ready"
        assert c.blocked_by == ()

    def test_completion_order_does_not_matter(self, store):
        _task(store, "A", owner="auto-bot")
        _task(store, "B", owner="auto-bot")
        _task(store, "C", deps=["a", "b"])

        _finish(store, "b").unwrap()
        assert store.get_task("c").blocked_by == ("a",)
        _finish(store, "a").unwrap()
        assert store.get_task("c").status == "ready"

    def test_review_does_not_unblock_until_approved(self, store):
        _task(store, "A")
        _task(store, "B", deps=["a"])
        tasks_mod.start_task(ADMIN, {"task_id": "a"}, store).unwrap()
        tasks_mod.complete_task(ADMIN, {"task_id": "a"}, store).unwrap()
        assert store.get_task("b").status == "blocked"

        tasks_mod.approve_task(ADMIN, {"task_id": "a"}, store).unwrap()
        assert store.get_task("b").status == "ready"
        assert tasks_mod.start_task(ADMIN, {"task_id": "b"}, store).ok

    def test_start_rechecks_reopened_dependency(self, store):
        _task(store, "A", owner="auto-bot")
        _task(store, "B", deps=["a"])
        _finish(store, "a").unwrap()
        tasks_mod.reopen_task(ADMIN, {"task_id": "a"}, store).unwrap()

        result = tasks_mod.start_task(ADMIN, {"task_id": "b"}, store)
        assert result.error.code is ErrorCode.CONFLICT
        assert result.error.message == "Cannot start task: dependency a is not completed"

    def test_propagation_failure_is_a_warning(self, store):
        class FailingStore(InMemoryStore):
            fail_on = set()

            def save_task(self, task):
                if task.id in self.fail_on:
                    raise StorageError("disk full")
                super().save_task(task)

        failing = FailingStore()
        failing.workers, failing.projects, failing.tasks = store.workers, store.projects, store.tasks
        _task(failing, "A", owner="auto-bot")
        _task(failing, "B", deps=["a"])
        failing.fail_on = {"b"}

        result = _finish(failing, "a")
        assert result.ok
        assert result.value.status == "done"
        assert len(result.warnings) == 1
        warning = result.warnings[0]
        assert warning.code is ErrorCode.INTERNAL_ERROR
        assert warning.retryable
        assert warning.details["dependent_task_id"] == "b"
        assert failing.get_task("b").status == "blocked"

    def test_dependents_lookup_failure_is_a_warning(self, store):
        class FailingStore(InMemoryStore):
            def get_dependents(self, task_id):
                raise StorageError("database is locked")

        failing = FailingStore()
        failing.workers, failing.projects, failing.tasks = store.workers, store.projects, store.tasks
        _task(failing, "A", owner="auto-bot")
        _task(failing, "B", deps=["a"])

        result = _finish(failing, "a")
        assert result.ok
        assert result.value.status == "done"
        assert failing.get_task("a").status == "done"
        assert len(result.warnings) == 1
        warning = result.warnings[0]
        assert warning.code is ErrorCode.INTERNAL_ERROR
        assert warning.retryable
        assert warning.details == {"completed_task_id": "a", "dependent_task_id": None}
        assert failing.get_task("b").status == "blocked"


class TestDeleteTask:
    def test_delete(self, store):
        _task(store, "A")
        deleted = tasks_mod.delete_task(ADMIN, {"task_id": "a"}, store).unwrap()
        assert deleted.id == "a"
        assert store.get_task("a") is None

    def test_delete_with_dependents_conflicts(self, store):
        _task(store, "A")
        _task(store, "B", deps=["a"])
        result = tasks_mod.delete_task(ADMIN, {"task_id": "a"}, store)
        assert result.error.code is ErrorCode.CONFLICT
        assert result.error.details == {"dependent_task_count": 1}
        assert store.get_task("a") is not None


class TestUpdateAssignMove:
    def test_update_fields(self, store):
        _task(store, "A")
        task = tasks_mod.update_task(
            ADMIN, {"task_id": "a", "priority": 1, "goal": "Ship it"}, store
        ).unwrap()
        assert task.priority == 1
        assert task.goal == "Ship it"
        assert task.title == "A"
        assert task.status == "backlog"

    def test_update_cannot_set_status(self, store):
        _task(store, "A")
        result = tasks_mod.update_task(ADMIN, {"task_id": "a", "status": "done"}, store)
        assert result.error.code is ErrorCode.INVALID_INPUT
        assert store.get_task("a").status == "backlog"

    def test_assign_to_member(self, store):
        _task(store, "A")
        task = tasks_mod.assign_task(ADMIN, {"task_id": "a", "worker_id": "bob"}, store).unwrap()
        assert task.owner_id == "bob"

    def test_assign_to_non_member(self, store):
        _task(store, "A")
        workers_mod.create_worker(ADMIN, {"name": "Carol"}, store).unwrap()
        result = tasks_mod.assign_task(ADMIN, {"task_id": "a", "worker_id": "carol"}, store)
        assert result.error.code is ErrorCode.FORBIDDEN

    def test_move(self, store):
        projects_mod.create_project(ADMIN, {"name": "Other", "member_ids": ["alice"]}, store).unwrap()
        _task(store, "A")
        task = tasks_mod.move_task(ADMIN, {"task_id": "a", "project_id": "other"}, store).unwrap()
        assert task.project_id == "other"

    def test_move_requires_owner_membership(self, store):
        projects_mod.create_project(ADMIN, {"name": "Other", "member_ids": ["bob"]}, store).unwrap()
        _task(store, "A")
        result = tasks_mod.move_task(ADMIN, {"task_id": "a", "project_id": "other"}, store)
        assert result.error.code is ErrorCode.FORBIDDEN
        assert store.get_task("a").project_id == "demo"


class TestArchivedProjectGuards:
    @pytest.fixture
    def archived(self, store):
        """Demo holds a backlog task 'a' and an active task 'b', then gets archived."""
        _task(store, "A")
        _task(store, "B")
        tasks_mod.start_task(ADMIN, {"task_id": "b"}, store).unwrap()
        store.save_project(replace(store.get_project("demo"), status="archived"))
        return store

    def _rejected(self, result, storage, task_id, before, code=ErrorCode.CONFLICT):
        assert result.error.code is code
        assert storage.get_task(task_id) == before
        return result.error

    def test_assign(self, archived):
        before = archived.get_task("a")
        result = tasks_mod.assign_task(ADMIN, {"task_id": "a", "worker_id": "bob"}, archived)
        error = self._rejected(result, archived, "a", before)
        assert error.message == "Cannot assign tasks in archived project"

    def test_assign_to_unknown_worker(self, store):
        _task(store, "A")
        before = store.get_task("a")
        result = tasks_mod.assign_task(ADMIN, {"task_id": "a", "worker_id": "ghost"}, store)
        error = self._rejected(result, store, "a", before, code=ErrorCode.NOT_FOUND)
        assert error.message == "Worker not found: ghost"

    def test_move_into_archived_project(self, store):
        projects_mod.create_project(ADMIN, {"name": "Old", "member_ids": ["alice"]}, store).unwrap()
        projects_mod.archive_project(ADMIN, {"project_id": "old"}, store).unwrap()
        _task(store, "A")
        before = store.get_task("a")
        result = tasks_mod.move_task(ADMIN, {"task_id": "a", "project_id": "old"}, store)
        error = self._rejected(result, store, "a", before)
        assert error.message == "Cannot move tasks to archived project"

    def test_move_out_of_archived_project(self, archived):
        projects_mod.create_project(ADMIN, {"name": "Fresh", "member_ids": ["alice"]}, archived).unwrap()
        before = archived.get_task("a")
        result = tasks_mod.move_task(ADMIN, {"task_id": "a", "project_id": "fresh"}, archived)
        error = self._rejected(result, archived, "a", before)
        assert error.message == "Cannot move tasks in archived project"

    def test_update(self, archived):
        before = archived.get_task("a")
        result = tasks_mod.update_task(ADMIN, {"task_id": "a", "title": "Renamed"}, archived)
        error = self._rejected(result, archived, "a", before)
        assert error.message == "Cannot update tasks in archived project"

    def test_delete(self, archived):
        before = archived.get_task("a")
        result = tasks_mod.delete_task(ADMIN, {"task_id": "a"}, archived)
        error = self._rejected(result, archived, "a", before)
        assert error.message == "Cannot delete tasks in archived project"

    def test_start(self, archived):
        before = archived.get_task("a")
        result = tasks_mod.start_task(ADMIN, {"task_id": "a"}, archived)
        error = self._rejected(result, archived, "a", before)
        assert error.message == "Cannot start tasks in archived project"

    def test_complete(self, archived):
        before = archived.get_task("b")
        assert before.status == "active"
        result = tasks_mod.complete_task(ADMIN, {"task_id": "b"}, archived)
        error = self._rejected(result, archived, "b", before)
        assert error.message == "Cannot complete tasks in archived project"


class TestQueries:
    def test_list_orders_by_priority(self, store):
        _task(store, "Low", priority=4)
        _task(store, "Urgent", priority=1)
        _task(store, "Normal")
        tasks = tasks_mod.list_tasks(ADMIN, {"project_id": "demo"}, store).unwrap()
        assert [t.id for t in tasks] == ["urgent", "normal", "low"]

    def test_list_filters(self, store):
        _task(store, "A")
        _task(store, "B", owner="bob")
        tasks = tasks_mod.list_tasks(ADMIN, {"owner_id": "bob"}, store).unwrap()
        assert [t.id for t in tasks] == ["b"]

    def test_list_requires_read_permission(self, store):
        result = tasks_mod.list_tasks(_as("alice", drop={"task:read"}), {}, store)
        assert result.error.code is ErrorCode.FORBIDDEN

    def test_ready_tasks(self, store):
        _task(store, "A")
        _task(store, "B", deps=["a"])
        tasks_mod.start_task(ADMIN, {"task_id": "a"}, store).unwrap()
        _task(store, "C")
        ready = tasks_mod.get_ready_tasks(ADMIN, {"project_id": "demo"}, store).unwrap()
        assert [t.id for t in ready] == ["c"]

    def test_blocked_tasks_with_blockers(self, store):
        _task(store, "A")
        _task(store, "B", deps=["a"])
        entries = tasks_mod.get_blocked_tasks(ADMIN, {}, store).unwrap()
        assert len(entries) == 1
        assert entries[0]["task"].id == "b"
        assert [t.id for t in entries[0]["blockers"]] == ["a"]
