"""Task lifecycle operations."""

import logging
import re
from dataclasses import replace

from work_tracker.core import graph
from work_tracker.core.auth import Permission, has_permission, operation
from work_tracker.core.errors import Result, conflict, forbidden, not_found
from work_tracker.core.schemas import (
    AssignTaskInput,
    CreateTaskInput,
    ListTasksInput,
    MoveTaskInput,
    ProjectScope,
    TaskRef,
    UpdateTaskInput,
)
from work_tracker.db.models import (
    ACTIVE,
    BACKLOG,
    BLOCKED,
    DONE,
    OPEN_STATUSES,
    READY,
    REVIEW,
    Approval,
    ExecutionContext,
    Project,
    Task,
    utcnow,
)
from work_tracker.db.port import StoragePort

logger = logging.getLogger(__name__)


def slugify(title: str) -> str:
    """Convert a title to a URL-friendly slug."""
    slug = title.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60]


def unique_id(base_slug: str, exists, fallback: str = "item") -> str:
    """Pick an unused id from a slug, appending a number if needed."""
    base_slug = base_slug or fallback
    if not exists(base_slug):
        return base_slug

    i = 2
    while True:
        candidate = f"{base_slug}-{i}"
        if not exists(candidate):
            return candidate
        i += 1


# ── Shared guards ─────────────────────────────────────────────────────────────


def load_task(storage: StoragePort, task_id: str) -> Task:
    task = storage.get_task(task_id)
    if task is None:
        raise not_found(f"Task not found: {task_id}")
    return task


def load_project(storage: StoragePort, project_id: str) -> Project:
    project = storage.get_project(project_id)
    if project is None:
        raise not_found(f"Project not found: {project_id}")
    return project


def _require_mutable_project(storage: StoragePort, task: Task, action: str) -> Project | None:
    project = storage.get_project(task.project_id)
    if project is not None and project.is_archived:
        raise conflict(f"Cannot {action} tasks in archived project")
    return project


def _require_owner_or_manager(ctx: ExecutionContext, task: Task, action: str):
    if task.owner_id != ctx.actor_id and not has_permission(ctx, Permission.TASK_MANAGE):
        raise forbidden(f"Only task owner can {action} the task")


def _transition(task: Task, status: str, **changes) -> Task:
    logger.info("Task %s: %s -> %s", task.id, task.status, status)
    return replace(task, status=status, updated_at=utcnow(), **changes)


# ── CRUD ──────────────────────────────────────────────────────────────────────


@operation(Permission.TASK_CREATE, CreateTaskInput)
def create_task(ctx: ExecutionContext, params: CreateTaskInput, storage: StoragePort) -> Task:
    """Create a task, starting it blocked when any dependency is unfinished."""
    project = load_project(storage, params.project_id)
    if project.is_archived:
        raise conflict("Cannot create tasks in archived project")

    if storage.get_worker(params.owner_id) is None:
        raise not_found(f"Worker not found: {params.owner_id}")
    if params.owner_id not in project.member_ids:
        raise forbidden("Task owner must be a project member")

    dependencies = tuple(dict.fromkeys(params.dependencies))
    for dep_id in dependencies:
        if storage.get_task(dep_id) is None:
            raise not_found(f"Dependency task not found: {dep_id}")

    if graph.would_create_cycle(dependencies, storage):
        raise conflict("Circular dependency detected", dependencies=list(dependencies))

    blocked_by = graph.incomplete_dependencies(dependencies, storage)
    now = utcnow()
    task = Task(
        id=unique_id(slugify(params.title), lambda tid: storage.get_task(tid) is not None, "task"),
        project_id=project.id,
        title=params.title,
        owner_id=params.owner_id,
        status=BLOCKED if blocked_by else BACKLOG,
        priority=params.priority,
        dependencies=dependencies,
        blocked_by=blocked_by,
        description=params.description,
        context=params.context,
        goal=params.goal,
        deliverable=params.deliverable,
        metadata=params.metadata,
        created_at=now,
        updated_at=now,
    )
    storage.save_task(task)
    logger.info("Created task %s in %s (%s)", task.id, task.project_id, task.status)
    return task


@operation(Permission.TASK_READ, TaskRef)
def get_task(ctx: ExecutionContext, params: TaskRef, storage: StoragePort) -> Task:
    return load_task(storage, params.task_id)


@operation(Permission.TASK_READ, ListTasksInput)
def list_tasks(ctx: ExecutionContext, params: ListTasksInput, storage: StoragePort) -> list[Task]:
    """List tasks with optional filters, most urgent first."""
    return storage.list_tasks(
        project_id=params.project_id,
        owner_id=params.owner_id,
        status=params.status,
        priority=params.priority,
    )


@operation(Permission.TASK_UPDATE, UpdateTaskInput)
def update_task(ctx: ExecutionContext, params: UpdateTaskInput, storage: StoragePort) -> Task:
    """Update descriptive fields and priority. Never changes status."""
    task = load_task(storage, params.task_id)
    _require_mutable_project(storage, task, "update")

    changes = params.model_dump(exclude={"task_id"}, exclude_none=True)
    updated = replace(task, updated_at=utcnow(), **changes)
    storage.save_task(updated)
    return updated


@operation(Permission.TASK_DELETE, TaskRef)
def delete_task(ctx: ExecutionContext, params: TaskRef, storage: StoragePort) -> Task:
    """Delete a task nothing else depends on. Returns the deleted task."""
    task = load_task(storage, params.task_id)
    _require_mutable_project(storage, task, "delete")

    dependents = storage.get_dependents(task.id)
    if dependents:
        raise conflict(
            f"Cannot delete task with {len(dependents)} dependent task(s). Remove dependencies first.",
            dependent_task_count=len(dependents),
        )

    storage.delete_task(task.id)
    logger.info("Deleted task %s", task.id)
    return task


# ── State machine ─────────────────────────────────────────────────────────────


@operation(Permission.TASK_START, TaskRef)
def start_task(ctx: ExecutionContext, params: TaskRef, storage: StoragePort) -> Task:
    """Move an open task to active once every dependency is done."""
    task = load_task(storage, params.task_id)
    _require_mutable_project(storage, task, "start")
    _require_owner_or_manager(ctx, task, "start")

    if task.status not in OPEN_STATUSES:
        raise conflict(f"Cannot start task with status: {task.status}")

    # Re-read live statuses; blocked_by may be stale after a reopen.
    for dep_id in task.dependencies:
        dep = storage.get_task(dep_id)
        if dep is not None and dep.status != DONE:
            raise conflict(
                f"Cannot start task: dependency {dep_id} is not completed",
                dependency_id=dep_id,
            )

    updated = _transition(task, ACTIVE)
    storage.save_task(updated)
    return updated


@operation(Permission.TASK_COMPLETE, TaskRef)
def complete_task(ctx: ExecutionContext, params: TaskRef, storage: StoragePort) -> Result:
    """Finish an active task.

    Owners holding ``task:auto-approve`` go straight to ``done``; everyone
    else lands in ``review``. Dependents are re-evaluated afterwards and any
    propagation failure is attached to the result as a retryable warning.
    """
    task = load_task(storage, params.task_id)
    _require_mutable_project(storage, task, "complete")
    _require_owner_or_manager(ctx, task, "complete")

    if task.status != ACTIVE:
        raise conflict(f"Cannot complete task with status: {task.status}")

    owner = storage.get_worker(task.owner_id)
    if owner is not None and Permission.TASK_AUTO_APPROVE.value in owner.permissions:
        now = utcnow()
        approval = Approval(state="auto_approved", approver_id=owner.id, approved_at=now, policy="self")
        updated = _transition(task, DONE, approval=approval, completed_at=now)
    else:
        updated = _transition(task, REVIEW, approval=None)
    storage.save_task(updated)

    warnings = graph.unblock_dependents(updated.id, storage)
    return Result.success(updated, warnings=warnings)


@operation(Permission.TASK_APPROVE, TaskRef)
def approve_task(ctx: ExecutionContext, params: TaskRef, storage: StoragePort) -> Result:
    """Accept a task under review, marking it done."""
    task = load_task(storage, params.task_id)
    _require_mutable_project(storage, task, "approve")

    if task.status != REVIEW:
        raise conflict(f"Cannot approve task with status: {task.status}")

    now = utcnow()
    approval = Approval(state="approved", approver_id=ctx.actor_id, approved_at=now, policy="manual")
    updated = _transition(task, DONE, approval=approval, completed_at=now)
    storage.save_task(updated)

    warnings = graph.unblock_dependents(updated.id, storage)
    return Result.success(updated, warnings=warnings)


@operation(Permission.TASK_APPROVE, TaskRef)
def reject_task(ctx: ExecutionContext, params: TaskRef, storage: StoragePort) -> Task:
    """Send a task under review back to active."""
    task = load_task(storage, params.task_id)
    _require_mutable_project(storage, task, "reject")

    if task.status != REVIEW:
        raise conflict(f"Cannot reject task with status: {task.status}")

    approval = Approval(state="rejected", approver_id=ctx.actor_id, approved_at=utcnow(), policy="manual")
    updated = _transition(task, ACTIVE, approval=approval)
    storage.save_task(updated)
    return updated


@operation(Permission.TASK_REOPEN, TaskRef)
def reopen_task(ctx: ExecutionContext, params: TaskRef, storage: StoragePort) -> Task:
    """Move a done task back to ready."""
    task = load_task(storage, params.task_id)

    if task.status != DONE:
        raise conflict(f"Cannot reopen task with status: {task.status}")
    _require_mutable_project(storage, task, "reopen")

    updated = _transition(task, READY, approval=None, completed_at=None)
    storage.save_task(updated)
    return updated


@operation(Permission.TASK_ASSIGN, AssignTaskInput)
def assign_task(ctx: ExecutionContext, params: AssignTaskInput, storage: StoragePort) -> Task:
    """Hand a task to another member of its project."""
    task = load_task(storage, params.task_id)
    project = load_project(storage, task.project_id)
    if project.is_archived:
        raise conflict("Cannot assign tasks in archived project")

    if storage.get_worker(params.worker_id) is None:
        raise not_found(f"Worker not found: {params.worker_id}")
    if params.worker_id not in project.member_ids:
        raise forbidden("New owner must be a project member")

    updated = replace(task, owner_id=params.worker_id, updated_at=utcnow())
    storage.save_task(updated)
    logger.info("Task %s assigned to %s", task.id, params.worker_id)
    return updated


@operation(Permission.TASK_UPDATE, MoveTaskInput)
def move_task(ctx: ExecutionContext, params: MoveTaskInput, storage: StoragePort) -> Task:
    """Move a task to another project its owner belongs to."""
    task = load_task(storage, params.task_id)
    _require_mutable_project(storage, task, "move")

    target = load_project(storage, params.project_id)
    if target.is_archived:
        raise conflict("Cannot move tasks to archived project")
    if task.owner_id not in target.member_ids:
        raise forbidden("Task owner must be a member of the target project")

    updated = replace(task, project_id=target.id, updated_at=utcnow())
    storage.save_task(updated)
    logger.info("Task %s moved from %s to %s", task.id, task.project_id, target.id)
    return updated


# ── Queries ───────────────────────────────────────────────────────────────────


@operation(Permission.TASK_READ, ProjectScope)
def get_ready_tasks(ctx: ExecutionContext, params: ProjectScope, storage: StoragePort) -> list[Task]:
    """Get open tasks whose dependencies are all done."""
    ready = []
    for task in storage.list_tasks(project_id=params.project_id):
        if task.status not in OPEN_STATUSES:
            continue
        if not graph.incomplete_dependencies(task.dependencies, storage):
            ready.append(task)
    return ready


@operation(Permission.TASK_READ, ProjectScope)
def get_blocked_tasks(ctx: ExecutionContext, params: ProjectScope, storage: StoragePort) -> list[dict]:
    """Get blocked tasks together with the dependency tasks still holding them."""
    blocked = []
    for task in storage.list_tasks(project_id=params.project_id, status=BLOCKED):
        deps = storage.get_tasks_by_ids(list(task.dependencies))
        blockers = [
            deps[dep_id]
            for dep_id in task.dependencies
            if dep_id in deps and deps[dep_id].status != DONE
        ]
        blocked.append({"task": task, "blockers": blockers})
    return blocked
