"""MCP server exposing the work tracker operations as tools."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from work_tracker.config import Config, get_config
from work_tracker.context import context_from_config
from work_tracker.core import projects as projects_mod
from work_tracker.core import reports as reports_mod
from work_tracker.core import tasks as tasks_mod
from work_tracker.core import workers as workers_mod
from work_tracker.core.errors import Result
from work_tracker.db.engine import init_db
from work_tracker.db.port import StoragePort
from work_tracker.db.store import SqliteStore
from work_tracker.serialize import to_data


@dataclass
class AppContext:
    storage: StoragePort
    config: Config


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Open the sqlite store on startup, close on shutdown."""
    config = get_config()
    db = init_db(config.db_path)
    try:
        yield AppContext(storage=SqliteStore(db), config=config)
    finally:
        db.close()


mcp = FastMCP("work-tracker", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


def _call(ctx: Context, op, params: dict, key: str | None = None) -> dict:
    """Run an operation as the configured actor.

    Failures come back as ``{"error": code, "message": ..., "retryable": ...}``.
    List results are wrapped under ``key``.
    """
    app = _ctx(ctx)
    result: Result = op(context_from_config(app.config), params, app.storage)
    if not result.ok:
        return {
            "error": result.error.code.value,
            "message": result.error.message,
            "retryable": result.error.retryable,
        }

    data = to_data(result.value)
    if key is not None:
        data = {key: data}
    if result.warnings:
        data["warnings"] = [w.to_dict() for w in result.warnings]
    return data


# ── Worker Tools ──────────────────────────────────────────────────────────────


@mcp.tool()
def create_worker(
    ctx: Context,
    name: str,
    type: str = "human",
    roles: list[str] | None = None,
    permissions: list[str] | None = None,
) -> dict:
    """Register a human or agent worker. Grant 'task:auto-approve' to skip review."""
    params = {"name": name, "type": type, "roles": roles or [], "permissions": permissions or []}
    return _call(ctx, workers_mod.create_worker, params)


@mcp.tool()
def list_workers(ctx: Context, type: str | None = None) -> dict:
    """List workers, optionally filtered by type (human/agent)."""
    return _call(ctx, workers_mod.list_workers, {"type": type}, key="workers")


@mcp.tool()
def get_worker(ctx: Context, worker_id: str) -> dict:
    """Get a worker's details."""
    return _call(ctx, workers_mod.get_worker, {"worker_id": worker_id})


@mcp.tool()
def update_worker(
    ctx: Context,
    worker_id: str,
    name: str | None = None,
    roles: list[str] | None = None,
    permissions: list[str] | None = None,
) -> dict:
    """Update a worker's name, roles or permissions."""
    params = {"worker_id": worker_id, "name": name, "roles": roles, "permissions": permissions}
    return _call(ctx, workers_mod.update_worker, params)


@mcp.tool()
def delete_worker(ctx: Context, worker_id: str) -> dict:
    """Delete a worker that owns no unfinished tasks."""
    return _call(ctx, workers_mod.delete_worker, {"worker_id": worker_id})


@mcp.tool()
def get_worker_workload(ctx: Context, worker_id: str) -> dict:
    """Count a worker's tasks by status and its open high-priority (P1/P2) tasks."""
    return _call(ctx, reports_mod.get_worker_workload, {"worker_id": worker_id})


# ── Project Tools ─────────────────────────────────────────────────────────────


@mcp.tool()
def create_project(
    ctx: Context,
    name: str,
    description: str = "",
    parent_id: str | None = None,
    member_ids: list[str] | None = None,
) -> dict:
    """Create a project, optionally as a sub-project of parent_id."""
    params = {
        "name": name,
        "description": description,
        "parent_id": parent_id,
        "member_ids": member_ids or [],
    }
    return _call(ctx, projects_mod.create_project, params)


@mcp.tool()
def list_projects(ctx: Context, status: str | None = None, parent_id: str | None = None) -> dict:
    """List projects, optionally filtered by status (active/archived) or parent."""
    return _call(
        ctx, projects_mod.list_projects, {"status": status, "parent_id": parent_id}, key="projects"
    )


@mcp.tool()
def get_project(ctx: Context, project_id: str) -> dict:
    """Get a project's details."""
    return _call(ctx, projects_mod.get_project, {"project_id": project_id})


@mcp.tool()
def update_project(
    ctx: Context, project_id: str, name: str | None = None, description: str | None = None
) -> dict:
    """Rename a project or change its description."""
    params = {"project_id": project_id, "name": name, "description": description}
    return _call(ctx, projects_mod.update_project, params)


@mcp.tool()
def archive_project(ctx: Context, project_id: str) -> dict:
    """Archive a project and all of its sub-projects.

    Refused if the project or any active sub-project still has unfinished tasks.
    """
    return _call(ctx, projects_mod.archive_project, {"project_id": project_id})


@mcp.tool()
def delete_project(ctx: Context, project_id: str) -> dict:
    """Delete an archived project with no tasks and no sub-projects."""
    return _call(ctx, projects_mod.delete_project, {"project_id": project_id})


@mcp.tool()
def add_project_member(ctx: Context, project_id: str, worker_id: str) -> dict:
    """Add a worker to a project."""
    return _call(ctx, projects_mod.add_member, {"project_id": project_id, "worker_id": worker_id})


@mcp.tool()
def remove_project_member(ctx: Context, project_id: str, worker_id: str) -> dict:
    """Remove a worker from a project. Refused while they own unfinished tasks there."""
    return _call(
        ctx, projects_mod.remove_member, {"project_id": project_id, "worker_id": worker_id}
    )


@mcp.tool()
def get_project_stats(ctx: Context, project_id: str) -> dict:
    """Task counts by status and priority, completion percentage and blocked count."""
    return _call(ctx, reports_mod.get_project_stats, {"project_id": project_id})


# ── Task Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
def create_task(
    ctx: Context,
    project_id: str,
    title: str,
    owner_id: str,
    description: str = "",
    context: str | None = None,
    goal: str | None = None,
    deliverable: str | None = None,
    priority: int = 3,
    dependencies: list[str] | None = None,
) -> dict:
    """Create a task. Priority: 1 (most urgent) to 4, default 3.

    A task with unfinished dependencies starts out blocked and is unblocked
    automatically once they are all done.
    """
    params = {
        "project_id": project_id,
        "title": title,
        "owner_id": owner_id,
        "description": description,
        "context": context,
        "goal": goal,
        "deliverable": deliverable,
        "priority": priority,
        "dependencies": dependencies or [],
    }
    return _call(ctx, tasks_mod.create_task, params)


@mcp.tool()
def list_tasks(
    ctx: Context,
    project_id: str | None = None,
    owner_id: str | None = None,
    status: str | None = None,
    priority: int | None = None,
) -> dict:
    """List tasks, most urgent first. Statuses: backlog, ready, active, blocked, review, done."""
    params = {"project_id": project_id, "owner_id": owner_id, "status": status, "priority": priority}
    return _call(ctx, tasks_mod.list_tasks, params, key="tasks")


@mcp.tool()
def get_task(ctx: Context, task_id: str) -> dict:
    """Get full details of a task."""
    return _call(ctx, tasks_mod.get_task, {"task_id": task_id})


@mcp.tool()
def update_task(
    ctx: Context,
    task_id: str,
    title: str | None = None,
    description: str | None = None,
    priority: int | None = None,
    context: str | None = None,
    goal: str | None = None,
    deliverable: str | None = None,
) -> dict:
    """Update a task's descriptive fields or priority."""
    params = {
        "task_id": task_id,
        "title": title,
        "description": description,
        "priority": priority,
        "context": context,
        "goal": goal,
        "deliverable": deliverable,
    }
    return _call(ctx, tasks_mod.update_task, params)


@mcp.tool()
def delete_task(ctx: Context, task_id: str) -> dict:
    """Delete a task that no other task depends on."""
    return _call(ctx, tasks_mod.delete_task, {"task_id": task_id})


@mcp.tool()
def start_task(ctx: Context, task_id: str) -> dict:
    """Move a backlog/ready task to active. All dependencies must be done."""
    return _call(ctx, tasks_mod.start_task, {"task_id": task_id})


@mcp.tool()
def complete_task(ctx: Context, task_id: str) -> dict:
    """Complete an active task. It goes to review unless its owner is auto-approved."""
    return _call(ctx, tasks_mod.complete_task, {"task_id": task_id})


@mcp.tool()
def approve_task(ctx: Context, task_id: str) -> dict:
    """Approve a task in review, marking it done and unblocking dependents."""
    return _call(ctx, tasks_mod.approve_task, {"task_id": task_id})


@mcp.tool()
def reject_task(ctx: Context, task_id: str) -> dict:
    """Reject a task in review, sending it back to active."""
    return _call(ctx, tasks_mod.reject_task, {"task_id": task_id})


@mcp.tool()
def reopen_task(ctx: Context, task_id: str) -> dict:
    """Reopen a done task (moves it to ready)."""
    return _call(ctx, tasks_mod.reopen_task, {"task_id": task_id})


@mcp.tool()
def assign_task(ctx: Context, task_id: str, worker_id: str) -> dict:
    """Reassign a task to another member of its project."""
    return _call(ctx, tasks_mod.assign_task, {"task_id": task_id, "worker_id": worker_id})


@mcp.tool()
def move_task(ctx: Context, task_id: str, project_id: str) -> dict:
    """Move a task to another project its owner belongs to."""
    return _call(ctx, tasks_mod.move_task, {"task_id": task_id, "project_id": project_id})


@mcp.tool()
def get_ready_tasks(ctx: Context, project_id: str | None = None) -> dict:
    """Get tasks that can be started now: open and with every dependency done."""
    return _call(ctx, tasks_mod.get_ready_tasks, {"project_id": project_id}, key="tasks")


@mcp.tool()
def get_blocked_tasks(ctx: Context, project_id: str | None = None) -> dict:
    """Get blocked tasks together with the unfinished tasks blocking them."""
    return _call(ctx, tasks_mod.get_blocked_tasks, {"project_id": project_id}, key="blocked")
