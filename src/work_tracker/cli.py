"""CLI entry point for the work tracker."""

import json
import logging
import sys

import click

from work_tracker.config import get_config
from work_tracker.context import context_from_config
from work_tracker.core import projects as projects_mod
from work_tracker.core import reports as reports_mod
from work_tracker.core import tasks as tasks_mod
from work_tracker.core import workers as workers_mod
from work_tracker.core.errors import ErrorCode
from work_tracker.db.store import open_store
from work_tracker.serialize import result_dict

EXIT_CODES = {
    ErrorCode.INTERNAL_ERROR: 1,
    ErrorCode.INVALID_INPUT: 2,
    ErrorCode.UNAUTHORIZED: 3,
    ErrorCode.FORBIDDEN: 4,
    ErrorCode.NOT_FOUND: 5,
    ErrorCode.CONFLICT: 6,
}

STATUS_ICONS = {
    "backlog": "○",
    "ready": "◎",
    "active": "●",
    "blocked": "✗",
    "review": "◐",
    "done": "✓",
}


@click.group()
@click.option("--actor", default=None, help="Act as this worker ID (overrides WT_ACTOR_ID)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, actor, verbose):
    """wt - Work Tracker CLI"""
    config = get_config()
    if actor:
        config.actor_id = actor
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config


def _run(op, params: dict, render=None, json_output: bool = False):
    """Run an operation against the configured store and report its outcome.

    Failures print to stderr and exit with the code mapped from the error.
    """
    config = click.get_current_context().obj
    with open_store(config.db_path) as storage:
        result = op(context_from_config(config), params, storage)

    if json_output:
        click.echo(json.dumps(result_dict(result), indent=2))
    elif result.ok and render is not None:
        render(result.value)

    if not result.ok:
        if not json_output:
            click.echo(f"Error: {result.error.message}", err=True)
        sys.exit(EXIT_CODES.get(result.error.code, 1))

    for warning in result.warnings:
        click.echo(f"Warning: {warning.message}", err=True)
    return result.value


def _split(value: str | None) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


# ── Worker Commands ───────────────────────────────────────────────────────────


@main.group("worker")
def worker_group():
    """Manage workers."""
    pass


@worker_group.command("add")
@click.argument("name")
@click.option("--type", "worker_type", default="human", type=click.Choice(["human", "agent"]))
@click.option("--role", "roles", multiple=True, help="Role tag (repeatable)")
@click.option("--permission", "permissions", multiple=True, help="Granted permission (repeatable)")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def worker_add(name, worker_type, roles, permissions, json_output):
    """Register a new worker."""

    def render(worker):
        click.echo(f"Created worker: {worker.id} ({worker.name}, {worker.type})")
        if worker.roles:
            click.echo(f"  Roles: {', '.join(worker.roles)}")

    _run(
        workers_mod.create_worker,
        {"name": name, "type": worker_type, "roles": list(roles), "permissions": list(permissions)},
        render,
        json_output,
    )


@worker_group.command("list")
@click.option("--type", "worker_type", default=None, type=click.Choice(["human", "agent"]))
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def worker_list(worker_type, json_output):
    """List workers."""

    def render(workers):
        if not workers:
            click.echo("No workers found.")
            return
        for w in workers:
            roles = f" [{', '.join(w.roles)}]" if w.roles else ""
            click.echo(f"  {w.id}: {w.name} ({w.type}){roles}")

    _run(workers_mod.list_workers, {"type": worker_type}, render, json_output)


@worker_group.command("show")
@click.argument("worker_id")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def worker_show(worker_id, json_output):
    """Show worker details."""

    def render(w):
        click.echo(f"Worker: {w.id}")
        click.echo(f"  Name: {w.name}")
        click.echo(f"  Type: {w.type}")
        if w.roles:
            click.echo(f"  Roles: {', '.join(w.roles)}")
        if w.permissions:
            click.echo(f"  Permissions: {', '.join(w.permissions)}")

    _run(workers_mod.get_worker, {"worker_id": worker_id}, render, json_output)


@worker_group.command("update")
@click.argument("worker_id")
@click.option("--name", default=None)
@click.option("--role", "roles", multiple=True, help="Replace roles (repeatable)")
@click.option("--permission", "permissions", multiple=True, help="Replace permissions (repeatable)")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def worker_update(worker_id, name, roles, permissions, json_output):
    """Update a worker's name, roles or permissions."""
    params = {
        "worker_id": worker_id,
        "name": name,
        "roles": list(roles) or None,
        "permissions": list(permissions) or None,
    }
    _run(
        workers_mod.update_worker,
        params,
        lambda w: click.echo(f"Updated worker: {w.id} ({w.name})"),
        json_output,
    )


@worker_group.command("delete")
@click.argument("worker_id")
def worker_delete(worker_id):
    """Delete a worker with no unfinished tasks."""
    _run(workers_mod.delete_worker, {"worker_id": worker_id}, lambda w: click.echo(f"Deleted worker: {w.id}"))


@worker_group.command("workload")
@click.argument("worker_id")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def worker_workload(worker_id, json_output):
    """Show a worker's task load."""

    def render(load):
        click.echo(f"Workload for {load['worker_id']}: {load['total_tasks']} task(s)")
        for status, count in load["tasks_by_status"].items():
            if count:
                click.echo(f"  {status}: {count}")
        click.echo(f"  High priority open: {load['high_priority_tasks']}")

    _run(reports_mod.get_worker_workload, {"worker_id": worker_id}, render, json_output)


# ── Project Commands ──────────────────────────────────────────────────────────


@main.group("project")
def project_group():
    """Manage projects."""
    pass


def _echo_project(p):
    click.echo(f"Project: {p.id} ({p.name})")
    click.echo(f"  Status: {p.status}")
    if p.parent_id:
        click.echo(f"  Parent: {p.parent_id}")
    if p.description:
        click.echo(f"  Description: {p.description}")
    if p.member_ids:
        click.echo(f"  Members: {', '.join(p.member_ids)}")


@project_group.command("create")
@click.argument("name")
@click.option("--description", "-d", default="", help="Project description")
@click.option("--parent", default=None, help="Parent project ID")
@click.option("--member", "members", multiple=True, help="Member worker ID (repeatable)")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def project_create(name, description, parent, members, json_output):
    """Create a new project."""

    def render(p):
        click.echo(f"Project created: {p.id} ({p.name})")
        if p.parent_id:
            click.echo(f"  Parent: {p.parent_id}")
        if p.member_ids:
            click.echo(f"  Members: {', '.join(p.member_ids)}")

    params = {"name": name, "description": description, "parent_id": parent, "member_ids": list(members)}
    _run(projects_mod.create_project, params, render, json_output)


@project_group.command("list")
@click.option("--status", default=None, type=click.Choice(["active", "archived"]))
@click.option("--parent", default=None, help="Only sub-projects of this project")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def project_list(status, parent, json_output):
    """List projects."""

    def render(projects):
        if not projects:
            click.echo("No projects found.")
            return
        for p in projects:
            parent_info = f" [parent: {p.parent_id}]" if p.parent_id else ""
            click.echo(f"  {p.id}: {p.name} ({p.status}){parent_info}")

    _run(projects_mod.list_projects, {"status": status, "parent_id": parent}, render, json_output)


@project_group.command("show")
@click.argument("project_id")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def project_show(project_id, json_output):
    """Show project details."""
    _run(projects_mod.get_project, {"project_id": project_id}, _echo_project, json_output)


@project_group.command("update")
@click.argument("project_id")
@click.option("--name", default=None)
@click.option("--description", "-d", default=None)
def project_update(project_id, name, description):
    """Update a project's name or description."""
    _run(
        projects_mod.update_project,
        {"project_id": project_id, "name": name, "description": description},
        lambda p: click.echo(f"Updated project: {p.id}"),
    )


@project_group.command("archive")
@click.argument("project_id")
def project_archive(project_id):
    """Archive a project and its sub-projects."""
    _run(
        projects_mod.archive_project,
        {"project_id": project_id},
        lambda p: click.echo(f"Archived project: {p.id}"),
    )


@project_group.command("delete")
@click.argument("project_id")
def project_delete(project_id):
    """Delete an archived, empty project."""
    _run(
        projects_mod.delete_project,
        {"project_id": project_id},
        lambda p: click.echo(f"Deleted project: {p.id}"),
    )


@project_group.command("stats")
@click.argument("project_id")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def project_stats(project_id, json_output):
    """Show task statistics for a project."""

    def render(stats):
        click.echo(
            f"{stats['project_id']}: {stats['total_tasks']} task(s), "
            f"{stats['completion_percentage']}% complete, {stats['blocked_tasks']} blocked"
        )
        for status, count in stats["tasks_by_status"].items():
            click.echo(f"  {STATUS_ICONS.get(status, '?')} {status}: {count}")

    _run(reports_mod.get_project_stats, {"project_id": project_id}, render, json_output)


@project_group.group("member")
def member_group():
    """Manage project membership."""
    pass


@member_group.command("add")
@click.argument("project_id")
@click.argument("worker_id")
def member_add(project_id, worker_id):
    """Add a worker to a project."""
    _run(
        projects_mod.add_member,
        {"project_id": project_id, "worker_id": worker_id},
        lambda p: click.echo(f"Added {worker_id} to {p.id}"),
    )


@member_group.command("remove")
@click.argument("project_id")
@click.argument("worker_id")
def member_remove(project_id, worker_id):
    """Remove a worker from a project."""
    _run(
        projects_mod.remove_member,
        {"project_id": project_id, "worker_id": worker_id},
        lambda p: click.echo(f"Removed {worker_id} from {p.id}"),
    )


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage tasks."""
    pass


def _task_line(task) -> str:
    icon = STATUS_ICONS.get(task.status, "?")
    deps = f" [depends: {', '.join(task.dependencies)}]" if task.dependencies else ""
    return f"  {icon} P{task.priority} {task.id}: {task.title} ({task.status}, {task.owner_id}){deps}"


def _echo_task(task):
    click.echo(f"Task: {task.id}")
    click.echo(f"  Title: {task.title}")
    click.echo(f"  Priority: P{task.priority}")
    click.echo(f"  Status: {task.status}")
    click.echo(f"  Project: {task.project_id}")
    click.echo(f"  Owner: {task.owner_id}")
    if task.description:
        click.echo(f"  Description: {task.description}")
    if task.goal:
        click.echo(f"  Goal: {task.goal}")
    if task.deliverable:
        click.echo(f"  Deliverable: {task.deliverable}")
    if task.dependencies:
        click.echo(f"  Depends on: {', '.join(task.dependencies)}")
    if task.blocked_by:
        click.echo(f"  Blocked by: {', '.join(task.blocked_by)}")
    if task.approval:
        click.echo(f"  Approval: {task.approval.state} by {task.approval.approver_id}")
    if task.created_at:
        click.echo(f"  Created: {task.created_at}")
    if task.completed_at:
        click.echo(f"  Completed: {task.completed_at}")


def _echo_tasks(tasks):
    if not tasks:
        click.echo("No tasks found.")
        return
    for task in tasks:
        click.echo(_task_line(task))


@task_group.command("add")
@click.argument("title")
@click.option("--project", required=True, help="Project ID")
@click.option("--owner", default=None, help="Owner worker ID (defaults to the acting worker)")
@click.option("--description", "-d", default="", help="Task description")
@click.option("--context", default=None, help="Background the owner needs")
@click.option("--goal", default=None, help="What done looks like")
@click.option("--deliverable", default=None, help="Expected output")
@click.option("--depends-on", default=None, help="Comma-separated task IDs this depends on")
@click.option("--priority", "-p", default=3, type=int, help="Priority 1 (most urgent) to 4")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_add(title, project, owner, description, context, goal, deliverable, depends_on, priority, json_output):
    """Create a new task."""

    def render(task):
        click.echo(f"Created task: {task.id}")
        click.echo(f"  Title: {task.title}")
        click.echo(f"  Priority: P{task.priority}")
        click.echo(f"  Status: {task.status}")
        if task.dependencies:
            click.echo(f"  Depends on: {', '.join(task.dependencies)}")
        if task.blocked_by:
            click.echo(f"  Blocked by: {', '.join(task.blocked_by)}")

    params = {
        "project_id": project,
        "title": title,
        "owner_id": owner or click.get_current_context().obj.actor_id or "",
        "description": description,
        "context": context,
        "goal": goal,
        "deliverable": deliverable,
        "priority": priority,
        "dependencies": _split(depends_on),
    }
    _run(tasks_mod.create_task, params, render, json_output)


@task_group.command("list")
@click.option("--project", default=None, help="Project ID")
@click.option("--owner", default=None, help="Owner worker ID")
@click.option("--status", default=None, help="Filter by status")
@click.option("--priority", "-p", default=None, type=int, help="Filter by priority")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_list(project, owner, status, priority, json_output):
    """List tasks, most urgent first."""
    params = {"project_id": project, "owner_id": owner, "status": status, "priority": priority}
    _run(tasks_mod.list_tasks, params, _echo_tasks, json_output)


@task_group.command("show")
@click.argument("task_id")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_show(task_id, json_output):
    """Show task details."""
    _run(tasks_mod.get_task, {"task_id": task_id}, _echo_task, json_output)


@task_group.command("update")
@click.argument("task_id")
@click.option("--title", default=None)
@click.option("--description", "-d", default=None)
@click.option("--context", default=None)
@click.option("--goal", default=None)
@click.option("--deliverable", default=None)
@click.option("--priority", "-p", default=None, type=int)
def task_update(task_id, title, description, context, goal, deliverable, priority):
    """Update a task's descriptive fields or priority."""
    params = {
        "task_id": task_id,
        "title": title,
        "description": description,
        "context": context,
        "goal": goal,
        "deliverable": deliverable,
        "priority": priority,
    }
    _run(tasks_mod.update_task, params, lambda t: click.echo(f"Updated task: {t.id} (P{t.priority})"))


@task_group.command("delete")
@click.argument("task_id")
def task_delete(task_id):
    """Delete a task nothing depends on."""
    _run(tasks_mod.delete_task, {"task_id": task_id}, lambda t: click.echo(f"Deleted task: {t.id}"))


@task_group.command("start")
@click.argument("task_id")
def task_start(task_id):
    """Start a task - sets status to active."""
    _run(tasks_mod.start_task, {"task_id": task_id}, lambda t: click.echo(f"Started task: {t.id}"))


@task_group.command("done")
@click.argument("task_id")
def task_done(task_id):
    """Complete an active task (goes to review unless auto-approved)."""

    def render(task):
        if task.status == "done":
            click.echo(f"Completed task: {task.id}")
        else:
            click.echo(f"Task {task.id} submitted for review")

    _run(tasks_mod.complete_task, {"task_id": task_id}, render)


@task_group.command("approve")
@click.argument("task_id")
def task_approve(task_id):
    """Approve a task under review."""
    _run(tasks_mod.approve_task, {"task_id": task_id}, lambda t: click.echo(f"Approved task: {t.id}"))


@task_group.command("reject")
@click.argument("task_id")
def task_reject(task_id):
    """Send a task under review back to active."""
    _run(tasks_mod.reject_task, {"task_id": task_id}, lambda t: click.echo(f"Rejected task: {t.id}"))


@task_group.command("reopen")
@click.argument("task_id")
def task_reopen(task_id):
    """Reopen a done task."""
    _run(tasks_mod.reopen_task, {"task_id": task_id}, lambda t: click.echo(f"Reopened task: {t.id}"))


@task_group.command("assign")
@click.argument("task_id")
@click.argument("worker_id")
def task_assign(task_id, worker_id):
    """Give a task to another project member."""
    _run(
        tasks_mod.assign_task,
        {"task_id": task_id, "worker_id": worker_id},
        lambda t: click.echo(f"Assigned {t.id} to {t.owner_id}"),
    )


@task_group.command("move")
@click.argument("task_id")
@click.argument("project_id")
def task_move(task_id, project_id):
    """Move a task to another project."""
    _run(
        tasks_mod.move_task,
        {"task_id": task_id, "project_id": project_id},
        lambda t: click.echo(f"Moved {t.id} to {t.project_id}"),
    )


@task_group.command("ready")
@click.option("--project", default=None, help="Project ID")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_ready(project, json_output):
    """List tasks that can be started now."""
    _run(tasks_mod.get_ready_tasks, {"project_id": project}, _echo_tasks, json_output)


@task_group.command("blocked")
@click.option("--project", default=None, help="Project ID")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_blocked(project, json_output):
    """List blocked tasks and what blocks them."""

    def render(entries):
        if not entries:
            click.echo("No blocked tasks.")
            return
        for entry in entries:
            click.echo(_task_line(entry["task"]))
            for blocker in entry["blockers"]:
                click.echo(f"      waiting on {blocker.id} ({blocker.status})")

    _run(tasks_mod.get_blocked_tasks, {"project_id": project}, render, json_output)


# ── Server Commands ───────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
def serve_command(host, port):
    """Run the JSON HTTP API."""
    from work_tracker.web.app import run_server

    click.echo(f"Serving API at http://{host}:{port}/api/v1")
    run_server(host=host, port=port)


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from work_tracker.mcp.server import mcp
    from work_tracker.mcp import prompts  # noqa: F401 - registers prompts

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
