"""Plain-dict views of entities, shared by the CLI, web API and MCP server."""

from datetime import datetime

from work_tracker.core.errors import Result
from work_tracker.db.models import Approval, Project, Task, Worker


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def worker_dict(w: Worker) -> dict:
    return {
        "id": w.id,
        "name": w.name,
        "type": w.type,
        "roles": list(w.roles),
        "permissions": list(w.permissions),
        "created_at": _iso(w.created_at),
        "updated_at": _iso(w.updated_at),
    }


def project_dict(p: Project) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "parent_id": p.parent_id,
        "member_ids": list(p.member_ids),
        "status": p.status,
        "created_at": _iso(p.created_at),
        "updated_at": _iso(p.updated_at),
    }


def approval_dict(a: Approval | None) -> dict | None:
    if a is None:
        return None
    return {
        "state": a.state,
        "approver_id": a.approver_id,
        "approved_at": _iso(a.approved_at),
        "policy": a.policy,
    }


def task_dict(t: Task) -> dict:
    return {
        "id": t.id,
        "project_id": t.project_id,
        "title": t.title,
        "owner_id": t.owner_id,
        "status": t.status,
        "priority": t.priority,
        "dependencies": list(t.dependencies),
        "blocked_by": list(t.blocked_by),
        "description": t.description,
        "context": t.context,
        "goal": t.goal,
        "deliverable": t.deliverable,
        "approval": approval_dict(t.approval),
        "metadata": t.metadata,
        "created_at": _iso(t.created_at),
        "updated_at": _iso(t.updated_at),
        "completed_at": _iso(t.completed_at),
    }


def to_data(value):
    """Convert an operation's result value into JSON-friendly data."""
    if isinstance(value, Task):
        return task_dict(value)
    if isinstance(value, Project):
        return project_dict(value)
    if isinstance(value, Worker):
        return worker_dict(value)
    if isinstance(value, (list, tuple)):
        return [to_data(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_data(v) for k, v in value.items()}
    return value


def result_dict(result: Result) -> dict:
    """Envelope used by the HTTP API and ``--json`` CLI output."""
    if not result.ok:
        return {"ok": False, "error": result.error.to_dict()}
    data = {"ok": True, "data": to_data(result.value)}
    if result.warnings:
        data["warnings"] = [w.to_dict() for w in result.warnings]
    return data
