"""JSON HTTP API for the work tracker."""

import json
import logging
from contextlib import contextmanager

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from work_tracker.config import get_config
from work_tracker.context import context_from_headers
from work_tracker.core import projects as projects_mod
from work_tracker.core import reports as reports_mod
from work_tracker.core import tasks as tasks_mod
from work_tracker.core import workers as workers_mod
from work_tracker.core.errors import ErrorCode, create_error
from work_tracker.db.port import StoragePort
from work_tracker.db.store import open_store
from work_tracker.serialize import result_dict

logger = logging.getLogger(__name__)

HTTP_STATUS = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.INTERNAL_ERROR: 500,
}


class BadRequest(Exception):
    pass


@contextmanager
def _storage(request: Request):
    """Yield the app's fixed store, or a sqlite store opened for this request."""
    storage = request.app.state.storage
    if storage is not None:
        yield storage
        return
    with open_store(get_config().db_path) as store:
        yield store


async def _body(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise BadRequest(f"Invalid JSON body: {e}") from e
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data


def _query(request: Request, *names: str) -> dict:
    return {name: request.query_params.get(name) for name in names}


async def _call(request: Request, op, params: dict | None = None, *, body: bool = False, created: bool = False):
    """Run ``op`` for this request and render the result envelope."""
    params = dict(params or {})
    if body:
        try:
            params = {**await _body(request), **params}
        except BadRequest as e:
            error = create_error(ErrorCode.INVALID_INPUT, str(e))
            return JSONResponse({"ok": False, "error": error.to_dict()}, status_code=400)

    ctx = context_from_headers(request.headers)
    with _storage(request) as storage:
        result = op(ctx, params, storage)

    if not result.ok:
        logger.debug("%s %s -> %s", request.method, request.url.path, result.error.code.value)
        return JSONResponse(result_dict(result), status_code=HTTP_STATUS[result.error.code])
    return JSONResponse(result_dict(result), status_code=201 if created else 200)


# ── Handlers ──────────────────────────────────────────────────────────────────


async def health(request: Request):
    return JSONResponse({"ok": True, "data": {"status": "ok"}})


# Workers


async def api_list_workers(request: Request):
    return await _call(request, workers_mod.list_workers, _query(request, "type"))


async def api_create_worker(request: Request):
    return await _call(request, workers_mod.create_worker, body=True, created=True)


async def api_get_worker(request: Request):
    return await _call(request, workers_mod.get_worker, request.path_params)


async def api_update_worker(request: Request):
    return await _call(request, workers_mod.update_worker, request.path_params, body=True)


async def api_delete_worker(request: Request):
    return await _call(request, workers_mod.delete_worker, request.path_params)


async def api_worker_workload(request: Request):
    return await _call(request, reports_mod.get_worker_workload, request.path_params)


# Projects


async def api_list_projects(request: Request):
    return await _call(request, projects_mod.list_projects, _query(request, "status", "parent_id"))


async def api_create_project(request: Request):
    return await _call(request, projects_mod.create_project, body=True, created=True)


async def api_get_project(request: Request):
    return await _call(request, projects_mod.get_project, request.path_params)


async def api_update_project(request: Request):
    return await _call(request, projects_mod.update_project, request.path_params, body=True)


async def api_delete_project(request: Request):
    return await _call(request, projects_mod.delete_project, request.path_params)


async def api_archive_project(request: Request):
    return await _call(request, projects_mod.archive_project, request.path_params)


async def api_project_stats(request: Request):
    return await _call(request, reports_mod.get_project_stats, request.path_params)


async def api_add_member(request: Request):
    return await _call(request, projects_mod.add_member, request.path_params, body=True)


async def api_remove_member(request: Request):
    return await _call(request, projects_mod.remove_member, request.path_params)


# Tasks


async def api_list_tasks(request: Request):
    params = _query(request, "project_id", "owner_id", "status", "priority")
    return await _call(request, tasks_mod.list_tasks, params)


async def api_create_task(request: Request):
    return await _call(request, tasks_mod.create_task, body=True, created=True)


async def api_ready_tasks(request: Request):
    return await _call(request, tasks_mod.get_ready_tasks, _query(request, "project_id"))


async def api_blocked_tasks(request: Request):
    return await _call(request, tasks_mod.get_blocked_tasks, _query(request, "project_id"))


async def api_get_task(request: Request):
    return await _call(request, tasks_mod.get_task, request.path_params)


async def api_update_task(request: Request):
    return await _call(request, tasks_mod.update_task, request.path_params, body=True)


async def api_delete_task(request: Request):
    return await _call(request, tasks_mod.delete_task, request.path_params)


async def api_start_task(request: Request):
    return await _call(request, tasks_mod.start_task, request.path_params)


async def api_complete_task(request: Request):
    return await _call(request, tasks_mod.complete_task, request.path_params)


async def api_approve_task(request: Request):
    return await _call(request, tasks_mod.approve_task, request.path_params)


async def api_reject_task(request: Request):
    return await _call(request, tasks_mod.reject_task, request.path_params)


async def api_reopen_task(request: Request):
    return await _call(request, tasks_mod.reopen_task, request.path_params)


async def api_assign_task(request: Request):
    return await _call(request, tasks_mod.assign_task, request.path_params, body=True)


async def api_move_task(request: Request):
    return await _call(request, tasks_mod.move_task, request.path_params, body=True)


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(storage: StoragePort | None = None) -> Starlette:
    """Build the API. Without ``storage`` each request opens the configured sqlite store."""
    prefix = "/api/v1"
    routes = [
        Route(f"{prefix}/health", health),
        Route(f"{prefix}/workers", api_list_workers, methods=["GET"]),
        Route(f"{prefix}/workers", api_create_worker, methods=["POST"]),
        Route(f"{prefix}/workers/{{worker_id}}", api_get_worker, methods=["GET"]),
        Route(f"{prefix}/workers/{{worker_id}}", api_update_worker, methods=["PATCH"]),
        Route(f"{prefix}/workers/{{worker_id}}", api_delete_worker, methods=["DELETE"]),
        Route(f"{prefix}/workers/{{worker_id}}/workload", api_worker_workload, methods=["GET"]),
        Route(f"{prefix}/projects", api_list_projects, methods=["GET"]),
        Route(f"{prefix}/projects", api_create_project, methods=["POST"]),
        Route(f"{prefix}/projects/{{project_id}}", api_get_project, methods=["GET"]),
        Route(f"{prefix}/projects/{{project_id}}", api_update_project, methods=["PATCH"]),
        Route(f"{prefix}/projects/{{project_id}}", api_delete_project, methods=["DELETE"]),
        Route(f"{prefix}/projects/{{project_id}}/archive", api_archive_project, methods=["POST"]),
        Route(f"{prefix}/projects/{{project_id}}/stats", api_project_stats, methods=["GET"]),
        Route(f"{prefix}/projects/{{project_id}}/members", api_add_member, methods=["POST"]),
        Route(
            f"{prefix}/projects/{{project_id}}/members/{{worker_id}}",
            api_remove_member,
            methods=["DELETE"],
        ),
        Route(f"{prefix}/tasks", api_list_tasks, methods=["GET"]),
        Route(f"{prefix}/tasks", api_create_task, methods=["POST"]),
        Route(f"{prefix}/tasks/ready", api_ready_tasks, methods=["GET"]),
        Route(f"{prefix}/tasks/blocked", api_blocked_tasks, methods=["GET"]),
        Route(f"{prefix}/tasks/{{task_id}}", api_get_task, methods=["GET"]),
        Route(f"{prefix}/tasks/{{task_id}}", api_update_task, methods=["PATCH"]),
        Route(f"{prefix}/tasks/{{task_id}}", api_delete_task, methods=["DELETE"]),
        Route(f"{prefix}/tasks/{{task_id}}/start", api_start_task, methods=["POST"]),
        Route(f"{prefix}/tasks/{{task_id}}/complete", api_complete_task, methods=["POST"]),
        Route(f"{prefix}/tasks/{{task_id}}/approve", api_approve_task, methods=["POST"]),
        Route(f"{prefix}/tasks/{{task_id}}/reject", api_reject_task, methods=["POST"]),
        Route(f"{prefix}/tasks/{{task_id}}/reopen", api_reopen_task, methods=["POST"]),
        Route(f"{prefix}/tasks/{{task_id}}/assign", api_assign_task, methods=["POST"]),
        Route(f"{prefix}/tasks/{{task_id}}/move", api_move_task, methods=["POST"]),
    ]
    app = Starlette(routes=routes)
    app.state.storage = storage
    return app


def run_server(host: str = "127.0.0.1", port: int = 8787):
    app = create_app()
    uvicorn.run(app, host=host, port=port, log_level=get_config().log_level.lower())
