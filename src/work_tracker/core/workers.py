"""Worker management operations."""

import logging
from dataclasses import replace

from work_tracker.core.auth import Permission, operation
from work_tracker.core.errors import conflict, not_found
from work_tracker.core.schemas import CreateWorkerInput, ListWorkersInput, UpdateWorkerInput, WorkerRef
from work_tracker.core.tasks import slugify, unique_id
from work_tracker.db.models import DONE, ExecutionContext, Worker, utcnow
from work_tracker.db.port import StoragePort

logger = logging.getLogger(__name__)


def load_worker(storage: StoragePort, worker_id: str) -> Worker:
    worker = storage.get_worker(worker_id)
    if worker is None:
        raise not_found(f"Worker not found: {worker_id}")
    return worker


@operation(Permission.WORKER_CREATE, CreateWorkerInput)
def create_worker(ctx: ExecutionContext, params: CreateWorkerInput, storage: StoragePort) -> Worker:
    now = utcnow()
    worker = Worker(
        id=unique_id(slugify(params.name), lambda wid: storage.get_worker(wid) is not None, "worker"),
        name=params.name,
        type=params.type,
        roles=tuple(params.roles),
        permissions=tuple(p.value for p in params.permissions),
        created_at=now,
        updated_at=now,
    )
    storage.save_worker(worker)
    logger.info("Created %s worker %s", worker.type, worker.id)
    return worker


@operation(Permission.WORKER_READ, WorkerRef)
def get_worker(ctx: ExecutionContext, params: WorkerRef, storage: StoragePort) -> Worker:
    return load_worker(storage, params.worker_id)


@operation(Permission.WORKER_READ, ListWorkersInput)
def list_workers(ctx: ExecutionContext, params: ListWorkersInput, storage: StoragePort) -> list[Worker]:
    return storage.list_workers(type=params.type)


@operation(Permission.WORKER_UPDATE, UpdateWorkerInput)
def update_worker(ctx: ExecutionContext, params: UpdateWorkerInput, storage: StoragePort) -> Worker:
    """Update a worker's name, roles or permissions."""
    worker = load_worker(storage, params.worker_id)
    changes = {}
    if params.name is not None:
        changes["name"] = params.name
    if params.roles is not None:
        changes["roles"] = tuple(params.roles)
    if params.permissions is not None:
        changes["permissions"] = tuple(p.value for p in params.permissions)

    updated = replace(worker, updated_at=utcnow(), **changes)
    storage.save_worker(updated)
    return updated


@operation(Permission.WORKER_DELETE, WorkerRef)
def delete_worker(ctx: ExecutionContext, params: WorkerRef, storage: StoragePort) -> Worker:
    """Delete a worker that owns no unfinished task. Returns the deleted worker."""
    worker = load_worker(storage, params.worker_id)

    active = [t for t in storage.get_tasks_by_owner(worker.id) if t.status != DONE]
    if active:
        raise conflict(
            f"Cannot delete worker with active tasks. Reassign or complete {len(active)} task(s) first.",
            active_task_count=len(active),
        )

    storage.delete_worker(worker.id)
    logger.info("Deleted worker %s", worker.id)
    return worker
