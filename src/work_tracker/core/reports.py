"""Read-only aggregates over projects and workers."""

from work_tracker.core.auth import Permission, operation
from work_tracker.core.schemas import ProjectRef, WorkerRef
from work_tracker.core.tasks import load_project
from work_tracker.core.workers import load_worker
from work_tracker.db.models import BLOCKED, DONE, PRIORITIES, TASK_STATUSES, ExecutionContext
from work_tracker.db.port import StoragePort


def _count_by_status(tasks) -> dict[str, int]:
    counts = {status: 0 for status in TASK_STATUSES}
    for task in tasks:
        counts[task.status] = counts.get(task.status, 0) + 1
    return counts


def _percent(part: int, total: int) -> int:
    """Whole percentage, halves rounded up."""
    if not total:
        return 0
    return (part * 200 + total) // (2 * total)


@operation(Permission.PROJECT_READ, ProjectRef)
def get_project_stats(ctx: ExecutionContext, params: ProjectRef, storage: StoragePort) -> dict:
    """Task counts by status and priority plus completion percentage."""
    project = load_project(storage, params.project_id)
    tasks = storage.get_tasks_by_project(project.id)

    by_status = _count_by_status(tasks)
    by_priority = {p: 0 for p in PRIORITIES}
    for task in tasks:
        by_priority[task.priority] = by_priority.get(task.priority, 0) + 1

    total = len(tasks)
    return {
        "project_id": project.id,
        "total_tasks": total,
        "tasks_by_status": by_status,
        "tasks_by_priority": by_priority,
        "completion_percentage": _percent(by_status[DONE], total),
        "blocked_tasks": by_status[BLOCKED],
    }


@operation(Permission.WORKER_READ, WorkerRef)
def get_worker_workload(ctx: ExecutionContext, params: WorkerRef, storage: StoragePort) -> dict:
    """Task counts by status for a worker; high priority means P1 or P2 and not done."""
    worker = load_worker(storage, params.worker_id)
    tasks = storage.get_tasks_by_owner(worker.id)

    return {
        "worker_id": worker.id,
        "total_tasks": len(tasks),
        "tasks_by_status": _count_by_status(tasks),
        "high_priority_tasks": sum(1 for t in tasks if t.priority <= 2 and t.status != DONE),
    }
