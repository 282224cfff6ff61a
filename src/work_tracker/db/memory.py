"""In-memory storage backend, used by tests and throwaway sessions."""

from datetime import datetime, timezone

from work_tracker.core.errors import EntityNotFoundError
from work_tracker.db.models import Project, Task, Worker
from work_tracker.db.port import StoragePort


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(task: Task):
    return (task.priority, task.created_at or _EPOCH, task.id)


class InMemoryStore(StoragePort):
    def __init__(self):
        self.workers: dict[str, Worker] = {}
        self.projects: dict[str, Project] = {}
        self.tasks: dict[str, Task] = {}

    # ── Workers ──

    def get_worker(self, worker_id):
        return self.workers.get(worker_id)

    def save_worker(self, worker):
        self.workers[worker.id] = worker

    def delete_worker(self, worker_id):
        if self.workers.pop(worker_id, None) is None:
            raise EntityNotFoundError(f"Worker not found: {worker_id}")

    def list_workers(self, type=None):
        workers = [w for w in self.workers.values() if type is None or w.type == type]
        return sorted(workers, key=lambda w: (w.created_at or _EPOCH, w.id))

    # ── Projects ──

    def get_project(self, project_id):
        return self.projects.get(project_id)

    def save_project(self, project):
        self.projects[project.id] = project

    def delete_project(self, project_id):
        if self.projects.pop(project_id, None) is None:
            raise EntityNotFoundError(f"Project not found: {project_id}")

    def list_projects(self, status=None, parent_id=None):
        projects = [
            p
            for p in self.projects.values()
            if (status is None or p.status == status)
            and (parent_id is None or p.parent_id == parent_id)
        ]
        return sorted(projects, key=lambda p: (p.created_at or _EPOCH, p.id))

    def get_sub_projects(self, parent_id):
        return self.list_projects(parent_id=parent_id)

    # ── Tasks ──

    def get_task(self, task_id):
        return self.tasks.get(task_id)

    def save_task(self, task):
        self.tasks[task.id] = task

    def delete_task(self, task_id):
        if self.tasks.pop(task_id, None) is None:
            raise EntityNotFoundError(f"Task not found: {task_id}")

    def list_tasks(self, project_id=None, owner_id=None, status=None, priority=None):
        tasks = [
            t
            for t in self.tasks.values()
            if (project_id is None or t.project_id == project_id)
            and (owner_id is None or t.owner_id == owner_id)
            and (status is None or t.status == status)
            and (priority is None or t.priority == priority)
        ]
        return sorted(tasks, key=_sort_key)

    def get_dependents(self, task_id):
        return sorted(
            (t for t in self.tasks.values() if task_id in t.dependencies),
            key=_sort_key,
        )
