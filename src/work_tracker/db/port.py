"""Storage port: the only persistence interface the engine depends on.

Backends raise :class:`~work_tracker.core.errors.StorageError` when they
cannot serve a request, and :class:`~work_tracker.core.errors.EntityNotFoundError`
when asked to delete something that does not exist. The engine's operation
boundary turns both into failed results.
"""

from abc import ABC, abstractmethod

from work_tracker.db.models import Project, Task, Worker


class StoragePort(ABC):
    # ── Workers ──

    @abstractmethod
    def get_worker(self, worker_id: str) -> Worker | None:
        raise NotImplementedError

    @abstractmethod
    def save_worker(self, worker: Worker) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_worker(self, worker_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_workers(self, type: str | None = None) -> list[Worker]:
        raise NotImplementedError

    # ── Projects ──

    @abstractmethod
    def get_project(self, project_id: str) -> Project | None:
        raise NotImplementedError

    @abstractmethod
    def save_project(self, project: Project) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_project(self, project_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_projects(
        self,
        status: str | None = None,
        parent_id: str | None = None,
    ) -> list[Project]:
        raise NotImplementedError

    @abstractmethod
    def get_sub_projects(self, parent_id: str) -> list[Project]:
        raise NotImplementedError

    # ── Tasks ──

    @abstractmethod
    def get_task(self, task_id: str) -> Task | None:
        raise NotImplementedError

    @abstractmethod
    def save_task(self, task: Task) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_task(self, task_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_tasks(
        self,
        project_id: str | None = None,
        owner_id: str | None = None,
        status: str | None = None,
        priority: int | None = None,
    ) -> list[Task]:
        """List tasks matching every given filter, by priority then creation time."""
        raise NotImplementedError

    @abstractmethod
    def get_dependents(self, task_id: str) -> list[Task]:
        """Tasks whose dependency set contains ``task_id``."""
        raise NotImplementedError

    def get_tasks_by_project(self, project_id: str) -> list[Task]:
        return self.list_tasks(project_id=project_id)

    def get_tasks_by_owner(self, owner_id: str) -> list[Task]:
        return self.list_tasks(owner_id=owner_id)

    def get_tasks_by_ids(self, task_ids: list[str]) -> dict[str, Task]:
        found = {}
        for task_id in task_ids:
            task = self.get_task(task_id)
            if task is not None:
                found[task_id] = task
        return found
