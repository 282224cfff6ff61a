"""Input models for engine operations."""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from work_tracker.core.auth import Permission

Id = Annotated[str, Field(min_length=1)]
Name = Annotated[str, Field(min_length=1, max_length=256)]
OptionalName = Annotated[str | None, Field(min_length=1, max_length=256)]
LongText = Annotated[str | None, Field(max_length=10000)]
Priority = Annotated[int, Field(ge=1, le=4)]

TaskStatusName = Literal["backlog", "ready", "active", "blocked", "review", "done"]
ProjectStatusName = Literal["active", "archived"]
WorkerTypeName = Literal["human", "agent"]


class OperationInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid", frozen=True)


# ── Workers ───────────────────────────────────────────────────────────────────


class CreateWorkerInput(OperationInput):
    name: Name
    type: WorkerTypeName = "human"
    roles: list[str] = Field(default_factory=list)
    permissions: list[Permission] = Field(default_factory=list)


class UpdateWorkerInput(OperationInput):
    worker_id: Id
    name: OptionalName = None
    roles: list[str] | None = None
    permissions: list[Permission] | None = None


class WorkerRef(OperationInput):
    worker_id: Id


class ListWorkersInput(OperationInput):
    type: WorkerTypeName | None = None


# ── Projects ──────────────────────────────────────────────────────────────────


class CreateProjectInput(OperationInput):
    name: Name
    description: str = Field(default="", max_length=10000)
    parent_id: str | None = None
    member_ids: list[str] = Field(default_factory=list)


class UpdateProjectInput(OperationInput):
    project_id: Id
    name: OptionalName = None
    description: LongText = None


class ProjectRef(OperationInput):
    project_id: Id


class ProjectMemberInput(OperationInput):
    project_id: Id
    worker_id: Id


class ListProjectsInput(OperationInput):
    status: ProjectStatusName | None = None
    parent_id: str | None = None


# ── Tasks ─────────────────────────────────────────────────────────────────────


class CreateTaskInput(OperationInput):
    project_id: Id
    title: Name
    owner_id: Id
    description: str = Field(default="", max_length=10000)
    context: LongText = None
    goal: LongText = None
    deliverable: LongText = None
    priority: Priority = 3
    dependencies: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None


class UpdateTaskInput(OperationInput):
    task_id: Id
    title: OptionalName = None
    description: LongText = None
    priority: Priority | None = None
    context: LongText = None
    goal: LongText = None
    deliverable: LongText = None


class TaskRef(OperationInput):
    task_id: Id


class AssignTaskInput(OperationInput):
    task_id: Id
    worker_id: Id


class MoveTaskInput(OperationInput):
    task_id: Id
    project_id: Id


class ListTasksInput(OperationInput):
    project_id: str | None = None
    owner_id: str | None = None
    status: TaskStatusName | None = None
    priority: Priority | None = None


class ProjectScope(OperationInput):
    project_id: str | None = None
