"""Data models for work tracker."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

# Task statuses
BACKLOG = "backlog"
READY = "ready"
ACTIVE = "active"
BLOCKED = "blocked"
REVIEW = "review"
DONE = "done"

TASK_STATUSES = (BACKLOG, READY, ACTIVE, BLOCKED, REVIEW, DONE)
OPEN_STATUSES = frozenset({BACKLOG, READY})

# Project statuses
PROJECT_ACTIVE = "active"
PROJECT_ARCHIVED = "archived"

ENVIRONMENTS = ("local", "ci", "server")

# Priority 1 is the most urgent.
PRIORITIES = (1, 2, 3, 4)
DEFAULT_PRIORITY = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Worker:
    id: str
    name: str
    type: str = "human"
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    description: str = ""
    parent_id: str | None = None
    member_ids: tuple[str, ...] = ()
    status: str = PROJECT_ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_archived(self) -> bool:
        return self.status == PROJECT_ARCHIVED


@dataclass(frozen=True)
class Approval:
    state: str
    approver_id: str | None = None
    approved_at: datetime | None = None
    policy: str = "manual"


@dataclass(frozen=True)
class Task:
    id: str
    project_id: str
    title: str
    owner_id: str
    status: str = BACKLOG
    priority: int = DEFAULT_PRIORITY
    dependencies: tuple[str, ...] = ()
    blocked_by: tuple[str, ...] = ()
    description: str = ""
    context: str | None = None
    goal: str | None = None
    deliverable: str | None = None
    approval: Approval | None = None
    metadata: dict | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class ExecutionContext:
    """Caller identity and granted permissions for a single operation."""

    actor_id: str | None
    workspace_id: str = "default"
    permissions: frozenset[str] = field(default_factory=frozenset)
    environment: str = "local"
    trace_id: str | None = None
    metadata: dict | None = None
