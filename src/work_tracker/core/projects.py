"""Project management operations, including cascading archival."""

import logging
from dataclasses import replace

from work_tracker.core.auth import Permission, operation
from work_tracker.core.errors import conflict, not_found
from work_tracker.core.schemas import (
    CreateProjectInput,
    ListProjectsInput,
    ProjectMemberInput,
    ProjectRef,
    UpdateProjectInput,
)
from work_tracker.core.tasks import load_project, slugify, unique_id
from work_tracker.db.models import (
    DONE,
    PROJECT_ACTIVE,
    PROJECT_ARCHIVED,
    ExecutionContext,
    Project,
    utcnow,
)
from work_tracker.db.port import StoragePort

logger = logging.getLogger(__name__)


@operation(Permission.PROJECT_CREATE, CreateProjectInput)
def create_project(ctx: ExecutionContext, params: CreateProjectInput, storage: StoragePort) -> Project:
    """Create a new project, optionally nested under an existing parent."""
    if params.parent_id:
        parent = storage.get_project(params.parent_id)
        if parent is None:
            raise not_found(f"Parent project not found: {params.parent_id}")
        if parent.is_archived:
            raise conflict("Cannot create a sub-project under an archived project")

    member_ids = tuple(dict.fromkeys(params.member_ids))
    for worker_id in member_ids:
        if storage.get_worker(worker_id) is None:
            raise not_found(f"Worker not found: {worker_id}")

    now = utcnow()
    project = Project(
        id=unique_id(slugify(params.name), lambda pid: storage.get_project(pid) is not None, "project"),
        name=params.name,
        description=params.description,
        parent_id=params.parent_id or None,
        member_ids=member_ids,
        status=PROJECT_ACTIVE,
        created_at=now,
        updated_at=now,
    )
    storage.save_project(project)
    logger.info("Created project %s", project.id)
    return project


@operation(Permission.PROJECT_READ, ProjectRef)
def get_project(ctx: ExecutionContext, params: ProjectRef, storage: StoragePort) -> Project:
    return load_project(storage, params.project_id)


@operation(Permission.PROJECT_READ, ListProjectsInput)
def list_projects(ctx: ExecutionContext, params: ListProjectsInput, storage: StoragePort) -> list[Project]:
    return storage.list_projects(status=params.status, parent_id=params.parent_id)


@operation(Permission.PROJECT_UPDATE, UpdateProjectInput)
def update_project(ctx: ExecutionContext, params: UpdateProjectInput, storage: StoragePort) -> Project:
    """Update project name and description."""
    project = load_project(storage, params.project_id)
    if project.is_archived:
        raise conflict("Cannot update archived project")

    changes = params.model_dump(exclude={"project_id"}, exclude_none=True)
    updated = replace(project, updated_at=utcnow(), **changes)
    storage.save_project(updated)
    return updated


@operation(Permission.PROJECT_UPDATE, ProjectRef)
def archive_project(ctx: ExecutionContext, params: ProjectRef, storage: StoragePort) -> Project:
    """Archive a project and every non-archived descendant.

    Each project in the subtree must have all of its own tasks done; the
    whole subtree is validated before anything is written, so a refusal
    leaves every project untouched. Already archived sub-projects are
    skipped along with their descendants. Archiving an archived project is a
    no-op.
    """
    project = load_project(storage, params.project_id)
    if project.is_archived:
        return project

    subtree = _collect_active_subtree(project, storage)
    for candidate in subtree:
        incomplete = [t for t in storage.get_tasks_by_project(candidate.id) if t.status != DONE]
        if not incomplete:
            continue
        if candidate.id == project.id:
            message = f"Cannot archive project with {len(incomplete)} incomplete task(s)"
        else:
            message = (
                f"Cannot archive project: sub-project {candidate.id} has "
                f"{len(incomplete)} incomplete task(s)"
            )
        raise conflict(message, project_id=candidate.id, incomplete_task_count=len(incomplete))

    now = utcnow()
    archived = None
    # Children before parents, the requested project last.
    for candidate in reversed(subtree):
        archived = replace(candidate, status=PROJECT_ARCHIVED, updated_at=now)
        storage.save_project(archived)
        logger.info("Archived project %s", candidate.id)
    return archived


def _collect_active_subtree(root: Project, storage: StoragePort) -> list[Project]:
    """Pre-order list of ``root`` and its non-archived descendants."""
    ordered = []
    seen = set()
    stack = [root]
    while stack:
        current = stack.pop()
        if current.id in seen:
            continue
        seen.add(current.id)
        ordered.append(current)
        children = [c for c in storage.get_sub_projects(current.id) if not c.is_archived]
        stack.extend(reversed(children))
    return ordered


@operation(Permission.PROJECT_DELETE, ProjectRef)
def delete_project(ctx: ExecutionContext, params: ProjectRef, storage: StoragePort) -> Project:
    """Delete an archived, empty project. Returns the deleted project."""
    project = load_project(storage, params.project_id)
    if not project.is_archived:
        raise conflict("Cannot delete non-archived project. Archive it first.")

    children = storage.get_sub_projects(project.id)
    if children:
        raise conflict(
            f"Cannot delete project with {len(children)} sub-project(s)",
            sub_project_count=len(children),
        )

    tasks = storage.get_tasks_by_project(project.id)
    if tasks:
        raise conflict(f"Cannot delete project with {len(tasks)} task(s)", task_count=len(tasks))

    storage.delete_project(project.id)
    logger.info("Deleted project %s", project.id)
    return project


@operation(Permission.PROJECT_MANAGE_MEMBERS, ProjectMemberInput)
def add_member(ctx: ExecutionContext, params: ProjectMemberInput, storage: StoragePort) -> Project:
    project = load_project(storage, params.project_id)
    if project.is_archived:
        raise conflict("Cannot modify archived project")

    if storage.get_worker(params.worker_id) is None:
        raise not_found(f"Worker not found: {params.worker_id}")
    if params.worker_id in project.member_ids:
        raise conflict(f"Worker {params.worker_id} is already a member of this project")

    updated = replace(
        project,
        member_ids=project.member_ids + (params.worker_id,),
        updated_at=utcnow(),
    )
    storage.save_project(updated)
    return updated


@operation(Permission.PROJECT_MANAGE_MEMBERS, ProjectMemberInput)
def remove_member(ctx: ExecutionContext, params: ProjectMemberInput, storage: StoragePort) -> Project:
    """Remove a member who owns no unfinished task in the project."""
    project = load_project(storage, params.project_id)
    if project.is_archived:
        raise conflict("Cannot modify archived project")

    if params.worker_id not in project.member_ids:
        raise not_found(f"Worker {params.worker_id} is not a member of this project")

    active = [
        t
        for t in storage.get_tasks_by_project(project.id)
        if t.owner_id == params.worker_id and t.status != DONE
    ]
    if active:
        raise conflict(
            f"Cannot remove worker with {len(active)} active task(s) in this project. "
            "Reassign or complete tasks first.",
            active_task_count=len(active),
        )

    updated = replace(
        project,
        member_ids=tuple(wid for wid in project.member_ids if wid != params.worker_id),
        updated_at=utcnow(),
    )
    storage.save_project(updated)
    return updated
