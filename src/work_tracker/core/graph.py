"""Dependency graph: cycle detection, initial blocking and unblock propagation."""

import logging
from dataclasses import replace

from work_tracker.core.errors import DomainError, ErrorCode, StorageError, create_error
from work_tracker.db.models import BLOCKED, DONE, READY, Task, utcnow
from work_tracker.db.port import StoragePort

logger = logging.getLogger(__name__)


def would_create_cycle(candidate_dependencies, storage: StoragePort) -> bool:
    """Return True if the dependency edges reachable from the candidates contain a cycle.

    Iterative depth-first search: ``on_stack`` holds the current path, a
    node seen again while still on the path closes a cycle. Tasks that no
    longer exist are dead ends. Stops at the first cycle found.
    """
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in candidate_dependencies:
        if root in visited:
            continue

        visited.add(root)
        on_stack.add(root)
        frames = [(root, iter(_edges(root, storage)))]

        while frames:
            node, edges = frames[-1]
            advanced = False
            for dep_id in edges:
                if dep_id in on_stack:
                    logger.debug("Dependency cycle through %s -> %s", node, dep_id)
                    return True
                if dep_id not in visited:
                    visited.add(dep_id)
                    on_stack.add(dep_id)
                    frames.append((dep_id, iter(_edges(dep_id, storage))))
                    advanced = True
                    break
            if not advanced:
                frames.pop()
                on_stack.discard(node)

    return False


def _edges(task_id: str, storage: StoragePort) -> tuple[str, ...]:
    task = storage.get_task(task_id)
    return task.dependencies if task else ()


def incomplete_dependencies(dependencies, storage: StoragePort) -> tuple[str, ...]:
    """Dependencies whose live status is not ``done``, in dependency order."""
    blocked_by = []
    for dep_id in dependencies:
        dep = storage.get_task(dep_id)
        if dep is not None and dep.status != DONE:
            blocked_by.append(dep_id)
    return tuple(blocked_by)


def unblock_dependents(completed_task_id: str, storage: StoragePort) -> list[DomainError]:
    """Re-evaluate every blocked task that depends on ``completed_task_id``.

    A dependent whose dependencies are now all ``done`` moves to ``ready``
    with an empty blocked-by set; any other dependent keeps ``blocked`` with
    its blocked-by set recomputed from live statuses. Best effort: a storage
    failure on one dependent is logged and returned as a retryable warning,
    and the remaining dependents are still processed.
    """
    warnings: list[DomainError] = []
    try:
        dependents = [t for t in storage.get_dependents(completed_task_id) if t.status == BLOCKED]
    except StorageError as e:
        logger.warning("Could not load dependents of %s: %s", completed_task_id, e)
        return [_propagation_warning(completed_task_id, None, e)]

    for dependent in dependents:
        try:
            _refresh_blocked_state(dependent, storage)
        except StorageError as e:
            logger.warning(
                "Unblock propagation from %s to %s failed: %s", completed_task_id, dependent.id, e
            )
            warnings.append(_propagation_warning(completed_task_id, dependent.id, e))
    return warnings


def _refresh_blocked_state(dependent: Task, storage: StoragePort) -> Task:
    remaining = incomplete_dependencies(dependent.dependencies, storage)
    if not remaining:
        updated = replace(dependent, status=READY, blocked_by=(), updated_at=utcnow())
        storage.save_task(updated)
        logger.info("Unblocked task %s", dependent.id)
        return updated
    if remaining != dependent.blocked_by:
        updated = replace(dependent, blocked_by=remaining, updated_at=utcnow())
        storage.save_task(updated)
        return updated
    return dependent


def _propagation_warning(completed_id: str, dependent_id: str | None, exc: Exception) -> DomainError:
    target = f"dependent task {dependent_id}" if dependent_id else "dependent tasks"
    return create_error(
        ErrorCode.INTERNAL_ERROR,
        f"Could not refresh blocked state of {target} after completing {completed_id}: {exc}",
        details={"completed_task_id": completed_id, "dependent_task_id": dependent_id},
    )
