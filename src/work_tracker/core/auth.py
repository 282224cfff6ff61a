"""Authorization gate and the operation boundary shared by every engine call."""

import functools
import logging
from enum import Enum

from pydantic import BaseModel, ValidationError

from work_tracker.core.errors import (
    EntityNotFoundError,
    ErrorCode,
    OperationError,
    Result,
    StorageError,
    create_error,
)
from work_tracker.db.models import ExecutionContext

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    WORKER_CREATE = "worker:create"
    WORKER_READ = "worker:read"
    WORKER_UPDATE = "worker:update"
    WORKER_DELETE = "worker:delete"

    PROJECT_CREATE = "project:create"
    PROJECT_READ = "project:read"
    PROJECT_UPDATE = "project:update"
    PROJECT_DELETE = "project:delete"
    PROJECT_MANAGE_MEMBERS = "project:manage-members"

    TASK_CREATE = "task:create"
    TASK_READ = "task:read"
    TASK_UPDATE = "task:update"
    TASK_DELETE = "task:delete"
    TASK_START = "task:start"
    TASK_COMPLETE = "task:complete"
    TASK_REOPEN = "task:reopen"
    TASK_ASSIGN = "task:assign"
    TASK_APPROVE = "task:approve"

    # Overrides the owner-only guard on start/complete.
    TASK_MANAGE = "task:manage"
    # Held by a worker: its own completions skip review.
    TASK_AUTO_APPROVE = "task:auto-approve"


ALL_PERMISSIONS = frozenset(p.value for p in Permission)


def has_permission(ctx: ExecutionContext, permission: Permission) -> bool:
    # Enum members hash by name, so compare on the raw string.
    return permission.value in ctx.permissions


def authorize(ctx: ExecutionContext, permission: Permission) -> Result:
    """Check that the caller is authenticated and holds ``permission``."""
    if not ctx.actor_id:
        return Result.failure(create_error(ErrorCode.UNAUTHORIZED, "Authentication required"))
    if not has_permission(ctx, permission):
        return Result.failure(
            create_error(ErrorCode.FORBIDDEN, f"Missing permission: {permission.value}")
        )
    return Result.success()


def operation(permission: Permission, input_model: type[BaseModel] | None = None):
    """Wrap an engine operation ``fn(ctx, params, storage)``.

    Runs the authorization gate, validates ``params`` into ``input_model``
    (plain dicts are accepted) and turns every failure into a failed Result,
    so callers never see an exception. A plain return value becomes a
    successful Result; a Result is passed through as is.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(ctx: ExecutionContext, params=None, storage=None) -> Result:
            gate = authorize(ctx, permission)
            if not gate.ok:
                logger.debug("%s denied for %s: %s", fn.__name__, ctx.actor_id, gate.error.message)
                return gate

            try:
                if input_model is not None and not isinstance(params, input_model):
                    params = input_model.model_validate(params or {})
                outcome = fn(ctx, params, storage)
            except ValidationError as e:
                return Result.failure(create_error(ErrorCode.INVALID_INPUT, _validation_message(e)))
            except OperationError as e:
                logger.debug("%s failed: %s %s", fn.__name__, e.code.value, e.error.message)
                return Result.failure(e.error)
            except EntityNotFoundError as e:
                return Result.failure(create_error(ErrorCode.NOT_FOUND, str(e)))
            except StorageError as e:
                logger.error("%s storage failure: %s", fn.__name__, e)
                return Result.failure(create_error(ErrorCode.INTERNAL_ERROR, f"Storage failure: {e}"))

            if isinstance(outcome, Result):
                return outcome
            return Result.success(outcome)

        wrapper.permission = permission
        wrapper.input_model = input_model
        return wrapper

    return decorator


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    msg = first.get("msg", "Invalid input")
    return f"{loc}: {msg}" if loc else msg
