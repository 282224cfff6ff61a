"""Execution context builders for the CLI, MCP server and web API."""

import uuid
from collections.abc import Mapping

from work_tracker.config import Config, parse_permissions
from work_tracker.db.models import ENVIRONMENTS, ExecutionContext

ACTOR_HEADER = "x-actor-id"
WORKSPACE_HEADER = "x-workspace-id"
PERMISSIONS_HEADER = "x-permissions"
TRACE_HEADER = "x-trace-id"


def context_from_config(config: Config, actor_id: str | None = None) -> ExecutionContext:
    """Context for a local caller; ``actor_id`` overrides the configured actor."""
    environment = config.environment if config.environment in ENVIRONMENTS else "local"
    return ExecutionContext(
        actor_id=actor_id or config.actor_id,
        workspace_id=config.workspace_id,
        permissions=frozenset(config.permissions),
        environment=environment,
        trace_id=uuid.uuid4().hex,
    )


def context_from_headers(headers: Mapping[str, str]) -> ExecutionContext:
    """Context for an HTTP request.

    The caller is trusted to have been authenticated upstream; a request
    without an actor header is treated as unauthenticated.
    """
    actor_id = (headers.get(ACTOR_HEADER) or "").strip() or None
    return ExecutionContext(
        actor_id=actor_id,
        workspace_id=headers.get(WORKSPACE_HEADER) or "default",
        permissions=parse_permissions(headers.get(PERMISSIONS_HEADER) or ""),
        environment="server",
        trace_id=headers.get(TRACE_HEADER) or uuid.uuid4().hex,
    )
