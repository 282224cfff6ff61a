"""MCP prompt templates for common workflows."""

from work_tracker.mcp.server import mcp


@mcp.prompt()
def plan_work(goal: str, project_id: str) -> str:
    """Generate a prompt to break down a goal into dependent tasks."""
    return (
        f"I need to accomplish the following goal in project '{project_id}':\n\n"
        f"{goal}\n\n"
        f"Please break this down into concrete, actionable tasks. For each task:\n"
        f"1. Give it a clear, concise title and a goal describing what done looks like\n"
        f"2. Pick an owner from the project's members (use get_project)\n"
        f"3. Set a priority from 1 (most urgent) to 4\n"
        f"4. Identify which tasks must be finished first\n\n"
        f"Then create the tasks with create_task, earliest first, passing the IDs of "
        f"already created tasks as dependencies. Tasks with unfinished dependencies "
        f"start out blocked and unblock on their own."
    )


@mcp.prompt()
def status_report(project_id: str) -> str:
    """Generate a prompt for a project status report."""
    return (
        f"Please generate a status report for the '{project_id}' project.\n\n"
        f"Use get_project_stats for the numbers, get_blocked_tasks for what is stuck "
        f"and get_ready_tasks for what can start now. Then provide:\n"
        f"1. Overall progress summary\n"
        f"2. Tasks currently active or waiting for review\n"
        f"3. Tasks that are blocked and what they are waiting on\n"
        f"4. Recommended next tasks to work on\n"
        f"5. Whether the project is ready to be archived"
    )


@mcp.prompt()
def review_queue(project_id: str | None = None) -> str:
    """Generate a prompt to work through tasks waiting for review."""
    scope = f" in project '{project_id}'" if project_id else ""
    return (
        f"Please go through the tasks waiting for review{scope}.\n\n"
        f"Use list_tasks with status='review'. For each task, read its goal and "
        f"deliverable with get_task, then summarize whether the deliverable appears "
        f"to meet the goal. Ask me before calling approve_task or reject_task."
    )
