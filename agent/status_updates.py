"""Periodic status message injected into the conversation.

Reminds the model how much context it has used and what it still has
running in the background, so it can clean up or respawn before it runs
out of room.
"""

from agent.messages import Message, system_message
from agent.model_metadata import get_model_context_length
from tools.background import TaskKind, TaskStatus


def _running(context, kind: TaskKind, label_key: str):
    return [
        f"- {task.id}: {task.metadata.get(label_key) or 'No description'}"
        for task in context.background_tasks.get_tasks(status=TaskStatus.RUNNING, kind=kind)
    ]


def generate_status_update(context, offline: bool = False) -> Message:
    usage = context.token_tracker.total_usage()
    total_tokens = usage.input + usage.cache_reads + usage.cache_writes + usage.output
    max_tokens = get_model_context_length(context.config.model, offline=offline)
    percentage = round(total_tokens / max_tokens * 100) if max_tokens else 0

    agents = _running(context, TaskKind.AGENT, "goal")
    shells = _running(context, TaskKind.SHELL, "command")
    sessions = _running(context, TaskKind.BROWSER, "url")

    lines = [
        "--- STATUS UPDATE ---",
        f"Token Usage: {total_tokens:,}/{max_tokens:,} ({percentage}%)",
        f"Cost So Far: ${usage.cost():.2f}",
        "",
        f"Active Sub-Agents: {len(agents)}",
        *agents,
        "",
        f"Active Shell Processes: {len(shells)}",
        *shells,
        "",
        f"Active Browser Sessions: {len(sessions)}",
        *sessions,
        "",
        "If token usage is high (>70%), consider calling 'respawn' with a summary "
        "of your progress to reduce context size.",
        "--- END STATUS ---",
    ]
    return system_message("\n".join(lines))
