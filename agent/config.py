"""Agent loop configuration and the default system prompt."""

import os
import platform
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from agent.prompt_builder import build_context_files_prompt

if TYPE_CHECKING:
    from agent.context import ToolContext

DEFAULT_MODEL = "anthropic/claude-sonnet-4"
DEFAULT_MAX_ITERATIONS = 200
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7
DEFAULT_STATUS_UPDATE_INTERVAL = 5


def _command_output(args, label: str, cwd: str) -> str:
    try:
        return subprocess.run(
            args, cwd=cwd, capture_output=True, text=True, timeout=5, check=True
        ).stdout.strip()
    except (OSError, subprocess.SubprocessError) as e:
        return f"[Error getting {label}: {e}]"


def get_default_system_prompt(context: "ToolContext") -> str:
    """Describe the environment and the completion protocol to the model."""
    cwd = context.working_directory or os.getcwd()
    uname = platform.uname()
    lines = [
        "You are an AI agent that can use tools to accomplish tasks.",
        "",
        "Current Context:",
        f"Directory: {cwd}",
        "Files:",
        _command_output(["ls", "-la"], "file listing", cwd),
        f"System: {uname.system} {uname.node} {uname.release} {uname.machine}",
        f"DateTime: {datetime.now().strftime('%a %b %d %Y %H:%M:%S')}",
        "",
        "You prefer to call tools in parallel when possible because it leads to "
        "faster execution and less resource usage.",
        "When done, call the sequenceComplete tool with your results to indicate "
        "that the sequence has completed.",
        "",
        "For coding tasks:",
        "0. Try to break large tasks into smaller sub-tasks that can be completed "
        "and verified sequentially.",
        "   - use sub-agents for each sub-task, leaving the main agent in a supervisory role",
        "   - when possible ensure the project builds and the tests pass after each sub-task",
        "   - give the sub-agents the guidance and context necessary to be successful",
        "1. First understand the context by reading README.md, CONTRIBUTING.md and "
        "the project configuration files.",
        "2. Ensure changes follow project conventions, build successfully and pass all tests.",
        "3. Update documentation as needed.",
        "",
        "Long-running commands return a shellId; use shellMessage to check on them "
        "and listBackgroundTools to see everything still running.",
        "If your context grows too large, call respawn with a summary of what you "
        "need to continue.",
    ]
    if context.depth > 0:
        lines += [
            "",
            "You are a focused sub-agent. Work only on the goal you were given and "
            "call sequenceComplete with your result when done.",
        ]

    context_files = build_context_files_prompt(cwd)
    if context_files:
        lines += ["", context_files]
    return "\n".join(lines)


@dataclass
class AgentConfig:
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    get_system_prompt: Callable[["ToolContext"], str] = field(default=get_default_system_prompt)
    # Iterations between status update messages; 0 disables them.
    status_update_interval: int = DEFAULT_STATUS_UPDATE_INTERVAL
    cleanup_on_complete: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "AgentConfig":
        """Build from the `agent` section of config.yaml, ignoring unknown keys."""
        return cls(
            max_iterations=int(data.get("max_iterations", DEFAULT_MAX_ITERATIONS)),
            model=data.get("model", DEFAULT_MODEL),
            max_tokens=int(data.get("max_tokens", DEFAULT_MAX_TOKENS)),
            temperature=float(data.get("temperature", DEFAULT_TEMPERATURE)),
            status_update_interval=int(data.get("status_update_interval", DEFAULT_STATUS_UPDATE_INTERVAL)),
            cleanup_on_complete=bool(data.get("cleanup_on_complete", True)),
        )
