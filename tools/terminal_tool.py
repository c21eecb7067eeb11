#!/usr/bin/env python3
"""
Terminal Tool Module

Shell tools backed by the agent's ProcessRunner (tools/process_runner.py).

Tools:
- shellStart:   run a command; returns the full result if it finishes within
                `timeout` seconds, otherwise a shellId for a process that
                keeps running in the background
- shellMessage: talk to a background process (stdin, signals) and collect
                the output produced since the last check
- listShells:   list the shells this agent started

Usage:
    {"command": "ls -la"}
    {"command": "npm run dev", "timeout": 0}
    {"shellId": "<id>", "stdin": "y"}
    {"shellId": "<id>", "signal": "SIGTERM"}
"""

import json
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agent.errors import ProcessError
from tools.background import TaskKind, TaskStatus
from tools.process_runner import DEFAULT_TIMEOUT, parse_signal

SHELL_START_DESCRIPTION = """Start a shell command.

Fast commands return their output directly. Commands still running after
`timeout` seconds keep running in the background and return a shellId; use
shellMessage with that id to send input, send signals and read new output.
Set timeout to 0 for servers and other long-running processes.

Do NOT use interactive tools such as vim, nano or a python REPL unless you
drive them through shellMessage."""


class ShellStartParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    command: str = Field(description="The shell command to execute")
    description: str = Field(description="The reason this shell command is being run (max 80 chars)")
    timeout: float = Field(
        DEFAULT_TIMEOUT, ge=0,
        description="Seconds to wait for completion before continuing in the background (default: 10)",
    )
    stdin_content: Optional[str] = Field(
        None, alias="stdinContent",
        description="Content to pipe into the command's stdin",
    )
    show_stdin: bool = Field(False, alias="showStdIn", description="Log stdin sent to the process")
    show_stdout: bool = Field(False, alias="showStdout", description="Log output as it arrives")


class ShellMessageParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shell_id: str = Field(alias="shellId", description="The id returned by shellStart")
    stdin: Optional[str] = Field(None, description="Text to send to the process's stdin (a newline is appended)")
    signal: Optional[str] = Field(None, description="Signal to send, e.g. SIGTERM, SIGINT, SIGKILL")
    description: str = Field(description="The reason for this shell interaction (max 80 chars)")
    show_stdin: Optional[bool] = Field(None, alias="showStdIn", description="Log stdin sent to the process")
    show_stdout: Optional[bool] = Field(None, alias="showStdout", description="Log output as it arrives")

    @field_validator("signal")
    @classmethod
    def _known_signal(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return parse_signal(value).name


class ListShellsParams(BaseModel):
    status: Literal["all", "running", "completed", "error", "terminated"] = Field(
        "all", description="Only list shells with this status"
    )
    verbose: bool = Field(False, description="Include full metadata for each shell")


# =============================================================================
# Handlers
# =============================================================================

async def shell_start_tool(params: ShellStartParams, context) -> str:
    result = await context.process_runner.start(
        params.command,
        timeout=params.timeout,
        stdin_content=params.stdin_content,
        description=params.description,
        show_stdin=params.show_stdin,
        show_stdout=params.show_stdout,
    )
    return json.dumps(result.to_dict(), ensure_ascii=False)


async def shell_message_tool(params: ShellMessageParams, context) -> str:
    runner = context.process_runner
    state = runner.get(params.shell_id)
    if state is None:
        return json.dumps({"error": f"No process found with ID {params.shell_id}"}, ensure_ascii=False)

    if params.show_stdin is not None:
        state.show_stdin = params.show_stdin
    if params.show_stdout is not None:
        state.show_stdout = params.show_stdout

    signal_error = None
    if params.signal:
        outcome = runner.send_signal(params.shell_id, params.signal)
        signal_error = outcome.get("error")

    try:
        if params.stdin:
            await runner.send_stdin(params.shell_id, params.stdin)
        output = await runner.read_output(params.shell_id)
    except ProcessError as e:
        return json.dumps({"error": str(e)}, ensure_ascii=False)

    if signal_error:
        output["error"] = f"Failed to send signal {params.signal}: {signal_error}"
    return json.dumps(output, ensure_ascii=False)


async def list_shells_tool(params: ListShellsParams, context) -> str:
    status = None if params.status == "all" else TaskStatus(params.status)
    shells = []
    for task in context.background_tasks.get_tasks(status=status, kind=TaskKind.SHELL):
        entry = task.to_dict(verbose=params.verbose)
        entry["command"] = task.metadata.get("command")
        entry["description"] = task.metadata.get("description")
        shells.append(entry)
    return json.dumps({"shells": shells, "count": len(shells)}, ensure_ascii=False)


# =============================================================================
# Logging hooks
# =============================================================================

def _log_shell_start(params: ShellStartParams, context):
    context.logger.info("Running '%s', %s", params.command, params.description)


def _log_shell_start_returns(output: str, context):
    result = json.loads(output)
    if result.get("mode") == "async":
        context.logger.info("Process started in background with ID: %s", result["shellId"])
    elif result.get("exitCode") == 0:
        context.logger.info("Process completed successfully")
    else:
        context.logger.info("Process failed: %s", result.get("error"))


def _log_shell_message(params: ShellMessageParams, context):
    action = f"signal {params.signal}" if params.signal else "stdin" if params.stdin else "read"
    context.logger.info("Interacting with shell %s (%s), %s", params.shell_id[:8], action, params.description)


# --- Registry ---
from tools.registry import registry

registry.register(
    name="shellStart",
    toolset="shell",
    description=SHELL_START_DESCRIPTION,
    parameters=ShellStartParams,
    handler=shell_start_tool,
    log_parameters=_log_shell_start,
    log_returns=_log_shell_start_returns,
)

registry.register(
    name="shellMessage",
    toolset="shell",
    description=(
        "Interact with a running shell process: send stdin, send a signal, or just "
        "collect new output. Output is returned once; each call only shows what "
        "was produced since the previous check."
    ),
    parameters=ShellMessageParams,
    handler=shell_message_tool,
    log_parameters=_log_shell_message,
)

registry.register(
    name="listShells",
    toolset="shell",
    description="List all shell processes started by this agent with their status and runtime.",
    parameters=ListShellsParams,
    handler=list_shells_tool,
)
