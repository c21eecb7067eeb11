"""Control tools: finishing, restarting, waiting, thinking, and inspecting
the agent's background tasks.

sequenceComplete and respawn are interpreted by the agent loop itself
(run_agent.py); their handlers only produce the tool_result text.
"""

import asyncio
import json
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from tools.background import TaskKind, TaskStatus

MAX_SLEEP_SECONDS = 3600


class SequenceCompleteParams(BaseModel):
    result: Optional[str] = Field(None, description="The final result to return from the tool agent")


class RespawnParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    respawn_context: str = Field(
        alias="respawnContext",
        description="Everything you need to continue: goal, progress so far, next steps",
    )


class SleepParams(BaseModel):
    seconds: float = Field(ge=0, le=MAX_SLEEP_SECONDS, description="Number of seconds to sleep (0-3600)")


class ThinkParams(BaseModel):
    thought: str = Field(description="A thought to think about")


class ListBackgroundToolsParams(BaseModel):
    status: Literal["all", "running", "completed", "error", "terminated"] = Field(
        "all", description="Filter tools by status"
    )
    type: Literal["all", "shell", "browser", "agent"] = Field("all", description="Filter tools by type")
    verbose: bool = Field(False, description="Include detailed metadata about each tool")


async def sequence_complete_tool(params: SequenceCompleteParams, context) -> str:
    return params.result if params.result is not None else "Sequence explicitly completed"


async def respawn_tool(params: RespawnParams, context) -> str:
    return "Respawn initiated"


async def sleep_tool(params: SleepParams, context) -> str:
    await asyncio.sleep(params.seconds)
    return json.dumps({"sleptFor": params.seconds})


async def think_tool(params: ThinkParams, context) -> str:
    return json.dumps({"thought": params.thought}, ensure_ascii=False)


async def list_background_tools_tool(params: ListBackgroundToolsParams, context) -> str:
    status = None if params.status == "all" else TaskStatus(params.status)
    kind = None if params.type == "all" else TaskKind(params.type)
    tasks = context.background_tasks.get_tasks(status=status, kind=kind)
    return json.dumps({
        "count": len(tasks),
        "tools": [task.to_dict(verbose=params.verbose) for task in tasks],
    }, ensure_ascii=False, default=str)


def _log_complete(params: SequenceCompleteParams, context):
    context.logger.info("Completing task with result: %s", (params.result or "")[:200])


def _log_sleep(params: SleepParams, context):
    context.logger.info("Sleeping for %s seconds", params.seconds)


def _log_think(params: ThinkParams, context):
    context.logger.info("Thinking: %s", params.thought)


# --- Registry ---
from tools.registry import registry

registry.register(
    name="sequenceComplete",
    toolset="system",
    description="Completes the tool use sequence and returns the final result",
    parameters=SequenceCompleteParams,
    handler=sequence_complete_tool,
    log_parameters=_log_complete,
    log_returns=lambda output, context: None,
)

registry.register(
    name="respawn",
    toolset="system",
    description=(
        "Resets the agent context to just the system prompt and the provided context. "
        "Use it when the conversation has grown too large to continue efficiently."
    ),
    parameters=RespawnParams,
    handler=respawn_tool,
)

registry.register(
    name="sleep",
    toolset="system",
    description=(
        "Wait for a specified number of seconds, e.g. while background shells or "
        "sub-agents make progress"
    ),
    parameters=SleepParams,
    handler=sleep_tool,
    log_parameters=_log_sleep,
)

registry.register(
    name="think",
    toolset="system",
    description=(
        "Use the tool to think about something. It will not obtain new information "
        "or change anything, it just records the thought."
    ),
    parameters=ThinkParams,
    handler=think_tool,
    log_parameters=_log_think,
)

registry.register(
    name="listBackgroundTools",
    toolset="system",
    description="List all background tools (shells, browsers, agents) and their status",
    parameters=ListBackgroundToolsParams,
    handler=list_background_tools_tool,
)
