#!/usr/bin/env python3
"""
Sub-Agent Tools Module

Lets an agent delegate work to sub-agents that run the same loop with their
own resources.

Tools:
- agentStart:   start a sub-agent in the background; returns an instanceId
- agentMessage: check on a sub-agent, send it guidance, or terminate it
- agentExecute: run a sub-agent to completion and return its result

Each sub-agent gets a child ToolContext (its own background registry,
process runner and browser sessions) and is itself an AGENT task in the
parent's registry. Reclaiming it aborts the sub-agent and cascades cleanup
into everything the sub-agent started.

Log lines a sub-agent emits at INFO and above are captured and handed to
the parent through agentMessage, then cleared.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from tools.background import TaskKind, TaskStatus

logger = logging.getLogger(__name__)

LOG_SECTION_HEADER = "--- Agent Log Messages ---"


class LogCaptureHandler(logging.Handler):
    """Buffers formatted records until the parent reads them."""

    def __init__(self, level: int = logging.INFO):
        super().__init__(level)
        self.lines: List[str] = []

    def emit(self, record: logging.LogRecord):
        try:
            self.lines.append(f"[{record.levelname}] {record.getMessage()}")
        except Exception:
            self.handleError(record)

    def drain(self) -> List[str]:
        lines, self.lines = self.lines, []
        return lines


@dataclass
class SubAgent:
    id: str
    goal: str
    context: object
    log_handler: LogCaptureHandler
    task: Optional[asyncio.Task] = None
    output: str = ""
    error: Optional[str] = None
    completed: bool = False
    aborted: bool = False
    interactions: int = 0

    def detach_logs(self):
        self.context.logger.removeHandler(self.log_handler)


class SubAgentReclaimer:
    """Abort the sub-agent, then reclaim everything it started."""

    def __init__(self, sub_agent: SubAgent):
        self.sub_agent = sub_agent

    async def reclaim(self):
        sub = self.sub_agent
        sub.aborted = True
        sub.context.abort_event.set()
        if sub.task is not None and not sub.task.done():
            sub.task.cancel()
            await asyncio.gather(sub.task, return_exceptions=True)
        await sub.context.background_tasks.cleanup()
        sub.detach_logs()

    def kill_now(self):
        self.sub_agent.aborted = True
        self.sub_agent.context.abort_event.set()
        self.sub_agent.context.background_tasks.cleanup_sync()


def _build_prompt(description: str, goal: str, project_context: Optional[str],
                  relevant_files: Optional[str]) -> str:
    parts = [f"Description: {description}", f"Goal: {goal}"]
    if project_context:
        parts.append(f"Project Context: {project_context}")
    if relevant_files:
        parts.append(f"Relevant Files: {relevant_files}")
    return "\n".join(parts)


def _spawn(context, goal: str, description: str) -> SubAgent:
    agent_id = context.background_tasks.register(
        TaskKind.AGENT, {"goal": goal, "description": description}
    )
    child = context.spawn_child(agent_id)
    handler = LogCaptureHandler()
    child.logger.addHandler(handler)
    if not child.logger.isEnabledFor(logging.INFO):
        child.logger.setLevel(logging.INFO)
    sub = SubAgent(id=agent_id, goal=goal, context=child, log_handler=handler)
    context.sub_agents[agent_id] = sub
    context.background_tasks.attach(agent_id, SubAgentReclaimer(sub))
    return sub


async def _run(sub: SubAgent, prompt: str, parent_registry):
    from model_tools import get_tools
    from run_agent import run_agent

    try:
        result = await run_agent(prompt, get_tools(), sub.context.config, sub.context)
    except asyncio.CancelledError:
        sub.aborted = True
        raise
    except Exception as e:
        sub.error = str(e)
        sub.completed = True
        parent_registry.update_status(sub.id, TaskStatus.ERROR, {"error": str(e)})
        sub.context.logger.error("Sub-agent failed: %s", e)
        sub.detach_logs()
        return

    sub.output = result.result
    sub.interactions = result.interactions
    sub.completed = True
    status = TaskStatus.TERMINATED if sub.aborted else TaskStatus.COMPLETED
    parent_registry.update_status(sub.id, status, {"interactions": result.interactions})
    sub.detach_logs()


# =============================================================================
# Parameters
# =============================================================================

class AgentStartParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str = Field(description="A brief description of the sub-agent's purpose (max 80 chars)")
    goal: str = Field(description="The main objective that the sub-agent needs to achieve")
    project_context: Optional[str] = Field(None, alias="projectContext", description="Context about the problem or environment")
    relevant_files: Optional[str] = Field(
        None, alias="relevantFilesDirectories",
        description="A list of files, which may include ** or * wildcard characters",
    )


class AgentMessageParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    instance_id: str = Field(alias="instanceId", description="The ID returned by agentStart")
    guidance: Optional[str] = Field(None, description="Optional guidance or instructions to send to the sub-agent")
    terminate: bool = Field(False, description="Whether to terminate the sub-agent")
    description: str = Field(description="The reason for this agent interaction (max 80 chars)")


# =============================================================================
# Handlers
# =============================================================================

async def agent_start_tool(params: AgentStartParams, context) -> str:
    sub = _spawn(context, params.goal, params.description)
    prompt = _build_prompt(params.description, params.goal, params.project_context, params.relevant_files)
    sub.task = asyncio.ensure_future(_run(sub, prompt, context.background_tasks))
    return json.dumps({"instanceId": sub.id, "status": "Agent started successfully"})


async def agent_message_tool(params: AgentMessageParams, context) -> str:
    sub = context.sub_agents.get(params.instance_id)
    if sub is None:
        return json.dumps({"error": f"No sub-agent found with ID {params.instance_id}"}, ensure_ascii=False)

    if params.terminate:
        await SubAgentReclaimer(sub).reclaim()
        context.background_tasks.update_status(
            sub.id, TaskStatus.TERMINATED, {"terminatedByUser": True}
        )
        return json.dumps({
            "output": sub.output or "Sub-agent terminated before completion",
            "completed": True,
            "terminated": True,
        }, ensure_ascii=False)

    if params.guidance:
        sub.context.parent_messages.append(params.guidance)
        context.logger.info("Guidance provided to sub-agent %s", sub.id[:8])

    output = sub.output or ("" if sub.completed else "No output yet")
    logs = sub.log_handler.drain()
    if logs:
        output += f"\n\n{LOG_SECTION_HEADER}\n" + "\n".join(logs)

    result = {"output": output, "completed": sub.completed}
    if sub.error:
        result["error"] = sub.error
    return json.dumps(result, ensure_ascii=False)


async def agent_execute_tool(params: AgentStartParams, context) -> str:
    sub = _spawn(context, params.goal, params.description)
    prompt = _build_prompt(params.description, params.goal, params.project_context, params.relevant_files)
    sub.task = asyncio.ensure_future(_run(sub, prompt, context.background_tasks))
    await asyncio.gather(sub.task, return_exceptions=True)
    if sub.error:
        raise RuntimeError(f"Sub-agent failed: {sub.error}")
    return json.dumps({"response": sub.output, "interactions": sub.interactions}, ensure_ascii=False)


def _log_agent_start(params: AgentStartParams, context):
    context.logger.info("Starting sub-agent for task: %s", params.description)


def _log_agent_message(params: AgentMessageParams, context):
    action = "terminate" if params.terminate else "guidance" if params.guidance else "check"
    context.logger.info("Sub-agent %s (%s), %s", params.instance_id[:8], action, params.description)


# --- Registry ---
from tools.registry import registry

registry.register(
    name="agentStart",
    toolset="agent",
    description=(
        "Starts a sub-agent in the background and returns an instanceId immediately. "
        "Use agentMessage to check on progress, give guidance or terminate it."
    ),
    parameters=AgentStartParams,
    handler=agent_start_tool,
    log_parameters=_log_agent_start,
)

registry.register(
    name="agentMessage",
    toolset="agent",
    description=(
        "Interacts with a running sub-agent: returns its output and recent log "
        "messages, optionally sends guidance or terminates it."
    ),
    parameters=AgentMessageParams,
    handler=agent_message_tool,
    log_parameters=_log_agent_message,
)

registry.register(
    name="agentExecute",
    toolset="agent",
    description=(
        "Runs a sub-agent to completion and returns its result. Use for focused "
        "tasks whose result you need before continuing."
    ),
    parameters=AgentStartParams,
    handler=agent_execute_tool,
    log_parameters=_log_agent_start,
)
