#!/usr/bin/env python3
"""
Agent Loop

Drives one agent: a bounded conversation with the model in which each turn
may request tools. Tool calls from one turn run concurrently and all of
their results go back to the model as a single user message.

Turn outcomes:
- empty response       -> a reminder is appended and the loop continues
- respawn(...)         -> history is replaced by the respawn context; no
                          other call from that turn runs
- sequenceComplete(...) -> the loop ends with its result
- max_iterations       -> the loop ends with a sentinel result

Provider errors are fatal and propagate. Tool failures never are; they come
back to the model as error text.

Usage:
    from run_agent import run_agent
    from agent.context import create_context
    from agent.provider import create_provider
    from model_tools import get_tools

    context = create_context(provider=create_provider("openai/gpt-4o"))
    result = await run_agent("List the files here", get_tools(), context.config, context)
    print(result.result, result.interactions)

    # Or from the command line
    python run_agent.py --query="List the files here" --model=openai/gpt-4o
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import List, Optional

import fire
from pydantic import ValidationError

from agent.config import AgentConfig
from agent.errors import ProviderError
from agent.messages import (
    Message,
    TextContent,
    ToolCall,
    ToolUseContent,
    assistant_message,
    user_message,
)
from agent.provider import parse_arguments
from agent.status_updates import generate_status_update
from model_tools import COMPLETE_TOOL, RESPAWN_TOOL, execute_tool_calls, get_tool_definitions
from tools.registry import Tool
from tools.system_tools import RespawnParams

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_REMINDER = (
    "I notice you sent an empty response. If you are done with your tasks, please call "
    "the sequenceComplete tool with your results. If you are waiting for other tools to "
    "complete, you can use the sleep tool to wait before checking again."
)
MAX_ITERATIONS_RESULT = "Maximum sub-agent iterations reached without successful completion"
ABORTED_RESULT = "Agent was terminated before completion"


@dataclass
class AgentResult:
    result: str
    interactions: int


def _tool_input(call: ToolCall):
    try:
        return parse_arguments(call.content)
    except json.JSONDecodeError:
        return call.content


def _respawn_context(call: ToolCall) -> Optional[str]:
    """The respawn context if the call is well formed, else None."""
    try:
        return RespawnParams.model_validate(parse_arguments(call.content)).respawn_context
    except (json.JSONDecodeError, ValidationError):
        return None


def log_token_usage(context):
    context.logger.info("Token usage: %s", context.token_tracker.total_usage())


async def _finish(context, config: AgentConfig):
    if config.cleanup_on_complete:
        await context.background_tasks.cleanup()
    log_token_usage(context)


async def run_agent(prompt: str, tools: List[Tool], config: Optional[AgentConfig] = None,
                    context=None) -> AgentResult:
    """
    Run the agent loop until sequenceComplete, abort, or max_iterations.

    Args:
        prompt: The initial user message
        tools: Tools the model may call
        config: Loop configuration (defaults to the context's)
        context: ToolContext carrying the provider and the agent's resources

    Returns:
        AgentResult with the final result text and the number of provider
        requests made

    Raises:
        ProviderError: the provider failed
    """
    config = config or context.config
    log = context.logger
    provider = context.provider
    if provider is None:
        raise ProviderError("No LLM provider configured")

    log.info("Starting agent (max %d iterations)", config.max_iterations)
    # Runs `ls` and reads context files.
    system_prompt = await asyncio.to_thread(config.get_system_prompt, context)
    definitions = get_tool_definitions(tools)
    tool_names = {tool.name for tool in tools}
    messages: List[Message] = [user_message(prompt)]
    interactions = 0

    for iteration in range(config.max_iterations):
        if context.abort_event.is_set():
            log.info("Agent aborted after %d interactions", interactions)
            return AgentResult(ABORTED_RESULT, interactions)

        while context.parent_messages:
            guidance = context.parent_messages.pop(0)
            messages.append(user_message(f"Guidance from parent agent: {guidance}"))

        interval = config.status_update_interval
        if interval and iteration > 0 and iteration % interval == 0:
            # Context length lookup may hit the network.
            messages.append(await asyncio.to_thread(generate_status_update, context))

        interactions += 1
        log.debug("Requesting completion (interaction %d)", interactions)
        response = await provider.send_request(
            system_prompt, messages, definitions,
            max_tokens=config.max_tokens, temperature=config.temperature,
        )
        if response.token_usage is not None:
            context.token_tracker.add(response.token_usage)

        if not response.text and not response.tool_calls:
            log.debug("Received empty response, sending reminder")
            messages.append(user_message(EMPTY_RESPONSE_REMINDER))
            continue

        blocks = []
        if response.text:
            log.info(response.text)
            blocks.append(TextContent(response.text))
        for call in response.tool_calls:
            blocks.append(ToolUseContent(id=call.id, name=call.name, input=_tool_input(call)))
        messages.append(assistant_message(blocks))

        if not response.tool_calls:
            continue

        respawn = next((c for c in response.tool_calls if c.name == RESPAWN_TOOL), None)
        if respawn is not None and RESPAWN_TOOL in tool_names:
            respawn_context = _respawn_context(respawn)
            if respawn_context is not None:
                log.info("Respawning with new context")
                messages = [user_message(respawn_context)]
                continue

        results = await execute_tool_calls(response.tool_calls, tools, context)
        messages.append(user_message(list(results)))

        for call, result in zip(response.tool_calls, results):
            if call.name == COMPLETE_TOOL and not result.is_error:
                log.info("Sequence completed after %d interactions", interactions)
                await _finish(context, config)
                return AgentResult(result.content, interactions)

    log.warning("Reached max iterations (%d) without completion", config.max_iterations)
    await _finish(context, config)
    return AgentResult(MAX_ITERATIONS_RESULT, interactions)


def main(
    query: str,
    model: str = None,
    toolsets: str = None,
    max_iterations: int = None,
    base_url: str = None,
    verbose: bool = False,
):
    """
    Run a single query from the command line.

    Args:
        query: The task for the agent
        model: Model name (default: from ~/.pilot/config.yaml)
        toolsets: Comma-separated toolsets to enable (default: all)
        max_iterations: Iteration budget (default: from config)
        base_url: OpenAI-compatible endpoint
        verbose: Debug logging
    """
    from pilot_cli.main import run_query

    run_query(
        query,
        model=model,
        toolsets=toolsets.split(",") if isinstance(toolsets, str) else toolsets,
        max_iterations=max_iterations,
        base_url=base_url,
        verbose=verbose,
    )


if __name__ == "__main__":
    fire.Fire(main)
