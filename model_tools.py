#!/usr/bin/env python3
"""
Model Tools Module

Builds tool definitions for model API calls and dispatches the model's tool
calls to the declared tools.

Tools come from the modules in the `tools` package, which declare
themselves in tools.registry at import time. Toolsets:
- shell:   shellStart, shellMessage, listShells
- web:     fetch
- browser: sessionStart, sessionMessage
- agent:   agentStart, agentMessage, agentExecute
- system:  sequenceComplete, respawn, sleep, think, listBackgroundTools

Usage:
    from model_tools import get_tools, get_tool_definitions, execute_tool_call

    # All available tools
    tools = get_tools()

    # Only shell and system tools
    tools = get_tools(enabled_toolsets=["shell", "system"])

    # Definitions for the model API
    definitions = get_tool_definitions(tools)

    # Execute a call from the model (never raises)
    result = await execute_tool_call(tool_call, tools, context)
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

import tools  # noqa: F401  (registers every tool)
from agent.errors import AgentError, ToolExecutionError, ToolValidationError
from agent.messages import ToolCall, ToolResultContent
from agent.provider import parse_arguments
from tools.registry import Tool, registry

logger = logging.getLogger(__name__)

# Largest tool output handed back to the model, in characters.
OUTPUT_LIMIT = 12 * 1024
TRUNCATION_MARKER = "...(truncated)"
LOG_VALUE_LIMIT = 60

RESPAWN_TOOL = "respawn"
COMPLETE_TOOL = "sequenceComplete"


# =============================================================================
# Tool selection
# =============================================================================

def get_tools(
    enabled_tools: List[str] = None,
    disabled_tools: List[str] = None,
    enabled_toolsets: List[str] = None,
    disabled_toolsets: List[str] = None,
    include_respawn: bool = True,
) -> List[Tool]:
    """
    Select the declared tools an agent may use.

    Filter Priority (higher priority overrides lower):
    1. enabled_tools (only these tools, overrides everything)
    2. disabled_tools (applied after toolset filtering)
    3. enabled_toolsets (only tools from these toolsets)
    4. disabled_toolsets (exclude tools from these toolsets)

    sequenceComplete is always kept so the agent can finish. Tools whose
    availability check fails are skipped.

    Args:
        enabled_tools (List[str]): Only include these specific tools
        disabled_tools (List[str]): Exclude these specific tools
        enabled_toolsets (List[str]): Only include tools from these toolsets
        disabled_toolsets (List[str]): Exclude tools from these toolsets
        include_respawn (bool): Offer the respawn tool (sub-agents may not)

    Returns:
        List[Tool]: Selected tools
    """
    available = [tool for tool in registry.all() if tool.is_available()]

    if enabled_tools:
        if enabled_toolsets or disabled_toolsets or disabled_tools:
            logger.warning("enabled_tools overrides all other filters")
        wanted = set(enabled_tools) | {COMPLETE_TOOL}
        selected = [tool for tool in available if tool.name in wanted]
        missing = wanted - {tool.name for tool in selected}
        if missing:
            logger.warning("Requested tools not available: %s", sorted(missing))
    else:
        if enabled_toolsets:
            known = {tool.toolset for tool in registry.all()}
            for name in set(enabled_toolsets) - known:
                logger.warning("Unknown toolset: %s", name)
            selected = [t for t in available if t.toolset in enabled_toolsets or t.name == COMPLETE_TOOL]
        elif disabled_toolsets:
            selected = [t for t in available if t.toolset not in disabled_toolsets or t.name == COMPLETE_TOOL]
        else:
            selected = list(available)

        if disabled_tools:
            excluded = set(disabled_tools) - {COMPLETE_TOOL}
            selected = [tool for tool in selected if tool.name not in excluded]

    if not include_respawn:
        selected = [tool for tool in selected if tool.name != RESPAWN_TOOL]
    return selected


def get_tool_definitions(tool_list: List[Tool]) -> List[Dict[str, Any]]:
    """
    Get tool definitions in OpenAI's expected format.

    Returns:
        List[Dict]: Tool definitions compatible with the Chat Completions API
    """
    return [tool.definition() for tool in tool_list]


def get_available_toolsets() -> Dict[str, Dict[str, Any]]:
    """Toolsets with their tools and whether every tool in them is usable."""
    toolsets: Dict[str, Dict[str, Any]] = {}
    for tool in registry.all():
        entry = toolsets.setdefault(tool.toolset, {"tools": [], "available": True})
        entry["tools"].append(tool.name)
        entry["available"] = entry["available"] and tool.is_available()
    return toolsets


# =============================================================================
# Dispatch
# =============================================================================

def _error_payload(error: AgentError) -> str:
    return json.dumps({"error": True, "message": str(error)}, ensure_ascii=False)


def _render(output: Any) -> str:
    if isinstance(output, str):
        text = output
    else:
        text = json.dumps(output, indent=2, ensure_ascii=False, default=str)
    if len(text) > OUTPUT_LIMIT:
        text = text[:OUTPUT_LIMIT] + TRUNCATION_MARKER
    return text


def _short(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)[:LOG_VALUE_LIMIT]


def _log_parameters(tool: Tool, params, context):
    if tool.log_parameters is not None:
        tool.log_parameters(params, context)
        return
    context.logger.info("Parameters:")
    for key, value in params.model_dump(exclude_none=True).items():
        context.logger.info("- %s: %s", key, _short(value))


def _log_returns(tool: Tool, output, context):
    if tool.log_returns is not None:
        tool.log_returns(output, context)
        return
    context.logger.info("Results: %s", _short(output))


async def _dispatch(tool_call: ToolCall, tool_list: List[Tool], context) -> Tuple[str, bool]:
    """Run one call; returns (content, is_error). Never raises."""
    tool = next((t for t in tool_list if t.name == tool_call.name), None)
    if tool is None:
        return _error_payload(ToolValidationError(f"No tool with the name '{tool_call.name}' exists.")), True

    tool_logger = context.logger.getChild(f"tool.{tool.name}")
    tool_context = context.scoped(logger=tool_logger)

    try:
        params = tool.parameters.model_validate(parse_arguments(tool_call.content))
    except json.JSONDecodeError as e:
        tool_logger.error("Invalid JSON for tool call: %s", e)
        return _error_payload(ToolValidationError(f"Invalid JSON for tool call: {e}")), True
    except ValidationError as e:
        tool_logger.error("Invalid format for tool call: %s", e)
        return _error_payload(ToolValidationError(f"Invalid format for tool call: {e}")), True

    try:
        _log_parameters(tool, params, tool_context)
        output = await tool.handler(params, tool_context)
        _log_returns(tool, output, tool_context)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        error = ToolExecutionError(tool.name, str(e) or type(e).__name__)
        tool_logger.error("Tool call failed: %s", error)
        return _error_payload(error), True

    return _render(output), False


async def execute_tool_call(tool_call: ToolCall, tool_list: List[Tool], context) -> str:
    """
    Execute one tool call from the model.

    Every failure (unknown tool, malformed JSON, schema violation, tool body
    raising) comes back as a JSON error payload instead of an exception.

    Args:
        tool_call (ToolCall): The model's call (arguments are raw JSON)
        tool_list (List[Tool]): Tools the agent may use
        context (ToolContext): The calling agent's context

    Returns:
        str: Tool output, capped at OUTPUT_LIMIT characters
    """
    content, _ = await _dispatch(tool_call, tool_list, context)
    return content


async def execute_tool_calls(tool_calls: List[ToolCall], tool_list: List[Tool], context) -> List[ToolResultContent]:
    """
    Execute several calls concurrently, each under its own token tracker.

    Results come back in call order; execution order is unspecified.
    """
    async def run_one(call: ToolCall) -> ToolResultContent:
        scope = context.scoped(token_tracker=context.token_tracker.child(call.name))
        content, is_error = await _dispatch(call, tool_list, scope)
        return ToolResultContent(tool_use_id=call.id, content=content, is_error=is_error)

    return list(await asyncio.gather(*(run_one(call) for call in tool_calls)))


if __name__ == "__main__":
    print("🛠️  Model Tools Module")
    print("=" * 40)
    for name, info in get_available_toolsets().items():
        status = "✅" if info["available"] else "❌"
        print(f"  {status} {name}: {', '.join(info['tools'])}")
    definitions = get_tool_definitions(get_tools())
    print(f"\n📝 Tool Definitions ({len(definitions)} loaded):")
    for definition in definitions:
        desc = definition["function"]["description"]
        print(f"  🔹 {definition['function']['name']}: {desc[:60]}{'...' if len(desc) > 60 else ''}")
