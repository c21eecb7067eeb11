"""Tests for tool selection and dispatch in model_tools."""

import asyncio
import json

import pytest
from pydantic import BaseModel, Field

from conftest import tool_call
from model_tools import (
    COMPLETE_TOOL,
    OUTPUT_LIMIT,
    RESPAWN_TOOL,
    TRUNCATION_MARKER,
    execute_tool_call,
    execute_tool_calls,
    get_tool_definitions,
    get_tools,
)
from tools.registry import Tool


class EchoParams(BaseModel):
    text: str = Field(description="Text to echo")
    delay: float = Field(0.0, description="Seconds to wait first")


async def echo_handler(params: EchoParams, context):
    if params.delay:
        await asyncio.sleep(params.delay)
    return params.text


async def boom_handler(params: EchoParams, context):
    raise RuntimeError("kaboom")


async def dict_handler(params: EchoParams, context):
    return {"echo": params.text, "tracker": context.token_tracker.name}


ECHO = Tool(name="echo", description="Echo text", parameters=EchoParams, handler=echo_handler)
BOOM = Tool(name="boom", description="Always fails", parameters=EchoParams, handler=boom_handler)
DICT = Tool(name="dict", description="Returns a dict", parameters=EchoParams, handler=dict_handler)
TOOLS = [ECHO, BOOM, DICT]


def _error(content: str) -> str:
    payload = json.loads(content)
    assert payload["error"] is True
    return payload["message"]


# ── Selection ─────────────────────────────────────────────────────────────

class TestGetTools:
    """Filtering declared tools into an agent's tool list."""

    def test_all_tools_by_default(self):
        """Core toolsets are always declared."""
        names = {tool.name for tool in get_tools()}
        assert {"shellStart", "shellMessage", "fetch", "sequenceComplete", "respawn"} <= names

    def test_enabled_toolsets_keep_sequence_complete(self):
        """Restricting toolsets never drops sequenceComplete."""
        names = {tool.name for tool in get_tools(enabled_toolsets=["shell"])}
        assert names == {"shellStart", "shellMessage", "listShells", COMPLETE_TOOL}

    def test_disabled_tools_cannot_remove_sequence_complete(self):
        """sequenceComplete survives disabled_tools."""
        names = {tool.name for tool in get_tools(disabled_tools=[COMPLETE_TOOL, "think"])}
        assert COMPLETE_TOOL in names
        assert "think" not in names

    def test_enabled_tools_override(self):
        """enabled_tools selects exactly those tools plus sequenceComplete."""
        names = {tool.name for tool in get_tools(enabled_tools=["fetch"])}
        assert names == {"fetch", COMPLETE_TOOL}

    def test_without_respawn(self):
        """include_respawn=False drops the respawn tool."""
        names = {tool.name for tool in get_tools(include_respawn=False)}
        assert RESPAWN_TOOL not in names

    def test_definitions_use_wire_names(self):
        """Definitions are OpenAI function specs with camelCase argument names."""
        definitions = get_tool_definitions(get_tools(enabled_tools=["shellStart"]))
        shell = next(d for d in definitions if d["function"]["name"] == "shellStart")
        assert shell["type"] == "function"
        props = shell["function"]["parameters"]["properties"]
        assert "stdinContent" in props
        assert "title" not in props["command"]
        assert "command" in shell["function"]["parameters"]["required"]


# ── Dispatch ──────────────────────────────────────────────────────────────

class TestExecuteToolCall:
    """execute_tool_call() never raises."""

    @pytest.mark.asyncio
    async def test_success(self, make_context):
        """A valid call returns the handler's output."""
        result = await execute_tool_call(tool_call("echo", {"text": "hi"}), TOOLS, make_context())
        assert result == "hi"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, make_context):
        """Calling an undeclared tool is an error payload."""
        result = await execute_tool_call(tool_call("nope"), TOOLS, make_context())
        assert _error(result) == "No tool with the name 'nope' exists."

    @pytest.mark.asyncio
    async def test_invalid_json(self, make_context):
        """Malformed JSON arguments are reported, not raised."""
        result = await execute_tool_call(tool_call("echo", '{"text": '), TOOLS, make_context())
        assert _error(result).startswith("Invalid JSON for tool call:")

    @pytest.mark.asyncio
    async def test_schema_violation(self, make_context):
        """Arguments failing validation are reported, and the handler never runs."""
        result = await execute_tool_call(tool_call("boom", {"delay": 1}), TOOLS, make_context())
        assert _error(result).startswith("Invalid format for tool call:")

    @pytest.mark.asyncio
    async def test_handler_exception(self, make_context):
        """Exceptions from the tool body become error payloads."""
        result = await execute_tool_call(tool_call("boom", {"text": "x"}), TOOLS, make_context())
        assert _error(result) == "kaboom"

    @pytest.mark.asyncio
    async def test_non_string_output_serialized(self, make_context):
        """Structured output is JSON encoded."""
        result = await execute_tool_call(tool_call("dict", {"text": "hi"}), TOOLS, make_context())
        assert json.loads(result)["echo"] == "hi"

    @pytest.mark.asyncio
    async def test_output_truncated(self, make_context):
        """Output beyond the limit is cut and marked."""
        text = "x" * (OUTPUT_LIMIT + 500)
        result = await execute_tool_call(tool_call("echo", {"text": text}), TOOLS, make_context())
        assert len(result) == OUTPUT_LIMIT + len(TRUNCATION_MARKER)
        assert result.endswith(TRUNCATION_MARKER)

    @pytest.mark.asyncio
    async def test_output_at_limit_untouched(self, make_context):
        """Output exactly at the limit is passed through."""
        text = "y" * OUTPUT_LIMIT
        result = await execute_tool_call(tool_call("echo", {"text": text}), TOOLS, make_context())
        assert result == text

    @pytest.mark.asyncio
    async def test_empty_arguments(self, make_context):
        """An empty argument string means no arguments."""
        result = await execute_tool_call(tool_call("echo", ""), TOOLS, make_context())
        assert _error(result).startswith("Invalid format for tool call:")


class TestExecuteToolCalls:
    """Concurrent execution of one turn's calls."""

    @pytest.mark.asyncio
    async def test_results_in_call_order(self, make_context):
        """Results keep call order even when later calls finish first."""
        calls = [
            tool_call("echo", {"text": "slow", "delay": 0.2}, call_id="a"),
            tool_call("echo", {"text": "fast"}, call_id="b"),
            tool_call("boom", {"text": "x"}, call_id="c"),
        ]
        results = await execute_tool_calls(calls, TOOLS, make_context())
        assert [r.tool_use_id for r in results] == ["a", "b", "c"]
        assert [r.content for r in results[:2]] == ["slow", "fast"]
        assert [r.is_error for r in results] == [False, False, True]

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self, make_context):
        """Calls in one turn overlap."""
        calls = [tool_call("echo", {"text": str(i), "delay": 0.3}, call_id=str(i)) for i in range(4)]
        loop = asyncio.get_running_loop()
        started = loop.time()
        await execute_tool_calls(calls, TOOLS, make_context())
        assert loop.time() - started < 1.0

    @pytest.mark.asyncio
    async def test_each_call_gets_child_tracker(self, make_context):
        """Every call accounts tokens under a child of the agent's tracker."""
        context = make_context()
        results = await execute_tool_calls([tool_call("dict", {"text": "hi"})], TOOLS, context)
        assert json.loads(results[0].content)["tracker"] == "dict"
        assert [child.name for child in context.token_tracker.children] == ["dict"]
