"""Tests for the control tools and the shell tools' JSON surface."""

import asyncio
import json
import os

import pytest

from conftest import tool_call
from model_tools import execute_tool_call, get_tools
from tools.background import TaskKind, TaskStatus
from tools.system_tools import (
    ListBackgroundToolsParams,
    SequenceCompleteParams,
    SleepParams,
    ThinkParams,
    list_background_tools_tool,
    sequence_complete_tool,
    sleep_tool,
    think_tool,
)
from tools.terminal_tool import (
    ListShellsParams,
    ShellMessageParams,
    list_shells_tool,
    shell_message_tool,
)


# ── System tools ──────────────────────────────────────────────────────────

class TestSystemTools:
    """sequenceComplete, sleep, think, listBackgroundTools."""

    @pytest.mark.asyncio
    async def test_sequence_complete_result(self, make_context):
        """The result text is returned verbatim."""
        assert await sequence_complete_tool(SequenceCompleteParams(result="done"), make_context()) == "done"

    @pytest.mark.asyncio
    async def test_sequence_complete_without_result(self, make_context):
        """Without a result a fixed message is returned."""
        output = await sequence_complete_tool(SequenceCompleteParams(), make_context())
        assert output == "Sequence explicitly completed"

    @pytest.mark.asyncio
    async def test_sleep(self, make_context):
        """sleep reports how long it slept."""
        output = json.loads(await sleep_tool(SleepParams(seconds=0.01), make_context()))
        assert output == {"sleptFor": 0.01}

    def test_sleep_bounds(self):
        """Sleeping longer than an hour is rejected."""
        with pytest.raises(ValueError):
            SleepParams(seconds=3601)

    @pytest.mark.asyncio
    async def test_think(self, make_context):
        """think echoes the thought back."""
        output = json.loads(await think_tool(ThinkParams(thought="plan"), make_context()))
        assert output == {"thought": "plan"}

    @pytest.mark.asyncio
    async def test_list_background_tools_filters(self, make_context):
        """Filters apply to the agent's own registry."""
        context = make_context()
        registry = context.background_tasks
        shell = registry.register(TaskKind.SHELL, {"command": "ls"})
        registry.register(TaskKind.BROWSER)
        registry.update_status(shell, TaskStatus.COMPLETED)

        everything = json.loads(await list_background_tools_tool(ListBackgroundToolsParams(), context))
        assert everything["count"] == 2

        params = ListBackgroundToolsParams(status="completed", type="shell", verbose=True)
        filtered = json.loads(await list_background_tools_tool(params, context))
        assert filtered["count"] == 1
        assert filtered["tools"][0]["id"] == shell
        assert filtered["tools"][0]["metadata"]["command"] == "ls"

    @pytest.mark.asyncio
    async def test_respawn_through_dispatcher(self, make_context):
        """respawn accepts its camelCase argument."""
        result = await execute_tool_call(
            tool_call("respawn", {"respawnContext": "carry on"}), get_tools(), make_context()
        )
        assert result == "Respawn initiated"


# ── Shell tools ───────────────────────────────────────────────────────────

@pytest.mark.skipif(os.name == "nt", reason="POSIX shell commands")
class TestShellTools:
    """shellStart / shellMessage / listShells through the dispatcher."""

    @pytest.mark.asyncio
    async def test_shell_start_sync(self, make_context):
        """A fast command returns sync JSON."""
        result = json.loads(await execute_tool_call(
            tool_call("shellStart", {"command": "echo hi", "description": "test"}), get_tools(), make_context()
        ))
        assert result == {"mode": "sync", "stdout": "hi", "stderr": "", "exitCode": 0}

    @pytest.mark.asyncio
    async def test_shell_start_async_then_message(self, make_context):
        """A background shell can be signalled through shellMessage."""
        context = make_context()
        tools = get_tools()
        started = json.loads(await execute_tool_call(
            tool_call("shellStart", {"command": "sleep 30", "description": "bg", "timeout": 0}), tools, context
        ))
        assert started["mode"] == "async"
        shell_id = started["shellId"]

        message = json.loads(await execute_tool_call(
            tool_call("shellMessage", {"shellId": shell_id, "signal": "SIGTERM", "description": "stop"}),
            tools, context,
        ))
        assert message["signaled"] is True
        assert context.background_tasks.get_task(shell_id).status is TaskStatus.TERMINATED
        await context.background_tasks.cleanup()

    @pytest.mark.asyncio
    async def test_shell_message_unknown_signal_rejected(self, make_context):
        """A misspelt signal is a validation error and the shell stays reclaimable."""
        context = make_context()
        tools = get_tools()
        started = json.loads(await execute_tool_call(
            tool_call("shellStart", {"command": "sleep 30", "description": "bg", "timeout": 0}), tools, context
        ))
        shell_id = started["shellId"]

        result = json.loads(await execute_tool_call(
            tool_call("shellMessage", {"shellId": shell_id, "signal": "SIGBOGUS", "description": "oops"}),
            tools, context,
        ))
        assert result["error"] is True
        assert "Invalid format" in result["message"]
        assert context.process_runner.get(shell_id).signaled is False
        assert context.background_tasks.get_task(shell_id).status is TaskStatus.RUNNING

        await context.background_tasks.cleanup()
        await asyncio.wait_for(context.process_runner.get(shell_id).watcher, 5)
        assert context.background_tasks.get_task(shell_id).status is TaskStatus.TERMINATED

    def test_signal_names_normalised(self):
        """Short and lower-case signal names map to the canonical name."""
        assert ShellMessageParams(shellId="x", description="d", signal="term").signal == "SIGTERM"
        assert ShellMessageParams(shellId="x", description="d", signal="sigint").signal == "SIGINT"

    @pytest.mark.asyncio
    async def test_shell_message_unknown_id(self, make_context):
        """Unknown shell ids are reported in the payload."""
        params = ShellMessageParams(shellId="missing", description="check")
        result = json.loads(await shell_message_tool(params, make_context()))
        assert result == {"error": "No process found with ID missing"}

    @pytest.mark.asyncio
    async def test_list_shells(self, make_context):
        """listShells reports shells with their command."""
        context = make_context()
        await context.process_runner.start("true", timeout=5, description="noop")
        result = json.loads(await list_shells_tool(ListShellsParams(), context))
        assert result["count"] == 1
        assert result["shells"][0]["command"] == "true"
        assert result["shells"][0]["status"] == "completed"
