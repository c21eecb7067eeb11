"""Tests for sub-agent tools, driven by a scripted provider."""

import asyncio
import json
import os

import pytest

from conftest import respond, tool_call
from tools.agent_tools import (
    LOG_SECTION_HEADER,
    AgentMessageParams,
    AgentStartParams,
    agent_execute_tool,
    agent_message_tool,
    agent_start_tool,
)
from tools.background import TaskKind, TaskStatus


def _start_params(**extra):
    return AgentStartParams.model_validate({"description": "sub task", "goal": "do the thing", **extra})


def _message_params(instance_id, **extra):
    return AgentMessageParams.model_validate({"instanceId": instance_id, "description": "check", **extra})


async def _wait_for(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


class TestAgentExecute:
    """agentExecute runs a sub-agent to completion."""

    @pytest.mark.asyncio
    async def test_returns_sub_agent_result(self, make_context):
        """The sub-agent's sequenceComplete result is returned."""
        context = make_context([respond("", tool_call("sequenceComplete", {"result": "sub done"}))])
        result = json.loads(await agent_execute_tool(_start_params(projectContext="repo"), context))

        assert result == {"response": "sub done", "interactions": 1}
        task = context.background_tasks.get_tasks(kind=TaskKind.AGENT)[0]
        assert task.status is TaskStatus.COMPLETED
        assert task.metadata["goal"] == "do the thing"

        prompt = context.provider.requests[0]["messages"][0].content
        assert "Goal: do the thing" in prompt
        assert "Project Context: repo" in prompt

    @pytest.mark.asyncio
    async def test_tokens_roll_up_to_parent(self, make_context):
        """Sub-agent usage is included in the parent's totals."""
        context = make_context([respond("", tool_call("sequenceComplete", {"result": "ok"}))])
        await agent_execute_tool(_start_params(), context)
        assert context.token_tracker.total_usage().input == 10

    @pytest.mark.asyncio
    async def test_provider_failure_raises(self, make_context):
        """A failed sub-agent surfaces as a tool error."""
        context = make_context([])
        with pytest.raises(RuntimeError, match="Sub-agent failed"):
            await agent_execute_tool(_start_params(), context)
        assert context.background_tasks.get_tasks()[0].status is TaskStatus.ERROR


class TestAgentStartAndMessage:
    """Background sub-agents."""

    @pytest.mark.asyncio
    async def test_start_then_read_output_and_logs(self, make_context):
        """Output and captured log lines are handed over once."""
        context = make_context([respond("", tool_call("sequenceComplete", {"result": "finished"}))])
        started = json.loads(await agent_start_tool(_start_params(), context))
        assert started["status"] == "Agent started successfully"
        instance_id = started["instanceId"]

        sub = context.sub_agents[instance_id]
        await asyncio.wait_for(sub.task, 3)

        first = json.loads(await agent_message_tool(_message_params(instance_id), context))
        assert first["completed"] is True
        assert first["output"].startswith("finished")
        assert LOG_SECTION_HEADER in first["output"]

        second = json.loads(await agent_message_tool(_message_params(instance_id), context))
        assert second["output"] == "finished"

    @pytest.mark.asyncio
    async def test_guidance_reaches_sub_agent(self, make_context):
        """Guidance is delivered as a user message on the sub-agent's next turn."""
        context = make_context([
            respond("", tool_call("sleep", {"seconds": 0.3})),
            respond("", tool_call("sequenceComplete", {"result": "ok"})),
        ])
        instance_id = json.loads(await agent_start_tool(_start_params(), context))["instanceId"]
        await _wait_for(lambda: len(context.provider.requests) == 1)
        await agent_message_tool(_message_params(instance_id, guidance="focus on tests"), context)
        await asyncio.wait_for(context.sub_agents[instance_id].task, 3)

        texts = [m.text() for m in context.provider.requests[1]["messages"]]
        assert "Guidance from parent agent: focus on tests" in texts

    @pytest.mark.asyncio
    async def test_terminate(self, make_context):
        """terminate stops a running sub-agent and marks it TERMINATED."""
        context = make_context([respond("", tool_call("sleep", {"seconds": 30}))])
        instance_id = json.loads(await agent_start_tool(_start_params(), context))["instanceId"]
        await _wait_for(lambda: len(context.provider.requests) == 1)

        result = json.loads(await agent_message_tool(_message_params(instance_id, terminate=True), context))

        assert result["terminated"] is True
        assert context.sub_agents[instance_id].task.done()
        assert context.background_tasks.get_task(instance_id).status is TaskStatus.TERMINATED

    @pytest.mark.asyncio
    async def test_unknown_instance(self, make_context):
        """Unknown ids are reported in the payload."""
        result = json.loads(await agent_message_tool(_message_params("missing"), make_context()))
        assert "No sub-agent found" in result["error"]

    @pytest.mark.skipif(os.name == "nt", reason="POSIX shell commands")
    @pytest.mark.asyncio
    async def test_parent_cleanup_cascades(self, make_context):
        """Cleaning up the parent reclaims the sub-agent's own shells."""
        context = make_context([
            respond("", tool_call("shellStart", {"command": "sleep 30", "description": "bg", "timeout": 0})),
            respond("", tool_call("sleep", {"seconds": 30})),
        ])
        instance_id = json.loads(await agent_start_tool(_start_params(), context))["instanceId"]
        child_registry = context.sub_agents[instance_id].context.background_tasks
        await _wait_for(lambda: len(context.provider.requests) == 2)

        await context.background_tasks.cleanup()

        shell = child_registry.get_tasks(kind=TaskKind.SHELL)[0]
        assert shell.status is TaskStatus.TERMINATED
        assert context.background_tasks.get_task(instance_id).status is TaskStatus.TERMINATED
