"""Shared test fixtures: a ToolContext wired to a scripted provider."""

import json
from typing import List

import pytest

from agent.config import AgentConfig
from agent.context import create_context
from agent.errors import ProviderError
from agent.messages import ProviderResponse, ToolCall
from agent.provider import LLMProvider
from agent.tokens import TokenUsage


def tool_call(name: str, args=None, call_id: str = None) -> ToolCall:
    """A ToolCall with JSON-encoded arguments (a str is passed through raw)."""
    content = args if isinstance(args, str) else json.dumps(args or {})
    return ToolCall(id=call_id or f"call_{name}", name=name, content=content)


class ScriptedProvider(LLMProvider):
    """Replays a fixed list of responses and records every request."""

    def __init__(self, responses: List):
        self.responses = list(responses)
        self.requests = []

    async def send_request(self, system_prompt, messages, tools, max_tokens=4096, temperature=0.7):
        self.requests.append({"system_prompt": system_prompt, "messages": list(messages), "tools": tools})
        if not self.responses:
            raise ProviderError("No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if response.token_usage is None:
            response.token_usage = TokenUsage(input=10, output=5)
        return response


def respond(text: str = "", *calls: ToolCall) -> ProviderResponse:
    return ProviderResponse(text=text, tool_calls=list(calls))


@pytest.fixture
def test_config():
    return AgentConfig(
        max_iterations=10,
        model="test/model",
        get_system_prompt=lambda context: "test",
        status_update_interval=0,
    )


@pytest.fixture
def make_context(tmp_path, test_config):
    """Build a root context around a scripted provider."""
    def _make(responses=(), config=None):
        provider = ScriptedProvider(responses)
        return create_context(
            provider=provider,
            config=config or test_config,
            working_directory=str(tmp_path),
        )
    return _make
