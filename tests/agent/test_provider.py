"""Tests for the OpenAI-compatible provider (SDK client mocked)."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import openai
import pytest

from agent.errors import ProviderError
from agent.messages import user_message
from agent.provider import OPENROUTER_BASE_URL, OpenAIProvider, create_provider, parse_arguments


def _completion(content=None, tool_calls=None, prompt_tokens=100, completion_tokens=20, cached=0):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    usage = SimpleNamespace(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        prompt_tokens_details=SimpleNamespace(cached_tokens=cached),
    )
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage)


def _call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


@pytest.fixture
def provider():
    p = OpenAIProvider(model="test/model", api_key="sk-test")
    p.client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock())))
    return p


class TestCreateProvider:
    """Endpoint selection from the environment."""

    def test_openrouter_preferred(self, monkeypatch):
        """OPENROUTER_API_KEY selects the OpenRouter endpoint."""
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-test")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        provider = create_provider("anthropic/claude-sonnet-4")
        assert str(provider.client.base_url).rstrip("/") == OPENROUTER_BASE_URL

    def test_missing_key(self, monkeypatch):
        """No key at all is a ProviderError."""
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ProviderError):
            create_provider("openai/gpt-4o")


class TestSendRequest:
    """Response parsing."""

    @pytest.mark.asyncio
    async def test_text_and_tool_calls(self, provider):
        """Text, tool calls and usage are mapped onto ProviderResponse."""
        provider.client.chat.completions.create.return_value = _completion(
            content="working", tool_calls=[_call("c1", "think", '{"thought": "x"}')], cached=40,
        )
        response = await provider.send_request("sys", [user_message("hi")], [{"type": "function"}])

        assert response.text == "working"
        assert [(c.id, c.name, json.loads(c.content)) for c in response.tool_calls] == [
            ("c1", "think", {"thought": "x"})
        ]
        assert (response.token_usage.input, response.token_usage.cache_reads) == (60, 40)

        kwargs = provider.client.chat.completions.create.await_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
        assert kwargs["tools"] == [{"type": "function"}]

    @pytest.mark.asyncio
    async def test_no_tools_omits_tools_field(self, provider):
        """An empty tool list is not sent."""
        provider.client.chat.completions.create.return_value = _completion(content="hi")
        await provider.send_request("sys", [user_message("hi")], [])
        assert "tools" not in provider.client.chat.completions.create.await_args.kwargs

    @pytest.mark.asyncio
    async def test_sdk_error_wrapped(self, provider):
        """SDK failures become ProviderError."""
        provider.client.chat.completions.create.side_effect = openai.OpenAIError("boom")
        with pytest.raises(ProviderError, match="boom"):
            await provider.send_request("sys", [user_message("hi")], [])


class TestParseArguments:
    def test_empty_is_no_arguments(self):
        assert parse_arguments("") == {}
        assert parse_arguments("  ") == {}

    def test_invalid_raises(self):
        with pytest.raises(json.JSONDecodeError):
            parse_arguments("{bad")
