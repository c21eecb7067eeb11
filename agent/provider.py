"""LLM provider boundary.

The agent loop only knows LLMProvider.send_request(). OpenAIProvider speaks
the Chat Completions protocol through the official `openai` SDK, which also
covers OpenRouter and any other OpenAI-compatible endpoint via base_url.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from agent.errors import ProviderError
from agent.messages import Message, ProviderResponse, ToolCall, to_openai
from agent.tokens import TokenUsage

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class LLMProvider(ABC):
    """Anything that can answer a conversation with text and tool calls."""

    @abstractmethod
    async def send_request(
        self,
        system_prompt: str,
        messages: List[Message],
        tools: List[Dict[str, Any]],
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> ProviderResponse:
        """Raises ProviderError on any failure."""


class OpenAIProvider(LLMProvider):
    def __init__(self, model: str, api_key: Optional[str] = None, base_url: Optional[str] = None):
        from openai import AsyncOpenAI

        self.model = model
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def send_request(self, system_prompt, messages, tools, max_tokens=4096, temperature=0.7):
        import openai

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}] + to_openai(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            kwargs["tools"] = tools

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            raise ProviderError(f"{type(e).__name__}: {e}") from e

        if not response.choices:
            raise ProviderError("Provider returned no choices")
        message = response.choices[0].message

        tool_calls = [
            ToolCall(id=call.id, name=call.function.name, content=call.function.arguments or "{}")
            for call in (message.tool_calls or [])
        ]
        return ProviderResponse(
            text=message.content or "",
            tool_calls=tool_calls,
            token_usage=_usage_from(response.usage),
        )


def _usage_from(usage) -> TokenUsage:
    if usage is None:
        return TokenUsage()
    cached = 0
    details = getattr(usage, "prompt_tokens_details", None)
    if details is not None:
        cached = getattr(details, "cached_tokens", 0) or 0
    return TokenUsage(
        input=(usage.prompt_tokens or 0) - cached,
        output=usage.completion_tokens or 0,
        cache_reads=cached,
    )


def create_provider(model: str, base_url: Optional[str] = None, api_key: Optional[str] = None) -> LLMProvider:
    """
    Build a provider for `model`.

    Without an explicit base_url, OpenRouter is used when OPENROUTER_API_KEY
    is set and the OpenAI API otherwise.
    """
    if api_key is None:
        if base_url is None and os.getenv("OPENROUTER_API_KEY"):
            base_url = OPENROUTER_BASE_URL
            api_key = os.getenv("OPENROUTER_API_KEY")
        else:
            api_key = os.getenv("OPENAI_API_KEY") or os.getenv("OPENROUTER_API_KEY")
    if not api_key:
        raise ProviderError("No API key found. Set OPENROUTER_API_KEY or OPENAI_API_KEY.")
    logger.debug("Using model %s via %s", model, base_url or "api.openai.com")
    return OpenAIProvider(model=model, api_key=api_key, base_url=base_url)


def parse_arguments(raw: str) -> Dict[str, Any]:
    """Decode tool call arguments, treating an empty string as no arguments."""
    if not raw or not raw.strip():
        return {}
    return json.loads(raw)
