"""Conversation message model.

A message is a role plus either plain text (system, user) or a list of
content blocks. Assistant messages may carry tool_use blocks; the results of
one LLM turn come back as a single user message made of tool_result blocks.

`to_openai()` flattens the history into the Chat Completions wire format,
where tool_use blocks become `tool_calls` and tool_result blocks become
`role: tool` messages.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union


@dataclass
class TextContent:
    text: str
    type: str = "text"


@dataclass
class ToolUseContent:
    id: str
    name: str
    # Parsed arguments, or the raw string when the model sent invalid JSON.
    input: Any
    type: str = "tool_use"


@dataclass
class ToolResultContent:
    tool_use_id: str
    content: str
    is_error: bool = False
    type: str = "tool_result"


ContentBlock = Union[TextContent, ToolUseContent, ToolResultContent]


@dataclass
class Message:
    role: str
    content: Union[str, List[ContentBlock]] = ""

    def blocks(self) -> List[ContentBlock]:
        if isinstance(self.content, str):
            return [TextContent(self.content)] if self.content else []
        return list(self.content)

    def text(self) -> str:
        return "\n".join(b.text for b in self.blocks() if isinstance(b, TextContent))


def system_message(text: str) -> Message:
    return Message("system", text)


def user_message(content: Union[str, List[ContentBlock]]) -> Message:
    return Message("user", content)


def assistant_message(content: List[ContentBlock]) -> Message:
    return Message("assistant", content)


@dataclass
class ToolCall:
    """A tool invocation requested by the model. `content` is raw JSON."""
    id: str
    name: str
    content: str = "{}"


@dataclass
class ProviderResponse:
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    token_usage: Any = None


def to_openai(messages: List[Message]) -> List[Dict[str, Any]]:
    """Convert history into OpenAI Chat Completions messages."""
    result = []
    for msg in messages:
        if msg.role in ("system", "user") and isinstance(msg.content, str):
            result.append({"role": msg.role, "content": msg.content})
            continue

        if msg.role == "assistant":
            entry: Dict[str, Any] = {"role": "assistant", "content": msg.text() or None}
            calls = [b for b in msg.blocks() if isinstance(b, ToolUseContent)]
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": c.id,
                        "type": "function",
                        "function": {
                            "name": c.name,
                            "arguments": c.input if isinstance(c.input, str) else json.dumps(c.input),
                        },
                    }
                    for c in calls
                ]
            result.append(entry)
            continue

        text_parts = []
        for block in msg.blocks():
            if isinstance(block, ToolResultContent):
                result.append({
                    "role": "tool",
                    "tool_call_id": block.tool_use_id,
                    "content": block.content,
                })
            elif isinstance(block, TextContent):
                text_parts.append(block.text)
        if text_parts:
            result.append({"role": msg.role, "content": "\n".join(text_parts)})
    return result
