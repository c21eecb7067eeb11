"""Tool declarations.

Each tool module declares its tools at import time:

    from tools.registry import registry

    registry.register(
        name="think",
        toolset="system",
        description="...",
        parameters=ThinkParams,        # pydantic model
        handler=think_tool,            # async (params, context) -> result
    )

The registry only holds declarations. Execution state lives on the
ToolContext passed to every handler, so two agents running in one process
never share shells, browsers or sub-agents.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Handler = Callable[[Any, Any], Awaitable[Any]]


@dataclass
class Tool:
    name: str
    description: str
    parameters: Type[BaseModel]
    handler: Handler
    toolset: str = "system"
    log_parameters: Optional[Callable[[Any, Any], None]] = None
    log_returns: Optional[Callable[[Any, Any], None]] = None
    check_fn: Optional[Callable[[], bool]] = None

    def is_available(self) -> bool:
        if self.check_fn is None:
            return True
        try:
            return bool(self.check_fn())
        except Exception as e:
            logger.debug("Availability check for %s failed: %s", self.name, e)
            return False

    def definition(self) -> Dict[str, Any]:
        """OpenAI function-calling definition."""
        schema = self.parameters.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }


class ToolRegistry:
    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def register(self, name: str, toolset: str, description: str, parameters: Type[BaseModel],
                 handler: Handler, log_parameters=None, log_returns=None, check_fn=None) -> Tool:
        if name in self._tools:
            logger.warning("Tool %s registered twice; keeping the latest declaration", name)
        tool = Tool(
            name=name,
            description=description,
            parameters=parameters,
            handler=handler,
            toolset=toolset,
            log_parameters=log_parameters,
            log_returns=log_returns,
            check_fn=check_fn,
        )
        self._tools[name] = tool
        return tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def all(self) -> List[Tool]:
        return list(self._tools.values())

    def toolsets(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for tool in self._tools.values():
            grouped.setdefault(tool.toolset, []).append(tool.name)
        return grouped


registry = ToolRegistry()
