"""Error taxonomy for the agent loop and its tools.

Recoverable errors (validation, tool execution, process, retry exhaustion)
are turned into tool_result text by the dispatcher or the tool that hit
them. Only ProviderError is fatal to an agent and propagates out of
run_agent().
"""

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors."""


class ToolValidationError(AgentError):
    """Tool arguments were not valid JSON or failed schema validation."""


class ToolExecutionError(AgentError):
    """A tool body raised while executing."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class ProviderError(AgentError):
    """The LLM provider failed (network, auth, malformed response)."""


class ProcessError(AgentError):
    """Spawning or talking to a child process failed."""


class RetryExhaustedError(AgentError):
    """A network call failed after every allowed retry."""

    def __init__(self, message: str, status: Optional[int] = None, retries: int = 0):
        super().__init__(message)
        self.status = status
        self.retries = retries
