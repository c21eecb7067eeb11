"""ToolContext: everything a tool needs, injected per agent.

One context per agent. Sub-agents get a child context with their own
background registry, process runner, browser sessions and sub-agent table,
a child logger and a child token tracker. Nothing here is a process-wide
singleton, so agents in one process never see each other's resources.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from agent.config import AgentConfig
from agent.provider import LLMProvider
from agent.tokens import TokenTracker
from tools.background import BackgroundTaskRegistry
from tools.browser_tool import BrowserSessionManager
from tools.process_runner import ProcessRunner

logger = logging.getLogger("pilot")


@dataclass
class ToolContext:
    logger: logging.Logger
    token_tracker: TokenTracker
    background_tasks: BackgroundTaskRegistry
    process_runner: ProcessRunner
    browser_sessions: BrowserSessionManager
    config: AgentConfig
    provider: Optional[LLMProvider] = None
    sub_agents: Dict[str, Any] = field(default_factory=dict)
    working_directory: str = field(default_factory=os.getcwd)
    agent_id: str = "main"
    depth: int = 0
    headless: bool = True
    # Guidance queued by the parent agent, drained by the loop each iteration.
    parent_messages: List[str] = field(default_factory=list)
    abort_event: asyncio.Event = field(default_factory=asyncio.Event)

    def scoped(self, **changes) -> "ToolContext":
        """Same resources with a different logger or token accounting scope."""
        return replace(self, **changes)

    def spawn_child(self, agent_id: str) -> "ToolContext":
        """Fresh resource scope for a sub-agent."""
        child_logger = self.logger.getChild(f"agent.{agent_id[:8]}")
        registry = BackgroundTaskRegistry(owner=f"agent:{agent_id[:8]}")
        return ToolContext(
            logger=child_logger,
            token_tracker=self.token_tracker.child(f"agent:{agent_id[:8]}"),
            background_tasks=registry,
            process_runner=ProcessRunner(registry, cwd=self.working_directory, log=child_logger),
            browser_sessions=BrowserSessionManager(registry, log=child_logger),
            config=self.config,
            provider=self.provider,
            working_directory=self.working_directory,
            agent_id=agent_id,
            depth=self.depth + 1,
            headless=self.headless,
        )


def create_context(
    provider: Optional[LLMProvider] = None,
    config: Optional[AgentConfig] = None,
    working_directory: Optional[str] = None,
    log: Optional[logging.Logger] = None,
    headless: bool = True,
) -> ToolContext:
    """Root context for a top-level agent."""
    log = log or logger
    cwd = working_directory or os.getcwd()
    registry = BackgroundTaskRegistry(owner="main")
    return ToolContext(
        logger=log,
        token_tracker=TokenTracker("main"),
        background_tasks=registry,
        process_runner=ProcessRunner(registry, cwd=cwd, log=log),
        browser_sessions=BrowserSessionManager(registry, log=log),
        config=config or AgentConfig(),
        provider=provider,
        working_directory=cwd,
        headless=headless,
    )
