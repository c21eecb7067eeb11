#!/usr/bin/env python3
"""
Tools Package

Tool implementations for the pilot agent. Each module declares its tools in
tools.registry when it is imported:

- system_tools:  sequenceComplete, respawn, sleep, think, listBackgroundTools
- terminal_tool: shellStart, shellMessage, listShells (backed by process_runner)
- fetch_tool:    fetch (HTTP with retry and slow mode, backed by retry)
- browser_tool:  sessionStart, sessionMessage (Playwright)
- agent_tools:   agentStart, agentMessage, agentExecute (sub-agents)

Support modules:
- registry:       tool declarations
- background:     per-agent registry of background tasks and their cleanup
- process_runner: shell process lifecycle
- retry:          HTTP retry executor

model_tools.py selects tools from the registry and dispatches calls to them.
"""

from tools import agent_tools, browser_tool, fetch_tool, system_tools, terminal_tool  # noqa: F401
