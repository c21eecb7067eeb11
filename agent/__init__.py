"""Agent internals used by the loop in run_agent.py.

Messages and the provider boundary, token accounting, the per-agent
ToolContext, loop configuration and the system prompt, and periodic status
updates.
"""
