#!/usr/bin/env python3
"""
Pilot CLI - Main entry point.

Usage:
    pilot run "List the files here"     # Run the agent on a task
    pilot run -t shell,system "..."     # Only some toolsets
    pilot config                        # Show configuration
    pilot config set KEY VALUE          # Change configuration
    pilot version                       # Show version

Ctrl+C stops the agent and reclaims every shell, browser and sub-agent it
started before exiting.
"""

import argparse
import asyncio
import atexit
import logging
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from pilot_cli import __version__
from pilot_cli.config import get_env_path, load_config

logger = logging.getLogger(__name__)

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "asyncio", "urllib3")


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


async def run_with_interrupt(query: str, tool_list, context):
    """
    Run the agent, reclaiming background tasks however it ends.

    SIGINT cancels the agent; every exit path then awaits cleanup() so no
    shell, browser or sub-agent outlives the run.
    """
    from run_agent import run_agent

    loop = asyncio.get_running_loop()
    agent_task = asyncio.ensure_future(run_agent(query, tool_list, context.config, context))

    def on_interrupt():
        print("\n⚠️  Interrupted, cleaning up background tasks...", file=sys.stderr)
        agent_task.cancel()

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except (NotImplementedError, RuntimeError):
        # Windows event loops do not support signal handlers
        pass

    try:
        return await agent_task
    except asyncio.CancelledError:
        return None
    finally:
        await context.background_tasks.cleanup()
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def run_query(
    query: str,
    model: Optional[str] = None,
    toolsets: Optional[List[str]] = None,
    max_iterations: Optional[int] = None,
    base_url: Optional[str] = None,
    verbose: bool = False,
) -> int:
    """Run one task end to end; returns a process exit code."""
    from agent.config import AgentConfig
    from agent.context import create_context
    from agent.errors import ProviderError
    from agent.provider import create_provider
    from model_tools import get_tools

    setup_logging(verbose)
    load_dotenv(dotenv_path=get_env_path())

    config = load_config()
    agent_config = AgentConfig.from_dict({**config.get("agent", {}), "model": model or config["model"]})
    if max_iterations:
        agent_config.max_iterations = max_iterations

    try:
        provider = create_provider(agent_config.model, base_url=base_url or config.get("base_url"))
    except ProviderError as e:
        print(f"✗ {e}")
        return 1

    context = create_context(
        provider=provider,
        config=agent_config,
        headless=config.get("browser", {}).get("headless", True),
    )
    # Last line of defence if the loop dies without running cleanup()
    atexit.register(context.background_tasks.cleanup_sync)

    tool_list = get_tools(enabled_toolsets=list(toolsets or config.get("toolsets") or []) or None)
    logger.debug("Tools: %s", ", ".join(tool.name for tool in tool_list))

    try:
        result = asyncio.run(run_with_interrupt(query, tool_list, context))
    except ProviderError as e:
        print(f"✗ Provider error: {e}")
        return 1

    if result is None:
        print("✗ Interrupted")
        return 130

    print()
    print(result.result)
    print()
    print(f"Interactions: {result.interactions}")
    print(f"Token usage:  {context.token_tracker.total_usage()}")
    if verbose:
        print(context.token_tracker.summary())
    return 0


def cmd_run(args):
    toolsets = [t.strip() for t in args.toolsets.split(",")] if args.toolsets else None
    sys.exit(run_query(
        " ".join(args.query),
        model=args.model,
        toolsets=toolsets,
        max_iterations=args.max_iterations,
        base_url=args.base_url,
        verbose=args.verbose,
    ))


def cmd_config(args):
    from pilot_cli.config import config_command
    config_command(args)


def cmd_version(args):
    print(f"Pilot Agent v{__version__}")
    print(f"Python: {sys.version.split()[0]}")
    try:
        import openai
        print(f"OpenAI SDK: {openai.__version__}")
    except ImportError:
        print("OpenAI SDK: Not installed")


def main():
    """Main entry point for the pilot CLI."""
    parser = argparse.ArgumentParser(
        prog="pilot",
        description="Pilot Agent - LLM agent with shell, web, browser and sub-agent tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    pilot run "Summarise README.md"       Run a task
    pilot run -m openai/gpt-4o "..."      Use a different model
    pilot config                          View configuration
    pilot config set model openai/gpt-4o  Set a config value
""",
    )
    parser.add_argument("--version", "-V", action="store_true", help="Show version and exit")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # =========================================================================
    # run command
    # =========================================================================
    run_parser = subparsers.add_parser("run", help="Run the agent on a task")
    run_parser.add_argument("query", nargs="+", help="The task for the agent")
    run_parser.add_argument("-m", "--model", help="Model to use (e.g., anthropic/claude-sonnet-4)")
    run_parser.add_argument("-t", "--toolsets", help="Comma-separated toolsets to enable")
    run_parser.add_argument("--max-iterations", type=int, help="Iteration budget for the agent loop")
    run_parser.add_argument("--base-url", help="OpenAI-compatible API endpoint")
    run_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    run_parser.set_defaults(func=cmd_run)

    # =========================================================================
    # config command
    # =========================================================================
    config_parser = subparsers.add_parser("config", help="View and edit configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("edit", help="Open config file in editor")
    config_set = config_subparsers.add_parser("set", help="Set a configuration value")
    config_set.add_argument("key", nargs="?", help="Configuration key (e.g., model, agent.max_iterations)")
    config_set.add_argument("value", nargs="?", help="Value to set")
    config_subparsers.add_parser("path", help="Print config file path")
    config_subparsers.add_parser("env-path", help="Print .env file path")
    config_parser.set_defaults(func=cmd_config)

    # =========================================================================
    # version command
    # =========================================================================
    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.set_defaults(func=cmd_version)

    args = parser.parse_args()

    if args.version:
        cmd_version(args)
        return

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
