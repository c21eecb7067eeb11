"""
Pilot CLI - command-line interface for the pilot agent.

Provides subcommands for:
- pilot run "<task>"   - Run the agent on a task
- pilot config         - Show or change configuration
- pilot version        - Show version
"""

__version__ = "0.1.0"
