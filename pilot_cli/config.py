"""
Configuration management for the pilot agent.

Config files are stored in ~/.pilot/ (override with PILOT_HOME):
- ~/.pilot/config.yaml  - All settings (model, toolsets, agent loop, browser)
- ~/.pilot/.env         - API keys and secrets

This module provides:
- pilot config          - Show current configuration
- pilot config edit     - Open config in editor
- pilot config set      - Set a specific value
"""

import copy
import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values, set_key

logger = logging.getLogger(__name__)


# ANSI colors
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"


def color(text: str, *codes) -> str:
    if not sys.stdout.isatty():
        return text
    return "".join(codes) + text + Colors.RESET


# =============================================================================
# Config paths
# =============================================================================

def get_pilot_home() -> Path:
    """Get the pilot home directory (~/.pilot)."""
    return Path(os.getenv("PILOT_HOME", Path.home() / ".pilot"))


def get_config_path() -> Path:
    return get_pilot_home() / "config.yaml"


def get_env_path() -> Path:
    """Get the .env file path (for API keys)."""
    return get_pilot_home() / ".env"


def ensure_pilot_home():
    (get_pilot_home() / "logs").mkdir(parents=True, exist_ok=True)


# =============================================================================
# Config loading/saving
# =============================================================================

DEFAULT_CONFIG = {
    "model": "anthropic/claude-sonnet-4",
    "base_url": None,
    # Empty means every available toolset.
    "toolsets": [],

    "agent": {
        "max_iterations": 200,
        "max_tokens": 4096,
        "temperature": 0.7,
        "status_update_interval": 5,
        "cleanup_on_complete": True,
    },

    "browser": {
        "headless": True,
    },
}

# Keys that belong in .env rather than config.yaml
API_KEYS = ("OPENROUTER_API_KEY", "OPENAI_API_KEY")


def load_config() -> Dict[str, Any]:
    """Load configuration from ~/.pilot/config.yaml merged over the defaults."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = get_config_path()

    if config_path.exists():
        try:
            with open(config_path) as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to load config %s: %s", config_path, e)
            return config

        for key, value in user_config.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict):
                config[key].update(value)
            else:
                config[key] = value

    return config


def save_config(config: Dict[str, Any]):
    """Save configuration to ~/.pilot/config.yaml."""
    ensure_pilot_home()
    with open(get_config_path(), "w") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)


def load_env() -> Dict[str, str]:
    """Values from ~/.pilot/.env (does not touch os.environ)."""
    env_path = get_env_path()
    if not env_path.exists():
        return {}
    return {k: v for k, v in dotenv_values(env_path).items() if v is not None}


def save_env_value(key: str, value: str):
    """Save or update a value in ~/.pilot/.env."""
    ensure_pilot_home()
    env_path = get_env_path()
    env_path.touch(exist_ok=True)
    set_key(str(env_path), key, value, quote_mode="never")


def get_env_value(key: str) -> Optional[str]:
    """Get a value from the environment, falling back to ~/.pilot/.env."""
    if key in os.environ:
        return os.environ[key]
    return load_env().get(key)


def coerce_value(value: str):
    """Turn CLI text into bool/int/float where it looks like one."""
    lowered = value.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    if lowered in ("null", "none"):
        return None
    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)
    return value


def set_config_value(key: str, value: str):
    """Set a configuration value; API keys go to .env, everything else to config.yaml."""
    if key.upper() in API_KEYS:
        save_env_value(key.upper(), value)
        print(f"✓ Set {key.upper()} in {get_env_path()}")
        return

    config = load_config()

    # Nested keys, e.g. "agent.max_iterations"
    parts = key.split(".")
    current = config
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]

    if key == "toolsets":
        coerced = [name.strip() for name in value.split(",") if name.strip()]
    else:
        coerced = coerce_value(value)
    current[parts[-1]] = coerced
    save_config(config)
    print(f"✓ Set {key} = {coerced} in {get_config_path()}")


# =============================================================================
# Config display
# =============================================================================

def redact_key(key: Optional[str]) -> str:
    """Redact an API key for display."""
    if not key:
        return color("(not set)", Colors.DIM)
    if len(key) < 12:
        return "***"
    return key[:4] + "..." + key[-4:]


def show_config():
    config = load_config()
    agent = config.get("agent", {})

    print()
    print(color("◆ Paths", Colors.CYAN, Colors.BOLD))
    print(f"  Config:       {get_config_path()}")
    print(f"  Secrets:      {get_env_path()}")

    print()
    print(color("◆ API Keys", Colors.CYAN, Colors.BOLD))
    for env_key in API_KEYS:
        print(f"  {env_key:<20} {redact_key(get_env_value(env_key))}")

    print()
    print(color("◆ Model", Colors.CYAN, Colors.BOLD))
    print(f"  Model:          {config.get('model')}")
    print(f"  Base URL:       {config.get('base_url') or '(default)'}")
    print(f"  Toolsets:       {', '.join(config.get('toolsets') or ['all'])}")

    print()
    print(color("◆ Agent Loop", Colors.CYAN, Colors.BOLD))
    print(f"  Max iterations: {agent.get('max_iterations')}")
    print(f"  Max tokens:     {agent.get('max_tokens')}")
    print(f"  Temperature:    {agent.get('temperature')}")
    print(f"  Status every:   {agent.get('status_update_interval')} iterations")

    print()
    print(color("◆ Browser", Colors.CYAN, Colors.BOLD))
    print(f"  Headless:       {'yes' if config.get('browser', {}).get('headless', True) else 'no'}")

    print()
    print(color("─" * 60, Colors.DIM))
    print(color("  pilot config edit     # Edit config file", Colors.DIM))
    print(color("  pilot config set KEY VALUE", Colors.DIM))
    print()


def edit_config():
    """Open config file in user's editor."""
    config_path = get_config_path()
    if not config_path.exists():
        save_config(DEFAULT_CONFIG)
        print(f"Created {config_path}")

    editor = os.getenv("EDITOR") or os.getenv("VISUAL")
    if not editor:
        editor = next((cmd for cmd in ("nano", "vim", "vi", "code", "notepad") if shutil.which(cmd)), None)
    if not editor:
        print("No editor found. Config file is at:")
        print(f"  {config_path}")
        return

    print(f"Opening {config_path} in {editor}...")
    subprocess.run([editor, str(config_path)])


# =============================================================================
# Command handler
# =============================================================================

def config_command(args):
    """Handle config subcommands."""
    subcmd = getattr(args, "config_command", None)

    if subcmd is None or subcmd == "show":
        show_config()

    elif subcmd == "edit":
        edit_config()

    elif subcmd == "set":
        key = getattr(args, "key", None)
        value = getattr(args, "value", None)
        if not key or value is None:
            print("Usage: pilot config set KEY VALUE")
            print()
            print("Examples:")
            print("  pilot config set model openai/gpt-4o")
            print("  pilot config set agent.max_iterations 50")
            print("  pilot config set OPENROUTER_API_KEY sk-or-...")
            sys.exit(1)
        set_config_value(key, value)

    elif subcmd == "path":
        print(get_config_path())

    elif subcmd == "env-path":
        print(get_env_path())

    else:
        print(f"Unknown config command: {subcmd}")
        sys.exit(1)
