"""Project context files for the system prompt.

Stateless helpers. get_default_system_prompt() in agent/config.py appends
whatever build_context_files_prompt() finds in the working directory.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# =========================================================================
# Constants
# =========================================================================

CONTEXT_FILE_MAX_CHARS = 20_000
CONTEXT_TRUNCATE_HEAD_RATIO = 0.7
CONTEXT_TRUNCATE_TAIL_RATIO = 0.2

AGENTS_FILE_NAMES = ("AGENTS.md", "agents.md")
SKIPPED_DIRS = ("node_modules", "__pycache__", "venv", ".venv")


def _truncate_content(content: str, filename: str, max_chars: int = CONTEXT_FILE_MAX_CHARS) -> str:
    """Head/tail truncation with a marker in the middle."""
    if len(content) <= max_chars:
        return content
    head_chars = int(max_chars * CONTEXT_TRUNCATE_HEAD_RATIO)
    tail_chars = int(max_chars * CONTEXT_TRUNCATE_TAIL_RATIO)
    marker = (
        f"\n\n[...truncated {filename}: kept {head_chars}+{tail_chars} of "
        f"{len(content)} chars. Read the file with the shell tools for the rest.]\n\n"
    )
    return content[:head_chars] + marker + content[-tail_chars:]


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("Could not read %s: %s", path, e)
        return ""


def _find_agents_files(root: Path) -> List[Path]:
    found = []
    for current, dirs, files in os.walk(root):
        dirs[:] = [d for d in dirs if not d.startswith(".") and d not in SKIPPED_DIRS]
        for name in files:
            if name.lower() == "agents.md":
                found.append(Path(current) / name)
    # Shallow files first so the project-wide guidance leads.
    found.sort(key=lambda p: len(p.parts))
    return found


def build_context_files_prompt(cwd: Optional[str] = None) -> str:
    """Discover and load context files for the system prompt.

    Discovery: AGENTS.md (recursive, only when one exists at the top level),
    .cursorrules, and ~/.pilot/AGENTS.md as a user-wide fallback. Each
    section is capped at 20,000 chars.
    """
    cwd_path = Path(cwd or os.getcwd()).resolve()
    sections = []

    if any((cwd_path / name).exists() for name in AGENTS_FILE_NAMES):
        agents_content = ""
        for path in _find_agents_files(cwd_path):
            content = _read(path)
            if content:
                agents_content += f"## {path.relative_to(cwd_path)}\n\n{content}\n\n"
        if agents_content:
            sections.append(_truncate_content(agents_content, "AGENTS.md"))
    else:
        pilot_home = Path(os.getenv("PILOT_HOME", Path.home() / ".pilot"))
        content = _read(pilot_home / "AGENTS.md") if (pilot_home / "AGENTS.md").exists() else ""
        if content:
            sections.append(_truncate_content(f"## ~/.pilot/AGENTS.md\n\n{content}\n\n", "AGENTS.md"))

    cursorrules = cwd_path / ".cursorrules"
    if cursorrules.exists():
        content = _read(cursorrules)
        if content:
            sections.append(_truncate_content(f"## .cursorrules\n\n{content}\n\n", ".cursorrules"))

    if not sections:
        return ""
    return (
        "# Project Context\n\n"
        "The following project context files have been loaded and should be followed:\n\n"
        + "\n".join(sections)
    )
