from __future__ import annotations

from pathlib import Path

CONFIG_DIR = (Path("~/.claude-terminal")).expanduser()
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.yml"
DEFAULT_ENV_PATH = CONFIG_DIR / ".env"
HOOK_STATE_DIR = (Path("~/.claude-hud") / "sessions").expanduser()
CLAUDE_PROJECTS_DIR = (Path("~/.claude") / "projects").expanduser()
