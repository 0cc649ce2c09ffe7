"""Global configuration management.

Config is loaded at module import time and available globally via:
    from claude_terminal.config import config

The user file lives at ~/.claude-terminal/config.yml (override with
CLAUDE_TERMINAL_CONFIG_PATH). A missing file means defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from claude_terminal.paths import CLAUDE_PROJECTS_DIR, DEFAULT_CONFIG_PATH, DEFAULT_ENV_PATH, HOOK_STATE_DIR
from claude_terminal.runtime.binaries import resolve_tmux_binary
from claude_terminal.utils import expand_env_vars

# Load .env (allow override for tests)
_env_path = os.getenv("CLAUDE_TERMINAL_ENV_PATH")
_dotenv_path = Path(_env_path).expanduser() if _env_path else DEFAULT_ENV_PATH
load_dotenv(_dotenv_path)


@dataclass
class TmuxConfig:
    session_name: str
    scratch_window: str
    binary: str = "tmux"  # Resolved by runtime policy (not user-configurable)


@dataclass
class AgentConfig:
    process_name: str
    command: str


@dataclass
class PollingConfig:
    refresh_interval_ms: int
    discovery_failure_threshold: int


@dataclass
class HooksConfig:
    state_dir: str


@dataclass
class TranscriptsConfig:
    projects_dir: str


@dataclass
class ContextConfig:
    window_tokens: int
    tail_bytes: int


@dataclass
class StatusConfig:
    transcript_fallback: bool


@dataclass
class UIConfig:
    error_dismiss_seconds: float
    placeholder_message: str


@dataclass
class Config:
    tmux: TmuxConfig
    agent: AgentConfig
    polling: PollingConfig
    hooks: HooksConfig
    transcripts: TranscriptsConfig
    context: ContextConfig
    status: StatusConfig
    ui: UIConfig


DEFAULT_CONFIG: dict[str, object] = {  # YAML configuration structure
    "tmux": {
        "session_name": "claude-terminal",
        "scratch_window": "scratch",
    },
    "agent": {
        "process_name": "claude",
        "command": "claude",
    },
    "polling": {
        "refresh_interval_ms": 2000,
        "discovery_failure_threshold": 3,
    },
    "hooks": {
        "state_dir": str(HOOK_STATE_DIR),
    },
    "transcripts": {
        "projects_dir": str(CLAUDE_PROJECTS_DIR),
    },
    "context": {
        "window_tokens": 200_000,
        "tail_bytes": 150_000,
    },
    "status": {
        "transcript_fallback": False,
    },
    "ui": {
        "error_dismiss_seconds": 5,
        "placeholder_message": "No active Claude session. Select one in the dashboard or press n to start one.",
    },
}


def _deep_merge(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    """Deep merge override dict into base dict.

    Args:
        base: Base dictionary with defaults
        override: Dictionary with overrides from user config

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)  # type: ignore[arg-type]
        else:
            result[key] = value
    return result


def _validate_disallowed_runtime_keys(user_config: dict[str, object]) -> None:
    """Reject config keys that must be runtime policy, not user configuration."""
    disallowed: list[str] = []

    tmux = user_config.get("tmux")
    if isinstance(tmux, dict) and "binary" in tmux:
        disallowed.append("tmux.binary")

    if disallowed:
        joined = ", ".join(disallowed)
        raise ValueError(
            f"config.yml contains disallowed runtime keys: {joined}. "
            "The tmux binary is resolved by runtime policy and cannot be configured."
        )


def _positive_int(value: object, key: str) -> int:
    number = int(value)  # type: ignore[call-overload]
    if number <= 0:
        raise ValueError(f"{key} must be a positive integer, got {value!r}")
    return number


def _build_config(raw: dict[str, object]) -> Config:
    """Build typed Config from raw dict with proper type conversion."""
    tmux_raw: Any = raw["tmux"]
    agent_raw: Any = raw["agent"]
    polling_raw: Any = raw["polling"]
    hooks_raw: Any = raw["hooks"]
    transcripts_raw: Any = raw["transcripts"]
    context_raw: Any = raw["context"]
    status_raw: Any = raw.get("status", {"transcript_fallback": False})
    ui_raw: Any = raw["ui"]

    return Config(
        tmux=TmuxConfig(
            session_name=str(tmux_raw["session_name"]),
            scratch_window=str(tmux_raw["scratch_window"]),
            binary=resolve_tmux_binary(),
        ),
        agent=AgentConfig(
            process_name=str(agent_raw["process_name"]),
            command=str(agent_raw["command"]),
        ),
        polling=PollingConfig(
            refresh_interval_ms=_positive_int(polling_raw["refresh_interval_ms"], "polling.refresh_interval_ms"),
            discovery_failure_threshold=_positive_int(
                polling_raw["discovery_failure_threshold"], "polling.discovery_failure_threshold"
            ),
        ),
        hooks=HooksConfig(state_dir=os.path.expanduser(str(hooks_raw["state_dir"]))),
        transcripts=TranscriptsConfig(projects_dir=os.path.expanduser(str(transcripts_raw["projects_dir"]))),
        context=ContextConfig(
            window_tokens=_positive_int(context_raw["window_tokens"], "context.window_tokens"),
            tail_bytes=_positive_int(context_raw["tail_bytes"], "context.tail_bytes"),
        ),
        status=StatusConfig(transcript_fallback=bool(status_raw.get("transcript_fallback", False))),
        ui=UIConfig(
            error_dismiss_seconds=float(ui_raw["error_dismiss_seconds"]),
            placeholder_message=str(ui_raw["placeholder_message"]),
        ),
    )


def get_config_path() -> Path:
    env_path = os.getenv("CLAUDE_TERMINAL_CONFIG_PATH")
    return Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_PATH


def load_config(path: Path | None = None) -> Config:
    """Load the user config file (if any) merged over DEFAULT_CONFIG."""
    config_path = path or get_config_path()
    user_config: Any = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            raw_user_config = yaml.safe_load(f)
        # Expand environment variables
        user_config = expand_env_vars(raw_user_config) if isinstance(raw_user_config, dict) else {}
        _validate_disallowed_runtime_keys(user_config)

    merged = _deep_merge(DEFAULT_CONFIG, user_config)
    return _build_config(merged)


config = load_config()
