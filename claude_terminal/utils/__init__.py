"""Small formatting and config helpers shared across claude-terminal."""

import os
import re
from datetime import datetime, timezone
from typing import Optional


def expand_env_vars(config: object) -> object:
    """Recursively expand environment variables in config.

    Replaces ${VAR} patterns with environment variable values. Unknown
    variables are left as-is.

    Args:
        config: Configuration object (dict, list, str, or primitive)

    Returns:
        Configuration with all ${VAR} patterns replaced
    """
    if isinstance(config, dict):
        return {k: expand_env_vars(v) for k, v in config.items()}  # type: ignore[misc]
    if isinstance(config, list):
        return [expand_env_vars(item) for item in config]
    if isinstance(config, str):

        def replace_env_var(match: re.Match[str]) -> str:
            env_var = match.group(1)
            return os.getenv(env_var, match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, config)
    return config


def format_duration(seconds: float) -> str:
    """Format an elapsed duration for the session list.

    - under a minute: "< 1 min"
    - under an hour: "45 min"
    - under a day: "2 hr 5 min" (or "2 hr")
    - otherwise: "1 day 3 hr" / "2 days"
    """
    minutes = int(seconds) // 60
    hours = minutes // 60
    days = hours // 24

    if minutes < 1:
        return "< 1 min"
    if hours < 1:
        return f"{minutes} min"
    if days < 1:
        remaining_minutes = minutes % 60
        if remaining_minutes == 0:
            return f"{hours} hr"
        return f"{hours} hr {remaining_minutes} min"

    remaining_hours = hours % 24
    day_label = "day" if days == 1 else "days"
    if remaining_hours == 0:
        return f"{days} {day_label}"
    return f"{days} {day_label} {remaining_hours} hr"


def format_duration_since(start: datetime, now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    return format_duration(max((current - start).total_seconds(), 0.0))


def format_relative_time(moment: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Render a refresh timestamp as "5s ago", "3m ago", "2h ago" or "never"."""
    if moment is None:
        return "never"
    current = now or datetime.now(timezone.utc)
    seconds = max(int((current - moment).total_seconds()), 0)
    if seconds < 60:
        return f"{seconds}s ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    return f"{minutes // 60}h ago"
