"""Transcript lookup and transcript-based status inference.

Hook state is the primary status source. This module locates a project's
transcript when the hooks did not record one, and can infer a coarse status
from the last transcript entry for sessions that run without hooks.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from claude_terminal.config import config
from claude_terminal.constants import TOOL_BLOCKED_THRESHOLD_SECONDS
from claude_terminal.core.models import ModelName, SessionStatus
from claude_terminal.logging_config import get_logger

logger = get_logger(__name__)

_LAST_LINES_TO_TRY = 10


@dataclass
class LogEntry:
    """Normalized transcript entry."""

    type: str  # user | assistant | summary
    timestamp: Optional[datetime]
    model: Optional[str] = None
    stop_reason: Optional[str] = None
    content_types: list[str] = field(default_factory=list)


def encode_project_path(project_path: str) -> str:
    """Claude's project directory naming: `/home/u/app` -> `-home-u-app`."""
    return os.path.abspath(project_path).replace("/", "-")


def find_latest_log_file(project_path: str, projects_dir: Optional[Path] = None) -> Optional[str]:
    """Most recently modified transcript for a project, None when there is none."""
    base = projects_dir if projects_dir is not None else Path(config.transcripts.projects_dir)
    log_dir = base / encode_project_path(project_path)
    try:
        candidates = [(p.stat().st_mtime, p) for p in log_dir.glob("*.jsonl")]
    except OSError:
        return None
    if not candidates:
        return None
    candidates.sort(key=lambda item: item[0], reverse=True)
    return str(candidates[0][1])


def _parse_timestamp(value: object) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _content_types(message: dict[str, object]) -> list[str]:
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [str(block.get("type")) for block in content if isinstance(block, dict)]


def normalize_entry(raw: object) -> Optional[LogEntry]:
    """Flatten both top-level entries and entries nested under `progress`."""
    if not isinstance(raw, dict):
        return None
    entry_type = raw.get("type")

    if entry_type == "summary":
        return LogEntry(type="summary", timestamp=datetime.now(timezone.utc))

    if entry_type == "progress":
        data = raw.get("data")
        wrapper = data.get("message") if isinstance(data, dict) else None
        if not isinstance(wrapper, dict):
            return None
        entry_type = wrapper.get("type")
        timestamp = wrapper.get("timestamp")
        message = wrapper.get("message")
    else:
        timestamp = raw.get("timestamp")
        message = raw.get("message")

    if entry_type not in ("user", "assistant"):
        return None
    if raw.get("isSidechain") is True:
        return None
    message = message if isinstance(message, dict) else {}
    model = message.get("model")
    stop_reason = message.get("stop_reason")
    return LogEntry(
        type=str(entry_type),
        timestamp=_parse_timestamp(timestamp),
        model=model if isinstance(model, str) else None,
        stop_reason=stop_reason if isinstance(stop_reason, str) else None,
        content_types=_content_types(message),
    )


def read_last_entry(file_path: str) -> Optional[LogEntry]:
    """Last recognizable entry; the final lines may be mid-write so a few are tried."""
    try:
        with open(file_path, encoding="utf-8", errors="replace") as f:
            lines = [line for line in f if line.strip()]
    except OSError:
        return None

    for line in reversed(lines[-_LAST_LINES_TO_TRY:]):
        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            continue
        entry = normalize_entry(raw)
        if entry is not None:
            return entry
    return None


def extract_model(model_string: Optional[str]) -> Optional[ModelName]:
    if not model_string or not model_string.strip():
        return None
    lowered = model_string.lower()
    if "opus" in lowered:
        return ModelName.OPUS
    if "haiku" in lowered:
        return ModelName.HAIKU
    if "sonnet" in lowered:
        return ModelName.SONNET
    return None


def detect_status(entry: LogEntry, now: Optional[datetime] = None) -> SessionStatus:
    """Status state machine over the last transcript entry.

    - user entry: working (the agent is about to answer)
    - summary: idle
    - assistant `tool_use`: working, blocked once the tool request is older
      than the approval threshold
    - assistant `end_turn`: idle
    - assistant without a stop reason: working (still generating)
    """
    if entry.type == "user":
        return SessionStatus.WORKING
    if entry.type == "summary":
        return SessionStatus.IDLE

    if entry.stop_reason == "tool_use":
        current = now or datetime.now(timezone.utc)
        if entry.timestamp is not None:
            elapsed = (current - entry.timestamp).total_seconds()
            if elapsed > TOOL_BLOCKED_THRESHOLD_SECONDS:
                return SessionStatus.BLOCKED
        return SessionStatus.WORKING
    if entry.stop_reason == "end_turn":
        return SessionStatus.IDLE
    if entry.stop_reason is None:
        return SessionStatus.WORKING
    return SessionStatus.IDLE


def get_transcript_status(
    project_path: str, projects_dir: Optional[Path] = None
) -> tuple[SessionStatus, Optional[ModelName]]:
    """Status and model from the project's newest transcript, idle when unknown."""
    log_file = find_latest_log_file(project_path, projects_dir)
    if not log_file:
        return SessionStatus.IDLE, None
    entry = read_last_entry(log_file)
    if entry is None:
        return SessionStatus.IDLE, None
    return detect_status(entry), extract_model(entry.model)
