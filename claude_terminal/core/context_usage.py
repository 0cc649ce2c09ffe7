"""Context window usage from Claude Code JSONL transcripts.

Transcripts grow to tens of megabytes, so only the tail is read, lines are
pre-filtered before JSON parsing, and results are cached per file mtime.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Optional

from claude_terminal.config import config
from claude_terminal.constants import TRANSCRIPT_USAGE_MARKER
from claude_terminal.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class _CacheEntry:
    mtime_ns: int
    percent: Optional[int]


def compute_percent(usage: dict[str, object], window_tokens: int) -> int:
    """Percentage of the context window consumed by one usage record.

    Output tokens do not occupy the window; input, cache creation and cache
    read tokens do.
    """
    total = 0
    for key in ("input_tokens", "cache_creation_input_tokens", "cache_read_input_tokens"):
        value = usage.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            total += int(value)
    return max(0, min(round(100 * total / window_tokens), 100))


def extract_usage(entry: object) -> Optional[dict[str, object]]:
    """Usage of a primary-agent assistant entry, None for anything else."""
    if not isinstance(entry, dict):
        return None
    if entry.get("type") != "assistant" or entry.get("isSidechain") is True:
        return None
    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    usage = message.get("usage")
    if not isinstance(usage, dict) or not isinstance(usage.get("input_tokens"), (int, float)):
        return None
    return usage


class ContextUsageTracker:
    """Computes context usage per transcript path with mtime and last-known-good caches."""

    def __init__(self, window_tokens: Optional[int] = None, tail_bytes: Optional[int] = None) -> None:
        self.window_tokens = window_tokens or config.context.window_tokens
        self.tail_bytes = tail_bytes or config.context.tail_bytes
        self._cache: dict[str, _CacheEntry] = {}
        self._last_known: dict[str, int] = {}
        self.reads = 0

    def _read_tail(self, path: str, size: int) -> str:
        self.reads += 1
        with open(path, "rb") as f:
            if size > self.tail_bytes:
                f.seek(size - self.tail_bytes)
            data = f.read(self.tail_bytes)
        return data.decode("utf-8", errors="replace")

    def _latest_usage_percent(self, content: str) -> Optional[int]:
        for line in reversed(content.splitlines()):
            if TRANSCRIPT_USAGE_MARKER not in line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                # First line of a tail read is usually partial
                continue
            usage = extract_usage(entry)
            if usage is not None:
                return compute_percent(usage, self.window_tokens)
        return None

    def get_context_usage_percent(self, transcript_path: Optional[str]) -> Optional[int]:
        """Context usage 0-100, or None when nothing can be derived.

        When the tail holds no primary-agent usage (sub-agents flooding the
        transcript with sidechain entries) the last successfully computed
        value for the path is returned.
        """
        if not transcript_path:
            return None
        try:
            stat = os.stat(transcript_path)
        except OSError:
            return None

        cached = self._cache.get(transcript_path)
        if cached is not None and cached.mtime_ns == stat.st_mtime_ns:
            return cached.percent

        try:
            content = self._read_tail(transcript_path, stat.st_size)
        except OSError as e:
            logger.debug("Failed to read transcript {}: {}", transcript_path, e)
            return self._last_known.get(transcript_path)

        percent = self._latest_usage_percent(content)
        if percent is None:
            percent = self._last_known.get(transcript_path)
        else:
            self._last_known[transcript_path] = percent

        self._cache[transcript_path] = _CacheEntry(mtime_ns=stat.st_mtime_ns, percent=percent)
        return percent

    def forget(self, transcript_path: str) -> None:
        self._cache.pop(transcript_path, None)
        self._last_known.pop(transcript_path, None)


_default_tracker = ContextUsageTracker()


def get_context_usage_percent(transcript_path: Optional[str]) -> Optional[int]:
    return _default_tracker.get_context_usage_percent(transcript_path)


def forget_transcript(transcript_path: str) -> None:
    """Drop cached values for a transcript whose session ended."""
    _default_tracker.forget(transcript_path)
