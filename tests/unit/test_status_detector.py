"""Unit tests for transcript lookup and status inference."""

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from claude_terminal.core.models import ModelName, SessionStatus
from claude_terminal.core.status_detector import (
    LogEntry,
    detect_status,
    encode_project_path,
    extract_model,
    find_latest_log_file,
    get_transcript_status,
    normalize_entry,
    read_last_entry,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _assistant_entry(stop_reason, seconds_ago: float = 0.0) -> LogEntry:
    return LogEntry(type="assistant", timestamp=NOW - timedelta(seconds=seconds_ago), stop_reason=stop_reason)


def test_encode_project_path():
    assert encode_project_path("/home/u/cc-tui") == "-home-u-cc-tui"


def test_find_latest_log_file_picks_newest(tmp_path: Path):
    log_dir = tmp_path / encode_project_path("/work/app")
    log_dir.mkdir()
    older = log_dir / "a.jsonl"
    newer = log_dir / "b.jsonl"
    older.write_text("{}\n")
    newer.write_text("{}\n")
    (log_dir / "notes.txt").write_text("x")
    os.utime(older, (1_000, 1_000))
    os.utime(newer, (2_000, 2_000))

    assert find_latest_log_file("/work/app", tmp_path) == str(newer)
    assert find_latest_log_file("/work/other", tmp_path) is None


def test_detect_status_state_machine():
    assert detect_status(LogEntry(type="user", timestamp=NOW), NOW) == SessionStatus.WORKING
    assert detect_status(LogEntry(type="summary", timestamp=NOW), NOW) == SessionStatus.IDLE
    assert detect_status(_assistant_entry("end_turn"), NOW) == SessionStatus.IDLE
    assert detect_status(_assistant_entry(None), NOW) == SessionStatus.WORKING
    assert detect_status(_assistant_entry("tool_use", seconds_ago=2), NOW) == SessionStatus.WORKING
    assert detect_status(_assistant_entry("tool_use", seconds_ago=30), NOW) == SessionStatus.BLOCKED
    assert detect_status(_assistant_entry("max_tokens"), NOW) == SessionStatus.IDLE


def test_extract_model():
    assert extract_model("claude-opus-4-20250514") == ModelName.OPUS
    assert extract_model("claude-3-5-haiku") == ModelName.HAIKU
    assert extract_model("claude-sonnet-4") == ModelName.SONNET
    assert extract_model("gpt-4") is None
    assert extract_model("  ") is None


def test_normalize_entry_handles_progress_wrapper():
    raw = {
        "type": "progress",
        "data": {
            "message": {
                "type": "assistant",
                "timestamp": "2026-01-01T12:00:00Z",
                "message": {"model": "claude-opus-4", "stop_reason": "tool_use", "content": [{"type": "tool_use"}]},
            }
        },
    }
    entry = normalize_entry(raw)
    assert entry is not None
    assert entry.type == "assistant"
    assert entry.stop_reason == "tool_use"
    assert entry.content_types == ["tool_use"]
    assert entry.timestamp == NOW


def test_normalize_entry_ignores_sidechain_and_other_types():
    assert normalize_entry({"type": "assistant", "isSidechain": True, "message": {}}) is None
    assert normalize_entry({"type": "file-history-snapshot"}) is None
    assert normalize_entry(["not", "a", "dict"]) is None


def test_read_last_entry_skips_truncated_line(tmp_path: Path):
    transcript = tmp_path / "t.jsonl"
    good = json.dumps({"type": "assistant", "timestamp": "2026-01-01T12:00:00Z", "message": {"stop_reason": "end_turn"}})
    transcript.write_text(good + "\n" + '{"type": "assis', encoding="utf-8")

    entry = read_last_entry(str(transcript))

    assert entry is not None
    assert entry.stop_reason == "end_turn"


def test_get_transcript_status_defaults_without_logs(tmp_path: Path):
    assert get_transcript_status("/nowhere", tmp_path) == (SessionStatus.IDLE, None)
