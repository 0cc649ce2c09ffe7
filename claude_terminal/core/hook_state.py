"""Hook state records: per-session JSON files written by the instrumentation hooks.

Each Claude Code session's hooks keep `<state_dir>/<sessionId>.json` current.
The dashboard only knows a process's working directory, so records are matched
by path: a record belongs to a session when its cwd equals the session's cwd
or one is an ancestor of the other. The most recently updated match wins.
"""

from __future__ import annotations

import fcntl
import json
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional

from pydantic import ValidationError

from claude_terminal.config import config
from claude_terminal.core.models import HookStateRecord, RuntimeState
from claude_terminal.logging_config import get_logger

logger = get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _state_dir(state_dir: Optional[Path]) -> Path:
    return state_dir if state_dir is not None else Path(config.hooks.state_dir)


def _normalize(path: str) -> str:
    return os.path.normpath(os.path.expanduser(path))


def paths_related(a: str, b: str) -> bool:
    """True when the paths are equal or one contains the other."""
    first, second = _normalize(a), _normalize(b)
    if first == second:
        return True
    try:
        common = os.path.commonpath([first, second])
    except ValueError:
        # Mixed absolute/relative paths
        return False
    return common in (first, second)


def read_state_file(path: Path) -> Optional[HookStateRecord]:
    """Parse one state file; corrupt or partial files yield None."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return HookStateRecord.model_validate(data)
    except (json.JSONDecodeError, ValidationError, OSError, UnicodeDecodeError) as e:
        logger.debug("Skipping unreadable hook state {}: {}", path, e)
        return None


def iter_state_files(state_dir: Optional[Path] = None) -> Iterator[tuple[Path, HookStateRecord]]:
    directory = _state_dir(state_dir)
    try:
        entries = sorted(directory.glob("*.json"))
    except OSError as e:
        logger.debug("Hook state dir {} unreadable: {}", directory, e)
        return
    for path in entries:
        record = read_state_file(path)
        if record is not None:
            yield path, record


def find_state_by_path(cwd: str, state_dir: Optional[Path] = None) -> Optional[HookStateRecord]:
    """Return the most recently updated record related to `cwd`."""
    best: Optional[HookStateRecord] = None
    for _, record in iter_state_files(state_dir):
        if not paths_related(record.cwd, cwd):
            continue
        if best is None or (record.last_update or _EPOCH) > (best.last_update or _EPOCH):
            best = record
    return best


def resolve_runtime_state(cwd: str, state_dir: Optional[Path] = None) -> RuntimeState:
    """Status, model and subagent count for a session, defaults when unmatched."""
    record = find_state_by_path(cwd, state_dir)
    if record is None:
        return RuntimeState()
    return record.to_runtime_state()


def delete_state_for_path(cwd: str, state_dir: Optional[Path] = None) -> int:
    """Remove records whose cwd equals `cwd` exactly. Returns how many were removed."""
    target = _normalize(cwd)
    removed = 0
    for path, record in iter_state_files(state_dir):
        if _normalize(record.cwd) != target:
            continue
        try:
            path.unlink()
            removed += 1
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete hook state {}: {}", path, e)
    if removed:
        logger.debug("Deleted {} hook state file(s) for {}", removed, cwd)
    return removed


def state_path_for(session_id: str, state_dir: Optional[Path] = None) -> Path:
    safe_id = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in session_id)
    return _state_dir(state_dir) / f"{safe_id}.json"


@contextmanager
def _locked(path: Path) -> Iterator[None]:
    lock_path = path.with_suffix(".lock")
    with open(lock_path, "w", encoding="utf-8") as lock_file:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


def write_state(record: HookStateRecord, path: Path) -> None:
    """Write a record with temp-file + atomic replace."""
    tmp_path = path.with_suffix(".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(record.to_json_dict(), f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


def update_state(
    session_id: str,
    cwd: str,
    mutate: Callable[[HookStateRecord], None],
    state_dir: Optional[Path] = None,
) -> HookStateRecord:
    """Read-modify-write one session's record under an advisory lock.

    Hooks for the same session can fire concurrently (subagents), so the
    whole read-modify-write holds the lock.
    """
    path = state_path_for(session_id, state_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    with _locked(path):
        record = read_state_file(path) if path.exists() else None
        if record is None:
            record = HookStateRecord(cwd=cwd, session_id=session_id)
        mutate(record)
        record.cwd = cwd or record.cwd
        record.session_id = session_id
        record.last_update = datetime.now(timezone.utc)
        write_state(record, path)
    return record
