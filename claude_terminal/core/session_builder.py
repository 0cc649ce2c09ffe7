"""Build canonical Session values from discovery results.

Sessions are rebuilt from scratch every poll. Continuity across polls comes
only from `previous_order`: sessions keep their slot in the list, blocked
sessions float to the top, and newcomers are appended oldest first.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Optional, Sequence

from claude_terminal.config import config
from claude_terminal.core import context_usage, discovery, hook_state, status_detector
from claude_terminal.core.models import (
    ClaudeProcess,
    RuntimeState,
    Session,
    SessionStatus,
    TmuxPane,
    session_id_for_pid,
)
from claude_terminal.logging_config import get_logger

logger = get_logger(__name__)

CwdResolver = Callable[[int], Awaitable[Optional[str]]]
RuntimeResolver = Callable[[str], RuntimeState]
ContextResolver = Callable[[Optional[str]], Optional[int]]


def _segments(path: str) -> list[str]:
    return [part for part in PurePosixPath(path).parts if part != "/"]


def extract_project_name(project_path: str, all_paths: Sequence[str]) -> str:
    """Folder name, or `parent/folder` when another path ends in the same folder."""
    segments = _segments(project_path)
    if not segments:
        return project_path
    folder = segments[-1]
    duplicated = any(
        other != project_path and (_segments(other) or [""])[-1] == folder for other in all_paths
    )
    if duplicated and len(segments) >= 2:
        return f"{segments[-2]}/{folder}"
    return folder


def _age_key(session: Session) -> tuple[datetime, int]:
    return session.started_at, session.pid


def sort_sessions(sessions: Sequence[Session], previous_order: Sequence[str]) -> list[Session]:
    """Known sessions keep their previous relative order; new ones follow oldest first."""
    position = {session_id: index for index, session_id in enumerate(previous_order)}
    existing = sorted((s for s in sessions if s.id in position), key=lambda s: position[s.id])
    newcomers = sorted((s for s in sessions if s.id not in position), key=_age_key)
    return existing + newcomers


def sort_sessions_with_blocked(sessions: Sequence[Session], previous_order: Sequence[str]) -> list[Session]:
    """Blocked sessions first (oldest first), then the stable order for the rest."""
    blocked = sorted((s for s in sessions if s.status == SessionStatus.BLOCKED), key=_age_key)
    others = [s for s in sessions if s.status != SessionStatus.BLOCKED]
    return blocked + sort_sessions(others, previous_order)


def derive_runtime_state(cwd: str) -> RuntimeState:
    """Hook state when a record matches; transcript inference only when enabled."""
    runtime = hook_state.resolve_runtime_state(cwd)
    if not runtime.from_hook and config.status.transcript_fallback:
        status, model = status_detector.get_transcript_status(cwd)
        runtime = RuntimeState(status=status)
        if model is not None:
            runtime.model = model
    if runtime.transcript_path is None:
        runtime.transcript_path = status_detector.find_latest_log_file(cwd)
    return runtime


async def build_sessions(
    processes: Sequence[ClaudeProcess],
    panes: Sequence[TmuxPane],
    previous_order: Sequence[str],
    *,
    managed_session: Optional[str] = None,
    cwd_resolver: CwdResolver = discovery.get_working_directory,
    runtime_resolver: RuntimeResolver = derive_runtime_state,
    context_resolver: ContextResolver = context_usage.get_context_usage_percent,
    now: Optional[datetime] = None,
) -> list[Session]:
    """Merge processes, panes and side-channel state into ordered sessions.

    Processes whose working directory cannot be resolved are dropped. A
    failure deriving one session's state only degrades that session.
    """
    managed = managed_session or config.tmux.session_name
    current = now or datetime.now(timezone.utc)

    cwds = await asyncio.gather(*(cwd_resolver(proc.pid) for proc in processes), return_exceptions=True)
    resolved: list[tuple[ClaudeProcess, str]] = []
    for proc, cwd in zip(processes, cwds):
        if isinstance(cwd, BaseException):
            logger.debug("cwd lookup failed for pid {}: {}", proc.pid, cwd)
            continue
        if cwd:
            resolved.append((proc, cwd))

    all_paths = [cwd for _, cwd in resolved]
    sessions: list[Session] = []
    for proc, cwd in resolved:
        match = discovery.correlate(proc.ppid, panes)
        session = Session(
            id=session_id_for_pid(proc.pid),
            pid=proc.pid,
            project_path=cwd,
            project_name=extract_project_name(cwd, all_paths),
            started_at=current - timedelta(seconds=proc.elapsed_seconds),
            last_activity=current,
            in_tmux=match.in_tmux,
            tmux_target=match.target,
            pane_id=match.pane_id,
            tmux_session=match.session_name,
            is_external=match.session_name != managed,
        )

        try:
            runtime = runtime_resolver(cwd)
        except Exception as e:  # noqa: BLE001 - one bad record must not hide the session
            logger.warning("Runtime state for {} unavailable: {}", session.id, e)
            runtime = RuntimeState()
        session.status = runtime.status
        session.model = runtime.model
        session.subagent_count = runtime.subagent_count
        session.notification = runtime.notification
        session.transcript_path = runtime.transcript_path
        if runtime.last_update is not None:
            session.last_activity = runtime.last_update

        try:
            session.context_usage = context_resolver(runtime.transcript_path) or 0
        except Exception as e:  # noqa: BLE001
            logger.warning("Context usage for {} unavailable: {}", session.id, e)
            session.context_usage = 0

        sessions.append(session)

    return sort_sessions_with_blocked(sessions, previous_order)
