"""Session lifecycle reconciler: the polling driver.

Each tick discovers processes and panes, rebuilds the session list, diffs it
against the previous tick and drives the pane manager to clean up sessions
that went away. When the visible session disappears another internal
session is swapped into the main slot *before* anything is destroyed, so the
main slot never shows a dead pane while a live session exists.

Ticks are single-flight: a tick that would start while the previous tick (or
a user-initiated pane operation) is still running is skipped.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

from claude_terminal.config import config
from claude_terminal.core import context_usage, discovery, hook_state
from claude_terminal.core.app_state import AppState
from claude_terminal.core.errors import DiscoveryError, SubprocessTimeoutError, TmuxCommandError
from claude_terminal.core.models import ClaudeProcess, Session, SessionSnapshotEntry, TickReport, TmuxPane
from claude_terminal.core.pane_session_manager import PaneSessionManager, sanitize_env_key
from claude_terminal.core.session_builder import build_sessions
from claude_terminal.logging_config import get_logger

logger = get_logger(__name__)

ProcessSource = Callable[[], Awaitable[list[ClaudeProcess]]]
PaneSource = Callable[[], Awaitable[list[TmuxPane]]]
SessionBuilder = Callable[..., Awaitable[list[Session]]]
StateCleaner = Callable[[str], int]
ContextForgetter = Callable[[str], None]

_PANE_ERRORS = (TmuxCommandError, SubprocessTimeoutError, OSError)


class SessionReconciler:
    """Polls for sessions and keeps the managed tmux session consistent with them."""

    def __init__(
        self,
        state: AppState,
        pane_manager: PaneSessionManager,
        *,
        process_source: ProcessSource = discovery.scan_processes,
        pane_source: PaneSource = discovery.scan_panes,
        session_builder: SessionBuilder = build_sessions,
        state_cleaner: StateCleaner = hook_state.delete_state_for_path,
        context_forgetter: ContextForgetter = context_usage.forget_transcript,
        failure_threshold: Optional[int] = None,
    ) -> None:
        self.state = state
        self.panes = pane_manager
        self._process_source = process_source
        self._pane_source = pane_source
        self._build = session_builder
        self._clean_state = state_cleaner
        self._forget_context = context_forgetter
        self._failure_threshold = failure_threshold or config.polling.discovery_failure_threshold

        self._lock = asyncio.Lock()
        self._snapshot: dict[str, SessionSnapshotEntry] = {}
        self._previous_order: list[str] = []
        self._pending_spawns: set[str] = set()
        self._consecutive_failures = 0
        self._active_restored = False
        self._tick_tasks: set[asyncio.Task[TickReport]] = set()

    @property
    def previous_order(self) -> list[str]:
        return list(self._previous_order)

    @property
    def snapshot(self) -> dict[str, SessionSnapshotEntry]:
        return dict(self._snapshot)

    # Tick

    async def refresh(self) -> TickReport:
        """Run one reconciliation tick, or skip it when one is already running."""
        if self._lock.locked():
            logger.debug("Previous tick still running, skipping")
            return TickReport(skipped=True)
        async with self._lock:
            try:
                return await self._tick()
            except Exception as e:  # noqa: BLE001 - nothing may stop the poll loop
                logger.exception("Reconciliation tick failed: {}", e)
                return TickReport()

    async def _discover(self) -> Optional[tuple[list[ClaudeProcess], list[TmuxPane]]]:
        processes, panes = await asyncio.gather(self._process_source(), self._pane_source(), return_exceptions=True)
        failures = [result for result in (processes, panes) if isinstance(result, BaseException)]
        if failures:
            for failure in failures:
                if not isinstance(failure, DiscoveryError):
                    raise failure
            self._consecutive_failures += 1
            logger.warning(
                "Discovery failed ({} in a row): {}",
                self._consecutive_failures,
                "; ".join(str(f) for f in failures),
            )
            if self._consecutive_failures >= self._failure_threshold:
                self.state.set_error(f"Session discovery failing: {failures[0]}", source="discovery")
            return None

        if self._consecutive_failures:
            logger.info("Discovery recovered after {} failure(s)", self._consecutive_failures)
        self._consecutive_failures = 0
        self.state.clear_error(source="discovery")
        return processes, panes  # type: ignore[return-value]

    async def _tick(self) -> TickReport:
        discovered = await self._discover()
        if discovered is None:
            # Without a trustworthy listing nothing may be treated as removed
            return TickReport(sessions=list(self.state.sessions))
        processes, panes = discovered

        sessions = await self._build(processes, panes, self._previous_order, managed_session=self.panes.session_name)
        current_ids = {s.id for s in sessions}
        removed = [session_id for session_id in self._snapshot if session_id not in current_ids]
        report = TickReport(sessions=sessions, removed=removed)

        await self._adopt_panes(sessions)
        if not self._active_restored:
            await self._restore_active(sessions)

        if removed:
            await self._cleanup_removed(removed, sessions, report)

        self._snapshot = {
            s.id: SessionSnapshotEntry(
                is_external=s.is_external,
                pane_id=s.pane_id,
                project_path=s.project_path,
                transcript_path=s.transcript_path,
            )
            for s in sessions
        }
        self._previous_order = [s.id for s in sessions]
        self.state.set_sessions(sessions, datetime.now(timezone.utc))
        return report

    async def _adopt_panes(self, sessions: Sequence[Session]) -> None:
        """Record pane mappings for internal sessions tmux reports but the env lacks."""
        internal = [(s, s.pane_id) for s in sessions if s.is_internal and s.pane_id]
        if not internal:
            return
        try:
            recorded = await self.panes.get_all_session_panes()
        except _PANE_ERRORS as e:
            logger.warning("Reading pane mappings failed: {}", e)
            return
        for session, pane_id in internal:
            if recorded.get(sanitize_env_key(session.id)) == pane_id:
                continue
            try:
                await self.panes.record_session_pane(session.id, pane_id)
                logger.debug("Adopted pane {} for {}", pane_id, session.id)
            except _PANE_ERRORS as e:
                logger.warning("Recording pane for {} failed: {}", session.id, e)
                continue
            if pane_id in self._pending_spawns:
                self._pending_spawns.discard(pane_id)
                await self._switch_internal(session)

    async def _restore_active(self, sessions: Sequence[Session]) -> None:
        """Pick up the active session after a dashboard restart."""
        self._active_restored = True
        if self.state.active_session_id is not None:
            return
        try:
            main_pane = await self.panes.resolve_main_pane_id()
            recorded = await self.panes.get_active_session_id()
        except _PANE_ERRORS as e:
            logger.debug("Restoring active session failed: {}", e)
            return
        occupant = next((s for s in sessions if s.is_internal and s.pane_id and s.pane_id == main_pane), None)
        if occupant is not None:
            self.state.active_session_id = occupant.id
        elif recorded and any(s.id == recorded for s in sessions):
            self.state.active_session_id = recorded

    async def _cleanup_removed(self, removed: Sequence[str], remaining: Sequence[Session], report: TickReport) -> None:
        """Reassign the main slot if needed, then destroy panes of vanished internal sessions."""
        hud_pane = await self._step("resolve dashboard pane", self.panes.get_hud_pane_id())
        # A relaunched agent can reuse the pane of the session it replaced
        live_panes = {s.pane_id for s in remaining if s.pane_id}
        candidates: dict[str, str] = {}
        for session_id in removed:
            entry = self._snapshot[session_id]
            if entry.is_external:
                logger.debug("Session {} was external, leaving its pane alone", session_id)
                continue
            pane_id = entry.pane_id or await self._step("look up pane", self.panes.get_session_pane(session_id))
            if pane_id in live_panes:
                logger.debug("Pane {} of {} now runs another session, keeping it", pane_id, session_id)
            elif pane_id:
                candidates[session_id] = pane_id

        active_id = self.state.active_session_id
        if active_id is not None and active_id in removed:
            await self._reassign_active(active_id, candidates, remaining, report)

        main_pane = await self._step("resolve main pane", self.panes.resolve_main_pane_id())
        protected = {pane for pane in (hud_pane, main_pane) if pane}
        for session_id, pane_id in candidates.items():
            if pane_id in protected:
                logger.debug("Keeping pane {} of {}: it is on screen", pane_id, session_id)
                continue
            if await self._step(f"kill pane {pane_id}", self.panes.kill_pane(pane_id)):
                report.killed_panes.append(pane_id)

        for session_id in removed:
            entry = self._snapshot[session_id]
            if not entry.is_external:
                await self._step("forget pane mapping", self.panes.forget_session_pane(session_id))
            self._forget_hook_state(entry.project_path, remaining)
            self._forget_transcript(entry.transcript_path, remaining)

    async def _reassign_active(
        self,
        active_id: str,
        candidates: dict[str, str],
        remaining: Sequence[Session],
        report: TickReport,
    ) -> None:
        """The visible session went away: show the next internal session, or a placeholder."""
        orphan_pane = candidates.pop(active_id, None)
        main_pane = await self._step("resolve main pane", self.panes.resolve_main_pane_id()) or orphan_pane
        # A session already running in the vanished session's pane or in the main slot stays on screen
        on_screen = {self._snapshot[active_id].pane_id, main_pane} - {None}
        internal = [s for s in remaining if s.is_internal and s.pane_id]
        successor = next((s for s in internal if s.pane_id in on_screen), None) or next(iter(internal), None)

        switched = False
        if successor is not None and main_pane:
            result = await self._step("switch to successor", self.panes.switch_to_session(successor.id, main_pane))
            switched = bool(result and result.success)
            if switched:
                self.state.set_active_session(successor.id)
                report.reassigned_to = successor.id
                logger.info("Active session {} ended, switched to {}", active_id, successor.id)
                # The orphan now sits in scratch
                if orphan_pane and orphan_pane != successor.pane_id:
                    if await self._step(f"kill pane {orphan_pane}", self.panes.kill_pane(orphan_pane)):
                        report.killed_panes.append(orphan_pane)
            elif result is not None:
                self.state.set_error(result.error or f"Could not switch to {successor.project_name}", source="pane")

        if not switched:
            if main_pane:
                await self._step("show placeholder", self.panes.show_placeholder(main_pane))
            await self._step("clear active session", self.panes.clear_active_session_id())
            self.state.set_active_session(None)
            logger.info("Active session {} ended, no session left to show", active_id)

        await self._step("focus dashboard", self.panes.focus_dashboard())

    def _forget_transcript(self, transcript_path: Optional[str], remaining: Sequence[Session]) -> None:
        if not transcript_path or any(s.transcript_path == transcript_path for s in remaining):
            return
        self._forget_context(transcript_path)

    def _forget_hook_state(self, project_path: str, remaining: Sequence[Session]) -> None:
        if any(hook_state.paths_related(project_path, s.project_path) for s in remaining):
            return
        try:
            self._clean_state(project_path)
        except OSError as e:
            logger.warning("Removing hook state for {} failed: {}", project_path, e)

    async def _step(self, name: str, operation: Awaitable[object]) -> object:
        """Await one saga step; failures are logged and the sequence continues."""
        try:
            return await operation
        except _PANE_ERRORS as e:
            logger.warning("Step '{}' failed: {}", name, e)
            return None

    # User intents

    async def switch_to_index(self, index: int) -> bool:
        sessions = self.state.sessions
        if not 0 <= index < len(sessions):
            return False
        self.state.select_index(index)
        return await self.switch_to_session(sessions[index].id)

    async def switch_to_session(self, session_id: str) -> bool:
        """Show a session: swap it in when internal, jump to it when external."""
        session = self.state.session_by_id(session_id)
        if session is None:
            self.state.set_error(f"Session {session_id} is gone", source="pane")
            return False
        async with self._lock:
            if session.is_external:
                result = await self.panes.focus_external(session)
                if not result.success:
                    self.state.set_error(result.error or "Jump failed", source="pane")
                return result.success
            return await self._switch_internal(session)

    async def _switch_internal(self, session: Session) -> bool:
        try:
            if session.pane_id and not await self.panes.get_session_pane(session.id):
                await self.panes.record_session_pane(session.id, session.pane_id)
            main_pane = await self.panes.ensure_main_pane()
        except _PANE_ERRORS as e:
            self.state.set_error(str(e), source="pane")
            return False
        if not main_pane:
            self.state.set_error("No main pane to show sessions in", source="pane")
            return False
        result = await self.panes.switch_to_session(session.id, main_pane)
        if not result.success:
            self.state.set_error(result.error or "Switch failed", source="pane")
            return False
        self.state.set_active_session(session.id)
        self.state.clear_error(source="pane")
        return True

    async def spawn_session(self, cwd: str) -> Optional[str]:
        """Start a new agent pane; it is shown once discovery picks it up."""
        async with self._lock:
            try:
                pane_id = await self.panes.create_agent_pane(cwd)
            except _PANE_ERRORS as e:
                self.state.set_error(f"Could not start session: {e}", source="pane")
                return None
        self._pending_spawns.add(pane_id)
        return pane_id

    def is_spawn_pending(self, pane_id: str) -> bool:
        return pane_id in self._pending_spawns

    async def return_focus(self) -> None:
        await self._step("focus dashboard", self.panes.focus_dashboard())

    def select_index(self, index: int) -> None:
        self.state.select_index(index)

    def dismiss_error(self) -> None:
        self.state.dismiss_error()

    # Loop

    async def run(self, stop_event: asyncio.Event, interval_ms: Optional[int] = None) -> None:
        """Fire a tick every interval until `stop_event` is set."""
        interval = (interval_ms or self.state.refresh_interval_ms) / 1000
        logger.info("Reconciler started (interval {}s)", interval)
        while not stop_event.is_set():
            task = asyncio.create_task(self.refresh())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            self.state.expire_error(config.ui.error_dismiss_seconds)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        if self._tick_tasks:
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)
        logger.info("Reconciler stopped")
