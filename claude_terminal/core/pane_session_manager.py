"""Session-to-pane mapping and the scratch-window swap protocol.

Layout of the managed tmux session:

    primary window                      scratch window (hidden)
    ┌───────────┬──────────────────┐    ┌──────────┬──────────┐
    │ dashboard │    main pane     │    │ session  │ session  │
    │   (HUD)   │ (active session) │    │  pane    │  pane    │
    └───────────┴──────────────────┘    └──────────┴──────────┘

Switching sessions swaps the target session's pane into the main slot.
tmux pane ids travel with pane content, so after a swap the main slot is
occupied by the target's pane id and the previous occupant sits in scratch.
Mappings live in session-scoped tmux environment variables so they survive
a dashboard restart.
"""

from __future__ import annotations

import os
import re
import shlex
from typing import Awaitable, Callable, Optional

from claude_terminal.config import config
from claude_terminal.constants import ACTIVE_SESSION_ENV, HUD_PANE_ENV, MAIN_PANE_ENV, PANE_ENV_PREFIX
from claude_terminal.core import tmux_bridge
from claude_terminal.core.errors import SubprocessTimeoutError, TmuxCommandError
from claude_terminal.core.models import Session, SwitchResult
from claude_terminal.logging_config import get_logger

logger = get_logger(__name__)

TmuxRunner = Callable[..., Awaitable[str]]


def sanitize_env_key(session_id: str) -> str:
    """Session ids become env var suffixes: anything non-alphanumeric is `_`."""
    return re.sub(r"[^A-Za-z0-9]", "_", session_id)


def parse_environment(output: str) -> dict[str, str]:
    """Parse `show-environment` output; `-NAME` lines (unset) are skipped."""
    env: dict[str, str] = {}
    for line in output.splitlines():
        if not line or line.startswith("-") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        env[key] = value.strip()
    return env


class PaneSessionManager:
    """Owns session -> pane mappings inside the managed tmux session."""

    def __init__(
        self,
        session_name: Optional[str] = None,
        scratch_window: Optional[str] = None,
        agent_command: Optional[str] = None,
        runner: Optional[TmuxRunner] = None,
    ) -> None:
        self.session_name = session_name or config.tmux.session_name
        self.scratch_window = scratch_window or config.tmux.scratch_window
        self.agent_command = agent_command or config.agent.command
        self._runner: TmuxRunner = runner or tmux_bridge.run_tmux

    @property
    def scratch_target(self) -> str:
        return f"{self.session_name}:{self.scratch_window}"

    async def _run_tmux(self, *args: str) -> str:
        """Run a tmux command. Raises TmuxCommandError / SubprocessTimeoutError."""
        return await self._runner(*args)

    # Environment-backed mapping

    async def _get_env(self, key: str) -> Optional[str]:
        try:
            output = await self._run_tmux("show-environment", "-t", self.session_name, key)
        except TmuxCommandError:
            # "unknown variable" when never set
            return None
        line = output.strip()
        if not line or line.startswith("-"):
            return None
        _, _, value = line.partition("=")
        return value.strip() or None

    async def _set_env(self, key: str, value: str) -> None:
        await self._run_tmux("set-environment", "-t", self.session_name, key, value)

    async def _unset_env(self, key: str) -> None:
        try:
            await self._run_tmux("set-environment", "-u", "-t", self.session_name, key)
        except TmuxCommandError as e:
            logger.debug("Unset {} failed: {}", key, e)

    async def get_session_pane(self, session_id: str) -> Optional[str]:
        return await self._get_env(f"{PANE_ENV_PREFIX}{sanitize_env_key(session_id)}")

    async def get_all_session_panes(self) -> dict[str, str]:
        """All recorded mappings as {sanitized session key: pane id}, in one call."""
        try:
            output = await self._run_tmux("show-environment", "-t", self.session_name)
        except TmuxCommandError as e:
            logger.debug("show-environment failed: {}", e)
            return {}
        env = parse_environment(output)
        return {key[len(PANE_ENV_PREFIX) :]: value for key, value in env.items() if key.startswith(PANE_ENV_PREFIX)}

    async def record_session_pane(self, session_id: str, pane_id: str) -> None:
        await self._set_env(f"{PANE_ENV_PREFIX}{sanitize_env_key(session_id)}", pane_id)

    async def forget_session_pane(self, session_id: str) -> None:
        await self._unset_env(f"{PANE_ENV_PREFIX}{sanitize_env_key(session_id)}")

    async def get_active_session_id(self) -> Optional[str]:
        return await self._get_env(ACTIVE_SESSION_ENV)

    async def set_active_session_id(self, session_id: str) -> None:
        await self._set_env(ACTIVE_SESSION_ENV, session_id)

    async def clear_active_session_id(self) -> None:
        await self._unset_env(ACTIVE_SESSION_ENV)

    # Pane roles

    async def get_hud_pane_id(self) -> Optional[str]:
        """The dashboard's own pane: recorded at bootstrap, else $TMUX_PANE."""
        recorded = await self._get_env(HUD_PANE_ENV)
        return recorded or os.environ.get("TMUX_PANE")

    async def resolve_main_pane_id(self) -> Optional[str]:
        """Current occupant of the main slot.

        The main slot is the non-dashboard pane of the dashboard's window;
        the recorded value is only a fallback.
        """
        hud_pane = await self.get_hud_pane_id()
        if hud_pane:
            try:
                output = await self._run_tmux("list-panes", "-t", hud_pane, "-F", "#{pane_id}")
            except TmuxCommandError as e:
                logger.debug("Listing dashboard window panes failed: {}", e)
            else:
                for pane_id in output.split():
                    if pane_id != hud_pane:
                        return pane_id
        return await self._get_env(MAIN_PANE_ENV)

    async def ensure_main_pane(self) -> Optional[str]:
        """Main slot pane id, creating the slot beside the dashboard if missing."""
        main_pane = await self.resolve_main_pane_id()
        if main_pane:
            return main_pane
        hud_pane = await self.get_hud_pane_id()
        if not hud_pane:
            return None
        output = await self._run_tmux("split-window", "-h", "-d", "-t", hud_pane, "-P", "-F", "#{pane_id}")
        main_pane = output.strip()
        await self._set_env(MAIN_PANE_ENV, main_pane)
        logger.info("Created main pane {}", main_pane)
        return main_pane

    # Scratch window

    async def ensure_scratch_window(self) -> str:
        """Create the hidden scratch window once; returns its target."""
        output = await self._run_tmux("list-windows", "-t", self.session_name, "-F", "#{window_name}")
        if self.scratch_window not in output.split("\n"):
            await self._run_tmux("new-window", "-d", "-t", f"{self.session_name}:", "-n", self.scratch_window)
            logger.debug("Created scratch window {}", self.scratch_target)
        return self.scratch_target

    async def create_agent_pane(self, cwd: str) -> str:
        """Start the agent in a new scratch pane rooted at `cwd`; returns the pane id."""
        scratch = await self.ensure_scratch_window()
        output = await self._run_tmux("split-window", "-d", "-t", scratch, "-P", "-F", "#{pane_id}", "-c", cwd)
        pane_id = output.strip()
        await self._run_tmux("send-keys", "-t", pane_id, self.agent_command, "Enter")
        try:
            await self._run_tmux("select-layout", "-t", scratch, "tiled")
        except TmuxCommandError as e:
            logger.debug("Scratch relayout failed: {}", e)
        logger.info("Started agent pane {} in {}", pane_id, cwd)
        return pane_id

    async def create_session_pane(self, session_id: str, cwd: str) -> str:
        pane_id = await self.create_agent_pane(cwd)
        await self.record_session_pane(session_id, pane_id)
        return pane_id

    # Switching and focus

    async def switch_to_session(self, session_id: str, main_pane_id: str) -> SwitchResult:
        """Swap the session's pane into the main slot and focus it."""
        try:
            target_pane = await self.get_session_pane(session_id)
            if not target_pane:
                return SwitchResult(success=False, error=f"No pane found for session {session_id}")

            if target_pane != main_pane_id:
                await self._run_tmux("swap-pane", "-d", "-s", target_pane, "-t", main_pane_id)
            await self.set_active_session_id(session_id)
            await self._set_env(MAIN_PANE_ENV, target_pane)
            await self._run_tmux("select-pane", "-t", target_pane)
            logger.info("Switched to {} (pane {})", session_id, target_pane)
            return SwitchResult(success=True)
        except (TmuxCommandError, SubprocessTimeoutError) as e:
            logger.warning("Switch to {} failed: {}", session_id, e)
            return SwitchResult(success=False, error=str(e))

    async def focus_external(self, session: Session) -> SwitchResult:
        """Bring a session outside the managed session into view. Never swaps."""
        if not session.in_tmux or not session.tmux_target:
            return SwitchResult(success=False, error=f"Cannot jump: {session.project_name} is not in tmux")
        tmux_session = session.tmux_session or session.tmux_target.split(":", 1)[0]
        window_target = session.tmux_target.rsplit(".", 1)[0]
        try:
            await self._run_tmux("switch-client", "-t", tmux_session)
            await self._run_tmux("select-window", "-t", window_target)
            await self._run_tmux("select-pane", "-t", session.pane_id or session.tmux_target)
            return SwitchResult(success=True)
        except (TmuxCommandError, SubprocessTimeoutError) as e:
            message = str(e)
            if "can't find" in message or "no session" in message:
                message = f"Session no longer exists: {session.project_name}"
            return SwitchResult(success=False, error=message)

    async def focus_dashboard(self) -> None:
        hud_pane = await self.get_hud_pane_id()
        if hud_pane:
            await self._run_tmux("select-pane", "-t", hud_pane)

    async def kill_pane(self, pane_id: str) -> bool:
        try:
            await self._run_tmux("kill-pane", "-t", pane_id)
        except TmuxCommandError as e:
            # Already gone counts as done
            logger.debug("kill-pane {} failed: {}", pane_id, e)
            return False
        logger.info("Killed pane {}", pane_id)
        return True

    async def show_placeholder(self, pane_id: str, message: Optional[str] = None) -> None:
        """Replace whatever runs in `pane_id` with a static message."""
        text = message or config.ui.placeholder_message
        command = f"printf '%s\\n' {shlex.quote(text)}; exec tail -f /dev/null"
        await self._run_tmux("respawn-pane", "-k", "-t", pane_id, command)
