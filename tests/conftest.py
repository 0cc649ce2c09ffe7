"""Pytest configuration for claude-terminal tests."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from loguru import logger

from claude_terminal.core.errors import TmuxCommandError
from claude_terminal.core.models import ClaudeProcess, Session, SessionStatus, TmuxPane

# Keep test output clean; tests that assert on logs add their own sink
logger.remove()


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=5s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))


@dataclass
class FakePane:
    pane_id: str
    pid: int
    command: str = "shell"
    cwd: str = "/"
    keys: list[str] = field(default_factory=list)


@dataclass
class FakeWindow:
    index: int
    name: str
    panes: list[FakePane] = field(default_factory=list)


@dataclass
class FakeSession:
    name: str
    windows: list[FakeWindow] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)


class FakeTmux:
    """In-memory tmux server understanding the commands the pane manager issues.

    Pane ids travel with their content on swap-pane, as in real tmux.
    """

    def __init__(self) -> None:
        self.sessions: dict[str, FakeSession] = {}
        self.calls: list[tuple[str, ...]] = []
        self.selected_pane: Optional[str] = None
        self.client_session: Optional[str] = None
        self._pane_ids = itertools.count(0)
        self._pids = itertools.count(1000)

    # Setup helpers

    def add_session(self, name: str, window_name: str = "main") -> FakePane:
        pane = self._new_pane()
        self.sessions[name] = FakeSession(name=name, windows=[FakeWindow(index=0, name=window_name, panes=[pane])])
        return pane

    def add_window(self, session: str, name: str) -> FakeWindow:
        windows = self.sessions[session].windows
        window = FakeWindow(index=max(w.index for w in windows) + 1, name=name)
        windows.append(window)
        return window

    def add_pane(self, session: str, window_name: str, command: str = "shell") -> FakePane:
        window = next(w for w in self.sessions[session].windows if w.name == window_name)
        pane = self._new_pane(command)
        window.panes.append(pane)
        return pane

    def _new_pane(self, command: str = "shell", cwd: str = "/") -> FakePane:
        return FakePane(pane_id=f"%{next(self._pane_ids)}", pid=next(self._pids), command=command, cwd=cwd)

    # Queries

    def locate(self, pane_id: str) -> Optional[tuple[FakeSession, FakeWindow, int]]:
        for session in self.sessions.values():
            for window in session.windows:
                for index, pane in enumerate(window.panes):
                    if pane.pane_id == pane_id:
                        return session, window, index
        return None

    def pane(self, pane_id: str) -> FakePane:
        found = self.locate(pane_id)
        assert found is not None, f"no pane {pane_id}"
        session, window, index = found
        return window.panes[index]

    def window_panes(self, session: str, window_name: str) -> list[str]:
        window = next(w for w in self.sessions[session].windows if w.name == window_name)
        return [p.pane_id for p in window.panes]

    def all_pane_ids(self) -> set[str]:
        return {p.pane_id for s in self.sessions.values() for w in s.windows for p in w.panes}

    def list_panes(self) -> list[TmuxPane]:
        return [
            TmuxPane(session_name=s.name, window_index=w.index, pane_index=i, pane_pid=p.pid, pane_id=p.pane_id)
            for s in self.sessions.values()
            for w in s.windows
            for i, p in enumerate(w.panes)
        ]

    def commands(self, name: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[0] == name]

    # Command interpreter

    def _fail(self, args: tuple[str, ...], message: str) -> None:
        raise TmuxCommandError(args, 1, message)

    def _resolve_window(self, args: tuple[str, ...], target: str) -> FakeWindow:
        if target.startswith("%"):
            found = self.locate(target)
            if found is None:
                self._fail(args, f"can't find pane: {target}")
            assert found is not None
            return found[1]
        session_name, _, window_name = target.partition(":")
        session = self.sessions.get(session_name)
        if session is None:
            self._fail(args, f"can't find session: {session_name}")
        assert session is not None
        for window in session.windows:
            if window.name == window_name or str(window.index) == window_name:
                return window
        self._fail(args, f"can't find window: {window_name}")
        raise AssertionError("unreachable")

    @staticmethod
    def _opt(args: tuple[str, ...], flag: str) -> Optional[str]:
        if flag in args:
            return args[args.index(flag) + 1]
        return None

    async def run(self, *args: str) -> str:
        self.calls.append(args)
        command = args[0]
        handler = getattr(self, "_cmd_" + command.replace("-", "_"), None)
        if handler is None:
            self._fail(args, f"unknown command: {command}")
        return handler(args)

    def _cmd_list_windows(self, args: tuple[str, ...]) -> str:
        session = self.sessions.get(self._opt(args, "-t") or "")
        if session is None:
            self._fail(args, "can't find session")
        assert session is not None
        return "\n".join(w.name for w in session.windows) + "\n"

    def _cmd_new_window(self, args: tuple[str, ...]) -> str:
        session_name = (self._opt(args, "-t") or "").rstrip(":")
        if session_name not in self.sessions:
            self._fail(args, "can't find session")
        window = self.add_window(session_name, self._opt(args, "-n") or "")
        window.panes.append(self._new_pane())
        return ""

    def _cmd_split_window(self, args: tuple[str, ...]) -> str:
        window = self._resolve_window(args, self._opt(args, "-t") or "")
        pane = self._new_pane(cwd=self._opt(args, "-c") or "/")
        window.panes.append(pane)
        return pane.pane_id + "\n" if "-P" in args else ""

    def _cmd_send_keys(self, args: tuple[str, ...]) -> str:
        pane = self.pane(self._opt(args, "-t") or "")
        pane.keys.extend(args[3:])
        if args[3:4]:
            pane.command = args[3]
        return ""

    def _cmd_select_layout(self, args: tuple[str, ...]) -> str:
        return ""

    def _cmd_set_environment(self, args: tuple[str, ...]) -> str:
        session = self.sessions[self._opt(args, "-t") or ""]
        rest = [a for a in args[1:] if a not in ("-u", "-t", session.name)]
        if "-u" in args:
            session.env.pop(rest[0], None)
        else:
            session.env[rest[0]] = rest[1]
        return ""

    def _cmd_show_environment(self, args: tuple[str, ...]) -> str:
        session = self.sessions[self._opt(args, "-t") or ""]
        rest = [a for a in args[1:] if a not in ("-t", session.name)]
        if rest:
            key = rest[0]
            if key not in session.env:
                self._fail(args, "unknown variable: " + key)
            return f"{key}={session.env[key]}\n"
        return "".join(f"{k}={v}\n" for k, v in session.env.items())

    def _cmd_swap_pane(self, args: tuple[str, ...]) -> str:
        source, target = self._opt(args, "-s") or "", self._opt(args, "-t") or ""
        src, dst = self.locate(source), self.locate(target)
        if src is None or dst is None:
            self._fail(args, "can't find pane")
        assert src is not None and dst is not None
        src_pane = src[1].panes[src[2]]
        dst_pane = dst[1].panes[dst[2]]
        src[1].panes[src[2]] = dst_pane
        dst[1].panes[dst[2]] = src_pane
        return ""

    def _cmd_select_pane(self, args: tuple[str, ...]) -> str:
        target = self._opt(args, "-t") or ""
        if self.locate(target) is None:
            self._fail(args, f"can't find pane: {target}")
        self.selected_pane = target
        return ""

    def _cmd_select_window(self, args: tuple[str, ...]) -> str:
        self._resolve_window(args, self._opt(args, "-t") or "")
        return ""

    def _cmd_switch_client(self, args: tuple[str, ...]) -> str:
        target = self._opt(args, "-t") or ""
        if target not in self.sessions:
            self._fail(args, f"can't find session: {target}")
        self.client_session = target
        return ""

    def _cmd_kill_pane(self, args: tuple[str, ...]) -> str:
        target = self._opt(args, "-t") or ""
        found = self.locate(target)
        if found is None:
            self._fail(args, f"can't find pane: {target}")
        assert found is not None
        del found[1].panes[found[2]]
        return ""

    def _cmd_respawn_pane(self, args: tuple[str, ...]) -> str:
        pane = self.pane(self._opt(args, "-t") or "")
        pane.command = args[-1]
        return ""

    def _cmd_list_panes(self, args: tuple[str, ...]) -> str:
        window = self._resolve_window(args, self._opt(args, "-t") or "")
        return "".join(p.pane_id + "\n" for p in window.panes)


def make_session(
    pid: int,
    *,
    project_path: Optional[str] = None,
    status: SessionStatus = SessionStatus.IDLE,
    started_minutes_ago: int = 10,
    pane_id: Optional[str] = None,
    tmux_session: Optional[str] = "claude-terminal",
    is_external: bool = False,
) -> Session:
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    path = project_path or f"/work/project-{pid}"
    return Session(
        id=f"claude-{pid}",
        pid=pid,
        project_path=path,
        project_name=path.rsplit("/", 1)[-1],
        started_at=now - timedelta(minutes=started_minutes_ago),
        last_activity=now,
        status=status,
        in_tmux=pane_id is not None,
        tmux_target=f"{tmux_session}:0.0" if pane_id else None,
        pane_id=pane_id,
        tmux_session=tmux_session if pane_id else None,
        is_external=is_external,
    )


def make_process(pid: int, ppid: int, elapsed_seconds: int = 600) -> ClaudeProcess:
    return ClaudeProcess(pid=pid, ppid=ppid, elapsed_seconds=elapsed_seconds, args="claude")


@pytest.fixture
def fake_tmux() -> FakeTmux:
    return FakeTmux()
