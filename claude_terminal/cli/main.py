"""claude-terminal command line.

    claude-terminal watch [--interval MS]   poll and print the session list
    claude-terminal list [--json]           one-shot discovery
    claude-terminal switch N                show session N (1-based)
    claude-terminal spawn [DIR]             start a new session and show it
    claude-terminal hook EVENT              hook receiver (payload on stdin)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import signal
import sys
from typing import Optional, Sequence

from claude_terminal import __version__
from claude_terminal.config import config
from claude_terminal.core.app_state import AppState
from claude_terminal.core.discovery import detect_platform
from claude_terminal.core.errors import UnsupportedPlatformError
from claude_terminal.core.models import Session, SessionStatus
from claude_terminal.core.pane_session_manager import PaneSessionManager
from claude_terminal.core.reconciler import SessionReconciler
from claude_terminal.hooks import receiver
from claude_terminal.logging_config import get_logger, setup_logging
from claude_terminal.utils import format_duration_since, format_relative_time

logger = get_logger(__name__)

_STATUS_LABELS = {
    SessionStatus.IDLE: "idle",
    SessionStatus.WORKING: "working",
    SessionStatus.TOOL: "tool",
    SessionStatus.BLOCKED: "BLOCKED",
    SessionStatus.ENDED: "ended",
}

_SPAWN_WAIT_SECONDS = 15.0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="claude-terminal", description="Claude Code session dashboard engine")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=None, help="File log level (default: INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Poll for sessions and print the list when it changes")
    watch.add_argument("--interval", type=int, default=None, help="Poll interval in milliseconds")

    list_cmd = sub.add_parser("list", help="Discover sessions once")
    list_cmd.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    switch = sub.add_parser("switch", help="Show session N (1-based, in dashboard order)")
    switch.add_argument("index", type=int)

    spawn = sub.add_parser("spawn", help="Start a new Claude session in DIR and show it")
    spawn.add_argument("directory", nargs="?", default=None)

    hook = sub.add_parser("hook", help="Hook receiver: apply EVENT (payload JSON on stdin)")
    hook.add_argument("event")
    return parser


def render_sessions(state: AppState) -> str:
    """Plain-text rendering of the session list (the real UI lives elsewhere)."""
    if not state.sessions:
        return "No Claude sessions found."
    lines = []
    for number, session in enumerate(state.sessions, start=1):
        marker = "*" if session.id == state.active_session_id else " "
        where = "ext" if session.is_external else "int"
        lines.append(
            f"{marker}{number:>2} {session.project_name:<28} {_STATUS_LABELS[session.status]:<8} "
            f"{session.model.value:<6} {session.context_usage:>3}% "
            f"{format_duration_since(session.started_at):>12} {where}"
            + (f"  [{session.notification}]" if session.notification else "")
        )
    lines.append(f"refreshed {format_relative_time(state.last_refresh)}")
    if state.error:
        lines.append(f"! {state.error}")
    return "\n".join(lines)


def _make_reconciler() -> SessionReconciler:
    return SessionReconciler(AppState(), PaneSessionManager())


async def _watch(interval_ms: Optional[int]) -> int:
    reconciler = _make_reconciler()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    last_output: dict[str, str] = {"text": ""}

    def on_change(state: AppState) -> None:
        text = render_sessions(state)
        # Refresh age changes every tick; compare without it
        body = text.split("\nrefreshed ")[0]
        if body != last_output["text"]:
            last_output["text"] = body
            print(text, end="\n\n", flush=True)

    reconciler.state.subscribe(on_change)
    await reconciler.run(stop_event, interval_ms or config.polling.refresh_interval_ms)
    return 0


async def _list(as_json: bool) -> int:
    reconciler = _make_reconciler()
    report = await reconciler.refresh()
    if as_json:
        print(json.dumps([s.to_dict() for s in report.sessions], indent=2))
    else:
        print(render_sessions(reconciler.state))
    return 0


async def _switch(index: int) -> int:
    reconciler = _make_reconciler()
    await reconciler.refresh()
    sessions: list[Session] = reconciler.state.sessions
    if not 1 <= index <= len(sessions):
        print(f"No session {index} ({len(sessions)} found)", file=sys.stderr)
        return 1
    if await reconciler.switch_to_index(index - 1):
        return 0
    print(reconciler.state.error or "Switch failed", file=sys.stderr)
    return 1


async def _spawn(directory: Optional[str]) -> int:
    cwd = os.path.abspath(os.path.expanduser(directory or os.getcwd()))
    if not os.path.isdir(cwd):
        print(f"Not a directory: {cwd}", file=sys.stderr)
        return 1
    reconciler = _make_reconciler()
    await reconciler.refresh()
    pane_id = await reconciler.spawn_session(cwd)
    if pane_id is None:
        print(reconciler.state.error or "Spawn failed", file=sys.stderr)
        return 1

    # The session is shown once discovery sees the agent in its pane
    deadline = asyncio.get_running_loop().time() + _SPAWN_WAIT_SECONDS
    while reconciler.is_spawn_pending(pane_id) and asyncio.get_running_loop().time() < deadline:
        await asyncio.sleep(0.5)
        await reconciler.refresh()
    if reconciler.is_spawn_pending(pane_id):
        print(f"Started pane {pane_id}; the agent has not appeared yet", file=sys.stderr)
        return 1
    print(f"Started session in {cwd} (pane {pane_id})")
    return 0


def _main_impl(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "hook":
        return receiver.run(args.event)

    try:
        detect_platform()
    except UnsupportedPlatformError as e:
        print(str(e), file=sys.stderr)
        return 2

    if args.command == "watch":
        return asyncio.run(_watch(args.interval))
    if args.command == "list":
        return asyncio.run(_list(args.json))
    if args.command == "switch":
        return asyncio.run(_switch(args.index))
    if args.command == "spawn":
        return asyncio.run(_spawn(args.directory))
    return 2


def main() -> None:
    try:
        sys.exit(_main_impl())
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
