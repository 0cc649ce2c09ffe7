"""Process and pane discovery.

Stateless queries against the OS process table and the tmux server. The
`scan_*` functions raise DiscoveryError so the reconciler can count recurring
failures; `find_candidate_processes` and `get_panes` are the forgiving
variants that return an empty list instead.
"""

from __future__ import annotations

import os
import platform
import re
import sys
from typing import Iterable, Optional

from claude_terminal.config import config
from claude_terminal.constants import NO_SERVER_MARKERS, PANE_LIST_FORMAT, PS_FIELDS
from claude_terminal.core.errors import DiscoveryError, SubprocessTimeoutError, UnsupportedPlatformError
from claude_terminal.core.models import NOT_IN_TMUX, ClaudeProcess, PaneMatch, Platform, TmuxPane
from claude_terminal.core.tmux_bridge import SUBPROCESS_TIMEOUT_DEFAULT, SUBPROCESS_TIMEOUT_QUICK, run_command
from claude_terminal.logging_config import get_logger
from claude_terminal.runtime.binaries import resolve_lsof_binary

logger = get_logger(__name__)

_PS_LINE = re.compile(r"^\s*(\d+)\s+(\d+)\s+(\S+)\s+(.+)$")


def detect_platform() -> Platform:
    """Return the running platform, telling WSL2 apart from plain Linux."""
    if sys.platform == "darwin":
        return Platform.MACOS
    if sys.platform.startswith("linux"):
        release = platform.release().lower()
        if "microsoft" in release or "wsl" in release:
            return Platform.WSL2
        return Platform.LINUX
    raise UnsupportedPlatformError(sys.platform)


def executable_pattern(name: str) -> re.Pattern[str]:
    """Match `name` as a whole command-line token (a path basename counts)."""
    return re.compile(rf"(?:^|[\s/]){re.escape(name)}(?:\s|$)")


def parse_elapsed(value: str) -> int:
    """Parse `etimes` seconds or the `[[dd-]hh:]mm:ss` form of `etime`."""
    if value.isdigit():
        return int(value)
    days = 0
    if "-" in value:
        day_part, value = value.split("-", 1)
        days = int(day_part)
    seconds = 0
    for part in value.split(":"):
        seconds = seconds * 60 + int(part)
    return days * 86400 + seconds


def parse_process_table(output: str, process_name: str, exclude_pids: Iterable[int] = ()) -> list[ClaudeProcess]:
    """Parse `ps -eo pid,ppid,etime(s),args` output into candidate processes."""
    pattern = executable_pattern(process_name)
    excluded = set(exclude_pids)
    processes: list[ClaudeProcess] = []
    for line in output.splitlines():
        match = _PS_LINE.match(line)
        if not match:
            continue  # header or truncated line
        pid, ppid, elapsed, args = match.groups()
        if int(pid) in excluded or not pattern.search(args):
            continue
        try:
            elapsed_seconds = parse_elapsed(elapsed)
        except ValueError:
            elapsed_seconds = 0
        processes.append(ClaudeProcess(pid=int(pid), ppid=int(ppid), elapsed_seconds=elapsed_seconds, args=args))
    return processes


async def scan_processes() -> list[ClaudeProcess]:
    """List candidate agent processes.

    Raises:
        DiscoveryError: the process table could not be read
    """
    elapsed_field = "etime" if detect_platform() == Platform.MACOS else "etimes"
    try:
        returncode, stdout, stderr = await run_command(
            "ps", "-eo", PS_FIELDS.format(elapsed=elapsed_field), timeout=SUBPROCESS_TIMEOUT_DEFAULT
        )
    except (OSError, SubprocessTimeoutError) as e:
        raise DiscoveryError("process", str(e)) from e
    if returncode != 0:
        raise DiscoveryError("process", stderr.strip() or f"ps exited {returncode}")
    return parse_process_table(stdout, config.agent.process_name, exclude_pids=(os.getpid(),))


async def find_candidate_processes() -> list[ClaudeProcess]:
    """List candidate agent processes, or [] when the table cannot be read."""
    try:
        return await scan_processes()
    except DiscoveryError as e:
        logger.warning("Process discovery failed: {}", e)
        return []


def parse_pane_list(output: str) -> list[TmuxPane]:
    panes: list[TmuxPane] = []
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) != 5:
            continue
        session_name, window_index, pane_index, pane_pid, pane_id = parts
        try:
            panes.append(
                TmuxPane(
                    session_name=session_name,
                    window_index=int(window_index),
                    pane_index=int(pane_index),
                    pane_pid=int(pane_pid),
                    pane_id=pane_id,
                )
            )
        except ValueError:
            logger.debug("Skipping malformed pane line: {!r}", line)
    return panes


async def scan_panes() -> list[TmuxPane]:
    """List every pane of every tmux session.

    A tmux server that is not running simply has no panes.

    Raises:
        DiscoveryError: tmux failed for any other reason
    """
    try:
        returncode, stdout, stderr = await run_command(
            config.tmux.binary, "list-panes", "-a", "-F", PANE_LIST_FORMAT, timeout=SUBPROCESS_TIMEOUT_QUICK
        )
    except FileNotFoundError:
        logger.debug("tmux binary not found, treating as no panes")
        return []
    except (OSError, SubprocessTimeoutError) as e:
        raise DiscoveryError("pane", str(e)) from e
    if returncode != 0:
        lowered = stderr.lower()
        if any(marker in lowered for marker in NO_SERVER_MARKERS):
            return []
        raise DiscoveryError("pane", stderr.strip() or f"tmux exited {returncode}")
    return parse_pane_list(stdout)


async def get_panes() -> list[TmuxPane]:
    """List every tmux pane, or [] when tmux cannot be queried."""
    try:
        return await scan_panes()
    except DiscoveryError as e:
        logger.warning("Pane discovery failed: {}", e)
        return []


def correlate(ppid: int, panes: Iterable[TmuxPane]) -> PaneMatch:
    """Find the pane whose shell is the process's parent."""
    for pane in panes:
        if pane.pane_pid == ppid:
            return PaneMatch(in_tmux=True, target=pane.target, pane_id=pane.pane_id, session_name=pane.session_name)
    return NOT_IN_TMUX


async def get_working_directory(pid: int) -> Optional[str]:
    """Resolve a process's working directory, None when unavailable."""
    if detect_platform() == Platform.MACOS:
        return await _lsof_cwd(pid)
    try:
        return os.readlink(f"/proc/{pid}/cwd") or None
    except OSError:
        # Process exited or belongs to another user
        return None


async def _lsof_cwd(pid: int) -> Optional[str]:
    try:
        returncode, stdout, _ = await run_command(
            resolve_lsof_binary(), "-a", "-p", str(pid), "-d", "cwd", "-Fn", timeout=SUBPROCESS_TIMEOUT_QUICK
        )
    except (OSError, SubprocessTimeoutError) as e:
        logger.debug("lsof failed for pid {}: {}", pid, e)
        return None
    if returncode != 0:
        return None
    for line in stdout.splitlines():
        if line.startswith("n") and len(line) > 1:
            return line[1:]
    return None
