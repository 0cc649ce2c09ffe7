"""Async subprocess execution for tmux and OS tools.

Every call is bounded by a timeout; a hung process is killed and reported as
SubprocessTimeoutError so one stuck tmux call can never stall the poll loop.
"""

from __future__ import annotations

import asyncio
from asyncio.subprocess import Process
from typing import Optional

from claude_terminal.config import config
from claude_terminal.core.errors import SubprocessTimeoutError, TmuxCommandError
from claude_terminal.logging_config import get_logger

logger = get_logger(__name__)

SUBPROCESS_TIMEOUT_QUICK = 5.0  # list/show/select style calls
SUBPROCESS_TIMEOUT_DEFAULT = 15.0  # pane creation and process scans


async def communicate_with_timeout(
    process: Process, input_data: Optional[bytes], timeout: float, operation: str
) -> tuple[bytes, bytes]:
    """communicate() with a timeout; the process is killed and reaped on expiry."""
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(input_data), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("{} timed out after {}s, killing pid {}", operation, timeout, process.pid)
        try:
            process.kill()
            await process.wait()
        except ProcessLookupError:
            pass
        raise SubprocessTimeoutError(operation, timeout, process.pid) from None
    return stdout, stderr


async def run_command(*cmd: str, timeout: float = SUBPROCESS_TIMEOUT_DEFAULT) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr).

    Raises:
        SubprocessTimeoutError: the command did not finish in time
        OSError: the executable could not be started
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await communicate_with_timeout(process, None, timeout, cmd[0])
    returncode = process.returncode if process.returncode is not None else -1
    return returncode, stdout.decode("utf-8", errors="replace"), stderr.decode("utf-8", errors="replace")


async def run_tmux(*args: str, timeout: float = SUBPROCESS_TIMEOUT_QUICK) -> str:
    """Run a tmux subcommand and return its stdout.

    Raises:
        TmuxCommandError: tmux exited non-zero
        SubprocessTimeoutError: tmux did not answer in time
    """
    returncode, stdout, stderr = await run_command(config.tmux.binary, *args, timeout=timeout)
    if returncode != 0:
        raise TmuxCommandError(args, returncode, stderr)
    return stdout
