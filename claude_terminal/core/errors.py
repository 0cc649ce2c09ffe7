"""Exception types raised by the discovery and pane layers."""

from __future__ import annotations

from typing import Sequence


class ClaudeTerminalError(Exception):
    """Base class for claude-terminal errors."""


class UnsupportedPlatformError(ClaudeTerminalError):
    def __init__(self, platform: str) -> None:
        self.platform = platform
        super().__init__(f"Unsupported platform: {platform}. claude-terminal runs on Linux, macOS and WSL2.")


class DiscoveryError(ClaudeTerminalError):
    """Process table or pane listing could not be read."""

    def __init__(self, source: str, detail: str) -> None:
        self.source = source
        self.detail = detail
        super().__init__(f"{source} discovery failed: {detail}")


class SubprocessTimeoutError(ClaudeTerminalError):
    """Subprocess exceeded its timeout and was killed."""

    def __init__(self, operation: str, timeout: float, pid: int | None = None) -> None:
        self.operation = operation
        self.timeout = timeout
        self.pid = pid
        super().__init__(f"{operation} timed out after {timeout}s (pid={pid})")


class TmuxCommandError(ClaudeTerminalError):
    """tmux exited non-zero."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str) -> None:
        self.tmux_args = tuple(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        command = " ".join(self.tmux_args[:1]) or "tmux"
        super().__init__(f"tmux {command} failed (rc={returncode}): {self.stderr or 'no output'}")
