"""Runtime binary resolution policy.

These paths are internal platform policy, not user-configurable settings.
"""

from __future__ import annotations

import shutil
import sys

_UNIX_TMUX_BINARY = "tmux"
_MACOS_TMUX_CANDIDATES = ("/opt/homebrew/bin/tmux", "/usr/local/bin/tmux")


def _is_macos() -> bool:
    return sys.platform == "darwin"


def resolve_tmux_binary() -> str:
    """Resolve tmux binary by platform.

    On macOS GUI-launched shells often miss the Homebrew prefix on PATH, so the
    Homebrew locations are tried first.
    """
    if _is_macos():
        for candidate in _MACOS_TMUX_CANDIDATES:
            if shutil.which(candidate):
                return candidate
    return _UNIX_TMUX_BINARY


def resolve_lsof_binary() -> str:
    """Resolve lsof (macOS working-directory lookup)."""
    return shutil.which("lsof") or "/usr/sbin/lsof"
