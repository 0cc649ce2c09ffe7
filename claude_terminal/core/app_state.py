"""Shared UI state.

One AppState per process. Only the reconciler (tick results and user intents)
mutates it; the presentation layer reads it and may subscribe to changes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from claude_terminal.config import config
from claude_terminal.core.models import Session
from claude_terminal.logging_config import get_logger

logger = get_logger(__name__)

Listener = Callable[["AppState"], None]


@dataclass
class AppState:
    """Dashboard state published after every tick."""

    sessions: list[Session] = field(default_factory=list)
    selected_index: int = 0
    active_session_id: Optional[str] = None
    error: Optional[str] = None
    error_source: Optional[str] = None  # "discovery" | "pane"
    error_set_at: Optional[float] = None
    last_refresh: Optional[datetime] = None
    refresh_interval_ms: int = field(default_factory=lambda: config.polling.refresh_interval_ms)
    _listeners: list[Listener] = field(default_factory=list, repr=False)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:  # noqa: BLE001 - a broken view must not stop the poll loop
                logger.warning("State listener failed: {}", e)

    def set_sessions(self, sessions: list[Session], refreshed_at: datetime) -> None:
        self.sessions = sessions
        self.last_refresh = refreshed_at
        self.selected_index = self._clamp(self.selected_index)
        self._notify()

    def _clamp(self, index: int) -> int:
        if not self.sessions:
            return 0
        return max(0, min(index, len(self.sessions) - 1))

    def select_index(self, index: int) -> None:
        self.selected_index = self._clamp(index)
        self._notify()

    @property
    def selected_session(self) -> Optional[Session]:
        if not self.sessions:
            return None
        return self.sessions[self._clamp(self.selected_index)]

    def session_by_id(self, session_id: str) -> Optional[Session]:
        return next((s for s in self.sessions if s.id == session_id), None)

    def set_active_session(self, session_id: Optional[str]) -> None:
        self.active_session_id = session_id
        self._notify()

    def set_error(self, message: str, source: str) -> None:
        self.error = message
        self.error_source = source
        self.error_set_at = time.monotonic()
        self._notify()

    def clear_error(self, source: Optional[str] = None) -> None:
        """Clear the error; with `source`, only when that source set it."""
        if self.error is None:
            return
        if source is not None and self.error_source != source:
            return
        self.error = None
        self.error_source = None
        self.error_set_at = None
        self._notify()

    def dismiss_error(self) -> None:
        self.clear_error()

    def expire_error(self, timeout_seconds: float, now: Optional[float] = None) -> bool:
        """Auto-dismiss pane errors older than `timeout_seconds`.

        Discovery errors persist until discovery recovers.
        """
        if self.error is None or self.error_set_at is None or self.error_source == "discovery":
            return False
        current = now if now is not None else time.monotonic()
        if current - self.error_set_at < timeout_seconds:
            return False
        self.clear_error()
        return True
