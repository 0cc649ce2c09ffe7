"""Data models for discovered sessions and their side-channel state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from claude_terminal.constants import SESSION_ID_PREFIX


class SessionStatus(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    TOOL = "tool"
    BLOCKED = "blocked"
    ENDED = "ended"


class ModelName(str, Enum):
    SONNET = "sonnet"
    OPUS = "opus"
    HAIKU = "haiku"


class Platform(str, Enum):
    LINUX = "linux"
    MACOS = "macos"
    WSL2 = "wsl2"


def session_id_for_pid(pid: int) -> str:
    return f"{SESSION_ID_PREFIX}{pid}"


@dataclass(frozen=True)
class ClaudeProcess:
    """A candidate agent process from the OS process table."""

    pid: int
    ppid: int
    elapsed_seconds: int
    args: str


@dataclass(frozen=True)
class TmuxPane:
    """One pane of one tmux session, as listed by `list-panes -a`."""

    session_name: str
    window_index: int
    pane_index: int
    pane_pid: int
    pane_id: str

    @property
    def target(self) -> str:
        return f"{self.session_name}:{self.window_index}.{self.pane_index}"


@dataclass(frozen=True)
class PaneMatch:
    in_tmux: bool
    target: Optional[str] = None
    pane_id: Optional[str] = None
    session_name: Optional[str] = None


NOT_IN_TMUX = PaneMatch(in_tmux=False)


@dataclass
class RuntimeState:
    """Status fields derived from the hook state record (or defaults)."""

    status: SessionStatus = SessionStatus.IDLE
    model: ModelName = ModelName.SONNET
    subagent_count: int = 0
    notification: Optional[str] = None
    transcript_path: Optional[str] = None
    last_update: Optional[datetime] = None
    from_hook: bool = False  # a hook state record matched


@dataclass
class Session:
    """A discovered agent session. Rebuilt from scratch every poll.

    `is_external` defaults to True: a session counts as internal only once its
    pane is known to live in the managed tmux session, so a session built
    without a pane match is never swapped or killed.
    """

    # pylint: disable=too-many-instance-attributes
    id: str
    pid: int
    project_path: str
    project_name: str
    started_at: datetime
    last_activity: datetime
    status: SessionStatus = SessionStatus.IDLE
    model: ModelName = ModelName.SONNET
    context_usage: int = 0
    subagent_count: int = 0
    notification: Optional[str] = None
    in_tmux: bool = False
    tmux_target: Optional[str] = None
    pane_id: Optional[str] = None
    tmux_session: Optional[str] = None
    transcript_path: Optional[str] = None
    is_external: bool = True

    @property
    def is_internal(self) -> bool:
        return not self.is_external

    def to_dict(self) -> dict[str, object]:  # guard: loose-dict - JSON output
        return {
            "id": self.id,
            "pid": self.pid,
            "projectPath": self.project_path,
            "projectName": self.project_name,
            "status": self.status.value,
            "model": self.model.value,
            "contextUsage": self.context_usage,
            "subagentCount": self.subagent_count,
            "notification": self.notification,
            "startedAt": self.started_at.isoformat(),
            "lastActivity": self.last_activity.isoformat(),
            "inTmux": self.in_tmux,
            "tmuxTarget": self.tmux_target,
            "paneId": self.pane_id,
            "isExternal": self.is_external,
        }


@dataclass(frozen=True)
class SessionSnapshotEntry:
    """What the reconciler remembers about a session from the previous tick."""

    is_external: bool
    pane_id: Optional[str]
    project_path: str
    transcript_path: Optional[str] = None


@dataclass
class SwitchResult:
    success: bool
    error: Optional[str] = None


@dataclass
class TickReport:
    """Outcome of one reconciliation tick (used by tests and the CLI)."""

    sessions: list[Session] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    killed_panes: list[str] = field(default_factory=list)
    reassigned_to: Optional[str] = None
    skipped: bool = False


class HookStateRecord(BaseModel):
    """Per-session JSON file written by the instrumentation hooks.

    Invalid field values fall back to defaults instead of failing the whole
    record; only a missing `cwd` makes a record unusable.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: SessionStatus = SessionStatus.IDLE
    model: Optional[ModelName] = None
    cwd: str
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    subagent_count: int = Field(default=0, alias="subagentCount")
    notification: Optional[str] = None
    transcript_path: Optional[str] = Field(default=None, alias="transcriptPath")
    last_update: Optional[datetime] = Field(default=None, alias="lastUpdate")

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, v: object) -> object:
        if isinstance(v, SessionStatus):
            return v
        try:
            return SessionStatus(str(v).lower())
        except ValueError:
            return SessionStatus.IDLE

    @field_validator("model", mode="before")
    @classmethod
    def _coerce_model(cls, v: object) -> object:
        if v is None or isinstance(v, ModelName):
            return v
        lowered = str(v).lower()
        for name in ModelName:
            if name.value in lowered:
                return name
        return None

    @field_validator("subagent_count", mode="before")
    @classmethod
    def _coerce_subagents(cls, v: object) -> int:
        if isinstance(v, bool):
            return 0
        try:
            return max(int(v), 0)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            return 0

    @field_validator("notification", "transcript_path", "session_id", mode="before")
    @classmethod
    def _coerce_optional_text(cls, v: object) -> Optional[str]:
        if v is None:
            return None
        text = str(v)
        return text or None

    @field_validator("last_update", mode="before")
    @classmethod
    def _coerce_last_update(cls, v: object) -> Optional[datetime]:
        if isinstance(v, datetime):
            parsed = v
        elif isinstance(v, str) and v:
            try:
                parsed = datetime.fromisoformat(v.replace("Z", "+00:00"))
            except ValueError:
                return None
        else:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def to_runtime_state(self) -> RuntimeState:
        return RuntimeState(
            status=self.status,
            model=self.model or ModelName.SONNET,
            subagent_count=self.subagent_count,
            notification=self.notification,
            transcript_path=self.transcript_path,
            last_update=self.last_update,
            from_hook=True,
        )

    def to_json_dict(self) -> dict[str, object]:  # guard: loose-dict - on-disk format
        data = self.model_dump(mode="json", by_alias=True)
        return data
