"""Hook receiver: keeps a session's hook state record current.

Claude Code invokes `claude-terminal hook <event>` with the hook payload as
JSON on stdin. The receiver applies the event to
`<state_dir>/<session_id>.json`, which the dashboard reads every poll.
"""

from __future__ import annotations

import json
import os
import re
import sys
from pathlib import Path
from typing import Callable, Optional, cast

from claude_terminal.core import hook_state
from claude_terminal.core.models import HookStateRecord, ModelName, SessionStatus
from claude_terminal.logging_config import get_logger

logger = get_logger(__name__)

Mutation = Callable[[HookStateRecord, dict[str, object]], None]

_PERMISSION_PATTERN = re.compile(r"permission|approve|approval", re.IGNORECASE)


class HookPayloadError(ValueError):
    """Hook stdin payload is unusable."""


def normalize_event_name(event: str) -> str:
    """`PreToolUse` / `pre-tool-use` / `pre_tool_use` all become `pre_tool_use`."""
    snake = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", event.strip())
    return snake.replace("-", "_").lower()


def _set_status(status: SessionStatus) -> Mutation:
    def apply(record: HookStateRecord, _payload: dict[str, object]) -> None:
        record.status = status

    return apply


def _session_start(record: HookStateRecord, _payload: dict[str, object]) -> None:
    record.status = SessionStatus.IDLE
    record.subagent_count = 0
    record.notification = None


def _prompt_submitted(record: HookStateRecord, _payload: dict[str, object]) -> None:
    record.status = SessionStatus.WORKING
    record.notification = None


def _subagent_started(record: HookStateRecord, _payload: dict[str, object]) -> None:
    record.subagent_count += 1


def _subagent_stopped(record: HookStateRecord, _payload: dict[str, object]) -> None:
    record.subagent_count = max(record.subagent_count - 1, 0)


def _notification(record: HookStateRecord, payload: dict[str, object]) -> None:
    message = payload.get("message")
    text = str(message) if message else None
    record.notification = text
    if text and _PERMISSION_PATTERN.search(text):
        record.status = SessionStatus.BLOCKED


def _stopped(record: HookStateRecord, _payload: dict[str, object]) -> None:
    record.status = SessionStatus.IDLE
    record.subagent_count = 0


EVENT_HANDLERS: dict[str, Mutation] = {
    "session_start": _session_start,
    "user_prompt_submit": _prompt_submitted,
    "pre_tool_use": _set_status(SessionStatus.TOOL),
    "post_tool_use": _set_status(SessionStatus.WORKING),
    "subagent_start": _subagent_started,
    "subagent_stop": _subagent_stopped,
    "notification": _notification,
    "stop": _stopped,
    "session_end": _set_status(SessionStatus.ENDED),
}


def _model_from_payload(payload: dict[str, object]) -> Optional[ModelName]:
    model = payload.get("model")
    if isinstance(model, dict):
        model = model.get("id") or model.get("display_name")
    if not isinstance(model, str):
        return None
    lowered = model.lower()
    return next((name for name in ModelName if name.value in lowered), None)


def handle_event(event: str, payload: dict[str, object], state_dir: Optional[Path] = None) -> HookStateRecord:
    """Apply one hook event to the session's record and write it.

    Raises:
        HookPayloadError: unknown event or payload without a session id
    """
    name = normalize_event_name(event)
    handler = EVENT_HANDLERS.get(name)
    if handler is None:
        raise HookPayloadError(f"Unknown hook event: {event}")

    session_id = payload.get("session_id") or payload.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        raise HookPayloadError("Hook payload has no session_id")
    cwd = payload.get("cwd")
    cwd = cwd if isinstance(cwd, str) and cwd else os.getcwd()

    def mutate(record: HookStateRecord) -> None:
        handler(record, payload)
        transcript = payload.get("transcript_path")
        if isinstance(transcript, str) and transcript:
            record.transcript_path = transcript
        model = _model_from_payload(payload)
        if model is not None:
            record.model = model

    record = hook_state.update_state(session_id, cwd, mutate, state_dir)
    logger.debug("Hook {} -> {} status={} subagents={}", name, session_id, record.status.value, record.subagent_count)
    return record


def read_payload(stream=None) -> dict[str, object]:  # type: ignore[no-untyped-def]
    """Read the JSON object Claude Code writes to the hook's stdin."""
    source = stream or sys.stdin
    if source.isatty():
        return {}
    raw_input = source.read()
    if not raw_input.strip():
        return {}
    try:
        parsed = json.loads(raw_input)
    except json.JSONDecodeError as e:
        raise HookPayloadError(f"Invalid hook payload JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise HookPayloadError("Hook stdin payload must be a JSON object")
    return cast(dict[str, object], parsed)


def run(event: str, stream=None, state_dir: Optional[Path] = None) -> int:  # type: ignore[no-untyped-def]
    """CLI entry: returns a process exit code. Hooks must never block the agent."""
    try:
        payload = read_payload(stream)
        handle_event(event, payload, state_dir)
    except HookPayloadError as e:
        logger.warning("Hook {} rejected: {}", event, e)
        print(str(e), file=sys.stderr)
        return 1
    except OSError as e:
        logger.error("Hook {} could not write state: {}", event, e)
        return 1
    return 0
