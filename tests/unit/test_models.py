"""Unit tests for session and hook state models."""

from datetime import datetime, timezone

from claude_terminal.core.models import HookStateRecord, Session, SessionStatus


def test_session_without_pane_match_is_external():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    session = Session(id="claude-1", pid=1, project_path="/p", project_name="p", started_at=now, last_activity=now)

    assert session.is_external is True
    assert session.is_internal is False
    assert session.to_dict()["isExternal"] is True


def test_runtime_state_from_record_is_marked_as_hook_sourced():
    record = HookStateRecord.model_validate({"cwd": "/p", "status": "blocked", "subagentCount": -3})

    runtime = record.to_runtime_state()

    assert runtime.from_hook is True
    assert runtime.status == SessionStatus.BLOCKED
    assert runtime.subagent_count == 0
