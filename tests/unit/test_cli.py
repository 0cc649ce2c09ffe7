"""Unit tests for the claude-terminal command line."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from claude_terminal.cli import main as cli
from claude_terminal.core.app_state import AppState
from claude_terminal.core.errors import UnsupportedPlatformError
from claude_terminal.core.models import SessionStatus
from tests.conftest import make_session


@pytest.fixture(autouse=True)
def _no_log_files():
    with patch.object(cli, "setup_logging"):
        yield


def test_render_sessions_empty():
    assert cli.render_sessions(AppState()) == "No Claude sessions found."


def test_render_sessions_marks_active_and_blocked():
    state = AppState()
    blocked = make_session(1, status=SessionStatus.BLOCKED, pane_id="%1")
    blocked.notification = "needs permission"
    other = make_session(2, pane_id="%2", is_external=True)
    state.set_sessions([blocked, other], datetime.now(timezone.utc))
    state.set_active_session("claude-1")
    state.set_error("swap failed", source="pane")

    lines = cli.render_sessions(state).splitlines()

    assert lines[0].startswith("* 1 project-1")
    assert "BLOCKED" in lines[0]
    assert "[needs permission]" in lines[0]
    assert lines[1].startswith("  2 project-2")
    assert lines[1].endswith("ext")
    assert lines[2].startswith("refreshed ")
    assert lines[3] == "! swap failed"


def test_hook_command_runs_receiver():
    with patch.object(cli.receiver, "run", return_value=0) as run:
        assert cli._main_impl(["hook", "Stop"]) == 0
    run.assert_called_once_with("Stop")


def test_unsupported_platform_exits_with_2(capsys: pytest.CaptureFixture[str]):
    with patch.object(cli, "detect_platform", side_effect=UnsupportedPlatformError("win32")):
        assert cli._main_impl(["list"]) == 2
    assert "win32" in capsys.readouterr().err


def test_switch_rejects_out_of_range_index(capsys: pytest.CaptureFixture[str]):
    class EmptyReconciler:
        def __init__(self) -> None:
            self.state = AppState()

        async def refresh(self) -> None:
            return None

    with (
        patch.object(cli, "detect_platform"),
        patch.object(cli, "_make_reconciler", EmptyReconciler),
    ):
        assert cli._main_impl(["switch", "3"]) == 1

    assert "No session 3 (0 found)" in capsys.readouterr().err
