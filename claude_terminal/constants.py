"""Constants used across claude-terminal.

Values here are protocol or platform facts, not user configuration.
"""

# Session identity
SESSION_ID_PREFIX = "claude-"

# tmux session-scoped environment variables
PANE_ENV_PREFIX = "CLAUDE_PANE_"
ACTIVE_SESSION_ENV = "CLAUDE_ACTIVE_SESSION"
HUD_PANE_ENV = "CLAUDE_TERMINAL_HUD_PANE"
MAIN_PANE_ENV = "CLAUDE_TERMINAL_MAIN_PANE"

# Transcript parsing
TRANSCRIPT_USAGE_MARKER = '"usage"'
TOOL_BLOCKED_THRESHOLD_SECONDS = 5.0

# Discovery
PS_FIELDS = "pid,ppid,{elapsed},args"  # elapsed: etimes on Linux, etime on macOS
PANE_LIST_FORMAT = "#{session_name}\t#{window_index}\t#{pane_index}\t#{pane_pid}\t#{pane_id}"
NO_SERVER_MARKERS = ("no server running", "error connecting to", "no sessions")
