"""claude-terminal: one tmux session, every Claude Code session one keypress away."""

__version__ = "0.1.0"
