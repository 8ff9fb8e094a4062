"""Git-native issue store with worktree-backed sync."""

__version__ = "0.3.0"
