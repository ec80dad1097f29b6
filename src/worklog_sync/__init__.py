"""Keep local work items in sync with a git-ref snapshot and GitHub issues."""

__version__ = "0.4.0"
