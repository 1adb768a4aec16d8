"""Version-control backends the tracker walks."""

from codetracker.vcs.base import VersionControlBackend
from codetracker.vcs.git_backend import GitBackend

__all__ = ["VersionControlBackend", "GitBackend"]
