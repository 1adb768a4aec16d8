"""Exception types raised by the tracking engine."""

from typing import Optional


class CodeTrackerError(Exception):
    """Base class for all codetracker errors."""


class CommitNotFoundError(CodeTrackerError, ValueError):
    """Raised when a commit id cannot be resolved in the repository."""

    def __init__(self, commit_id: str) -> None:
        super().__init__(f"Commit not found: {commit_id}")
        self.commit_id = commit_id


class ElementNotFoundError(CodeTrackerError, LookupError):
    """Raised when the element to track is missing (or ambiguous) at the start commit."""

    def __init__(self, file_path: str, element: str, detail: Optional[str] = None) -> None:
        message = f"Element {element} not found in {file_path}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.file_path = file_path
        self.element = element


class ParseError(CodeTrackerError):
    """Raised by a language parser when a revision cannot be parsed."""

    def __init__(self, file_path: str, reason: str) -> None:
        super().__init__(f"Could not parse {file_path}: {reason}")
        self.file_path = file_path
        self.reason = reason


class BlobNotFound(CodeTrackerError):
    """Raised by a backend when a file does not exist (or is unreadable) at a commit."""

    def __init__(self, commit_id: str, file_path: str, reason: str = "missing") -> None:
        super().__init__(f"Blob {file_path} not available at {commit_id[:7]}: {reason}")
        self.commit_id = commit_id
        self.file_path = file_path
        self.reason = reason


class HistoryGapError(CodeTrackerError):
    """Carries a recoverable per-snapshot failure up to the history builder."""

    def __init__(self, commit_id: str, file_path: str, reason: str) -> None:
        super().__init__(f"History gap at {commit_id[:7]}:{file_path}: {reason}")
        self.commit_id = commit_id
        self.file_path = file_path
        self.reason = reason


class CacheSchemaMismatch(CodeTrackerError):
    """Raised internally when a persisted cache was written with another schema."""

    def __init__(self, expected: int, found: object) -> None:
        super().__init__(f"Cache schema version {found!r} does not match {expected}")
        self.expected = expected
        self.found = found
