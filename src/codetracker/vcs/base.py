"""Base class for version-control backends."""

from abc import ABC, abstractmethod
from typing import List, Optional

from codetracker.models import Commit


class VersionControlBackend(ABC):
    """Abstract base class for the repositories the tracker walks."""

    @abstractmethod
    def resolve_commit(self, commit_id: str) -> Commit:
        """Resolve a commit id (full, short or symbolic) to a Commit.

        Args:
            commit_id: Commit hash or reference name

        Returns:
            The resolved Commit

        Raises:
            CommitNotFoundError: If the commit does not exist
        """
        pass

    @abstractmethod
    def blob(self, commit_id: str, file_path: str) -> bytes:
        """Read the content of a file at a commit.

        Args:
            commit_id: Commit hash
            file_path: Repository-relative path

        Returns:
            Raw file bytes

        Raises:
            BlobNotFound: If the file does not exist or cannot be read
        """
        pass

    @abstractmethod
    def blob_id(self, commit_id: str, file_path: str) -> Optional[str]:
        """Return the object id of a file at a commit, or None if absent."""
        pass

    @abstractmethod
    def detect_rename(
        self, commit_id: str, file_path: str, parent_id: Optional[str] = None
    ) -> Optional[str]:
        """Return the path ``file_path`` had in the parent if the commit renamed it.

        Args:
            commit_id: Commit hash
            file_path: Path of the file at ``commit_id``
            parent_id: Parent to compare against (defaults to the first parent)

        Returns:
            The old path, or None when the file was not renamed
        """
        pass

    @abstractmethod
    def changed_files(self, commit_id: str, parent_id: str) -> List[str]:
        """Return paths, as named in the parent, that the commit modified, deleted or renamed."""
        pass

    def parents(self, commit: Commit) -> List[Commit]:
        """Resolve the parents of a commit."""
        return [self.resolve_commit(parent_id) for parent_id in commit.parent_ids]
