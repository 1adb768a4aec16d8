"""Git repository backend built on GitPython."""

import threading
from datetime import datetime
from typing import Dict, List, Optional

import git
import structlog
from git import Repo

from codetracker.errors import BlobNotFound, CommitNotFoundError
from codetracker.models import Commit, RepositoryConfig
from codetracker.vcs.base import VersionControlBackend

logger = structlog.get_logger(__name__)


class GitBackend(VersionControlBackend):
    """Reads commits, parents and file blobs from a Git repository.

    GitPython's ``Repo`` is not safe to share between threads, so every access
    to it goes through one lock. Parsing happens outside the lock.
    """

    def __init__(self, config: RepositoryConfig) -> None:
        """Initialize the GitBackend.

        Args:
            config: Repository configuration

        Raises:
            ValueError: If repository path is invalid
        """
        self.config = config
        if not config.repo_path.exists():
            raise ValueError(f"Repository path does not exist: {config.repo_path}")

        try:
            self.repo = Repo(config.repo_path)
        except git.exc.InvalidGitRepositoryError as e:
            raise ValueError(f"Invalid Git repository: {config.repo_path}") from e

        self._lock = threading.RLock()
        self._commits: Dict[str, Commit] = {}

    def resolve_commit(self, commit_id: str) -> Commit:
        cached = self._commits.get(commit_id)
        if cached is not None:
            return cached

        with self._lock:
            try:
                git_commit = self.repo.commit(commit_id)
            except (git.exc.BadName, git.exc.BadObject, ValueError) as e:
                raise CommitNotFoundError(commit_id) from e

            message_lines = git_commit.message.strip().split("\n")
            commit = Commit(
                id=git_commit.hexsha,
                parent_ids=tuple(p.hexsha for p in git_commit.parents),
                timestamp=datetime.fromtimestamp(git_commit.committed_date),
                summary=message_lines[0] if message_lines else "",
            )

        self._commits[commit_id] = commit
        self._commits[commit.id] = commit
        return commit

    def blob(self, commit_id: str, file_path: str) -> bytes:
        with self._lock:
            git_blob = self._lookup_blob(commit_id, file_path)
            if git_blob is None:
                raise BlobNotFound(commit_id, file_path)

            # Check file size
            if git_blob.size > self.config.max_file_size_bytes:
                raise BlobNotFound(
                    commit_id,
                    file_path,
                    reason=f"larger than {self.config.max_file_size_bytes} bytes",
                )

            return git_blob.data_stream.read()

    def blob_id(self, commit_id: str, file_path: str) -> Optional[str]:
        with self._lock:
            git_blob = self._lookup_blob(commit_id, file_path)
            return git_blob.hexsha if git_blob is not None else None

    def detect_rename(
        self, commit_id: str, file_path: str, parent_id: Optional[str] = None
    ) -> Optional[str]:
        with self._lock:
            git_commit = self.repo.commit(commit_id)
            if not git_commit.parents:
                return None
            parent = self.repo.commit(parent_id) if parent_id else git_commit.parents[0]

            # GitPython runs diff-tree with rename detection (-M)
            for diff in parent.diff(git_commit):
                if diff.renamed_file and diff.b_path == file_path:
                    logger.debug(
                        "file_rename_detected",
                        commit=git_commit.hexsha[:7],
                        old_path=diff.a_path,
                        new_path=file_path,
                    )
                    return diff.a_path
        return None

    def changed_files(self, commit_id: str, parent_id: str) -> List[str]:
        with self._lock:
            git_commit = self.repo.commit(commit_id)
            parent = self.repo.commit(parent_id)
            paths = []
            for diff in parent.diff(git_commit):
                # Files added by the commit have no previous version to search
                if diff.new_file or not diff.a_path:
                    continue
                paths.append(diff.a_path)
            return paths

    def _lookup_blob(self, commit_id: str, file_path: str) -> Optional[git.Blob]:
        try:
            git_commit = self.repo.commit(commit_id)
        except (git.exc.BadName, git.exc.BadObject, ValueError) as e:
            raise CommitNotFoundError(commit_id) from e

        try:
            item = git_commit.tree / file_path
        except KeyError:
            # File doesn't exist in this commit
            return None

        if item.type != "blob":
            return None
        return item
