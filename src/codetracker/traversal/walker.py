"""Backward traversal of the commits that touched a file."""

import heapq
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple

import structlog

from codetracker.errors import CodeTrackerError
from codetracker.models import Commit
from codetracker.vcs.base import VersionControlBackend

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WalkStep:
    """One (commit, parent) pair whose version of the tracked file differs.

    Steps of one commit are emitted consecutively; ``group_size`` and
    ``group_index`` tell the consumer how many parents the commit contributes
    and which one this is. ``parent`` is None for a root commit.
    """

    commit: Commit
    file_path: str
    parent: Optional[Commit]
    old_path: Optional[str]
    group_size: int = 1
    group_index: int = 0
    gap: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def is_last_in_group(self) -> bool:
        return self.group_index == self.group_size - 1


class CommitWalker:
    """Walks from a start commit toward the root, newest commit first.

    Commits whose tracked file is identical in some parent (tree-same) are
    skipped and only that parent is followed, like ``git log`` history
    simplification. For every other commit the walker yields one step per
    parent. Once a commit's group has been consumed, the walker continues with
    the parent chosen through :meth:`follow`, or with every parent that still
    has the file when no choice was made.
    """

    def __init__(self, backend: VersionControlBackend, start_commit: str, file_path: str) -> None:
        """Initialize the walker.

        Args:
            backend: Repository backend
            start_commit: Commit to start from
            file_path: Path of the tracked file at the start commit

        Raises:
            CommitNotFoundError: If the start commit does not exist
        """
        self.backend = backend
        self.start = backend.resolve_commit(start_commit)
        self.file_path = file_path
        self.steps = 0

        self._heap: List[Tuple[float, int, str, str]] = []
        self._sequence = 0
        self._visited: Set[str] = set()
        self._follow: Dict[str, Tuple[str, Optional[str]]] = {}
        self._started = False

    def follow(self, commit_id: str, parent_id: str, path: Optional[str] = None) -> None:
        """Continue the walk of ``commit_id`` through ``parent_id`` only.

        Args:
            commit_id: Commit of the current group
            parent_id: Parent to continue with
            path: Path of the tracked element in that parent, when it moved files
        """
        self._follow[commit_id] = (parent_id, path)

    def ancestors_touching(self) -> Iterator[WalkStep]:
        """Yield steps from the start commit toward the root.

        The iterator is lazy and can be consumed once.
        """
        if self._started:
            raise RuntimeError("CommitWalker can only be iterated once")
        self._started = True

        self._push(self.start, self.file_path)
        while self._heap:
            _, _, commit_id, path = heapq.heappop(self._heap)
            if commit_id in self._visited:
                continue
            self._visited.add(commit_id)
            commit = self.backend.resolve_commit(commit_id)
            yield from self._visit(commit, path)

    def _visit(self, commit: Commit, path: str) -> Iterator[WalkStep]:
        if commit.is_root:
            self.steps += 1
            yield WalkStep(commit=commit, file_path=path, parent=None, old_path=None)
            return

        current_blob = self.backend.blob_id(commit.id, path)
        differing: List[Tuple[Commit, Optional[str], Optional[str]]] = []
        for parent in self.backend.parents(commit):
            try:
                old_path = self._path_in_parent(commit, path, parent)
                parent_blob = self.backend.blob_id(parent.id, old_path) if old_path else None
            except CodeTrackerError as e:
                differing.append((parent, path, str(e)))
                continue

            if parent_blob is not None and parent_blob == current_blob:
                logger.debug(
                    "tree_same_parent",
                    commit=commit.short_id,
                    parent=parent.short_id,
                    path=old_path,
                )
                self._push(parent, old_path)
                return
            differing.append((parent, old_path, None))

        size = len(differing)
        for index, (parent, old_path, gap) in enumerate(differing):
            self.steps += 1
            yield WalkStep(
                commit=commit,
                file_path=path,
                parent=parent,
                old_path=old_path,
                group_size=size,
                group_index=index,
                gap=gap,
            )

        choice = self._follow.pop(commit.id, None)
        if choice is not None:
            parent_id, chosen_path = choice
            for parent, old_path, _ in differing:
                if parent.id == parent_id:
                    self._push(parent, chosen_path or old_path or path)
            return

        for parent, old_path, gap in differing:
            if old_path is not None and gap is None:
                self._push(parent, old_path)

    def _path_in_parent(self, commit: Commit, path: str, parent: Commit) -> Optional[str]:
        """Path of the tracked file in ``parent``, or None if it did not exist there."""
        if self.backend.blob_id(parent.id, path) is not None:
            return path
        renamed = self.backend.detect_rename(commit.id, path, parent.id)
        if renamed is not None:
            logger.info(
                "file_rename_followed",
                commit=commit.short_id,
                old_path=renamed,
                new_path=path,
            )
        return renamed

    def _push(self, commit: Commit, path: str) -> None:
        self._sequence += 1
        heapq.heappush(
            self._heap, (-commit.timestamp.timestamp(), self._sequence, commit.id, path)
        )
