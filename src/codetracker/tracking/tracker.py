"""Public entry point: track the history of one or many code elements."""

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, List, Optional

import structlog
from pydantic import BaseModel, Field

from codetracker.cache import SnapshotCache
from codetracker.errors import ElementNotFoundError, HistoryGapError
from codetracker.matching import ElementMatcher
from codetracker.models import (
    ElementKey,
    History,
    RepositoryConfig,
    SyntaxModel,
    SyntaxNode,
    TrackerSettings,
)
from codetracker.parsing import ParserRegistry
from codetracker.tracking.builder import HistoryBuilder
from codetracker.tracking.snapshots import SnapshotProvider
from codetracker.traversal import CommitWalker
from codetracker.vcs import GitBackend, VersionControlBackend

logger = structlog.get_logger(__name__)


class TrackRequest(BaseModel):
    """One element to track, as accepted by :meth:`Tracker.track_many`."""

    start_commit: str = Field(..., description="Commit to start the backward walk from")
    file_path: str = Field(..., description="File holding the element at the start commit")
    element_key: ElementKey = Field(..., description="Element to track")
    line: Optional[int] = Field(None, description="Line inside the element, to disambiguate")


class Tracker:
    """Reconstructs element histories over a shared snapshot cache.

    Example:
        >>> with Tracker.for_repository(Path("/path/to/repo")) as tracker:
        ...     key = ElementKey(kind=ElementKind.METHOD, container=("Parser",), name="parse")
        ...     history = tracker.track("HEAD", "src/parser.py", key)
    """

    def __init__(
        self,
        backend: VersionControlBackend,
        settings: Optional[TrackerSettings] = None,
        registry: Optional[ParserRegistry] = None,
        cache: Optional[SnapshotCache] = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            backend: Repository backend
            settings: Engine settings (loaded from the environment when omitted)
            registry: Parser registry (Python only when omitted)
            cache: Snapshot cache to share; a new one is created and loaded from
                ``settings.cache_path`` when omitted
        """
        self.backend = backend
        self.settings = settings or TrackerSettings()
        self.registry = registry or ParserRegistry()
        if cache is None:
            cache = SnapshotCache(self.settings.cache_path)
            cache.load()
        self.cache = cache
        self.matcher = ElementMatcher(self.settings)
        self.snapshots = SnapshotProvider(backend, self.registry, self.cache, self.settings)

    @classmethod
    def for_repository(
        cls,
        repo_path: Path,
        settings: Optional[TrackerSettings] = None,
        cache: Optional[SnapshotCache] = None,
    ) -> "Tracker":
        """Build a tracker over a local Git repository."""
        backend = GitBackend(RepositoryConfig(repo_path=repo_path))
        return cls(backend, settings=settings, cache=cache)

    def __enter__(self) -> "Tracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def track(
        self,
        start_commit: str,
        file_path: str,
        element_key: ElementKey,
        line: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> History:
        """Reconstruct the history of one element.

        Args:
            start_commit: Commit to start from (hash or reference)
            file_path: File holding the element at ``start_commit``
            element_key: Element to track; an empty signature matches any
                signature, an empty name matches any element of the kind
                containing ``line``
            line: Line inside the element, used when the key matches several
            cancel_event: Set it to stop the walk between steps

        Returns:
            The element's History; its ``termination`` tells why the walk stopped

        Raises:
            CommitNotFoundError: If ``start_commit`` does not exist
            ElementNotFoundError: If the element is missing or ambiguous at the start
        """
        commit = self.backend.resolve_commit(start_commit)
        try:
            snapshot = self.snapshots.get(commit.id, file_path)
        except HistoryGapError as e:
            raise ElementNotFoundError(file_path, element_key.describe(), e.reason) from e

        node = self.locate(snapshot, element_key, line)
        walker = CommitWalker(self.backend, commit.id, file_path)
        builder = HistoryBuilder(walker, self.snapshots, self.matcher, self.settings, cancel_event)
        return builder.build(snapshot, node)

    def track_many(
        self,
        requests: Iterable[TrackRequest],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[History]:
        """Track several elements concurrently, sharing the snapshot cache.

        Returns:
            Histories in request order

        Raises:
            CodeTrackerError: The first failure among the requests
        """
        requests = list(requests)
        if not requests:
            return []

        workers = min(self.settings.max_workers, len(requests))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="codetracker-track") as pool:
            futures = [
                pool.submit(
                    self.track,
                    request.start_commit,
                    request.file_path,
                    request.element_key,
                    request.line,
                    cancel_event,
                )
                for request in requests
            ]
            return [future.result() for future in futures]

    def locate(
        self, snapshot: SyntaxModel, element_key: ElementKey, line: Optional[int] = None
    ) -> SyntaxNode:
        """Find the element described by ``element_key`` in ``snapshot``.

        Raises:
            ElementNotFoundError: If no element, or more than one, matches
        """
        candidates = [
            node for node in snapshot.elements(element_key.kind) if _key_matches(snapshot, node, element_key)
        ]
        if line is not None:
            candidates = [
                node
                for node in candidates
                if node.source_range.start_line <= line <= node.source_range.end_line
            ]
            # Nested matches: the innermost one is meant
            candidates.sort(key=lambda node: node.source_range.length)
            candidates = candidates[:1]

        if not candidates:
            raise ElementNotFoundError(snapshot.file_path, element_key.describe())
        if len(candidates) > 1:
            lines = ", ".join(str(node.source_range.start_line) for node in candidates)
            raise ElementNotFoundError(
                snapshot.file_path,
                element_key.describe(),
                f"ambiguous, {len(candidates)} elements match (lines {lines}); pass a line",
            )
        return candidates[0]

    def close(self) -> None:
        """Flush the snapshot cache and stop worker threads."""
        self.snapshots.shutdown()
        self.cache.flush()
        logger.debug("tracker_closed", **self.cache.stats())


def _key_matches(snapshot: SyntaxModel, node: SyntaxNode, key: ElementKey) -> bool:
    if key.signature and node.signature != key.signature:
        return False
    if not key.name:
        return True
    return node.name == key.name and snapshot.container_path(node) == tuple(key.container)
