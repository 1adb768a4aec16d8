"""Snapshot retrieval: blob, parse and cache, with timeouts and prefetching."""

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Callable, Dict, Iterable, List, Tuple, TypeVar

import structlog

from codetracker.cache import SnapshotCache
from codetracker.errors import BlobNotFound, HistoryGapError, ParseError
from codetracker.models import SyntaxModel, TrackerSettings
from codetracker.parsing import ParserRegistry
from codetracker.vcs.base import VersionControlBackend

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SnapshotProvider:
    """Produces parsed snapshots of files at commits, memoized in a SnapshotCache.

    Blob retrieval and parsing each run on a worker thread bounded by a timeout.
    A timeout, a missing blob or a parse failure surfaces as HistoryGapError; the
    failure is not cached, so a later request retries it.
    """

    def __init__(
        self,
        backend: VersionControlBackend,
        registry: ParserRegistry,
        cache: SnapshotCache,
        settings: TrackerSettings,
    ) -> None:
        self.backend = backend
        self.registry = registry
        self.cache = cache
        self.settings = settings

        # Timed work and prefetch use separate pools so a prefetch task waiting
        # on timed work can never starve it of workers.
        self._work_pool = ThreadPoolExecutor(
            max_workers=settings.max_workers, thread_name_prefix="codetracker-work"
        )
        self._prefetch_pool = ThreadPoolExecutor(
            max_workers=settings.max_workers, thread_name_prefix="codetracker-prefetch"
        )

    def get(self, commit_id: str, file_path: str) -> SyntaxModel:
        """Return the snapshot of ``file_path`` at ``commit_id``.

        Raises:
            HistoryGapError: If the file cannot be read or parsed in time
        """
        return self.cache.get_or_compute(
            commit_id, file_path, lambda: self._compute(commit_id, file_path)
        )

    def empty(self, commit_id: str, file_path: str) -> SyntaxModel:
        """Snapshot standing in for a file that does not exist at a commit."""
        return SyntaxModel(commit_id=commit_id, file_path=file_path, content_hash="", nodes=[])

    def supports(self, file_path: str) -> bool:
        return self.registry.supports(file_path)

    def prefetch(self, keys: Iterable[Tuple[str, str]]) -> Dict[Tuple[str, str], "Future[SyntaxModel]"]:
        """Start computing several snapshots in parallel.

        Args:
            keys: (commit_id, file_path) pairs

        Returns:
            Futures by key; callers may ignore them and call ``get`` later, which
            joins the in-flight computation.
        """
        futures: Dict[Tuple[str, str], Future] = {}
        for commit_id, file_path in keys:
            if (commit_id, file_path) in futures:
                continue
            futures[(commit_id, file_path)] = self._prefetch_pool.submit(self.get, commit_id, file_path)
        return futures

    def get_many(self, keys: List[Tuple[str, str]]) -> List[SyntaxModel]:
        """Fetch several snapshots, skipping (and logging) those that fail."""
        futures = self.prefetch(keys)
        snapshots = []
        for key, future in futures.items():
            try:
                snapshots.append(future.result())
            except HistoryGapError as e:
                logger.warning(
                    "snapshot_unavailable",
                    commit=key[0][:7],
                    file_path=key[1],
                    reason=e.reason,
                )
        return snapshots

    def shutdown(self) -> None:
        self._prefetch_pool.shutdown(wait=True)
        self._work_pool.shutdown(wait=True)

    def _compute(self, commit_id: str, file_path: str) -> SyntaxModel:
        parser = self.registry.for_path(file_path)
        if parser is None:
            raise HistoryGapError(commit_id, file_path, "no parser for this file type")

        try:
            data = self._timed(
                lambda: self.backend.blob(commit_id, file_path),
                self.settings.blob_timeout_seconds,
                commit_id,
                file_path,
                "blob retrieval",
            )
            model = self._timed(
                lambda: parser.parse(data, file_path, commit_id),
                self.settings.parse_timeout_seconds,
                commit_id,
                file_path,
                "parsing",
            )
        except (BlobNotFound, ParseError) as e:
            raise HistoryGapError(commit_id, file_path, str(e)) from e

        logger.debug(
            "snapshot_parsed",
            commit=commit_id[:7],
            file_path=file_path,
            nodes=len(model.nodes),
        )
        return model

    def _timed(
        self,
        work: Callable[[], T],
        timeout: float,
        commit_id: str,
        file_path: str,
        what: str,
    ) -> T:
        future = self._work_pool.submit(work)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError as e:
            # The worker keeps running; its result is discarded
            logger.warning(
                "snapshot_timeout",
                commit=commit_id[:7],
                file_path=file_path,
                stage=what,
                timeout=timeout,
            )
            raise HistoryGapError(commit_id, file_path, f"{what} timed out after {timeout}s") from e
