"""Memoizing store of parsed snapshots keyed by (commit, file path).

The cache lives for the whole process and may be persisted to a single JSON
document between runs. Concurrent requests for the same key share one
computation; a failed computation is handed to every waiter and forgotten, so a
later request may retry it.
"""

import json
import os
import tempfile
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Dict, Optional

import structlog
from pydantic import ValidationError

from codetracker.errors import CacheSchemaMismatch
from codetracker.models import SyntaxModel

logger = structlog.get_logger(__name__)

CACHE_SCHEMA_VERSION = 1


def cache_key(commit_id: str, file_path: str) -> str:
    """Build the flat key a snapshot is stored under."""
    return f"{commit_id}:{file_path}"


class SnapshotCache:
    """Thread-safe, single-flight snapshot cache with optional JSON persistence."""

    def __init__(self, path: Optional[Path] = None, schema_version: int = CACHE_SCHEMA_VERSION) -> None:
        """Initialize the cache.

        Args:
            path: JSON file to load from and flush to; in-memory only when None
            schema_version: Version written to and expected from the persisted file
        """
        self.path = Path(path) if path is not None else None
        self.schema_version = schema_version

        self._lock = threading.Lock()
        self._entries: Dict[str, SyntaxModel] = {}
        self._inflight: Dict[str, "Future[SyntaxModel]"] = {}
        self._dirty = False

        # Stats
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, commit_id: str, file_path: str) -> Optional[SyntaxModel]:
        """Return the cached snapshot, or None without computing anything."""
        with self._lock:
            model = self._entries.get(cache_key(commit_id, file_path))
            if model is not None:
                self.hits += 1
            return model

    def get_or_compute(
        self,
        commit_id: str,
        file_path: str,
        compute: Callable[[], SyntaxModel],
    ) -> SyntaxModel:
        """Return the cached snapshot, computing it at most once per key.

        Args:
            commit_id: Commit the snapshot belongs to
            file_path: File the snapshot belongs to
            compute: Produces the snapshot on a miss

        Returns:
            The snapshot for the key

        Raises:
            Exception: Whatever ``compute`` raised, for the caller that ran it and
                for every caller that waited on it
        """
        key = cache_key(commit_id, file_path)
        with self._lock:
            model = self._entries.get(key)
            if model is not None:
                self.hits += 1
                return model
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future
                self.misses += 1
            else:
                self.hits += 1

        if not owner:
            return future.result()

        try:
            model = compute()
        except BaseException as e:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(e)
            raise

        with self._lock:
            self._entries[key] = model
            self._inflight.pop(key, None)
            self._dirty = True
        future.set_result(model)
        return model

    def load(self) -> int:
        """Load persisted snapshots, starting cold if the file is unusable.

        Returns:
            Number of snapshots loaded
        """
        if self.path is None or not self.path.exists():
            return 0

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            found = data.get("schema_version") if isinstance(data, dict) else None
            if found != self.schema_version:
                raise CacheSchemaMismatch(self.schema_version, found)
        except CacheSchemaMismatch as e:
            logger.warning("snapshot_cache_discarded", path=str(self.path), reason=str(e))
            return 0
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("snapshot_cache_unreadable", path=str(self.path), error=str(e))
            return 0

        loaded: Dict[str, SyntaxModel] = {}
        dropped = 0
        for key, raw in (data.get("entries") or {}).items():
            try:
                loaded[key] = SyntaxModel.model_validate(raw)
            except ValidationError:
                dropped += 1

        with self._lock:
            for key, model in loaded.items():
                self._entries.setdefault(key, model)

        logger.info(
            "snapshot_cache_loaded",
            path=str(self.path),
            entries=len(loaded),
            dropped=dropped,
        )
        return len(loaded)

    def flush(self) -> None:
        """Persist the cache using an atomic write (temporary file plus rename)."""
        if self.path is None:
            return

        with self._lock:
            if not self._dirty:
                return
            payload = {
                "schema_version": self.schema_version,
                "entries": {
                    key: model.model_dump(mode="json") for key, model in self._entries.items()
                },
            }
            self._dirty = False

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=".snapshots_", suffix=".json.tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(temp_path, self.path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            with self._lock:
                self._dirty = True
            raise

        logger.debug("snapshot_cache_flushed", path=str(self.path), entries=len(payload["entries"]))

    def clear(self) -> None:
        """Drop every snapshot, in memory and on disk."""
        with self._lock:
            self._entries.clear()
            self._dirty = False
            self.hits = 0
            self.misses = 0
        if self.path is not None and self.path.exists():
            self.path.unlink()

    def stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dictionary with cache stats
        """
        with self._lock:
            total_requests = self.hits + self.misses
            hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0.0
            return {
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": f"{hit_rate:.1f}%",
                "entries": len(self._entries),
                "in_flight": len(self._inflight),
                "path": str(self.path) if self.path is not None else None,
            }
