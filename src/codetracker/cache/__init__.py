"""Snapshot caching."""

from codetracker.cache.snapshot_cache import CACHE_SCHEMA_VERSION, SnapshotCache, cache_key

__all__ = ["CACHE_SCHEMA_VERSION", "SnapshotCache", "cache_key"]
