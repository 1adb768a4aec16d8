"""History reconstruction."""

from codetracker.tracking.builder import HistoryBuilder
from codetracker.tracking.snapshots import SnapshotProvider
from codetracker.tracking.tracker import Tracker, TrackRequest

__all__ = [
    "HistoryBuilder",
    "SnapshotProvider",
    "Tracker",
    "TrackRequest",
]
