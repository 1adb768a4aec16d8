"""codetracker - reconstruct the change history of individual code elements in Git."""

from codetracker.models import (
    ElementKey,
    ElementKind,
    History,
    OperationKind,
    TerminationReason,
    TrackerSettings,
)
from codetracker.tracking import Tracker, TrackRequest

__version__ = "0.1.0"

__all__ = [
    "ElementKey",
    "ElementKind",
    "History",
    "OperationKind",
    "TerminationReason",
    "TrackerSettings",
    "Tracker",
    "TrackRequest",
]
