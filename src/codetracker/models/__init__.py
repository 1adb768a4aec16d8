"""Data models for element history tracking."""

from codetracker.models.commit import Commit
from codetracker.models.config import RepositoryConfig, TrackerSettings
from codetracker.models.history import (
    Ambiguous,
    ChangeEdge,
    CommitProcessingInfo,
    ElementVersion,
    History,
    HistoryGap,
    HistoryReport,
    OperationKind,
    TerminationReason,
)
from codetracker.models.syntax import (
    ElementKey,
    ElementKind,
    SourceRange,
    SyntaxModel,
    SyntaxNode,
)

__all__ = [
    "Commit",
    "RepositoryConfig",
    "TrackerSettings",
    "Ambiguous",
    "ChangeEdge",
    "CommitProcessingInfo",
    "ElementVersion",
    "History",
    "HistoryGap",
    "HistoryReport",
    "OperationKind",
    "TerminationReason",
    "ElementKey",
    "ElementKind",
    "SourceRange",
    "SyntaxModel",
    "SyntaxNode",
]
