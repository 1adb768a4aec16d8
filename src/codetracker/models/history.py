"""Data models for reconstructed element histories."""

from enum import Enum
from typing import FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from codetracker.models.syntax import ElementKey, SourceRange


class OperationKind(str, Enum):
    """Kinds of change separating two consecutive element versions."""

    INTRODUCED = "introduced"
    UNCHANGED = "unchanged"
    BODY_CHANGED = "body_changed"
    SIGNATURE_CHANGED = "signature_changed"
    RENAMED = "renamed"
    MOVED = "moved"
    CONTAINER_CHANGED = "container_changed"
    EXTRACTED = "extracted"
    INLINED = "inlined"


class TerminationReason(str, Enum):
    """Why the backward walk stopped."""

    INTRODUCED = "introduced"
    ROOT_REACHED = "root_reached"
    INCOMPLETE = "incomplete"
    CANCELLED = "cancelled"


class Ambiguous(BaseModel):
    """Diagnostic attached to an edge whose match needed a tie-break."""

    model_config = ConfigDict(frozen=True)

    chosen: ElementKey = Field(..., description="Candidate that was accepted")
    alternatives: List[ElementKey] = Field(
        default_factory=list, description="Candidates scoring within epsilon of the chosen one"
    )
    score: float = Field(..., description="Score of the chosen candidate")
    resolved_by: str = Field(..., description="Tie-break rule that decided the pick")


class ElementVersion(BaseModel):
    """One concrete appearance of the tracked element at one commit."""

    model_config = ConfigDict(frozen=True)

    commit_id: str = Field(..., description="Commit hash")
    file_path: str = Field(..., description="File holding the element at this commit")
    key: ElementKey = Field(..., description="Structural identity of the element")
    source_range: SourceRange = Field(..., description="Line range in the file")
    fingerprint: str = Field(..., description="Hash of the body token stream")

    def describe(self) -> str:
        return f"{self.commit_id[:7]}:{self.file_path}:{self.key.describe()}"


class ChangeEdge(BaseModel):
    """Directed edge from an older version to the newer one it became."""

    model_config = ConfigDict(frozen=True)

    older: ElementVersion = Field(..., description="Version at the parent commit")
    newer: ElementVersion = Field(..., description="Version at the child commit")
    operations: FrozenSet[OperationKind] = Field(..., description="Change labels")
    score: float = Field(..., description="Matcher score of the correspondence")
    diagnostics: List[Ambiguous] = Field(
        default_factory=list, description="Ambiguity diagnostics raised while matching"
    )

    @property
    def is_ambiguous(self) -> bool:
        return bool(self.diagnostics)


class HistoryGap(BaseModel):
    """A step of the walk that could not be evaluated."""

    model_config = ConfigDict(frozen=True)

    commit_id: str = Field(..., description="Child commit of the failed step")
    parent_id: Optional[str] = Field(None, description="Parent commit of the failed step")
    file_path: str = Field(..., description="Path that could not be read or parsed")
    reason: str = Field(..., description="Failure description")


class CommitProcessingInfo(BaseModel):
    """Timing record for one analysed commit."""

    commit_id: str = Field(..., description="Commit hash")
    file_path: str = Field(..., description="File analysed at that commit")
    elapsed_ms: float = Field(..., description="Wall time spent on the commit")
    cross_file: bool = Field(False, description="Whether other files had to be searched")


class HistoryReport(BaseModel):
    """Counters describing how a history was reconstructed."""

    walker_steps: int = Field(0, description="Walker steps consumed")
    analysed_commits: int = Field(0, description="Distinct commits evaluated")
    fast_path_hits: int = Field(0, description="Matches decided on byte-identical content")
    scoped_matches: int = Field(0, description="Matches found inside the matched scope")
    fallback_matches: int = Field(0, description="Matches found by move/extract/inline search")
    cross_file_searches: int = Field(0, description="Steps that searched other changed files")
    gaps: int = Field(0, description="Steps recorded as gaps")
    processing: List[CommitProcessingInfo] = Field(
        default_factory=list, description="Per-commit processing times"
    )


class History(BaseModel):
    """Backward chain of versions of one tracked element."""

    versions: List[ElementVersion] = Field(
        default_factory=list, description="Versions ordered oldest to newest"
    )
    edges: List[ChangeEdge] = Field(
        default_factory=list, description="Edges between consecutive versions"
    )
    termination: TerminationReason = Field(..., description="Why the walk stopped")
    gaps: List[HistoryGap] = Field(default_factory=list, description="Recorded gaps")
    report: HistoryReport = Field(default_factory=HistoryReport, description="Walk statistics")

    @property
    def start(self) -> ElementVersion:
        """The version the request was anchored at."""
        return self.versions[-1]

    @property
    def oldest(self) -> ElementVersion:
        return self.versions[0]

    @property
    def introduced_at(self) -> Optional[ElementVersion]:
        if self.termination is TerminationReason.INTRODUCED:
            return self.versions[0]
        return None

    def commits(self) -> List[str]:
        return [version.commit_id for version in self.versions]

    def operations(self) -> List[FrozenSet[OperationKind]]:
        return [edge.operations for edge in self.edges]

    def ambiguous_edges(self) -> List[ChangeEdge]:
        return [edge for edge in self.edges if edge.is_ambiguous]
