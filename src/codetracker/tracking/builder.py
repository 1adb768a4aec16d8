"""Reconstruction of one element's history from walker steps."""

import threading
import time
from typing import List, Optional, Tuple

import structlog

from codetracker.errors import HistoryGapError
from codetracker.matching import ElementMatcher, Matched, MatchResult
from codetracker.models import (
    ChangeEdge,
    CommitProcessingInfo,
    ElementVersion,
    History,
    HistoryGap,
    HistoryReport,
    SyntaxModel,
    SyntaxNode,
    TerminationReason,
    TrackerSettings,
)
from codetracker.tracking.snapshots import SnapshotProvider
from codetracker.traversal import CommitWalker, WalkStep

logger = structlog.get_logger(__name__)


def version_of(snapshot: SyntaxModel, node: SyntaxNode) -> ElementVersion:
    """Build the ElementVersion of ``node`` as it appears in ``snapshot``."""
    return ElementVersion(
        commit_id=snapshot.commit_id,
        file_path=snapshot.file_path,
        key=snapshot.key_for(node),
        source_range=node.source_range,
        fingerprint=node.fingerprint,
    )


class HistoryBuilder:
    """Drives a CommitWalker and the ElementMatcher until the history terminates.

    The builder is linear: once a parent has been chosen for a commit the
    decision is never revisited. Versions and edges are collected newest first
    and reversed when the History is returned.
    """

    def __init__(
        self,
        walker: CommitWalker,
        snapshots: SnapshotProvider,
        matcher: ElementMatcher,
        settings: TrackerSettings,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.walker = walker
        self.snapshots = snapshots
        self.matcher = matcher
        self.settings = settings
        self.cancel_event = cancel_event

        self.report = HistoryReport()
        self._versions: List[ElementVersion] = []
        self._edges: List[ChangeEdge] = []
        self._gaps: List[HistoryGap] = []
        self._consecutive_gaps = 0
        # (commit, path) of the unreadable parent the walk is skipping through
        self._skipped: Optional[Tuple[str, str]] = None
        self._snapshot: Optional[SyntaxModel] = None
        self._node: Optional[SyntaxNode] = None

    def build(self, snapshot: SyntaxModel, node: SyntaxNode) -> History:
        """Reconstruct the history of ``node``, anchored at ``snapshot``.

        Args:
            snapshot: Snapshot of the start file at the start commit
            node: The element to track

        Returns:
            The History, whatever the termination reason
        """
        self._snapshot, self._node = snapshot, node
        self._versions.append(version_of(snapshot, node))
        logger.info(
            "history_started",
            commit=snapshot.commit_id[:7],
            file_path=snapshot.file_path,
            element=snapshot.key_for(node).describe(),
        )

        group: List[WalkStep] = []
        for step in self.walker.ancestors_touching():
            self.report.walker_steps += 1
            group.append(step)
            if not step.is_last_in_group:
                continue
            if self._cancelled():
                return self._finish(TerminationReason.CANCELLED)
            termination = self._process_group(group)
            group = []
            if termination is not None:
                return self._finish(termination)

        return self._finish(TerminationReason.ROOT_REACHED)

    # ------------------------------------------------------------------
    # Group processing
    # ------------------------------------------------------------------

    def _process_group(self, group: List[WalkStep]) -> Optional[TerminationReason]:
        started = time.perf_counter()
        commit = group[0].commit
        path = group[0].file_path
        self.report.analysed_commits += 1
        cross_file = False

        try:
            if commit.id != self._snapshot.commit_id:
                self._catch_up(commit.id, path)

            if group[0].is_root:
                return TerminationReason.INTRODUCED

            evaluated: List[Tuple[WalkStep, MatchResult]] = []
            gapped: List[WalkStep] = []
            self.snapshots.prefetch(
                (step.parent.id, step.old_path)
                for step in group
                if step.gap is None and step.old_path is not None
            )
            for step in group:
                try:
                    result, searched = self._evaluate(step)
                except HistoryGapError as e:
                    self._record_gap(step, e.reason)
                    gapped.append(step)
                    continue
                cross_file = cross_file or searched
                evaluated.append((step, result))

            matched = [(step, result) for step, result in evaluated if isinstance(result, Matched)]
            if matched:
                step, result = min(
                    matched,
                    key=lambda pair: (-pair[1].score, pair[1].edit_cost, pair[0].group_index),
                )
                self._accept(step, result)
                self._consecutive_gaps = 0
                return None

            if not gapped:
                logger.info(
                    "element_introduced",
                    commit=commit.short_id,
                    element=self._versions[-1].key.describe(),
                )
                return TerminationReason.INTRODUCED

            self._consecutive_gaps += 1
            if self._consecutive_gaps >= self.settings.max_consecutive_gaps:
                logger.warning(
                    "history_incomplete",
                    commit=commit.short_id,
                    consecutive_gaps=self._consecutive_gaps,
                )
                return TerminationReason.INCOMPLETE
            # Skip through the unreadable parent and re-locate the element further back
            failing = gapped[0]
            self._skipped = (failing.parent.id, failing.old_path or path)
            self.walker.follow(commit.id, failing.parent.id, failing.old_path or path)
            return None
        finally:
            self.report.processing.append(
                CommitProcessingInfo(
                    commit_id=commit.id,
                    file_path=path,
                    elapsed_ms=(time.perf_counter() - started) * 1000,
                    cross_file=cross_file,
                )
            )

    def _catch_up(self, commit_id: str, path: str) -> None:
        """Re-locate the element at a group commit later than the current version.

        The commits in between were tree-same, so in practice this is decided by
        the byte-identical fast path.
        """
        try:
            snapshot = self.snapshots.get(commit_id, path)
        except HistoryGapError as e:
            if self._skipped == (commit_id, path):
                # Already recorded when the walk skipped through it
                return
            self._gaps.append(
                HistoryGap(commit_id=commit_id, parent_id=None, file_path=path, reason=e.reason)
            )
            self.report.gaps += 1
            return

        result = self.matcher.match(self._snapshot, self._node, snapshot)
        if not isinstance(result, Matched):
            logger.warning(
                "catch_up_failed",
                commit=commit_id[:7],
                file_path=path,
                element=self._versions[-1].key.describe(),
            )
            return
        self._append(result)

    def _evaluate(self, step: WalkStep) -> Tuple[MatchResult, bool]:
        """Match the current version against one parent of the group.

        Returns:
            The match result and whether other changed files were searched

        Raises:
            HistoryGapError: If the parent snapshot cannot be produced
        """
        if step.gap is not None:
            raise HistoryGapError(step.parent.id, step.old_path or step.file_path, step.gap)

        if step.old_path is not None:
            older = self.snapshots.get(step.parent.id, step.old_path)
        else:
            older = self.snapshots.empty(step.parent.id, step.file_path)

        result = self.matcher.match(self._snapshot, self._node, older)
        if isinstance(result, Matched):
            return result, False

        # Not in the same file: look in the other files the commit touched
        paths = [
            changed
            for changed in self.snapshots.backend.changed_files(step.commit.id, step.parent.id)
            if changed != step.old_path and self.snapshots.supports(changed)
        ]
        if not paths:
            return result, False
        self.report.cross_file_searches += 1
        extras = self.snapshots.get_many([(step.parent.id, changed) for changed in paths])
        return self.matcher.match(self._snapshot, self._node, older, extras), True

    def _accept(self, step: WalkStep, result: Matched) -> None:
        self._append(result)
        self.walker.follow(step.commit.id, step.parent.id, result.snapshot.file_path)

    def _append(self, result: Matched) -> None:
        newer = self._versions[-1]
        older = version_of(result.snapshot, result.node)
        edge = ChangeEdge(
            older=older,
            newer=newer,
            operations=result.operations,
            score=result.score,
            diagnostics=list(result.diagnostics),
        )
        self._versions.append(older)
        self._edges.append(edge)
        self._snapshot, self._node = result.snapshot, result.node

        if result.strategy == "fast_path":
            self.report.fast_path_hits += 1
        elif result.strategy == "scoped":
            self.report.scoped_matches += 1
        else:
            self.report.fallback_matches += 1

        logger.info(
            "history_step",
            commit=newer.commit_id[:7],
            parent=older.commit_id[:7],
            operations=sorted(op.value for op in result.operations),
            score=round(result.score, 3),
            strategy=result.strategy,
        )

    def _record_gap(self, step: WalkStep, reason: str) -> None:
        gap = HistoryGap(
            commit_id=step.commit.id,
            parent_id=step.parent.id if step.parent is not None else None,
            file_path=step.old_path or step.file_path,
            reason=reason,
        )
        self._gaps.append(gap)
        self.report.gaps += 1
        logger.warning(
            "history_gap",
            commit=step.commit.short_id,
            parent=step.parent.short_id if step.parent is not None else None,
            file_path=gap.file_path,
            reason=reason,
        )

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _finish(self, termination: TerminationReason) -> History:
        logger.info(
            "history_finished",
            termination=termination.value,
            versions=len(self._versions),
            gaps=len(self._gaps),
        )
        return History(
            versions=list(reversed(self._versions)),
            edges=list(reversed(self._edges)),
            termination=termination,
            gaps=list(self._gaps),
            report=self.report,
        )
