"""Element matching between a snapshot and one of its parent snapshots.

The matcher answers one question: given an element of the newer snapshot,
which element of the older snapshot does it come from, and what changed?

Identity search is hierarchical. The enclosing class or method of the element
is matched first, and only elements inside the matched counterpart are
candidates; top-level elements are compared with elements whose container path
is at most one step away. Candidates are ranked by a weighted score (name,
signature, body tokens) and ties are broken by name, container distance and
line proximity, with an ``Ambiguous`` diagnostic recorded whenever a tie had to
be broken. When nothing in scope clears the acceptance threshold, the matcher
looks further: elements moved to another container or file, blocks extracted
from or inlined into other methods, and methods extracted from a surviving one.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple, Union

import structlog

from codetracker.matching import similarity
from codetracker.models import (
    Ambiguous,
    ElementKind,
    OperationKind,
    SyntaxModel,
    SyntaxNode,
    TrackerSettings,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Matched:
    """The newer element corresponds to ``node`` in ``snapshot``."""

    node: SyntaxNode
    snapshot: SyntaxModel
    operations: FrozenSet[OperationKind]
    score: float
    body_similarity: float
    strategy: str
    diagnostics: Tuple[Ambiguous, ...] = ()

    @property
    def edit_cost(self) -> float:
        return 1.0 - self.body_similarity


@dataclass(frozen=True)
class NotFound:
    """No older element corresponds: the element was introduced at the newer commit."""

    reason: str = "no candidate cleared the acceptance threshold"


MatchResult = Union[Matched, NotFound]


@dataclass
class _Candidate:
    snapshot: SyntaxModel
    node: SyntaxNode
    score: float
    body: float
    name_equal: bool
    signature_equal: bool
    container_distance: int
    line_distance: int
    overlap: float

    @property
    def identity(self) -> Tuple[str, int]:
        return (self.snapshot.file_path, self.node.index)


@dataclass
class _MatchContext:
    newer: SyntaxModel
    older: SyntaxModel
    extras: Sequence[SyntaxModel]
    scopes: Dict[int, MatchResult] = field(default_factory=dict)


class ElementMatcher:
    """Finds the best older counterpart of an element and classifies the change."""

    def __init__(self, settings: Optional[TrackerSettings] = None) -> None:
        """Initialize the matcher.

        Args:
            settings: Tracker settings providing weights and thresholds
        """
        self.settings = settings or TrackerSettings()

    def match(
        self,
        newer: SyntaxModel,
        element: SyntaxNode,
        older: SyntaxModel,
        extra_snapshots: Sequence[SyntaxModel] = (),
    ) -> MatchResult:
        """Match ``element`` of ``newer`` against ``older``.

        Args:
            newer: Snapshot holding the element at the child commit
            element: Element to find a predecessor for
            older: Snapshot of the same file at the parent commit
            extra_snapshots: Parent snapshots of other files touched by the commit,
                searched when the element is not found in ``older``

        Returns:
            Matched with the older element and change labels, or NotFound
        """
        context = _MatchContext(newer=newer, older=older, extras=tuple(extra_snapshots))
        result = self._match(context, element)
        if isinstance(result, Matched):
            logger.debug(
                "element_matched",
                element=newer.key_for(element).describe(),
                strategy=result.strategy,
                score=round(result.score, 3),
                operations=sorted(op.value for op in result.operations),
            )
        return result

    # ------------------------------------------------------------------
    # Matching pipeline
    # ------------------------------------------------------------------

    def _match(self, context: _MatchContext, element: SyntaxNode) -> MatchResult:
        fast = self._fast_path(context, element)
        if fast is not None:
            return fast

        newer = context.newer
        scope = newer.scope_of(element)
        scope_result: Optional[MatchResult] = None
        if scope is not None:
            scope_result = context.scopes.get(scope.index)
            if scope_result is None:
                scope_result = self._match(context, scope)
                context.scopes[scope.index] = scope_result

        scored = [self._score(context, element, snapshot, node) for snapshot, node in self._scoped_candidates(context, element, scope_result)]
        selection = self._select(newer, element, scored)
        if selection is not None:
            candidate, diagnostics = selection
            operations = self._classify(context, element, candidate, relocated=False)
            if element.kind is ElementKind.METHOD and self._absorbed_vanished_method(
                context, element, candidate
            ):
                operations = (operations - {OperationKind.UNCHANGED}) | {OperationKind.INLINED}
            return self._matched(candidate, operations, "scoped", diagnostics)

        seen = {candidate.identity for candidate in scored}
        relocated = self._relocated(context, element, scope_result, seen)
        if relocated is not None:
            return relocated

        if element.kind is ElementKind.METHOD:
            extracted = self._extracted_method(context, element)
            if extracted is not None:
                return extracted

        return NotFound()

    def _fast_path(self, context: _MatchContext, element: SyntaxNode) -> Optional[Matched]:
        """Byte-identical files: find the same key without comparing tokens."""
        newer, older = context.newer, context.older
        if newer.content_hash != older.content_hash:
            return None
        same = older.find(newer.key_for(element))
        if not same:
            return None
        node = min(same, key=lambda n: n.source_range.distance(element.source_range))
        if older.file_path == newer.file_path:
            operations = frozenset({OperationKind.UNCHANGED})
        else:
            operations = frozenset({OperationKind.MOVED})
        return Matched(
            node=node,
            snapshot=older,
            operations=operations,
            score=1.0,
            body_similarity=1.0,
            strategy="fast_path",
        )

    def _scoped_candidates(
        self,
        context: _MatchContext,
        element: SyntaxNode,
        scope_result: Optional[MatchResult],
    ) -> List[Tuple[SyntaxModel, SyntaxNode]]:
        newer = context.newer
        if scope_result is not None:
            if not isinstance(scope_result, Matched):
                # Enclosing scope is new, so nothing inside it can be matched in place
                return []
            snapshot = scope_result.snapshot
            nodes = snapshot.within_scope(scope_result.node, element.kind)
        else:
            snapshot = context.older
            container = newer.container_path(element)
            nodes = [
                node
                for node in snapshot.elements(element.kind)
                if similarity.sequence_edit_distance(snapshot.container_path(node), container) <= 1
            ]
            exact = [n for n in nodes if snapshot.container_path(n) == container]
            if exact and any(n.name == element.name for n in exact):
                nodes = exact

        pairs = [
            (snapshot, node)
            for node in nodes
            if self._compatible(element, node) and not self._claimed(newer, element, snapshot, node)
        ]
        return pairs

    def _relocated(
        self,
        context: _MatchContext,
        element: SyntaxNode,
        scope_result: Optional[MatchResult],
        seen: Set[Tuple[str, int]],
    ) -> Optional[Matched]:
        """Search the whole older file and the other touched files."""
        newer = context.newer
        scored = []
        for snapshot in (context.older, *context.extras):
            for node in snapshot.elements(element.kind):
                if (snapshot.file_path, node.index) in seen:
                    continue
                if not self._compatible(element, node):
                    continue
                if self._claimed(newer, element, snapshot, node):
                    continue
                candidate = self._score(context, element, snapshot, node)
                if not self._acceptable_relocation(element, candidate):
                    continue
                scored.append(candidate)

        selection = self._select(newer, element, scored)
        if selection is None:
            return None
        candidate, diagnostics = selection
        operations = self._classify(context, element, candidate, relocated=True)

        if element.kind is ElementKind.BLOCK:
            owner = candidate.snapshot.scope_of(candidate.node)
            owner_survives = owner is not None and self._exists_in(
                newer, owner.kind, candidate.snapshot.container_path(owner), owner.name
            )
            label = None
            if isinstance(scope_result, NotFound) and owner_survives:
                label = OperationKind.EXTRACTED
            elif owner is not None and not owner_survives:
                label = OperationKind.INLINED
            if label is not None:
                operations = operations - {OperationKind.MOVED, OperationKind.UNCHANGED}
                if candidate.snapshot.file_path != newer.file_path:
                    operations = operations | {OperationKind.MOVED}
                return self._matched(candidate, operations | {label}, label.value, diagnostics)

        return self._matched(candidate, operations, "moved", diagnostics)

    def _extracted_method(self, context: _MatchContext, element: SyntaxNode) -> Optional[Matched]:
        """Find a surviving older method whose body contains the newer method's body."""
        settings = self.settings
        if len(element.tokens) < settings.min_extraction_tokens:
            return None

        newer = context.newer
        best: Optional[Tuple[float, SyntaxModel, SyntaxNode]] = None
        for snapshot in (context.older, *context.extras):
            for node in snapshot.elements(ElementKind.METHOD):
                if node.name == element.name:
                    continue
                if not self._exists_in(newer, node.kind, snapshot.container_path(node), node.name):
                    continue
                contained = similarity.containment(element.tokens, node.tokens)
                if contained < settings.extraction_containment:
                    continue
                if best is None or contained > best[0]:
                    best = (contained, snapshot, node)

        if best is None:
            return None
        contained, snapshot, node = best
        operations = {OperationKind.EXTRACTED}
        if snapshot.file_path != newer.file_path:
            operations.add(OperationKind.MOVED)
        return Matched(
            node=node,
            snapshot=snapshot,
            operations=frozenset(operations),
            score=contained,
            body_similarity=similarity.body_similarity(element.tokens, node.tokens),
            strategy="extracted",
        )

    # ------------------------------------------------------------------
    # Scoring and selection
    # ------------------------------------------------------------------

    def _score(
        self,
        context: _MatchContext,
        element: SyntaxNode,
        snapshot: SyntaxModel,
        node: SyntaxNode,
    ) -> _Candidate:
        settings = self.settings
        name_equal = element.name == node.name
        signature_equal = element.signature == node.signature
        if element.fingerprint and element.fingerprint == node.fingerprint:
            body = 1.0
        else:
            body = similarity.body_similarity(element.tokens, node.tokens)
        score = (
            settings.name_weight * name_equal
            + settings.signature_weight * signature_equal
            + settings.body_weight * body
        )
        return _Candidate(
            snapshot=snapshot,
            node=node,
            score=score,
            body=body,
            name_equal=name_equal,
            signature_equal=signature_equal,
            container_distance=similarity.sequence_edit_distance(
                context.newer.container_path(element), snapshot.container_path(node)
            ),
            line_distance=element.source_range.distance(node.source_range),
            overlap=element.source_range.overlap(node.source_range),
        )

    def _select(
        self,
        newer: SyntaxModel,
        element: SyntaxNode,
        scored: List[_Candidate],
    ) -> Optional[Tuple[_Candidate, Tuple[Ambiguous, ...]]]:
        """Accept the best candidate, breaking near-ties and recording them."""
        eligible = [c for c in scored if c.score >= self.settings.acceptance_threshold]
        if not eligible:
            return None
        eligible.sort(key=lambda c: c.score, reverse=True)
        best_score = eligible[0].score
        tied = [c for c in eligible if best_score - c.score <= self.settings.ambiguity_epsilon]
        if len(tied) == 1:
            return tied[0], ()

        tied.sort(key=_tie_break_key)
        chosen, runner_up = tied[0], tied[1]
        diagnostic = Ambiguous(
            chosen=chosen.snapshot.key_for(chosen.node),
            alternatives=[c.snapshot.key_for(c.node) for c in tied[1:]],
            score=chosen.score,
            resolved_by=_deciding_rule(chosen, runner_up),
        )
        logger.info(
            "ambiguous_match",
            element=newer.key_for(element).describe(),
            chosen=diagnostic.chosen.describe(),
            alternatives=len(diagnostic.alternatives),
            resolved_by=diagnostic.resolved_by,
        )
        return chosen, (diagnostic,)

    def _classify(
        self,
        context: _MatchContext,
        element: SyntaxNode,
        candidate: _Candidate,
        relocated: bool,
    ) -> FrozenSet[OperationKind]:
        newer = context.newer
        operations: Set[OperationKind] = set()
        if not candidate.name_equal:
            operations.add(OperationKind.RENAMED)
        elif not candidate.signature_equal:
            operations.add(OperationKind.SIGNATURE_CHANGED)
        if candidate.body < 1.0:
            operations.add(OperationKind.BODY_CHANGED)
        if relocated or candidate.snapshot.file_path != newer.file_path:
            operations.add(OperationKind.MOVED)
        if candidate.snapshot.container_path(candidate.node) != newer.container_path(element):
            operations.add(OperationKind.CONTAINER_CHANGED)
        if not operations:
            operations.add(OperationKind.UNCHANGED)
        return frozenset(operations)

    def _matched(
        self,
        candidate: _Candidate,
        operations: FrozenSet[OperationKind],
        strategy: str,
        diagnostics: Tuple[Ambiguous, ...],
    ) -> Matched:
        return Matched(
            node=candidate.node,
            snapshot=candidate.snapshot,
            operations=frozenset(operations),
            score=candidate.score,
            body_similarity=candidate.body,
            strategy=strategy,
            diagnostics=diagnostics,
        )

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def _compatible(self, element: SyntaxNode, node: SyntaxNode) -> bool:
        if node.kind is not element.kind:
            return False
        if element.kind is ElementKind.BLOCK:
            return node.signature == element.signature
        return True

    def _claimed(
        self,
        newer: SyntaxModel,
        element: SyntaxNode,
        snapshot: SyntaxModel,
        node: SyntaxNode,
    ) -> bool:
        """A differently named older element that still exists in the newer snapshot."""
        if node.kind is ElementKind.BLOCK or node.name == element.name:
            return False
        return self._exists_in(newer, node.kind, snapshot.container_path(node), node.name)

    def _exists_in(
        self,
        snapshot: SyntaxModel,
        kind: ElementKind,
        container: Tuple[str, ...],
        name: str,
    ) -> bool:
        return bool(snapshot.find_by_name(kind, container, name))

    def _acceptable_relocation(self, element: SyntaxNode, candidate: _Candidate) -> bool:
        """Outside the matched scope, only same-named or near-identical bodies count."""
        if candidate.name_equal:
            return True
        return (
            len(element.tokens) >= self.settings.min_extraction_tokens
            and candidate.body >= self.settings.extraction_containment
        )

    def _absorbed_vanished_method(
        self,
        context: _MatchContext,
        element: SyntaxNode,
        candidate: _Candidate,
    ) -> bool:
        """Whether the newer body took in the body of an older method that disappeared."""
        settings = self.settings
        if candidate.body >= 1.0 or len(element.tokens) <= len(candidate.node.tokens):
            return False
        newer = context.newer
        for snapshot in (context.older, *context.extras):
            for node in snapshot.elements(ElementKind.METHOD):
                if node.index == candidate.node.index and snapshot is candidate.snapshot:
                    continue
                if len(node.tokens) < settings.min_extraction_tokens:
                    continue
                if self._exists_in(newer, node.kind, snapshot.container_path(node), node.name):
                    continue
                if (
                    similarity.containment(node.tokens, element.tokens) >= settings.extraction_containment
                    and similarity.containment(node.tokens, candidate.node.tokens)
                    < settings.extraction_containment
                ):
                    return True
        return False


def _tie_break_key(candidate: _Candidate) -> Tuple[bool, int, int, float, int]:
    return (
        not candidate.name_equal,
        candidate.container_distance,
        candidate.line_distance,
        -candidate.overlap,
        candidate.node.index,
    )


def _deciding_rule(chosen: _Candidate, runner_up: _Candidate) -> str:
    if chosen.name_equal != runner_up.name_equal:
        return "identical_name"
    if chosen.container_distance != runner_up.container_distance:
        return "container_distance"
    if chosen.line_distance != runner_up.line_distance:
        return "line_proximity"
    if chosen.overlap != runner_up.overlap:
        return "range_overlap"
    return "file_order"
