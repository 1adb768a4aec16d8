"""Normalized syntax model shared by parsers, the snapshot cache and the matcher.

A parsed file is stored as an arena: a flat list of nodes addressed by integer
index, each holding the index of its parent. The arena serializes to plain JSON
without any cyclic references, which is what the snapshot cache persists.
"""

from enum import Enum
from typing import Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class ElementKind(str, Enum):
    """Kinds of source elements that can be tracked."""

    CLASS = "class"
    METHOD = "method"
    FIELD = "field"
    VARIABLE = "variable"
    BLOCK = "block"

    @property
    def is_scope(self) -> bool:
        """Whether elements of this kind scope the identity of their children."""
        return self in (ElementKind.CLASS, ElementKind.METHOD)


class SourceRange(BaseModel):
    """Inclusive, 1-based line range of an element."""

    model_config = ConfigDict(frozen=True)

    start_line: int = Field(..., description="First line of the element")
    end_line: int = Field(..., description="Last line of the element")

    @property
    def length(self) -> int:
        return self.end_line - self.start_line + 1

    def overlap(self, other: "SourceRange") -> float:
        """Return the line overlap ratio (intersection over union) with another range."""
        lo = max(self.start_line, other.start_line)
        hi = min(self.end_line, other.end_line)
        if hi < lo:
            return 0.0
        union = max(self.end_line, other.end_line) - min(self.start_line, other.start_line) + 1
        return (hi - lo + 1) / union

    def distance(self, other: "SourceRange") -> int:
        return abs(self.start_line - other.start_line)


class ElementKey(BaseModel):
    """Location-independent descriptor used to re-find an element in a snapshot."""

    model_config = ConfigDict(frozen=True)

    kind: ElementKind = Field(..., description="Element kind")
    container: Tuple[str, ...] = Field(
        default=(), description="Names of the enclosing classes/methods, outermost first"
    )
    name: str = Field(..., description="Declared name (header expression for blocks)")
    signature: str = Field(
        default="",
        description="Parameters for methods, bases for classes, declared type for "
        "fields/variables, kind tag for blocks",
    )

    @property
    def qualified_name(self) -> str:
        return ".".join([*self.container, self.name])

    def describe(self) -> str:
        """Render a short human-readable form of the key."""
        if self.kind is ElementKind.BLOCK:
            header = f"{self.signature} {self.name}".strip()
            where = ".".join(self.container)
            return f"block[{header}] in {where}" if where else f"block[{header}]"
        if self.kind is ElementKind.METHOD:
            return f"method {self.qualified_name}({self.signature})"
        if self.signature:
            return f"{self.kind.value} {self.qualified_name}: {self.signature}"
        return f"{self.kind.value} {self.qualified_name}"


class SyntaxNode(BaseModel):
    """One declaration or statement block inside a parsed file."""

    index: int = Field(..., description="Position of the node in the arena")
    kind: ElementKind = Field(..., description="Element kind")
    name: str = Field(..., description="Declared name (header expression for blocks)")
    signature: str = Field(default="", description="Coarse structural signature")
    parent: Optional[int] = Field(None, description="Arena index of the enclosing node")
    children: List[int] = Field(default_factory=list, description="Arena indices of child nodes")
    source_range: SourceRange = Field(..., description="Line range in the file")
    tokens: List[str] = Field(
        default_factory=list, description="Non-trivial tokens of the element body"
    )
    fingerprint: str = Field(default="", description="Hash of the body token stream")


class SyntaxModel(BaseModel):
    """Parsed representation of one file at one commit."""

    commit_id: str = Field(..., description="Commit the file was read from")
    file_path: str = Field(..., description="Repository-relative path of the file")
    content_hash: str = Field(..., description="sha256 of the raw file bytes")
    language: str = Field(default="python", description="Language of the parser that produced it")
    nodes: List[SyntaxNode] = Field(default_factory=list, description="Node arena")

    def node(self, index: int) -> SyntaxNode:
        return self.nodes[index]

    def roots(self) -> List[SyntaxNode]:
        return [node for node in self.nodes if node.parent is None]

    def parent_of(self, node: SyntaxNode) -> Optional[SyntaxNode]:
        if node.parent is None:
            return None
        return self.nodes[node.parent]

    def ancestors(self, node: SyntaxNode) -> Iterator[SyntaxNode]:
        """Yield the enclosing nodes of ``node``, nearest first."""
        current = self.parent_of(node)
        while current is not None:
            yield current
            current = self.parent_of(current)

    def scope_of(self, node: SyntaxNode) -> Optional[SyntaxNode]:
        """Return the nearest enclosing class or method of ``node``."""
        for ancestor in self.ancestors(node):
            if ancestor.kind.is_scope:
                return ancestor
        return None

    def container_path(self, node: SyntaxNode) -> Tuple[str, ...]:
        names = [a.name for a in self.ancestors(node) if a.kind.is_scope]
        return tuple(reversed(names))

    def key_for(self, node: SyntaxNode) -> ElementKey:
        return ElementKey(
            kind=node.kind,
            container=self.container_path(node),
            name=node.name,
            signature=node.signature,
        )

    def elements(self, kind: Optional[ElementKind] = None) -> Iterator[SyntaxNode]:
        for node in self.nodes:
            if kind is None or node.kind is kind:
                yield node

    def find(self, key: ElementKey) -> List[SyntaxNode]:
        """Return every node whose key equals ``key`` (in file order)."""
        return [node for node in self.elements(key.kind) if self.key_for(node) == key]

    def find_by_name(
        self, kind: ElementKind, container: Tuple[str, ...], name: str
    ) -> List[SyntaxNode]:
        """Return nodes matching kind, container and name, ignoring the signature."""
        return [
            node
            for node in self.elements(kind)
            if node.name == name and self.container_path(node) == container
        ]

    def within_scope(self, scope: Optional[SyntaxNode], kind: ElementKind) -> List[SyntaxNode]:
        """Return nodes of ``kind`` whose nearest enclosing class/method is ``scope``."""
        scope_index = scope.index if scope is not None else None
        result = []
        for node in self.elements(kind):
            owner = self.scope_of(node)
            if (owner.index if owner is not None else None) == scope_index:
                result.append(node)
        return result

