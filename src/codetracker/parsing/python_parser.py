"""Python parser producing the normalized syntax model from ``ast`` and ``tokenize``."""

import ast
import io
import tokenize
from bisect import bisect_left
from typing import List, Optional, Set, Tuple

from codetracker.errors import ParseError
from codetracker.models import ElementKind, SourceRange, SyntaxModel, SyntaxNode
from codetracker.parsing.base import LanguageParser, content_hash, token_fingerprint

# Tokens carrying no structural information for body comparison
_SKIPPED_TOKEN_TYPES = {
    tokenize.COMMENT,
    tokenize.NL,
    tokenize.NEWLINE,
    tokenize.INDENT,
    tokenize.DEDENT,
    tokenize.ENDMARKER,
}
_TRIVIAL_PUNCTUATION = {"(", ")", "[", "]", "{", "}", ",", ":", ".", ";"}

Position = Tuple[int, int]


class PythonParser(LanguageParser):
    """Parses Python sources into classes, methods, fields, variables and blocks.

    Functions and methods are both reported as ``method`` elements. Assignments
    directly inside a class (or at module level) are ``field`` elements; the
    first assignment of a name inside a function is a ``variable``. Compound
    statements become ``block`` elements whose signature is the kind tag
    (``if``, ``for``, ``try``...) and whose name is the header expression.
    """

    name = "python"

    def supports_path(self, file_path: str) -> bool:
        return file_path.lower().endswith((".py", ".pyi"))

    def parse(self, data: bytes, file_path: str, commit_id: str = "") -> SyntaxModel:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(file_path, f"not valid UTF-8 ({e.reason})") from e

        try:
            tree = ast.parse(text, filename=file_path)
        except (SyntaxError, ValueError) as e:
            raise ParseError(file_path, str(e)) from e

        try:
            token_index = _TokenIndex(text)
        except (tokenize.TokenError, IndentationError) as e:
            raise ParseError(file_path, f"tokenize failed: {e}") from e

        collector = _ArenaCollector(token_index)
        collector.visit(tree)

        return SyntaxModel(
            commit_id=commit_id,
            file_path=file_path,
            content_hash=content_hash(data),
            language=self.name,
            nodes=collector.nodes,
        )


class _TokenIndex:
    """Significant tokens of a file, searchable by source position."""

    def __init__(self, text: str) -> None:
        self._lines = text.splitlines()
        self._positions: List[Position] = []
        self._strings: List[str] = []
        for tok in tokenize.generate_tokens(io.StringIO(text).readline):
            if tok.type in _SKIPPED_TOKEN_TYPES:
                continue
            if tok.type == tokenize.OP and tok.string in _TRIVIAL_PUNCTUATION:
                continue
            self._positions.append(tok.start)
            self._strings.append(tok.string)

    def char_col(self, lineno: int, byte_col: int) -> int:
        """Convert an ``ast`` UTF-8 byte offset into a ``tokenize`` character column."""
        if lineno < 1 or lineno > len(self._lines):
            return byte_col
        line = self._lines[lineno - 1].encode("utf-8")
        return len(line[:byte_col].decode("utf-8", errors="replace"))

    def between(self, start: Position, end: Position) -> List[str]:
        lo = bisect_left(self._positions, start)
        hi = bisect_left(self._positions, end)
        return self._strings[lo:hi]

    def for_nodes(self, first: ast.AST, last: ast.AST) -> List[str]:
        start = (first.lineno, self.char_col(first.lineno, first.col_offset))
        end_line = last.end_lineno or last.lineno
        end = (end_line, self.char_col(end_line, last.end_col_offset or 0))
        return self.between(start, end)


def _unparse(node: Optional[ast.AST]) -> str:
    if node is None:
        return ""
    return " ".join(ast.unparse(node).split())


class _ArenaCollector(ast.NodeVisitor):
    """Walk a module and append one arena node per tracked element."""

    def __init__(self, token_index: _TokenIndex) -> None:
        self.tokens = token_index
        self.nodes: List[SyntaxNode] = []
        self._parents: List[int] = []
        # (kind, names declared so far) for every enclosing class/method/module
        self._scopes: List[Tuple[Optional[ElementKind], Set[str]]] = [(None, set())]

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def visit_ClassDef(self, node: ast.ClassDef) -> None:  # noqa: N802
        bases = [_unparse(b) for b in node.bases]
        bases.extend(_unparse(k) for k in node.keywords)
        index = self._add(ElementKind.CLASS, node.name, ", ".join(bases), node, _span(node.body))
        self._descend(index, ElementKind.CLASS, node.body)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:  # noqa: N802
        self._add_function(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:  # noqa: N802
        self._add_function(node)

    def _add_function(self, node) -> None:
        signature = _unparse(node.args)
        if node.returns is not None:
            signature = f"{signature} -> {_unparse(node.returns)}"
        index = self._add(ElementKind.METHOD, node.name, signature, node, _span(node.body))
        self._descend(index, ElementKind.METHOD, node.body)

    def visit_Assign(self, node: ast.Assign) -> None:  # noqa: N802
        for target in node.targets:
            for name in _target_names(target):
                self._add_declaration(name, "", node, node.value)
        self.generic_visit(node)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:  # noqa: N802
        if isinstance(node.target, ast.Name):
            self._add_declaration(node.target.id, _unparse(node.annotation), node, node.value)
        self.generic_visit(node)

    def _add_declaration(self, name: str, annotation: str, node: ast.stmt, value) -> None:
        scope_kind, declared = self._scopes[-1]
        if name in declared:
            return
        declared.add(name)
        kind = ElementKind.VARIABLE if scope_kind is ElementKind.METHOD else ElementKind.FIELD
        span = (value, value) if value is not None else None
        self._add(kind, name, annotation, node, span)

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def visit_If(self, node: ast.If) -> None:  # noqa: N802
        self._add_block("if", _unparse(node.test), node, node.body + node.orelse)

    def visit_For(self, node: ast.For) -> None:  # noqa: N802
        header = f"{_unparse(node.target)} in {_unparse(node.iter)}"
        self._add_block("for", header, node, node.body + node.orelse)

    def visit_AsyncFor(self, node: ast.AsyncFor) -> None:  # noqa: N802
        header = f"{_unparse(node.target)} in {_unparse(node.iter)}"
        self._add_block("async for", header, node, node.body + node.orelse)

    def visit_While(self, node: ast.While) -> None:  # noqa: N802
        self._add_block("while", _unparse(node.test), node, node.body + node.orelse)

    def visit_With(self, node: ast.With) -> None:  # noqa: N802
        header = ", ".join(_unparse(item) for item in node.items)
        self._add_block("with", header, node, node.body)

    def visit_AsyncWith(self, node: ast.AsyncWith) -> None:  # noqa: N802
        header = ", ".join(_unparse(item) for item in node.items)
        self._add_block("async with", header, node, node.body)

    def visit_Try(self, node: ast.Try) -> None:  # noqa: N802
        self._add_try(node)

    def visit_TryStar(self, node) -> None:  # noqa: N802
        self._add_try(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:  # noqa: N802
        header = _unparse(node.type)
        if node.name:
            header = f"{header} as {node.name}"
        self._add_block("except", header, node, node.body)

    def visit_Match(self, node) -> None:  # noqa: N802
        span = (node.cases[0].pattern, node.cases[-1].body[-1]) if node.cases else None
        index = self._add(ElementKind.BLOCK, _unparse(node.subject), "match", node, span)
        self._parents.append(index)
        for case in node.cases:
            self.visit(case)
        self._parents.pop()

    def visit_match_case(self, node) -> None:
        header = _unparse(node.pattern)
        if node.guard is not None:
            header = f"{header} if {_unparse(node.guard)}"
        index = self._add(
            ElementKind.BLOCK, header, "case", node.pattern, _span(node.body), end=node.body[-1]
        )
        self._parents.append(index)
        for stmt in node.body:
            self.visit(stmt)
        self._parents.pop()

    def _add_try(self, node) -> None:
        index = self._add(ElementKind.BLOCK, "", "try", node, _span(node.body))
        self._parents.append(index)
        for stmt in node.body:
            self.visit(stmt)
        for handler in node.handlers:
            self.visit(handler)
        for stmt in node.orelse:
            self.visit(stmt)
        if node.finalbody:
            first, last = node.finalbody[0], node.finalbody[-1]
            final_index = self._add(
                ElementKind.BLOCK, "", "finally", first, (first, last), end=last
            )
            self._parents.append(final_index)
            for stmt in node.finalbody:
                self.visit(stmt)
            self._parents.pop()
        self._parents.pop()

    def _add_block(self, tag: str, header: str, node: ast.stmt, body: List[ast.stmt]) -> None:
        index = self._add(ElementKind.BLOCK, header, tag, node, _span(body))
        self._parents.append(index)
        self.generic_visit(node)
        self._parents.pop()

    # ------------------------------------------------------------------
    # Arena helpers
    # ------------------------------------------------------------------

    def _descend(self, index: int, kind: ElementKind, body: List[ast.stmt]) -> None:
        self._parents.append(index)
        self._scopes.append((kind, set()))
        for stmt in body:
            self.visit(stmt)
        self._scopes.pop()
        self._parents.pop()

    def _add(
        self,
        kind: ElementKind,
        name: str,
        signature: str,
        node: ast.AST,
        span: Optional[Tuple[ast.AST, ast.AST]],
        end: Optional[ast.AST] = None,
    ) -> int:
        last = end if end is not None else node
        tokens = self.tokens.for_nodes(*span) if span is not None else []
        parent = self._parents[-1] if self._parents else None
        index = len(self.nodes)
        self.nodes.append(
            SyntaxNode(
                index=index,
                kind=kind,
                name=name,
                signature=signature,
                parent=parent,
                source_range=SourceRange(
                    start_line=node.lineno,
                    end_line=last.end_lineno or last.lineno,
                ),
                tokens=tokens,
                fingerprint=token_fingerprint(tokens),
            )
        )
        if parent is not None:
            self.nodes[parent].children.append(index)
        return index


def _span(stmts: List[ast.AST]) -> Optional[Tuple[ast.AST, ast.AST]]:
    if not stmts:
        return None
    return stmts[0], stmts[-1]


def _target_names(target: ast.AST) -> List[str]:
    if isinstance(target, ast.Name):
        return [target.id]
    if isinstance(target, (ast.Tuple, ast.List)):
        names: List[str] = []
        for element in target.elts:
            names.extend(_target_names(element))
        return names
    if isinstance(target, ast.Starred):
        return _target_names(target.value)
    return []
