"""Base class for language parsers."""

import hashlib
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from codetracker.models import SyntaxModel


def content_hash(data: bytes) -> str:
    """Hash raw file bytes the way snapshots record them."""
    return hashlib.sha256(data).hexdigest()


def token_fingerprint(tokens: Sequence[str]) -> str:
    """Hash a body token stream into a short, stable fingerprint."""
    return hashlib.sha1("\x1f".join(tokens).encode("utf-8")).hexdigest()


class LanguageParser(ABC):
    """Abstract base class for parsers producing the normalized syntax model."""

    name: str = "base"

    @abstractmethod
    def supports_path(self, file_path: str) -> bool:
        """Return True when this parser handles ``file_path``."""
        pass

    @abstractmethod
    def parse(self, data: bytes, file_path: str, commit_id: str = "") -> SyntaxModel:
        """Parse raw file content into a syntax model.

        Args:
            data: Raw file bytes
            file_path: Repository-relative path (recorded on the model)
            commit_id: Commit the bytes were read from

        Returns:
            The normalized syntax model

        Raises:
            ParseError: If the content cannot be parsed
        """
        pass


class ParserRegistry:
    """Selects a parser by file path."""

    def __init__(self, parsers: Optional[List[LanguageParser]] = None) -> None:
        if parsers is None:
            from codetracker.parsing.python_parser import PythonParser

            parsers = [PythonParser()]
        self.parsers = list(parsers)

    def for_path(self, file_path: str) -> Optional[LanguageParser]:
        for parser in self.parsers:
            if parser.supports_path(file_path):
                return parser
        return None

    def supports(self, file_path: str) -> bool:
        return self.for_path(file_path) is not None
