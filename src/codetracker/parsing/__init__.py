"""Language parsers producing the normalized syntax model."""

from codetracker.parsing.base import LanguageParser, ParserRegistry, content_hash
from codetracker.parsing.python_parser import PythonParser

__all__ = ["LanguageParser", "ParserRegistry", "PythonParser", "content_hash"]
