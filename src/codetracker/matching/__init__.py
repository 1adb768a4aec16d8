"""Element matching between consecutive snapshots."""

from codetracker.matching.matcher import ElementMatcher, Matched, MatchResult, NotFound

__all__ = [
    "ElementMatcher",
    "Matched",
    "MatchResult",
    "NotFound",
]
