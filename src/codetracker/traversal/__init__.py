"""Commit graph traversal."""

from codetracker.traversal.walker import CommitWalker, WalkStep

__all__ = ["CommitWalker", "WalkStep"]
