"""Token-level similarity measures used to compare element bodies."""

from typing import Sequence

from rapidfuzz.distance import LCSseq, Levenshtein


def lcs_length(a: Sequence[str], b: Sequence[str]) -> int:
    """Length of the longest common subsequence of two token sequences."""
    if not a or not b:
        return 0
    # rapidfuzz compares sequences of hashables element-wise, so tokens stay whole
    return LCSseq.similarity(list(a), list(b))


def body_similarity(a: Sequence[str], b: Sequence[str]) -> float:
    """Dice-style ratio of shared tokens under LCS alignment, in [0, 1]."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    if list(a) == list(b):
        return 1.0
    return 2.0 * lcs_length(a, b) / (len(a) + len(b))


def containment(inner: Sequence[str], outer: Sequence[str]) -> float:
    """Fraction of ``inner`` that appears, in order, inside ``outer``."""
    if not inner:
        return 0.0
    return lcs_length(inner, outer) / len(inner)


def sequence_edit_distance(a: Sequence[str], b: Sequence[str]) -> int:
    """Levenshtein distance between two sequences of names (e.g. container paths)."""
    if tuple(a) == tuple(b):
        return 0
    return Levenshtein.distance(list(a), list(b))
