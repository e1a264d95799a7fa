"""
Conflict detection across answers to the same query.

Flags pairs of successful results whose content materially disagrees.
"""

import re
from dataclasses import dataclass, replace
from itertools import combinations
from typing import FrozenSet, Iterable, List, Optional, Set

from .results import CallResult

DEFAULT_MIN_SIMILARITY = 0.2

_WORD_RE = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")
_NUMBER_RE = re.compile(r"-?\d+(?:[.,]\d+)*")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")

_AFFIRMATIVE = {"yes", "true", "correct", "yep", "indeed", "absolutely"}
_NEGATIVE = {"no", "false", "incorrect", "nope", "wrong"}

_STOP_WORDS = frozenset("""
a an and are as at be been but by can could did do does for from had has have
he her his i if in into is it its may me might my not of on or our she should
so than that the their them then there these they this those to was we were
what when where which who will with would you your
""".split())


@dataclass(frozen=True)
class ConflictPair:
    """Unordered pair of result ids judged to disagree."""
    a: str
    b: str
    rule: str  # "A", "B", or "C"
    reason: str
    snippet_a: str = ""
    snippet_b: str = ""

    @classmethod
    def between(
        cls, first: CallResult, second: CallResult, rule: str, reason: str
    ) -> "ConflictPair":
        left, right = sorted((first, second), key=lambda r: r.result_id)
        return cls(
            a=left.result_id,
            b=right.result_id,
            rule=rule,
            reason=reason,
            snippet_a=_first_sentence(left.text or ""),
            snippet_b=_first_sentence(right.text or ""),
        )

    @property
    def members(self) -> FrozenSet[str]:
        return frozenset((self.a, self.b))


def _first_sentence(text: str, limit: int = 160) -> str:
    sentence = _SENTENCE_RE.split(text.strip(), maxsplit=1)[0] if text.strip() else ""
    return sentence[:limit]


def _content_words(text: str) -> Set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if w not in _STOP_WORDS}


def _numbers(text: str) -> Set[str]:
    return {n.replace(",", "") for n in _NUMBER_RE.findall(text)}


def _verdict(text: str) -> Optional[bool]:
    words = _WORD_RE.findall(text.lower()[:40])
    if not words:
        return None
    if words[0] in _AFFIRMATIVE:
        return True
    if words[0] in _NEGATIVE:
        return False
    return None


def jaccard_similarity(first: str, second: str) -> float:
    """Overlap of content words; 1.0 for two texts with no content words."""
    left, right = _content_words(first), _content_words(second)
    union = left | right
    if not union:
        return 1.0
    return len(left & right) / len(union)


def _compare(
    first: CallResult, second: CallResult, min_similarity: float
) -> Optional[ConflictPair]:
    text_a, text_b = first.text or "", second.text or ""

    # Rule A: opposing verdicts
    verdict_a, verdict_b = _verdict(text_a), _verdict(text_b)
    if verdict_a is not None and verdict_b is not None and verdict_a != verdict_b:
        return ConflictPair.between(first, second, "A", "Answers reach opposite verdicts")

    # Rule B: both state numbers, none in common
    numbers_a, numbers_b = _numbers(text_a), _numbers(text_b)
    if numbers_a and numbers_b and not numbers_a & numbers_b:
        return ConflictPair.between(
            first, second, "B",
            f"Numbers disagree: {sorted(numbers_a)} vs {sorted(numbers_b)}",
        )

    # Rule C: little shared content
    similarity = jaccard_similarity(text_a, text_b)
    if similarity < min_similarity:
        return ConflictPair.between(
            first, second, "C",
            f"Low content overlap ({similarity:.2f} < {min_similarity:.2f})",
        )
    return None


def detect_conflicts(
    results: Iterable[CallResult],
    min_similarity: float = DEFAULT_MIN_SIMILARITY,
) -> FrozenSet[ConflictPair]:
    """Detect disagreeing pairs among successful results.

    Rules (first match wins for a pair):
    - Rule A: one answer opens with an affirmative, the other with a negative
    - Rule B: both answers state numbers and share none
    - Rule C: Jaccard similarity of content words below ``min_similarity``

    Args:
        results: Results of one request; non-success results are ignored
        min_similarity: Overlap below which two answers are in conflict

    Returns:
        Set of unordered pairs (empty if fewer than two successes)

    Raises:
        ValueError: If min_similarity is outside [0, 1]
    """
    if not 0.0 <= min_similarity <= 1.0:
        raise ValueError("min_similarity must be between 0 and 1")

    successes = sorted(
        (r for r in results if r.is_success), key=lambda r: r.result_id
    )
    pairs = set()
    for first, second in combinations(successes, 2):
        if first.result_id == second.result_id:
            continue
        pair = _compare(first, second, min_similarity)
        if pair is not None:
            pairs.add(pair)
    return frozenset(pairs)


def mark_conflicts(
    results: Iterable[CallResult], pairs: Iterable[ConflictPair]
) -> List[CallResult]:
    """Annotate each result with whether it takes part in any flagged pair."""
    flagged: Set[str] = set()
    for pair in pairs:
        flagged |= pair.members
    return [replace(r, in_conflict=r.result_id in flagged) for r in results]
