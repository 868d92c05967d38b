from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from services.grader import GradeResult
from utils import as_int


DEFAULT_PASSING_SCORE = 70


@dataclass(frozen=True)
class ScoreSummary:
    score: int
    total_possible_score: int
    percent_score: int
    passed: bool
    passing_threshold: int


def percent_half_up(score: int, total: int) -> int:
    """round(score / total * 100) with halves rounded up, in integer arithmetic."""
    if total <= 0:
        return 0
    return (200 * score + total) // (2 * total)


def passing_threshold(test: dict[str, Any]) -> int:
    value = as_int(test.get("passingScore"))
    return DEFAULT_PASSING_SCORE if value is None else value


def aggregate(test: dict[str, Any], questions: Iterable[dict[str, Any]], graded: Iterable[GradeResult]) -> ScoreSummary:
    score = sum(int(g.points_awarded) for g in graded)
    # Every question counts toward the total, answered or not.
    total = sum(max(0, as_int(q.get("points"), 0) or 0) for q in questions)
    percent = percent_half_up(score, total)
    threshold = passing_threshold(test)
    return ScoreSummary(
        score=score,
        total_possible_score=total,
        percent_score=percent,
        passed=percent >= threshold,
        passing_threshold=threshold,
    )
