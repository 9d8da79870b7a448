"""Deterministic orderings for merit lists and leaderboards.

Ranks are positions 1..N in a total order, so no two rows share a rank.
"""

from datetime import datetime
from typing import Any, Callable, List, Sequence, TypeVar

from examhub.utils import round_half_up

T = TypeVar("T")

_FAR_FUTURE = datetime.max


def merit_sort_key(row) -> tuple:
    """Score desc, then faster finish, then earlier submission, then attempt id."""
    duration = row.duration_seconds if row.duration_seconds is not None else float("inf")
    end_time = row.end_time or _FAR_FUTURE
    return (-(row.score or 0.0), duration, end_time, row.attempt_id)


def overall_sort_key(row) -> tuple:
    return (-row.total_score, -row.average_percentage, -row.best_streak, row.student_id)


def streak_sort_key(row) -> tuple:
    return (-row.best_streak, -row.total_score, row.student_id)


def assign_ranks(rows: Sequence[T], key: Callable[[T], Any]) -> List[T]:
    """Sort ``rows`` by ``key`` and set ``row.rank`` to the 1-based position."""
    ordered = sorted(rows, key=key)
    for position, row in enumerate(ordered, start=1):
        row.rank = position
    return ordered


def percentile(rank: int, total: int) -> float:
    """Share of the other participants ranked below this position, in whole percent.

    A lone participant is at 100; last place is at 0.
    """
    if total <= 0:
        return 0.0
    if total == 1:
        return 100.0
    below = total - rank
    return round_half_up(below / (total - 1) * 100, 0)
