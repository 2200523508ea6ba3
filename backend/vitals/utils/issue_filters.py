from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from typing import Protocol, TypeVar

from vitals.models.settings import Thresholds

LEVELS = ("critical", "high", "medium", "none")


class Scored(Protocol):
    number: int
    title: str
    labels: list[str]
    score: float
    updated_at: str | None


T = TypeVar("T", bound=Scored)


def matches_search(item: Scored, search: str) -> bool:
    """Case-insensitive match on title, number (optional leading '#') or labels."""
    needle = search.strip().lower()
    if not needle:
        return True
    if needle in item.title.lower():
        return True
    number_needle = needle[1:] if needle.startswith("#") else needle
    if number_needle and number_needle in str(item.number):
        return True
    return any(needle in label.lower() for label in item.labels)


def filter_by_search(items: Iterable[T], search: str | None) -> list[T]:
    if not search or not search.strip():
        return list(items)
    return [i for i in items if matches_search(i, search)]


def filter_by_labels(items: Iterable[T], labels: Sequence[str] | None) -> list[T]:
    wanted = {label for label in (labels or []) if label}
    if not wanted:
        return list(items)
    return [i for i in items if wanted & set(i.labels)]


def level_bounds(level: str, thresholds: Thresholds) -> tuple[float, float]:
    """Half-open score range [low, high) for a level; critical is unbounded above."""
    if level == "critical":
        return thresholds.critical, math.inf
    if level == "high":
        return thresholds.high, thresholds.critical
    if level == "medium":
        return thresholds.medium, thresholds.high
    if level == "none":
        return -math.inf, thresholds.medium
    raise ValueError(f"Unknown level: {level}")


def filter_by_level(items: Iterable[T], level: str | None, thresholds: Thresholds) -> list[T]:
    if not level or level == "all":
        return list(items)
    low, high = level_bounds(level, thresholds)
    return [i for i in items if low <= i.score < high]


def sort_by_score(items: Iterable[T]) -> list[T]:
    # Three stable passes, least significant key first.
    ordered = sorted(items, key=lambda i: i.number, reverse=True)
    ordered.sort(key=lambda i: i.updated_at or "", reverse=True)
    ordered.sort(key=lambda i: i.score, reverse=True)
    return ordered


def calculate_stats(items: Sequence[Scored], thresholds: Thresholds) -> dict[str, int]:
    stats = {"all": len(items), "critical": 0, "high": 0, "medium": 0}
    for item in items:
        for level in ("critical", "high", "medium"):
            low, high = level_bounds(level, thresholds)
            if low <= item.score < high:
                stats[level] += 1
                break
    return stats


def paginate(items: Sequence[T], page: int, per_page: int) -> tuple[list[T], int, int]:
    """Return (page_items, total_items, total_pages). Pages are 1-based."""
    total = len(items)
    total_pages = math.ceil(total / per_page) if per_page > 0 else 0
    start = (max(page, 1) - 1) * per_page
    return list(items[start:start + per_page]), total, total_pages
