from dataclasses import dataclass, field

import pytest

from vitals.models.settings import Thresholds
from vitals.utils.issue_filters import (
    calculate_stats,
    filter_by_labels,
    filter_by_level,
    filter_by_search,
    level_bounds,
    paginate,
    sort_by_score,
)

T = Thresholds(critical=50, high=30, medium=10)


@dataclass
class Item:
    number: int
    title: str = ""
    labels: list[str] = field(default_factory=list)
    score: float = 0.0
    updated_at: str | None = None


@pytest.fixture
def items():
    return [
        Item(42, "Crash on startup", ["bug", "area/core"], 60, "2026-02-01T00:00:00Z"),
        Item(7, "FIX typo in docs", ["docs"], 35, "2026-02-03T00:00:00Z"),
        Item(142, "Slow search", ["performance"], 12, "2026-02-02T00:00:00Z"),
        Item(9, "Question about config", ["question"], 2, "2026-01-01T00:00:00Z"),
    ]


@pytest.mark.parametrize("query", ["#42", "42"])
def test_search_by_number_with_or_without_hash(items, query):
    numbers = {i.number for i in filter_by_search(items, query)}
    assert numbers == {42, 142}


def test_search_is_case_insensitive_on_title(items):
    assert [i.number for i in filter_by_search(items, "fix")] == [7]
    assert [i.number for i in filter_by_search(items, "FIX")] == [7]


def test_search_matches_labels(items):
    assert [i.number for i in filter_by_search(items, "PERF")] == [142]


def test_empty_search_keeps_everything(items):
    assert filter_by_search(items, "  ") == items
    assert filter_by_search(items, None) == items


def test_label_filter_is_exact_set_intersection(items):
    assert [i.number for i in filter_by_labels(items, ["bug"])] == [42]
    # substring of a label does not match
    assert filter_by_labels(items, ["core"]) == []
    # case matters
    assert filter_by_labels(items, ["Bug"]) == []
    assert {i.number for i in filter_by_labels(items, ["docs", "question"])} == {7, 9}


def test_level_bands_are_half_open(items):
    assert [i.number for i in filter_by_level(items, "critical", T)] == [42]
    assert [i.number for i in filter_by_level(items, "high", T)] == [7]
    assert [i.number for i in filter_by_level(items, "medium", T)] == [142]
    assert [i.number for i in filter_by_level(items, "none", T)] == [9]
    assert filter_by_level(items, "all", T) == items


def test_level_boundaries():
    boundary = [Item(1, score=50), Item(2, score=30), Item(3, score=10)]
    assert [i.number for i in filter_by_level(boundary, "critical", T)] == [1]
    assert [i.number for i in filter_by_level(boundary, "high", T)] == [2]
    assert [i.number for i in filter_by_level(boundary, "medium", T)] == [3]


def test_unknown_level_is_rejected():
    with pytest.raises(ValueError):
        level_bounds("urgent", T)


def test_sort_breaks_ties_by_updated_then_number():
    rows = [
        Item(1, score=20, updated_at="2026-01-01T00:00:00Z"),
        Item(2, score=20, updated_at="2026-02-01T00:00:00Z"),
        Item(3, score=20, updated_at="2026-02-01T00:00:00Z"),
        Item(4, score=40, updated_at="2025-01-01T00:00:00Z"),
    ]
    assert [i.number for i in sort_by_score(rows)] == [4, 3, 2, 1]


def test_stats_count_each_band(items):
    assert calculate_stats(items, T) == {"all": 4, "critical": 1, "high": 1, "medium": 1}


def test_paginate():
    rows = list(range(45))
    page, total, pages = paginate(rows, 3, 20)
    assert page == list(range(40, 45))
    assert (total, pages) == (45, 3)
    assert paginate([], 1, 20) == ([], 0, 0)
    assert paginate(rows, 9, 20)[0] == []
