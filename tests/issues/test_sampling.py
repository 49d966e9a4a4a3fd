from __future__ import annotations

import random

from app.crawlers.issues.sampling import build_probe_plan


def test_empty_repository_has_no_probes() -> None:
    assert build_probe_plan(0, max_count=10) == []
    assert build_probe_plan(-5, max_count=10) == []


def test_tiny_repository_is_scanned_from_the_start() -> None:
    assert build_probe_plan(10, max_count=5) == list(range(1, 11))


def test_small_repository_is_scanned_exhaustively() -> None:
    assert build_probe_plan(40, max_count=10) == list(range(1, 41))


def test_mid_size_repository_covers_newest_and_middle() -> None:
    plan = build_probe_plan(100, max_count=10)

    assert plan[:3] == [100, 99, 98]
    assert 81 in plan
    assert 80 not in plan
    assert 40 in plan and 59 in plan
    assert 60 not in plan
    assert len(plan) == 40


def test_mid_size_repository_decimates_older_numbers() -> None:
    plan = build_probe_plan(150, max_count=10)

    assert plan[0] == 150
    assert {25, 15, 5} <= set(plan)


def test_large_repository_plan_is_unique_bounded_and_seeded() -> None:
    first = build_probe_plan(1000, max_count=10, rng=random.Random(7))
    second = build_probe_plan(1000, max_count=10, rng=random.Random(7))

    assert first == second
    assert first[0] == 1000
    assert 500 in first
    assert len(first) == len(set(first))
    assert all(1 <= number <= 1000 for number in first)
    assert len(first) <= 20 + 11 + 10


def test_budget_truncates_plan() -> None:
    assert build_probe_plan(1000, max_count=10, budget=5) == [1000, 999, 998, 997, 996]
