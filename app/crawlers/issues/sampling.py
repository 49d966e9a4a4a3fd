"""Issue-number probe plans for the last-resort retrieval tier."""

from __future__ import annotations

import random
from typing import Optional

LEADING_PROBE_LIMIT = 15
TINY_RANGE_MAX = 20
FULL_SCAN_MAX = 50
MID_RANGE_MAX = 200
NEWEST_WINDOW = 20
MIDPOINT_WINDOW = 20
DECIMATION_STEP = 10
CHECKPOINT_COUNT = 10
RANDOM_SAMPLE_COUNT = 10


def build_probe_plan(
    latest_number: int,
    *,
    max_count: int,
    budget: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> list[int]:
    """Return ordered, unique issue numbers in `[1, latest_number]` worth probing.

    Small repositories are scanned exhaustively; larger ones are covered by the
    newest window plus spread-out samples so old issues remain reachable.
    """

    if latest_number <= 0:
        return []

    candidates: list[int] = []
    if max_count == 1 or latest_number <= TINY_RANGE_MAX:
        candidates.extend(range(1, min(LEADING_PROBE_LIMIT, latest_number) + 1))

    if latest_number <= FULL_SCAN_MAX:
        candidates.extend(range(1, latest_number + 1))
    elif latest_number <= MID_RANGE_MAX:
        candidates.extend(_newest_window(latest_number))
        midpoint = latest_number // 2
        candidates.extend(range(midpoint - MIDPOINT_WINDOW // 2, midpoint + MIDPOINT_WINDOW // 2))
        candidates.extend(range(midpoint - 50, 0, -DECIMATION_STEP))
    else:
        candidates.extend(_newest_window(latest_number))
        for step in range(CHECKPOINT_COUNT + 1):
            candidates.append(int(latest_number * (step / CHECKPOINT_COUNT)))
        sampler = rng or random.Random(latest_number)
        for _ in range(RANDOM_SAMPLE_COUNT):
            candidates.append(sampler.randint(1, latest_number))

    plan: list[int] = []
    seen: set[int] = set()
    for number in candidates:
        if number < 1 or number > latest_number or number in seen:
            continue
        seen.add(number)
        plan.append(number)
        if budget is not None and len(plan) >= budget:
            break
    return plan


def _newest_window(latest_number: int) -> range:
    return range(latest_number, latest_number - NEWEST_WINDOW, -1)
