"""Deterministic ball sequence derived from the round's random word.

The LCG constants are part of the public fairness contract: any player can
recompute the sequence from the published random word. They must never change.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from .types import BALL_COUNT

LCG_MULTIPLIER = 6364136223846793005
LCG_INCREMENT = 1442695040888963407
LCG_MASK = (1 << 64) - 1


def _lcg_step(seed: int) -> int:
    return (seed * LCG_MULTIPLIER + LCG_INCREMENT) & LCG_MASK


def generate_ball_sequence(seed: int, ball_count: int = BALL_COUNT) -> Tuple[int, ...]:
    """Fisher-Yates shuffle of 1..ball_count driven by a 64-bit LCG."""
    balls = list(range(1, ball_count + 1))
    state = int(seed)
    for i in range(ball_count - 1, 0, -1):
        state = _lcg_step(state)
        j = state % (i + 1)
        balls[i], balls[j] = balls[j], balls[i]
    return tuple(balls)


def verify_ball_sequence(seed: int, balls: Iterable[int]) -> bool:
    expected = generate_ball_sequence(seed)
    return tuple(int(b) for b in balls) == expected
