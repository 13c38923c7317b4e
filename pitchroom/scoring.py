from __future__ import annotations

from typing import Iterable, Tuple

from .constants import MAX_SCORE, MIN_SCORE, SEED_SCORE


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


class ScoreTracker:
    """Bounded interest score with an append-only trajectory.

    The first trajectory entry is the seed. Every ``apply`` call appends exactly
    one value, the clamped result, even when the delta is zero.
    """

    def __init__(self, seed: int = SEED_SCORE) -> None:
        start = clamp(int(seed), MIN_SCORE, MAX_SCORE)
        self._score = start
        self._trajectory = [start]

    @classmethod
    def initial(cls, seed: int = SEED_SCORE) -> "ScoreTracker":
        return cls(seed)

    @classmethod
    def restore(cls, trajectory: Iterable[int]) -> "ScoreTracker":
        values = [clamp(int(value), MIN_SCORE, MAX_SCORE) for value in trajectory]
        if not values:
            return cls()
        tracker = cls(values[0])
        tracker._trajectory = values
        tracker._score = values[-1]
        return tracker

    @property
    def score(self) -> int:
        return self._score

    @property
    def trajectory(self) -> Tuple[int, ...]:
        return tuple(self._trajectory)

    def apply(self, delta: int) -> int:
        self._score = clamp(self._score + int(delta), MIN_SCORE, MAX_SCORE)
        self._trajectory.append(self._score)
        return self._score
