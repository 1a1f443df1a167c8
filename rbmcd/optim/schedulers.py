from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

import numpy as np

LR_MIN = 0.001
LR_MAX = 1.0

# (no-improvement epochs exceeded, learning-rate cap)
STAGNATION_CAPS: Tuple[Tuple[int, float], ...] = (
    (50, 0.03),
    (100, 0.02),
    (150, 0.01),
    (200, 0.005),
    (250, 0.002),
)


def relax(value: float, target: float, rate: float) -> float:
    """One step of exponential smoothing of ``value`` toward ``target``."""
    return (1.0 - rate) * value + rate * target


def stagnation_cap(
    learning_rate: float,
    n_no_improvement: int,
    caps: Sequence[Tuple[int, float]] = STAGNATION_CAPS,
) -> float:
    for threshold, cap in caps:
        if n_no_improvement > threshold and learning_rate > cap:
            learning_rate = cap
    return learning_rate


class DirectionConsistencyScheduler:
    """Adapts learning rate and momentum from consecutive gradient directions.

    The first observed gradient only sets the baseline.  Afterwards the cosine
    between the current and previous gradient raises the learning rate when
    they agree and lowers it when they oppose; any strong agreement or
    opposition also damps momentum.  The learning rate is then clamped to
    ``[LR_MIN, LR_MAX]``.
    """

    def __init__(self, learning_rate: float, momentum: float) -> None:
        self.learning_rate = float(learning_rate)
        self.momentum = float(momentum)
        self._previous: Optional[np.ndarray] = None
        self._previous_len = 0.0
        # 以下平滑量仅用于日志展示。
        self.smoothed_rms = 0.0
        self.smoothed_dot = 0.0

    @property
    def has_baseline(self) -> bool:
        return self._previous is not None

    def observe(self, gradient: np.ndarray) -> Optional[float]:
        """Record ``gradient`` and adjust the schedule; returns the cosine, if any."""

        flat = np.ravel(gradient)
        length = float(np.dot(flat, flat))
        if self._previous is None:
            self._previous = flat.copy()
            self._previous_len = length
            self.smoothed_rms = math.sqrt(length / flat.size)
            self.smoothed_dot = 0.0
            return None

        denom = math.sqrt(length * self._previous_len)
        dot = float(np.dot(flat, self._previous)) / denom if denom > 0.0 else 0.0
        self._previous[:] = flat
        self._previous_len = length

        if dot > 0.5:
            self.learning_rate *= 1.2
        elif dot > 0.3:
            self.learning_rate *= 1.1
        elif dot < -0.5:
            self.learning_rate /= 1.2
        elif dot < -0.3:
            self.learning_rate /= 1.1
        self.learning_rate = min(max(self.learning_rate, LR_MIN), LR_MAX)

        if abs(dot) > 0.3:
            self.momentum /= 1.5

        self.smoothed_rms = 0.99 * self.smoothed_rms + 0.01 * math.sqrt(length / flat.size)
        self.smoothed_dot = 0.9 * self.smoothed_dot + 0.1 * dot
        return dot

    def end_epoch(self, end_momentum: float, n_no_improvement: int) -> None:
        self.momentum = relax(self.momentum, end_momentum, 0.01)
        self.learning_rate = stagnation_cap(self.learning_rate, n_no_improvement)
