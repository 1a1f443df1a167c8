"""Park–Miller minimal-standard uniform generator.

The generator is the multiplicative linear congruential recurrence
``s <- 16807 * s mod (2**31 - 1)`` evaluated with Schrage's factorization so
that no intermediate value overflows a signed 32-bit integer.  Uniforms are
``s / (2**31 - 1)`` and therefore lie strictly inside (0, 1).

The numeric recipe is part of the public contract: callers that share one
generator across several models rely on the exact stream, so ``uniforms`` is
required to be bit-identical to repeated ``next_uniform`` calls.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

IA = 16807
IM = 2147483647
AM = 1.0 / IM
IQ = 127773
IR = 2836

# 乘子幂次缓存：_POWERS[k-1] == IA**k mod IM，按需倍增扩展。
_POWERS: np.ndarray = np.array([IA], dtype=np.int64)


def _multiplier_powers(count: int) -> np.ndarray:
    global _POWERS
    powers = _POWERS
    while powers.shape[0] < count:
        powers = np.concatenate([powers, (powers * powers[-1]) % IM])
    _POWERS = powers
    return powers[:count]


def derive_stream_seed(shared_seed: int, istop: int) -> int:
    """Seed for the stream of the worker whose case range stops at ``istop``."""

    seed = (int(istop) + int(shared_seed)) % IM
    if seed == 0:
        seed = 1
    return seed


class ParkMillerRNG:
    """Stateful uniform generator; one instance must not be shared by threads."""

    def __init__(self, seed: int = 1) -> None:
        self.seed(seed)

    def seed(self, value: int) -> None:
        state = int(value) % IM
        if state == 0:
            state = 1
        self._state = state

    @property
    def state(self) -> int:
        return self._state

    def next_uniform(self) -> float:
        state = self._state
        k = state // IQ
        state = IA * (state - k * IQ) - IR * k
        if state < 0:
            state += IM
        self._state = state
        return AM * state

    def uniforms(self, count: int, out: Optional[np.ndarray] = None) -> np.ndarray:
        """Return the next ``count`` uniforms as a float64 array.

        Uses jump-ahead (``s_k = IA**k * s mod IM``) instead of a Python loop.
        Products stay below 2**62 so int64 arithmetic is exact.
        """

        if count < 0:
            raise ValueError("count must be non-negative")
        if out is None:
            out = np.empty(count, dtype=np.float64)
        elif out.shape != (count,):
            raise ValueError("out must be a 1-D array of length count")
        if count == 0:
            return out
        states = (_multiplier_powers(count) * self._state) % IM
        self._state = int(states[-1])
        np.multiply(states, AM, out=out)
        return out

    def bernoulli(self, probabilities: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
        """Binary sample: 1.0 where the next uniform is below the probability."""

        draws = self.uniforms(probabilities.shape[0])
        if out is None:
            out = np.empty_like(draws)
        np.less(draws, probabilities, out=out)
        return out

    def randint_below(self, upper: int) -> int:
        """Uniform integer in ``[0, upper)``, clamped as the shuffle requires."""

        j = int(self.next_uniform() * upper)
        if j >= upper:
            j = upper - 1
        return j


__all__ = ["AM", "IA", "IM", "IQ", "IR", "ParkMillerRNG", "derive_stream_seed"]
