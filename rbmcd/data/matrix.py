from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from ..rng import ParkMillerRNG

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingMatrix:
    """Read-only view of the training cases; only the first ``n_inputs`` columns are used."""

    values: np.ndarray
    n_inputs: int
    _means: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        values = np.asarray(self.values, dtype=np.float64)
        if values.ndim != 2:
            raise ValueError(f"training matrix must be 2-D, got shape {values.shape}")
        n_cases, n_cols = values.shape
        if n_cases < 1:
            raise ValueError("training matrix must contain at least one case")
        if not (1 <= self.n_inputs <= n_cols):
            raise ValueError(f"n_inputs={self.n_inputs} must lie in [1, {n_cols}]")
        used = values[:, : self.n_inputs]
        if not np.all(np.isfinite(used)):
            raise ValueError("training matrix contains non-finite values")
        if used.min() < 0.0 or used.max() > 1.0:
            raise ValueError("training values must lie in [0, 1]")
        values = values.view()
        values.flags.writeable = False
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "_means", column_means(values, self.n_inputs))

    @classmethod
    def from_array(cls, values: np.ndarray, n_inputs: Optional[int] = None) -> "TrainingMatrix":
        array = np.asarray(values, dtype=np.float64)
        if array.ndim != 2:
            raise ValueError(f"training matrix must be 2-D, got shape {array.shape}")
        return cls(array, int(n_inputs) if n_inputs is not None else array.shape[1])

    @property
    def n_cases(self) -> int:
        return int(self.values.shape[0])

    @property
    def n_cols(self) -> int:
        return int(self.values.shape[1])

    @property
    def means(self) -> np.ndarray:
        """Per-input mean over all cases."""
        return self._means

    def row(self, index: int) -> np.ndarray:
        return self.values[index, : self.n_inputs]


def column_means(values: np.ndarray, n_inputs: int) -> np.ndarray:
    means = np.mean(values[:, :n_inputs], axis=0, dtype=np.float64)
    logger.debug("输入均值计算完成：n_inputs=%d, 平均激活=%.4f", n_inputs, float(np.mean(means)))
    return means


def identity_index(n_cases: int) -> np.ndarray:
    return np.arange(n_cases, dtype=np.int64)


def shuffle_in_place(index: np.ndarray, rng: ParkMillerRNG) -> np.ndarray:
    """Fisher–Yates shuffle driven by ``rng``; only the order of ``index`` changes."""

    remaining = index.shape[0]
    while remaining > 1:
        j = rng.randint_below(remaining)
        remaining -= 1
        index[remaining], index[j] = index[j], index[remaining]
    return index
