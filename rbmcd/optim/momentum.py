from __future__ import annotations

import numpy as np

from ..kernel import RBMParameters
from ..worker import WorkBuffers

ACTIVITY_DECAY = 0.95
ACTIVITY_FLOOR = 0.01
ACTIVITY_CEILING = 0.99
SATURATION_SLOPE = 0.5


def smooth_activity(hid_on_smoothed: np.ndarray, fraction_on: np.ndarray) -> np.ndarray:
    """Exponentially smoothed per-unit activation frequency, updated in place."""

    hid_on_smoothed *= ACTIVITY_DECAY
    hid_on_smoothed += (1.0 - ACTIVITY_DECAY) * fraction_on
    return hid_on_smoothed


def sparsity_penalty_term(hid_on_smoothed: np.ndarray, penalty: float, target: float) -> np.ndarray:
    """Per-hidden-unit sparsity term, with an extra pull away from 0 and 1."""

    term = penalty * (hid_on_smoothed - target)
    low = hid_on_smoothed < ACTIVITY_FLOOR
    high = hid_on_smoothed > ACTIVITY_CEILING
    term[low] += SATURATION_SLOPE * (hid_on_smoothed[low] - ACTIVITY_FLOOR)
    term[high] += SATURATION_SLOPE * (hid_on_smoothed[high] - ACTIVITY_CEILING)
    return term


class MomentumOptimizer:
    """Momentum SGD on the CD negative gradient with weight decay and sparsity terms.

    Increments start at zero and persist across batches and epochs.
    """

    def __init__(self, params: RBMParameters) -> None:
        self.w_inc = np.zeros_like(params.w)
        self.in_bias_inc = np.zeros_like(params.in_bias)
        self.hid_bias_inc = np.zeros_like(params.hid_bias)

    def step(
        self,
        params: RBMParameters,
        grads: WorkBuffers,
        n_in_batch: int,
        *,
        learning_rate: float,
        momentum: float,
        weight_penalty: float,
        sparsity_term: np.ndarray,
        data_mean: np.ndarray,
    ) -> float:
        """Apply one batch update and return the largest absolute weight increment.

        ``grads.w_grad`` is left holding the averaged, penalized weight
        gradient; the learning-rate schedule compares consecutive ones.
        """

        if n_in_batch < 1:
            raise ValueError("n_in_batch must be at least 1")

        self.hid_bias_inc *= momentum
        self.hid_bias_inc += learning_rate * (grads.hid_bias_grad / n_in_batch - sparsity_term)
        params.hid_bias += self.hid_bias_inc

        w_grad = grads.w_grad
        w_grad /= n_in_batch
        w_grad -= weight_penalty * params.w
        w_grad -= np.outer(sparsity_term, data_mean)
        self.w_inc *= momentum
        self.w_inc += learning_rate * w_grad
        params.w += self.w_inc

        self.in_bias_inc *= momentum
        self.in_bias_inc += learning_rate * grads.in_bias_grad / n_in_batch
        params.in_bias += self.in_bias_inc

        return float(np.max(np.abs(self.w_inc)))
