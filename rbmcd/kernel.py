"""Gibbs sampling kernel for a binary Restricted Boltzmann Machine.

A single call processes one training case: the visible vector is (optionally)
binarized, the positive-phase hidden probabilities are computed, a CD-k Markov
chain is run from there and the per-case contributions to the negative
gradient, the hidden "fraction on" statistic and the reconstruction error are
added to the caller's work buffers.

All random draws come from the worker's own :class:`ParkMillerRNG`, in a fixed
order, so a given seed reproduces the same sample path bit for bit.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import numpy as np

from .rng import ParkMillerRNG

if TYPE_CHECKING:  # pragma: no cover
    from .worker import WorkBuffers

LOG_EPSILON = 1e-10


class ReconstructionMetric(str, enum.Enum):
    SQUARED = "squared"
    CROSS_ENTROPY = "cross_entropy"


class ReconstructionTiming(str, enum.Enum):
    """When the per-case reconstruction error is measured."""

    FAST = "fast"  # first chain step's visible probabilities
    EXACT = "exact"  # full expected reconstruction from the positive phase


@dataclass(frozen=True)
class GibbsOptions:
    mean_field: bool = False
    greedy_mean_field: bool = False
    metric: ReconstructionMetric = ReconstructionMetric.SQUARED
    timing: ReconstructionTiming = ReconstructionTiming.FAST


@dataclass
class RBMParameters:
    """Weights ``w`` (nhid x n_inputs) plus visible and hidden biases.

    The arrays are updated in place by the trainer, so callers keep their
    references valid for the whole run.
    """

    w: np.ndarray
    in_bias: np.ndarray
    hid_bias: np.ndarray

    def __post_init__(self) -> None:
        self.w = np.asarray(self.w, dtype=np.float64)
        self.in_bias = np.asarray(self.in_bias, dtype=np.float64)
        self.hid_bias = np.asarray(self.hid_bias, dtype=np.float64)
        if self.w.ndim != 2:
            raise ValueError(f"w must be 2-D (nhid, n_inputs), got shape {self.w.shape}")
        n_hidden, n_inputs = self.w.shape
        if n_hidden < 1 or n_inputs < 1:
            raise ValueError("w must have at least one hidden unit and one input")
        if self.in_bias.shape != (n_inputs,):
            raise ValueError(f"in_bias must have shape ({n_inputs},), got {self.in_bias.shape}")
        if self.hid_bias.shape != (n_hidden,):
            raise ValueError(f"hid_bias must have shape ({n_hidden},), got {self.hid_bias.shape}")

    @classmethod
    def zeros(cls, n_inputs: int, n_hidden: int) -> "RBMParameters":
        return cls(
            w=np.zeros((n_hidden, n_inputs), dtype=np.float64),
            in_bias=np.zeros(n_inputs, dtype=np.float64),
            hid_bias=np.zeros(n_hidden, dtype=np.float64),
        )

    @classmethod
    def random(
        cls,
        n_inputs: int,
        n_hidden: int,
        *,
        seed: Optional[int] = None,
        scale: float = 0.01,
    ) -> "RBMParameters":
        """Small Gaussian weights and zero biases."""

        rng = np.random.default_rng(seed)
        params = cls.zeros(n_inputs, n_hidden)
        params.w[:] = rng.normal(0.0, scale, size=(n_hidden, n_inputs))
        return params

    @property
    def n_inputs(self) -> int:
        return int(self.w.shape[1])

    @property
    def n_hidden(self) -> int:
        return int(self.w.shape[0])

    def copy(self) -> "RBMParameters":
        return RBMParameters(self.w.copy(), self.in_bias.copy(), self.hid_bias.copy())


def sigmoid(x: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    with np.errstate(over="ignore"):
        out = np.negative(x, out=out)
        np.exp(out, out=out)
    out += 1.0
    np.reciprocal(out, out=out)
    return out


def reconstruction_error(visible: np.ndarray, probabilities: np.ndarray, metric: ReconstructionMetric) -> float:
    if metric is ReconstructionMetric.CROSS_ENTROPY:
        return -float(
            np.sum(
                visible * np.log(probabilities + LOG_EPSILON)
                + (1.0 - visible) * np.log(1.0 - probabilities + LOG_EPSILON)
            )
        )
    diff = visible - probabilities
    return float(np.dot(diff, diff))


def gibbs_step(
    row: np.ndarray,
    params: RBMParameters,
    options: GibbsOptions,
    n_chain: int,
    rng: ParkMillerRNG,
    buffers: "WorkBuffers",
) -> None:
    """Run CD-``n_chain`` for one case and accumulate into ``buffers``.

    Args:
        row: The case's first ``n_inputs`` values, each in [0, 1].
        params: Current weights and biases (read only here).
        options: Sampling mode and reconstruction-error selection.
        n_chain: Markov chain length, at least 1.
        rng: The calling worker's private generator.
        buffers: The calling worker's scratch vectors and accumulators.
    """

    if n_chain < 1:
        raise ValueError("n_chain must be at least 1")

    w = params.w
    visible1 = buffers.visible1
    visible2 = buffers.visible2
    hidden1 = buffers.hidden1
    hidden2 = buffers.hidden2
    hidden_act = buffers.hidden_act

    visible1[:] = row
    # greedy_mean_field 表示输入来自上一层的隐层概率，此时保持原值不采样。
    if not options.greedy_mean_field:
        rng.bernoulli(visible1, out=visible1)

    sigmoid(params.hid_bias + w @ visible1, out=hidden1)
    hidden2[:] = hidden1
    buffers.hid_on_frac += hidden1

    if options.timing is ReconstructionTiming.EXACT:
        expected = sigmoid(params.in_bias + hidden1 @ w)
        buffers.error += reconstruction_error(visible1, expected, options.metric)

    for ichain in range(n_chain):
        rng.bernoulli(hidden2, out=hidden_act)
        probabilities = sigmoid(params.in_bias + hidden_act @ w)
        if ichain == 0 and options.timing is ReconstructionTiming.FAST:
            buffers.error += reconstruction_error(visible1, probabilities, options.metric)
        if options.mean_field:
            visible2[:] = probabilities
        else:
            rng.bernoulli(probabilities, out=visible2)
        sigmoid(params.hid_bias + w @ visible2, out=hidden2)

    if options.mean_field:
        positive = hidden1
    else:
        positive = rng.bernoulli(hidden1, out=hidden_act)

    buffers.hid_bias_grad += positive - hidden2
    buffers.w_grad += np.outer(positive, visible1)
    buffers.w_grad -= np.outer(hidden2, visible2)
    buffers.in_bias_grad += visible1 - visible2


__all__ = [
    "GibbsOptions",
    "LOG_EPSILON",
    "RBMParameters",
    "ReconstructionMetric",
    "ReconstructionTiming",
    "gibbs_step",
    "reconstruction_error",
    "sigmoid",
]
