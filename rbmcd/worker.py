"""Per-thread work buffers and the batch worker that fills them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import numpy as np

from .data import TrainingMatrix
from .kernel import GibbsOptions, RBMParameters, gibbs_step
from .rng import ParkMillerRNG, derive_stream_seed

logger = logging.getLogger(__name__)


@dataclass
class WorkBuffers:
    """Scratch vectors and accumulators owned by exactly one thread slot."""

    visible1: np.ndarray
    visible2: np.ndarray
    hidden1: np.ndarray
    hidden2: np.ndarray
    hidden_act: np.ndarray
    in_bias_grad: np.ndarray
    hid_bias_grad: np.ndarray
    w_grad: np.ndarray
    hid_on_frac: np.ndarray
    error: float = 0.0

    @classmethod
    def allocate(cls, n_inputs: int, n_hidden: int) -> "WorkBuffers":
        return cls(
            visible1=np.zeros(n_inputs, dtype=np.float64),
            visible2=np.zeros(n_inputs, dtype=np.float64),
            hidden1=np.zeros(n_hidden, dtype=np.float64),
            hidden2=np.zeros(n_hidden, dtype=np.float64),
            hidden_act=np.zeros(n_hidden, dtype=np.float64),
            in_bias_grad=np.zeros(n_inputs, dtype=np.float64),
            hid_bias_grad=np.zeros(n_hidden, dtype=np.float64),
            w_grad=np.zeros((n_hidden, n_inputs), dtype=np.float64),
            hid_on_frac=np.zeros(n_hidden, dtype=np.float64),
        )

    def zero_accumulators(self) -> None:
        self.in_bias_grad.fill(0.0)
        self.hid_bias_grad.fill(0.0)
        self.w_grad.fill(0.0)
        self.hid_on_frac.fill(0.0)
        self.error = 0.0

    def accumulate(self, other: "WorkBuffers") -> None:
        """Add another slot's accumulators into this one."""
        self.in_bias_grad += other.in_bias_grad
        self.hid_bias_grad += other.hid_bias_grad
        self.w_grad += other.w_grad
        self.hid_on_frac += other.hid_on_frac
        self.error += other.error


class WorkBufferPool:
    """One independent :class:`WorkBuffers` per thread slot."""

    def __init__(self, n_slots: int, n_inputs: int, n_hidden: int) -> None:
        if n_slots < 1:
            raise ValueError("n_slots must be at least 1")
        self.n_inputs = int(n_inputs)
        self.n_hidden = int(n_hidden)
        self._slots: List[WorkBuffers] = [
            WorkBuffers.allocate(self.n_inputs, self.n_hidden) for _ in range(n_slots)
        ]

    def __len__(self) -> int:
        return len(self._slots)

    def __getitem__(self, slot: int) -> WorkBuffers:
        return self._slots[slot]


def run_batch_worker(
    istart: int,
    istop: int,
    data: TrainingMatrix,
    params: RBMParameters,
    shuffle_index: np.ndarray,
    options: GibbsOptions,
    n_chain: int,
    buffers: WorkBuffers,
) -> WorkBuffers:
    """Accumulate gradient, hidden activity and error for cases ``[istart, istop)``.

    ``istart``/``istop`` address the shuffled permutation, not the data rows.
    The random stream is derived from ``istop`` and the permutation's first
    entry, so the call is a pure function of its arguments.
    """

    rng = ParkMillerRNG(derive_stream_seed(int(shuffle_index[0]), istop))
    buffers.zero_accumulators()
    for icase in range(istart, istop):
        gibbs_step(data.row(int(shuffle_index[icase])), params, options, n_chain, rng, buffers)
    logger.debug("子批次完成：cases=[%d, %d), 误差累计=%.6f", istart, istop, buffers.error)
    return buffers


__all__ = ["WorkBufferPool", "WorkBuffers", "run_batch_worker"]
