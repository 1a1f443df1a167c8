"""Fork-join dispatch of one training batch over a bounded thread pool.

Each batch is split into contiguous, non-overlapping case ranges, one per
thread slot.  Workers only read the shared parameters, data and permutation and
only write their own :class:`WorkBuffers`, so no locking is needed while they
run.  After the join, slot 0 receives the elementwise sum of all slots.

The reduction order is fixed (slot 1, 2, ...) but the per-thread partial sums
depend on how the batch was split, so results for different thread counts may
differ in the last bits.  That is accepted.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .data import TrainingMatrix
from .kernel import GibbsOptions, RBMParameters
from .worker import WorkBufferPool, WorkBuffers, run_batch_worker

logger = logging.getLogger(__name__)

MIN_CASES_PER_THREAD = 10
DEFAULT_JOIN_TIMEOUT = 1200.0


class RBMTrainingError(RuntimeError):
    """Base class for errors that abort a training run."""


class ThreadLaunchError(RBMTrainingError):
    """A worker thread could not be started."""


class ThreadWaitError(RBMTrainingError):
    """Waiting for the batch workers failed or timed out."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


@dataclass
class BatchStatistics:
    """Reduced accumulators of one batch (a view of slot 0)."""

    n_cases: int
    n_threads: int
    buffers: WorkBuffers

    @property
    def error(self) -> float:
        return self.buffers.error


def resolve_thread_count(n_in_batch: int, max_threads: int) -> int:
    """Largest thread count <= ``max_threads`` giving each thread ~10 cases."""

    n_threads = max(1, int(max_threads))
    while n_threads > 1 and n_in_batch // n_threads < MIN_CASES_PER_THREAD:
        n_threads -= 1
    return n_threads


def partition_range(n_items: int, n_parts: int) -> List[Tuple[int, int]]:
    """Split ``[0, n_items)`` into ``n_parts`` contiguous ranges.

    Part ``i`` receives ``remaining // parts_left`` items, so sizes differ by
    at most one and always sum to ``n_items``.
    """

    if n_parts < 1:
        raise ValueError("n_parts must be at least 1")
    if n_items < 0:
        raise ValueError("n_items must be non-negative")
    ranges: List[Tuple[int, int]] = []
    start = 0
    done = 0
    for part in range(n_parts):
        size = (n_items - done) // (n_parts - part)
        ranges.append((start, start + size))
        done += size
        start += size
    return ranges


class ForkJoinDispatcher:
    """Owns the thread pool and the per-slot buffers for a training run."""

    def __init__(
        self,
        n_inputs: int,
        n_hidden: int,
        *,
        max_threads: int = 1,
        join_timeout: float = DEFAULT_JOIN_TIMEOUT,
    ) -> None:
        if max_threads < 1:
            raise ValueError("max_threads must be at least 1")
        if join_timeout <= 0.0:
            raise ValueError("join_timeout must be positive")
        self.max_threads = int(max_threads)
        self.join_timeout = float(join_timeout)
        self.pool = WorkBufferPool(self.max_threads, n_inputs, n_hidden)
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=self.max_threads,
            thread_name_prefix="rbm-worker",
        )
        logger.debug(
            "线程池已创建：max_threads=%d, join_timeout=%.1fs", self.max_threads, self.join_timeout
        )

    def __enter__(self) -> "ForkJoinDispatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        # 超时或失败后不再等待残留线程，避免阻塞调用方。
        self.close(wait=exc_type is None)

    def close(self, *, wait: bool = True) -> None:
        if self._executor is None:
            return
        self._executor.shutdown(wait=wait, cancel_futures=True)
        self._executor = None

    def run_batch(
        self,
        istart: int,
        n_in_batch: int,
        data: TrainingMatrix,
        params: RBMParameters,
        shuffle_index: np.ndarray,
        options: GibbsOptions,
        n_chain: int,
    ) -> BatchStatistics:
        """Process cases ``[istart, istart + n_in_batch)`` of the permutation.

        Raises:
            ThreadLaunchError: if a worker could not be submitted.
            ThreadWaitError: on join timeout or if a worker raised.
        """

        if self._executor is None:
            raise ThreadLaunchError("dispatcher is closed")

        n_threads = resolve_thread_count(n_in_batch, self.max_threads)
        futures: List[Future] = []
        for slot, (jstart, jstop) in enumerate(partition_range(n_in_batch, n_threads)):
            try:
                future = self._executor.submit(
                    run_batch_worker,
                    istart + jstart,
                    istart + jstop,
                    data,
                    params,
                    shuffle_index,
                    options,
                    n_chain,
                    self.pool[slot],
                )
            except RuntimeError as exc:
                for pending in futures:
                    pending.cancel()
                logger.error("RBM 训练内部错误：无法创建工作线程（slot=%d）：%s", slot, exc)
                raise ThreadLaunchError(f"failed to start worker thread {slot}: {exc}") from exc
            futures.append(future)

        _, not_done = wait(futures, timeout=self.join_timeout)
        if not_done:
            for pending in not_done:
                pending.cancel()
            logger.error(
                "等待工作线程超时：%d/%d 个线程未在 %.1fs 内完成，问题规模可能过大",
                len(not_done),
                n_threads,
                self.join_timeout,
            )
            raise ThreadWaitError(
                f"{len(not_done)} of {n_threads} workers did not finish within {self.join_timeout}s",
                timed_out=True,
            )
        for slot, future in enumerate(futures):
            exc = future.exception()
            if exc is not None:
                logger.error("工作线程 %d 执行失败：%s", slot, exc)
                raise ThreadWaitError(f"worker {slot} failed: {exc}") from exc

        total = self.pool[0]
        for slot in range(1, n_threads):
            total.accumulate(self.pool[slot])
        return BatchStatistics(n_cases=n_in_batch, n_threads=n_threads, buffers=total)


__all__ = [
    "BatchStatistics",
    "DEFAULT_JOIN_TIMEOUT",
    "ForkJoinDispatcher",
    "MIN_CASES_PER_THREAD",
    "RBMTrainingError",
    "ThreadLaunchError",
    "ThreadWaitError",
    "partition_range",
    "resolve_thread_count",
]
