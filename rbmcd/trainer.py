"""Epoch controller for multi-threaded CD-k training of one RBM layer.

Every epoch reshuffles the cases, splits them into near-equal batches and hands
each batch to the fork-join dispatcher.  Between batches the controller applies
the momentum update (with weight decay and sparsity penalties), tracks hidden
activity and adapts the learning rate from consecutive gradient directions.
Training stops when the largest weight increment of an epoch becomes small
relative to the largest weight, when that ratio stops improving, after
``max_epochs``, or on cooperative cancellation.

Only the controller thread writes the parameters, the optimizer state and the
shuffle permutation, and only while no worker is running.
"""

from __future__ import annotations

import enum
import logging
import math
import threading
from dataclasses import dataclass, field, fields
from typing import Any, List, Mapping, Optional, Union

import numpy as np

from .data import TrainingMatrix, identity_index, shuffle_in_place
from .dispatch import DEFAULT_JOIN_TIMEOUT, ForkJoinDispatcher, RBMTrainingError, ThreadWaitError
from .kernel import GibbsOptions, RBMParameters, ReconstructionMetric, ReconstructionTiming
from .optim import (
    DirectionConsistencyScheduler,
    MomentumOptimizer,
    relax,
    smooth_activity,
    sparsity_penalty_term,
)
from .rng import ParkMillerRNG

logger = logging.getLogger(__name__)

FAILURE_SENTINEL = -1.0e40


class TrainingStatus(str, enum.Enum):
    CONVERGED = "converged"
    NO_IMPROVEMENT = "no_improvement"
    MAX_EPOCHS = "max_epochs"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CancellationToken:
    """Thread-safe flag polled by the trainer once per batch."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


def _coerce(default: Any, value: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(default, enum.Enum):
        return type(default)(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


@dataclass(frozen=True)
class CDConfig:
    """Hyper-parameters of one CD-k training run."""

    n_chain_start: int = 1
    n_chain_end: int = 1
    n_chain_rate: float = 0.0
    mean_field: bool = False
    greedy_mean_field: bool = False
    n_batches: int = 10
    max_epochs: int = 100
    max_no_improvement: int = 50
    convergence_crit: float = 1e-5
    learning_rate: float = 0.1
    start_momentum: float = 0.5
    end_momentum: float = 0.9
    weight_penalty: float = 0.0001
    sparsity_penalty: float = 0.0
    sparsity_target: float = 0.1
    metric: ReconstructionMetric = ReconstructionMetric.SQUARED
    timing: ReconstructionTiming = ReconstructionTiming.FAST
    max_threads: int = 1
    join_timeout: float = DEFAULT_JOIN_TIMEOUT
    seed: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "metric", ReconstructionMetric(self.metric))
        object.__setattr__(self, "timing", ReconstructionTiming(self.timing))

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "CDConfig":
        """Build a config from a (YAML) mapping; unknown keys are ignored."""

        mapping = dict(mapping or {})
        defaults = cls()
        kwargs = {}
        for spec in fields(cls):
            if spec.name in mapping and mapping[spec.name] is not None:
                kwargs[spec.name] = _coerce(getattr(defaults, spec.name), mapping.pop(spec.name))
        if mapping:
            logger.warning("忽略未知的训练配置项：%s", ", ".join(sorted(str(key) for key in mapping)))
        return cls(**kwargs)

    @property
    def gibbs_options(self) -> GibbsOptions:
        return GibbsOptions(
            mean_field=self.mean_field,
            greedy_mean_field=self.greedy_mean_field,
            metric=self.metric,
            timing=self.timing,
        )

    def validate(self) -> None:
        if self.n_chain_start < 1 or self.n_chain_end < 1:
            raise ValueError("chain lengths must be at least 1")
        if not (0.0 <= self.n_chain_rate <= 1.0):
            raise ValueError("n_chain_rate must lie in [0, 1]")
        if self.n_batches < 1:
            raise ValueError("n_batches must be at least 1")
        if self.max_epochs < 1:
            raise ValueError("max_epochs must be at least 1")
        if self.max_no_improvement < 0:
            raise ValueError("max_no_improvement must be non-negative")
        if self.convergence_crit < 0.0:
            raise ValueError("convergence_crit must be non-negative")
        if self.learning_rate < 0.0:
            raise ValueError("learning_rate must be non-negative")
        if not (0.0 <= self.start_momentum <= 1.0 and 0.0 <= self.end_momentum <= 1.0):
            raise ValueError("momentum values must lie in [0, 1]")
        if self.weight_penalty < 0.0 or self.sparsity_penalty < 0.0:
            raise ValueError("penalties must be non-negative")
        if not (0.0 <= self.sparsity_target <= 1.0):
            raise ValueError("sparsity_target must lie in [0, 1]")
        if self.max_threads < 1:
            raise ValueError("max_threads must be at least 1")
        if self.join_timeout <= 0.0:
            raise ValueError("join_timeout must be positive")


@dataclass(frozen=True)
class EpochReport:
    epoch: int
    error: float
    convergence_ratio: float
    learning_rate: float
    momentum: float
    chain_length: float
    n_chain: int
    n_no_improvement: int
    best_error: float
    smoothed_ratio: float
    smoothed_rms: float
    smoothed_dot: float


@dataclass
class TrainingResult:
    """Outcome of :func:`train_rbm`; the parameters themselves are updated in place.

    ``error`` is the normalized reconstruction error of the last fully
    computed epoch, or :data:`FAILURE_SENTINEL` when the dispatcher failed.
    After a cancellation ``partial_error`` holds the interrupted epoch's error
    sum, which only covers the batches that ran but is still divided by
    ``n_cases * n_inputs``.
    """

    error: float
    status: TrainingStatus
    epochs_completed: int
    learning_rate: float
    momentum: float
    chain_length: float
    incomplete: bool = False
    partial_error: Optional[float] = None
    history: List[EpochReport] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status is TrainingStatus.FAILED


class ContrastiveDivergenceTrainer:
    """Runs the epoch loop for one training call."""

    def __init__(
        self,
        data: TrainingMatrix,
        params: RBMParameters,
        config: CDConfig = CDConfig(),
        *,
        cancel: Optional[CancellationToken] = None,
        logger: Optional[logging.Logger] = None,
        rng: Optional[ParkMillerRNG] = None,
    ) -> None:
        config.validate()
        if params.n_inputs != data.n_inputs:
            raise ValueError(
                f"parameters expect {params.n_inputs} inputs but the data provides {data.n_inputs}"
            )
        if config.n_batches > data.n_cases:
            raise ValueError(f"n_batches={config.n_batches} exceeds the number of cases {data.n_cases}")
        self.data = data
        self.params = params
        self.config = config
        self.cancel = cancel
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.rng = rng if rng is not None else ParkMillerRNG(config.seed)
        self.schedule = DirectionConsistencyScheduler(config.learning_rate, config.start_momentum)
        self.chain_length = float(config.n_chain_start)
        self.history: List[EpochReport] = []

    def _cancel_requested(self) -> bool:
        return self.cancel is not None and self.cancel.is_cancelled()

    def train(self) -> TrainingResult:
        cfg = self.config
        self.logger.info(
            "RBM 训练开始：cases=%d, inputs=%d, hidden=%d, batches=%d, max_epochs=%d, max_threads=%d",
            self.data.n_cases,
            self.data.n_inputs,
            self.params.n_hidden,
            cfg.n_batches,
            cfg.max_epochs,
            cfg.max_threads,
        )
        try:
            with ForkJoinDispatcher(
                self.data.n_inputs,
                self.params.n_hidden,
                max_threads=cfg.max_threads,
                join_timeout=cfg.join_timeout,
            ) as dispatcher:
                return self._run_epochs(dispatcher)
        except RBMTrainingError as exc:
            self.logger.error("RBM 训练内部错误，训练中止：%s", exc)
            if isinstance(exc, ThreadWaitError) and exc.timed_out:
                self.logger.error("等待计算完成超时，问题规模过大")
            return TrainingResult(
                error=FAILURE_SENTINEL,
                status=TrainingStatus.FAILED,
                epochs_completed=len(self.history),
                learning_rate=self.schedule.learning_rate,
                momentum=self.schedule.momentum,
                chain_length=self.chain_length,
                history=list(self.history),
            )

    def _run_epochs(self, dispatcher: ForkJoinDispatcher) -> TrainingResult:
        cfg = self.config
        data = self.data
        params = self.params
        schedule = self.schedule
        options = cfg.gibbs_options
        n_cases = data.n_cases
        normalizer = float(n_cases * data.n_inputs)

        shuffle_index = identity_index(n_cases)
        hid_on_smoothed = np.full(params.n_hidden, 0.5, dtype=np.float64)
        optimizer = MomentumOptimizer(params)

        n_no_improvement = 0
        best_crit = math.inf
        best_error = math.inf
        smoothed_ratio = 0.0
        most_recent_error = 0.0
        status = TrainingStatus.MAX_EPOCHS
        partial_error: Optional[float] = None

        for i_epoch in range(cfg.max_epochs):
            shuffle_in_place(shuffle_index, self.rng)

            istart = 0
            n_done = 0
            error = 0.0
            max_inc = 0.0
            n_chain = int(math.floor(self.chain_length + 0.5))
            cancelled = False

            for ibatch in range(cfg.n_batches):
                n_in_batch = (n_cases - n_done) // (cfg.n_batches - ibatch)
                stats = dispatcher.run_batch(
                    istart, n_in_batch, data, params, shuffle_index, options, n_chain
                )
                grads = stats.buffers
                error += stats.error

                smooth_activity(hid_on_smoothed, grads.hid_on_frac / n_in_batch)
                sparsity_term = sparsity_penalty_term(
                    hid_on_smoothed, cfg.sparsity_penalty, cfg.sparsity_target
                )
                batch_max_inc = optimizer.step(
                    params,
                    grads,
                    n_in_batch,
                    learning_rate=schedule.learning_rate,
                    momentum=schedule.momentum,
                    weight_penalty=cfg.weight_penalty,
                    sparsity_term=sparsity_term,
                    data_mean=data.means,
                )
                max_inc = max(max_inc, batch_max_inc)

                # 第一个 epoch 不响应取消，保证至少有一个完整的误差值。
                if i_epoch > 0 and self._cancel_requested():
                    cancelled = True
                    break

                dot = schedule.observe(grads.w_grad)
                self.logger.debug(
                    "epoch %d batch %d/%d：cases=%d, threads=%d, max_inc=%.3e, dot=%s, lr=%.4f, momentum=%.4f",
                    i_epoch + 1,
                    ibatch + 1,
                    cfg.n_batches,
                    n_in_batch,
                    stats.n_threads,
                    batch_max_inc,
                    "n/a" if dot is None else f"{dot:.3f}",
                    schedule.learning_rate,
                    schedule.momentum,
                )

                n_done += n_in_batch
                istart += n_in_batch

            if cancelled:
                partial_error = error / normalizer
                self.logger.warning("用户取消训练：结果不完整，本 epoch 误差仅累计了已完成的批次")
                status = TrainingStatus.CANCELLED
                break

            error /= normalizer
            most_recent_error = error
            best_error = min(best_error, error)

            max_weight = float(np.max(np.abs(params.w)))
            ratio = max_inc / max_weight if max_weight > 0.0 else math.inf

            stop_status: Optional[TrainingStatus] = None
            if ratio < cfg.convergence_crit:
                stop_status = TrainingStatus.CONVERGED
            elif i_epoch == 0 or ratio < best_crit:
                best_crit = ratio
                n_no_improvement = 0
            else:
                n_no_improvement += 1
                if n_no_improvement > cfg.max_no_improvement:
                    stop_status = TrainingStatus.NO_IMPROVEMENT

            if stop_status is None:
                schedule.end_epoch(cfg.end_momentum, n_no_improvement)
                self.chain_length = relax(self.chain_length, cfg.n_chain_end, cfg.n_chain_rate)
                smoothed_ratio = ratio if i_epoch == 0 else 0.9 * smoothed_ratio + 0.1 * ratio

            self.history.append(
                EpochReport(
                    epoch=i_epoch,
                    error=error,
                    convergence_ratio=ratio,
                    learning_rate=schedule.learning_rate,
                    momentum=schedule.momentum,
                    chain_length=self.chain_length,
                    n_chain=n_chain,
                    n_no_improvement=n_no_improvement,
                    best_error=best_error,
                    smoothed_ratio=smoothed_ratio,
                    smoothed_rms=schedule.smoothed_rms,
                    smoothed_dot=schedule.smoothed_dot,
                )
            )
            self.logger.info(
                "epoch %d/%d：误差=%.6f, 收敛比=%.3e, lr=%.4f, momentum=%.4f, chain=%d, 无改进=%d",
                i_epoch + 1,
                cfg.max_epochs,
                error,
                ratio,
                schedule.learning_rate,
                schedule.momentum,
                n_chain,
                n_no_improvement,
            )

            if stop_status is not None:
                status = stop_status
                break

        self.logger.info(
            "RBM 训练结束：状态=%s, epochs=%d, 误差=%.6f", status.value, len(self.history), most_recent_error
        )
        return TrainingResult(
            error=most_recent_error,
            status=status,
            epochs_completed=len(self.history),
            learning_rate=schedule.learning_rate,
            momentum=schedule.momentum,
            chain_length=self.chain_length,
            incomplete=status is TrainingStatus.CANCELLED,
            partial_error=partial_error,
            history=list(self.history),
        )


def train_rbm(
    data: Union[TrainingMatrix, np.ndarray],
    params: RBMParameters,
    config: Optional[CDConfig] = None,
    *,
    n_inputs: Optional[int] = None,
    cancel: Optional[CancellationToken] = None,
    logger: Optional[logging.Logger] = None,
    rng: Optional[ParkMillerRNG] = None,
) -> TrainingResult:
    """Train ``params`` in place on ``data`` with CD-k.

    Args:
        data: Training cases with values in [0, 1]; a plain array is wrapped in
            a :class:`TrainingMatrix` using ``n_inputs`` (default: the
            parameters' input count) leading columns.
        params: Initial weights and biases, updated in place.
        config: Hyper-parameters; defaults to ``CDConfig()``.
        cancel: Optional token polled once per batch.
        logger: Audit sink for progress, warnings and fatal errors.
        rng: Shared generator used to shuffle the cases.

    Returns:
        TrainingResult whose ``error`` is the final epoch's mean
        reconstruction error, or ``FAILURE_SENTINEL`` on a fatal dispatcher
        error.
    """

    if not isinstance(data, TrainingMatrix):
        data = TrainingMatrix.from_array(data, n_inputs if n_inputs is not None else params.n_inputs)
    trainer = ContrastiveDivergenceTrainer(
        data,
        params,
        config or CDConfig(),
        cancel=cancel,
        logger=logger,
        rng=rng,
    )
    return trainer.train()


__all__ = [
    "CDConfig",
    "CancellationToken",
    "ContrastiveDivergenceTrainer",
    "EpochReport",
    "FAILURE_SENTINEL",
    "TrainingResult",
    "TrainingStatus",
    "train_rbm",
]
