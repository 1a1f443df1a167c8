"""单隐层受限玻尔兹曼机（RBM）的多线程 CD-k 训练核心。"""

from .config import get_logging_level, get_training_config, load_config
from .data import TrainingMatrix
from .dispatch import (
    ForkJoinDispatcher,
    RBMTrainingError,
    ThreadLaunchError,
    ThreadWaitError,
    partition_range,
    resolve_thread_count,
)
from .kernel import GibbsOptions, RBMParameters, ReconstructionMetric, ReconstructionTiming, gibbs_step
from .rng import ParkMillerRNG, derive_stream_seed
from .trainer import (
    FAILURE_SENTINEL,
    CancellationToken,
    CDConfig,
    ContrastiveDivergenceTrainer,
    EpochReport,
    TrainingResult,
    TrainingStatus,
    train_rbm,
)

__all__ = [
    "CDConfig",
    "CancellationToken",
    "ContrastiveDivergenceTrainer",
    "EpochReport",
    "FAILURE_SENTINEL",
    "ForkJoinDispatcher",
    "GibbsOptions",
    "ParkMillerRNG",
    "RBMParameters",
    "RBMTrainingError",
    "ReconstructionMetric",
    "ReconstructionTiming",
    "ThreadLaunchError",
    "ThreadWaitError",
    "TrainingMatrix",
    "TrainingResult",
    "TrainingStatus",
    "derive_stream_seed",
    "get_logging_level",
    "get_training_config",
    "gibbs_step",
    "load_config",
    "partition_range",
    "resolve_thread_count",
    "train_rbm",
]
