"""Parameter updates and adaptive schedules for CD training."""

from .momentum import MomentumOptimizer, smooth_activity, sparsity_penalty_term
from .schedulers import DirectionConsistencyScheduler, relax, stagnation_cap

__all__ = [
    "DirectionConsistencyScheduler",
    "MomentumOptimizer",
    "relax",
    "smooth_activity",
    "sparsity_penalty_term",
    "stagnation_cap",
]
