"""Training-matrix handling for RBM training."""

from .matrix import TrainingMatrix, column_means, identity_index, shuffle_in_place

__all__ = [
    "TrainingMatrix",
    "column_means",
    "identity_index",
    "shuffle_in_place",
]
