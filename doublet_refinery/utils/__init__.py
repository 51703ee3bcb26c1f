"""Utility functions for doublet-refinery.

Provides statistical helpers, count-matrix summaries and scanpy-based
normalization used across modules.
"""

from .normalization import dispersion_ranking, log_normalized_anndata
from .stats import (
    detected_features,
    ecdf_rank,
    library_sizes,
    top_fraction_mask,
)

__all__ = [
    "detected_features",
    "dispersion_ranking",
    "ecdf_rank",
    "library_sizes",
    "log_normalized_anndata",
    "top_fraction_mask",
]
