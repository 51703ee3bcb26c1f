"""Test fixtures for doublet-refinery.

Provides synthetic count generators and test utilities.
"""

from .mock_counts import (
    cluster_profiles,
    create_count_matrix,
    create_doublet_adata,
    create_score_table,
)

__all__ = [
    "cluster_profiles",
    "create_count_matrix",
    "create_doublet_adata",
    "create_score_table",
]
