"""Clustering module providing cluster labels for doublet synthesis.

Provides Leiden clustering (default) and k-means clustering (when a target
cluster count is given) on raw count matrices.

Example Usage
-------------
>>> from doublet_refinery.core.clustering import ClusteringEngine, ClusteringConfig
>>> engine = ClusteringEngine(ClusteringConfig(resolution=0.8))
>>> result = engine.cluster(counts)
>>> result.n_clusters
"""

from .config import ClusteringConfig
from .engine import ClusteringEngine, ClusteringResult

__all__ = [
    "ClusteringConfig",
    "ClusteringEngine",
    "ClusteringResult",
]
