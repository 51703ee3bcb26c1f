"""Configuration for the lightweight clustering used before doublet synthesis.

Clustering is only a helper here: it stratifies artificial doublet
generation and does not need to be biologically polished.
"""

from dataclasses import dataclass


@dataclass
class ClusteringConfig:
    """Configuration for fast clustering of real cells.

    Attributes
    ----------
    n_pcs : int
        Number of principal components used for the neighbor graph
    n_top_genes : int
        Number of high-dispersion genes kept before PCA
    neighbors_k : int
        k for the neighborhood graph (Leiden mode)
    resolution : float
        Leiden resolution
    kmeans_n_init : int
        Number of k-means restarts when a target cluster count is given
    random_seed : int
        Random seed for reproducibility
    """

    n_pcs: int = 20
    n_top_genes: int = 1000
    neighbors_k: int = 15
    resolution: float = 1.0
    kmeans_n_init: int = 10
    random_seed: int = 1337
