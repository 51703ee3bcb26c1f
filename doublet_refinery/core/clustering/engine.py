"""Fast clustering of real cells prior to doublet synthesis.

Provides Leiden clustering on a PCA neighbor graph, or k-means when a
target number of clusters is requested (e.g. for trajectories where
distinct subpopulations are not expected).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging

import numpy as np

from ...utils.normalization import dispersion_ranking, log_normalized_anndata
from .config import ClusteringConfig


@dataclass
class ClusteringResult:
    """Result from clustering operation.

    Attributes
    ----------
    labels : np.ndarray
        Cluster label (str) per cell
    n_clusters : int
        Number of clusters found
    cluster_sizes : Dict[str, int]
        Map of cluster ID to cell count
    method : str
        Clustering method used (leiden or kmeans)
    """

    labels: np.ndarray = field(default_factory=lambda: np.array([], dtype=object))
    n_clusters: int = 0
    cluster_sizes: Dict[str, int] = field(default_factory=dict)
    method: str = "leiden"


class ClusteringEngine:
    """Clustering engine for raw count matrices.

    Pipeline: scanpy normalize_total -> log1p -> highly variable genes ->
    PCA -> (neighbors -> Leiden) or k-means.

    Parameters
    ----------
    config : ClusteringConfig, optional
        Clustering configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from doublet_refinery.core.clustering import ClusteringEngine
    >>> engine = ClusteringEngine()
    >>> result = engine.cluster(counts, n_clusters=8)
    """

    def __init__(
        self,
        config: Optional[ClusteringConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusteringConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy
        except ImportError:
            raise RuntimeError(
                "Clustering requires scanpy. Install with: pip install scanpy"
            )

    def _reduce(self, counts: Any, random_seed: int) -> Any:
        """Build a small AnnData with PCA coordinates in obsm['X_pca']."""
        import scanpy as sc

        cfg = self.config
        adata = log_normalized_anndata(counts)
        order = dispersion_ranking(adata, cfg.n_top_genes)[: cfg.n_top_genes]
        if len(order) < 2:
            order = np.arange(min(adata.n_vars, 2))
        adata = adata[:, np.sort(order)].copy()
        adata.X = adata.X.toarray()

        use_pcs = min(cfg.n_pcs, max(adata.n_vars - 1, 1), max(adata.n_obs - 1, 1))
        sc.tl.pca(adata, n_comps=use_pcs, svd_solver="arpack", random_state=random_seed)
        return adata

    def cluster(
        self,
        counts: Any,
        n_clusters: Optional[int] = None,
        random_seed: Optional[int] = None,
    ) -> ClusteringResult:
        """Cluster cells of a raw count matrix.

        Parameters
        ----------
        counts : array or sparse matrix
            Cells x genes raw counts
        n_clusters : int, optional
            Target number of clusters (k-means). If None, runs Leiden.
        random_seed : int, optional
            Random seed. Uses config default if None.

        Returns
        -------
        ClusteringResult
            Cluster labels with cluster statistics
        """
        import scanpy as sc
        from sklearn.cluster import KMeans

        cfg = self.config
        random_seed = random_seed if random_seed is not None else cfg.random_seed
        n_cells = counts.shape[0]

        self.logger.info(
            "Clustering %d cells (%s)",
            n_cells,
            f"k-means, k={n_clusters}" if n_clusters else f"Leiden, resolution={cfg.resolution:.2f}",
        )
        adata = self._reduce(counts, random_seed)

        if n_clusters is not None:
            n_clusters = int(min(max(n_clusters, 1), n_cells))
            km = KMeans(
                n_clusters=n_clusters,
                n_init=cfg.kmeans_n_init,
                random_state=random_seed,
            )
            labels = km.fit_predict(adata.obsm["X_pca"])
            method = "kmeans"
        else:
            neighbors_k = min(cfg.neighbors_k, max(n_cells - 1, 2))
            sc.pp.neighbors(adata, n_neighbors=neighbors_k, random_state=random_seed)
            sc.tl.leiden(
                adata,
                resolution=cfg.resolution,
                random_state=random_seed,
                key_added="cluster",
                flavor="igraph",
                n_iterations=2,
                directed=False,
            )
            labels = adata.obs["cluster"].to_numpy()
            method = "leiden"

        labels = np.asarray([str(int(x) + 1) for x in labels], dtype=object)
        uniq, sizes = np.unique(labels, return_counts=True)

        result = ClusteringResult(
            labels=labels,
            n_clusters=len(uniq),
            cluster_sizes={str(u): int(s) for u, s in zip(uniq, sizes)},
            method=method,
        )
        self.logger.info("Computed %s clustering with %d clusters", method, result.n_clusters)
        return result
