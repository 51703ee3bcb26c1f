"""Synthetic count generators for testing.

Provides clustered Poisson count matrices with optional cross-cluster
doublets, and small hand-made score tables, so tests run without real data.
"""

from typing import Optional

import numpy as np
import pandas as pd
from scipy import sparse


def cluster_profiles(
    n_clusters: int = 3,
    n_genes: int = 200,
    markers_per_cluster: int = 30,
    background: float = 0.5,
    marker_mean: float = 8.0,
) -> np.ndarray:
    """Mean expression of every cluster (clusters x genes).

    Every cluster over-expresses its own block of marker genes.
    """
    profiles = np.full((n_clusters, n_genes), background)
    for c in range(n_clusters):
        start = c * markers_per_cluster
        profiles[c, start:start + markers_per_cluster] = marker_mean
    return profiles


def create_count_matrix(
    n_cells_per_cluster: int = 100,
    n_clusters: int = 3,
    n_genes: int = 200,
    seed: int = 42,
) -> tuple:
    """Clustered Poisson counts.

    Returns
    -------
    tuple
        (counts as CSR matrix, cluster labels "1".."C")
    """
    rng = np.random.default_rng(seed)
    profiles = cluster_profiles(n_clusters, n_genes)
    labels = np.repeat(np.arange(n_clusters), n_cells_per_cluster)
    size_factors = rng.lognormal(0.0, 0.2, size=len(labels))
    means = profiles[labels] * size_factors[:, None]
    counts = rng.poisson(means)
    return sparse.csr_matrix(counts), np.array([str(c + 1) for c in labels], dtype=object)


def create_doublet_adata(
    n_cells_per_cluster: int = 100,
    n_clusters: int = 3,
    n_doublets: int = 30,
    n_genes: int = 200,
    n_samples: int = 1,
    seed: int = 42,
) -> "AnnData":
    """Clustered singlets plus doublets summed from cross-cluster pairs.

    Doublets carry the next free cluster label (e.g. "4" with 3 clusters) and
    ``true_doublet=True``. With ``n_samples > 1`` cells are dealt round-robin
    into samples ``S1``, ``S2``...

    Returns
    -------
    AnnData
        Counts in X and ``layers['counts']``; obs columns ``cluster``,
        ``true_doublet`` and ``sample``
    """
    import anndata as ad

    rng = np.random.default_rng(seed)
    counts, labels = create_count_matrix(n_cells_per_cluster, n_clusters, n_genes, seed)
    dense = counts.toarray()

    rows = []
    for _ in range(n_doublets):
        a, b = rng.choice(n_clusters, size=2, replace=False)
        i = rng.choice(np.flatnonzero(labels == str(a + 1)))
        j = rng.choice(np.flatnonzero(labels == str(b + 1)))
        rows.append(dense[i] + dense[j])
    if rows:
        dense = np.vstack([dense, np.vstack(rows)])
    cluster = np.concatenate([labels, np.full(n_doublets, str(n_clusters + 1), dtype=object)])
    true_doublet = np.concatenate(
        [np.zeros(len(labels), dtype=bool), np.ones(n_doublets, dtype=bool)]
    )
    n_cells = dense.shape[0]

    obs = pd.DataFrame({
        "cluster": pd.Categorical(cluster),
        "true_doublet": true_doublet,
        "sample": pd.Categorical([f"S{i % n_samples + 1}" for i in range(n_cells)]),
    })
    obs.index = pd.Index([f"cell_{i}" for i in range(n_cells)])
    var = pd.DataFrame(index=[f"Gene_{g}" for g in range(n_genes)])

    X = sparse.csr_matrix(dense.astype(np.float32))
    adata = ad.AnnData(X=X, obs=obs, var=var)
    adata.layers["counts"] = X.copy()
    return adata


def create_score_table(
    n_real: int = 300,
    n_artificial: int = 300,
    real_doublet_fraction: float = 0.1,
    seed: int = 0,
    n_known: int = 0,
):
    """Hand-made ScoreTable with separable doublet features.

    Real doublets (the first ``real_doublet_fraction`` of real cells) and
    artificial doublets get high neighborhood ratios, singlets low ones.
    """
    from doublet_refinery.core.detection.neighborhood import NeighborhoodFeatures
    from doublet_refinery.core.detection.table import (
        ARTIFICIAL,
        DOUBLET,
        REAL,
        CellIdentity,
        CellQuality,
        ScoreTable,
    )

    rng = np.random.default_rng(seed)
    n = n_real + n_artificial
    n_real_dbl = int(round(real_doublet_fraction * n_real))
    high = np.zeros(n, dtype=bool)
    high[:n_real_dbl] = True
    high[n_real:] = True

    ratio = np.where(high, rng.uniform(0.6, 1.0, n), rng.uniform(0.0, 0.3, n))
    weighted = np.clip(ratio + rng.normal(0, 0.05, n), 0, 1)
    cell_type = np.array([REAL] * n_real + [DOUBLET] * n_artificial, dtype=object)
    cell_type[n_real_dbl:n_real_dbl + n_known] = DOUBLET
    origins = np.array(
        [None] * n_real + list(rng.choice(["1+2", "1+3", "2+3"], n_artificial)), dtype=object
    )
    mlo = np.array(list(rng.choice(["1+2", "1+3", "2+3"], n)), dtype=object)

    neighborhood = NeighborhoodFeatures(
        weighted=weighted,
        distance_to_nearest=rng.uniform(0.1, 1.0, n),
        distance_to_nearest_doublet=rng.uniform(0.1, 1.0, n),
        distance_to_nearest_real=rng.uniform(0.1, 1.0, n),
        nearest_class=(ratio > 0.5).astype(int),
        ratio=ratio,
        ratios_by_k={3: ratio.copy(), 10: ratio.copy()},
        most_likely_origin=mlo,
        origin_ambiguous=np.zeros(n, dtype=bool),
        difficulty=rng.uniform(0, 1, n),
        expected=np.full(n, 10.0),
        observed=np.full(n, 12.0),
    )
    quality = CellQuality(
        library_size=np.where(high, 2000.0, 1000.0) + rng.normal(0, 50, n),
        n_features=np.where(high, 300.0, 200.0) + rng.normal(0, 10, n),
        cxds_score=np.where(high, 5.0, 1.0) + rng.normal(0, 0.5, n),
    )
    identity = CellIdentity(
        names=np.array([f"cell_{i}" for i in range(n_real)] + [f"artDbl{i + 1}" for i in range(n_artificial)], dtype=object),
        src=np.array([REAL] * n_real + [ARTIFICIAL] * n_artificial, dtype=object),
        type=cell_type,
        cluster=np.array([str(i % 3 + 1) for i in range(n_real)] + [None] * n_artificial, dtype=object),
        origin=origins,
    )
    return ScoreTable(identity=identity, neighborhood=neighborhood, quality=quality)
