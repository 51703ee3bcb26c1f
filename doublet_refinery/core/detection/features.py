"""Gene selection for doublet detection.

Combines a share of per-cluster marker genes with the most dispersed genes
(scanpy seurat-flavor log dispersions, not binned by mean, so that
cluster markers lead) of the log-normalized matrix.
"""

from typing import List, Optional, Sequence
import logging

import numpy as np
from scipy import sparse

from ...utils.normalization import dispersion_ranking, log_normalized_anndata
from .config import FeatureConfig


class FeatureSelector:
    """Selects a reduced gene set from a count matrix.

    Parameters
    ----------
    config : FeatureConfig, optional
        Feature configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.
    """

    def __init__(
        self,
        config: Optional[FeatureConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or FeatureConfig()
        self.logger = logger or logging.getLogger(__name__)

    def marker_genes(
        self,
        norm: sparse.csr_matrix,
        gene_names: np.ndarray,
        clusters: np.ndarray,
        n_markers: int,
    ) -> List[str]:
        """Top marker genes per cluster, interleaved across clusters.

        Uses a t-test (scanpy ``rank_genes_groups``) on log-normalized data.
        """
        import anndata as ad
        import pandas as pd
        import scanpy as sc

        levels, sizes = np.unique(clusters, return_counts=True)
        keep = np.isin(clusters, levels[sizes >= 2])
        if len(np.unique(clusters[keep])) < 2 or n_markers <= 0:
            return []

        adata = ad.AnnData(
            X=sparse.csr_matrix(norm[keep], dtype=np.float32),
            obs=pd.DataFrame({"cluster": pd.Categorical(clusters[keep])}),
        )
        adata.var_names = [str(g) for g in gene_names]
        adata.uns["log1p"] = {"base": None}
        sc.tl.rank_genes_groups(adata, groupby="cluster", method="t-test", n_genes=n_markers)

        names = adata.uns["rank_genes_groups"]["names"]
        groups = list(names.dtype.names)
        selected: List[str] = []
        seen = set()
        for rank in range(len(names)):
            for group in groups:
                gene = str(names[rank][group])
                if gene not in seen:
                    seen.add(gene)
                    selected.append(gene)
                if len(selected) >= n_markers:
                    return selected
        return selected

    def select(
        self,
        counts,
        gene_names: Sequence[str],
        clusters: Optional[Sequence[str]] = None,
        nfeatures: Optional[int] = None,
        prop_markers: Optional[float] = None,
    ) -> List[str]:
        """Select at most ``nfeatures`` genes.

        Parameters
        ----------
        counts : array or sparse matrix
            Cells x genes raw counts
        gene_names : Sequence[str]
            Gene names (columns of ``counts``)
        clusters : Sequence[str], optional
            Cluster label per cell, needed for marker selection
        nfeatures : int, optional
            Maximum number of genes. Uses config default if None.
        prop_markers : float, optional
            Fraction of genes taken from markers. Uses config default if None.

        Returns
        -------
        List[str]
            Selected gene names, in their original order
        """
        cfg = self.config
        nfeatures = nfeatures if nfeatures is not None else cfg.nfeatures
        prop_markers = prop_markers if prop_markers is not None else cfg.prop_markers
        gene_names = np.asarray([str(g) for g in gene_names], dtype=object)

        if len(gene_names) <= nfeatures:
            return list(gene_names)

        adata = log_normalized_anndata(counts, gene_names)

        chosen: List[str] = []
        n_markers = int(round(prop_markers * nfeatures))
        if clusters is not None and n_markers > 0:
            chosen = self.marker_genes(
                adata.X, gene_names, np.asarray(clusters).astype(str), n_markers
            )
            self.logger.info("Selected %d marker genes", len(chosen))

        chosen_set = set(chosen)
        for idx in dispersion_ranking(adata, nfeatures, binned=False):
            if len(chosen) >= nfeatures:
                break
            gene = gene_names[idx]
            if gene not in chosen_set:
                chosen.append(gene)
                chosen_set.add(gene)

        position = {g: i for i, g in enumerate(gene_names)}
        chosen.sort(key=position.__getitem__)
        self.logger.info(
            "Selected %d of %d genes (nfeatures=%d, prop_markers=%.2f)",
            len(chosen),
            len(gene_names),
            nfeatures,
            prop_markers,
        )
        return chosen
