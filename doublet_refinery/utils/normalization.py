"""Scanpy-based normalization shared by clustering and gene selection."""

from typing import Optional, Sequence

import numpy as np
from scipy import sparse


def log_normalized_anndata(counts, gene_names: Optional[Sequence[str]] = None):
    """Wrap raw counts in an AnnData, library-size normalized and log1p-transformed.

    Parameters
    ----------
    counts : array or sparse matrix
        Cells x genes raw counts
    gene_names : Sequence[str], optional
        Gene names (columns of ``counts``)

    Returns
    -------
    AnnData
        Log-normalized data in ``X``
    """
    import anndata as ad
    import scanpy as sc

    adata = ad.AnnData(X=sparse.csr_matrix(counts, dtype=np.float32))
    if gene_names is not None:
        adata.var_names = [str(g) for g in gene_names]
    sc.pp.normalize_total(adata)
    sc.pp.log1p(adata)
    return adata


def dispersion_ranking(adata, n_top_genes: int, binned: bool = True) -> np.ndarray:
    """Gene positions ordered by decreasing normalized dispersion.

    Uses scanpy's seurat-flavor highly variable gene statistics on
    log-normalized data. Genes without a dispersion (constant genes) are
    left out. With ``binned=False`` genes are ranked on their log dispersion
    over all expression levels instead of the per-mean-bin z-score.

    Parameters
    ----------
    adata : AnnData
        Log-normalized data (see ``log_normalized_anndata``)
    n_top_genes : int
        Number of genes flagged in ``adata.var['highly_variable']``
    binned : bool
        Rank on ``dispersions_norm`` (True) or ``dispersions`` (False)

    Returns
    -------
    np.ndarray
        Column positions, most dispersed first
    """
    import scanpy as sc

    n_top = max(1, min(int(n_top_genes), adata.n_vars))
    sc.pp.highly_variable_genes(adata, flavor="seurat", n_top_genes=n_top)
    dispersion = adata.var["dispersions_norm" if binned else "dispersions"].to_numpy(dtype=float)
    valid = np.flatnonzero(np.isfinite(dispersion))
    return valid[np.argsort(-dispersion[valid], kind="stable")]
