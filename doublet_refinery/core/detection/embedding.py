"""Joint low-dimensional embedding of real and artificial cells."""

from dataclasses import dataclass
from typing import Optional, Sequence
import logging
import warnings

import numpy as np
from scipy import sparse

from .config import EmbeddingConfig


@dataclass(frozen=True, eq=False)
class JointEmbedding:
    """Read-only coordinates of all cells of one detection run.

    Attributes
    ----------
    coords : np.ndarray
        Cells x dims coordinates (not writeable)
    names : np.ndarray
        Cell names (rows)
    normalized : bool
        Whether library-size normalization was applied before reduction
    method : str
        Reduction routine that produced the coordinates
    """

    coords: np.ndarray
    names: np.ndarray
    normalized: bool = True
    method: str = "scanpy"

    def __post_init__(self):
        coords = np.array(self.coords, dtype=np.float64, copy=True)
        coords.setflags(write=False)
        object.__setattr__(self, "coords", coords)

    @property
    def dims(self) -> int:
        return self.coords.shape[1]

    def scaled(self, factor: float) -> "JointEmbedding":
        """Return a copy with coordinates multiplied by ``factor``."""
        return JointEmbedding(
            coords=self.coords * factor,
            names=self.names,
            normalized=self.normalized,
            method=self.method,
        )


class EmbeddingReducer:
    """Normalizes a joint count matrix and reduces it with PCA.

    Normalization failures and oversized matrices fall back to raw counts;
    a failing scanpy PCA falls back to scikit-learn's full SVD PCA.

    Parameters
    ----------
    config : EmbeddingConfig, optional
        Embedding configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or EmbeddingConfig()
        self.logger = logger or logging.getLogger(__name__)

    def normalize(self, adata) -> bool:
        """Library-size normalize and log-transform in place.

        Returns
        -------
        bool
            True if normalization was applied
        """
        import scanpy as sc

        if adata.n_obs > self.config.max_cells_normalization:
            self.logger.warning(
                "Skipping normalization of %d cells (> %d)",
                adata.n_obs,
                self.config.max_cells_normalization,
            )
            return False
        try:
            sc.pp.normalize_total(adata)
            sc.pp.log1p(adata)
        except Exception as e:
            msg = f"Error in calculating normalization factors: {e}"
            warnings.warn(msg, RuntimeWarning)
            self.logger.warning(msg)
            return False
        return True

    def reduce(
        self,
        counts,
        names: Sequence[str],
        dims: Optional[int] = None,
        random_seed: int = 0,
    ) -> JointEmbedding:
        """Compute the joint embedding.

        Parameters
        ----------
        counts : array or sparse matrix
            Cells x genes counts of real and artificial cells
        names : Sequence[str]
            Cell names
        dims : int, optional
            Number of components. Uses config default if None.
        random_seed : int
            Random seed for the solver

        Returns
        -------
        JointEmbedding
            Read-only coordinates
        """
        import anndata as ad
        import scanpy as sc

        dims = dims if dims is not None else self.config.dims
        adata = ad.AnnData(X=sparse.csr_matrix(counts, dtype=np.float32))
        normalized = self.normalize(adata)

        n_comps = int(min(dims, max(adata.n_vars - 1, 1), max(adata.n_obs - 1, 1)))
        self.logger.info(
            "Dimensional reduction of %d cells x %d genes to %d components",
            adata.n_obs,
            adata.n_vars,
            n_comps,
        )
        try:
            sc.tl.pca(adata, n_comps=n_comps, svd_solver="arpack", random_state=random_seed)
            coords = adata.obsm["X_pca"]
            method = "scanpy"
        except Exception as e:
            msg = f"PCA failed ({e}); falling back to full SVD"
            warnings.warn(msg, RuntimeWarning)
            self.logger.warning(msg)
            coords = self._fallback_pca(adata.X, n_comps, random_seed)
            method = "sklearn"

        return JointEmbedding(
            coords=np.asarray(coords),
            names=np.asarray(names, dtype=object),
            normalized=normalized,
            method=method,
        )

    @staticmethod
    def _fallback_pca(matrix, n_comps: int, random_seed: int) -> np.ndarray:
        """Dense scikit-learn PCA."""
        from sklearn.decomposition import PCA

        dense = matrix.toarray() if sparse.issparse(matrix) else np.asarray(matrix)
        pca = PCA(n_components=n_comps, svd_solver="full", random_state=random_seed)
        return pca.fit_transform(dense.astype(np.float64))
