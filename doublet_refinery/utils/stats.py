"""Statistical utilities for doublet-refinery.

Provides rank transforms, quantile masks and count-matrix summaries shared
by the partition pipeline and classifier training.
"""

from typing import Iterable, Union

import numpy as np
from scipy import sparse
from scipy.stats import rankdata

ArrayLike = Union[Iterable[float], np.ndarray]
MatrixLike = Union[np.ndarray, sparse.spmatrix]


def ecdf_rank(values: ArrayLike) -> np.ndarray:
    """Evaluate the empirical CDF of ``values`` at each value.

    Ties share the highest rank, so the largest value maps to 1.

    Parameters
    ----------
    values : ArrayLike
        Input values.

    Returns
    -------
    np.ndarray
        Fraction of values lower than or equal to each value.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return arr
    return rankdata(arr, method="max") / arr.size


def top_fraction_mask(values: ArrayLike, fraction: float) -> np.ndarray:
    """Flag values at or above the ``1 - fraction`` quantile.

    Parameters
    ----------
    values : ArrayLike
        Input values.
    fraction : float
        Expected fraction of flagged values (0-1).

    Returns
    -------
    np.ndarray
        Boolean mask. All False when ``fraction`` is 0 or input is empty.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size == 0 or fraction <= 0:
        return np.zeros(arr.shape, dtype=bool)
    cutoff = np.quantile(arr, 1.0 - min(fraction, 1.0))
    return arr >= cutoff


def library_sizes(counts: MatrixLike) -> np.ndarray:
    """Total counts per cell (rows)."""
    return np.asarray(counts.sum(axis=1)).ravel().astype(float)


def detected_features(counts: MatrixLike) -> np.ndarray:
    """Number of non-zero genes per cell (rows)."""
    if sparse.issparse(counts):
        return np.asarray((counts > 0).sum(axis=1)).ravel().astype(float)
    return np.count_nonzero(np.asarray(counts), axis=1).astype(float)
