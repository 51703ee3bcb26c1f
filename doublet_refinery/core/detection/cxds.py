"""Co-expression based doublet score (cxds).

Genes that are rarely expressed together in singlets become suspicious when
a cell expresses both. For every gene pair the number of cells expressing
exactly one of the two is compared to its binomial expectation; a cell's
score sums the resulting ``-log p`` over all pairs it co-expresses.
"""

from typing import Optional, Sequence

import numpy as np
from scipy import sparse
from scipy.stats import binom


def cxds_score(
    counts,
    doublet_rows: Optional[Sequence[int]] = None,
    ntop: int = 500,
) -> np.ndarray:
    """Compute the co-expression doublet score of every cell.

    Parameters
    ----------
    counts : array or sparse matrix
        Cells x genes counts
    doublet_rows : Sequence[int], optional
        Rows known or constructed to be doublets; they are scored but do not
        contribute to the pair statistics
    ntop : int
        Number of genes with the highest binomial variance used

    Returns
    -------
    np.ndarray
        Score per cell (non-negative)
    """
    binary = sparse.csr_matrix(counts) > 0
    binary = sparse.csr_matrix(binary, dtype=np.float64)
    n_cells = binary.shape[0]

    reference = np.ones(n_cells, dtype=bool)
    if doublet_rows is not None and len(doublet_rows) > 0:
        reference[np.asarray(doublet_rows, dtype=int)] = False
    ref = binary[reference]
    n_ref = ref.shape[0]
    if n_ref == 0:
        return np.zeros(n_cells)

    ps = np.asarray(ref.mean(axis=0)).ravel()
    informative = np.flatnonzero((ps > 0) & (ps < 1))
    if len(informative) < 2:
        return np.zeros(n_cells)
    variance = ps[informative] * (1 - ps[informative])
    top = informative[np.argsort(-variance, kind="stable")[:ntop]]
    top.sort()

    ref_top = ref[:, top].toarray()
    p = ps[top]
    # P(exactly one of the two genes expressed) under independence
    prb = np.outer(p, 1 - p)
    prb = prb + prb.T
    both = ref_top.T @ ref_top
    expressed = ref_top.sum(axis=0)
    exclusive = expressed[:, None] + expressed[None, :] - 2 * both

    pair_score = -binom.logsf(exclusive - 1, n_ref, prb)
    pair_score[~np.isfinite(pair_score)] = 0.0
    np.fill_diagonal(pair_score, 0.0)

    all_top = binary[:, top]
    weighted = np.asarray(all_top @ pair_score)
    return 0.5 * np.asarray(all_top.multiply(weighted).sum(axis=1)).ravel()
