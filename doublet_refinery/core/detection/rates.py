"""Expected doublet rates.

The doublet rate is either supplied explicitly or derived from the number
of captured cells (1% per thousand cells by default, appropriate for
droplet-based captures). ``RateModel`` makes that derivation explicit
instead of reading cell counts from ambient state.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

ORIGIN_SEP = "+"


def origin_label(a: str, b: str) -> str:
    """Unordered cluster-pair label, e.g. ``origin_label('3', '1') == '1+3'``."""
    a, b = sorted((str(a), str(b)))
    return f"{a}{ORIGIN_SEP}{b}"


@dataclass(frozen=True)
class RateModel:
    """Expected doublet rate, explicit or derived from capture size.

    Attributes
    ----------
    dbr : float, optional
        User-supplied doublet rate. When None, ``rate_for`` derives it.
    per_thousand : float
        Doublet rate per thousand cells used for the derivation
    include_homotypic : bool
        Include same-cluster pairs (at half weight) in expected counts
    """

    dbr: Optional[float] = None
    per_thousand: float = 0.01
    include_homotypic: bool = True

    @property
    def is_explicit(self) -> bool:
        return self.dbr is not None

    def rate_for(self, n_cells: int) -> float:
        """Doublet rate for a capture of ``n_cells`` cells."""
        if self.dbr is not None:
            return float(self.dbr)
        return self.per_thousand * float(n_cells) / 1000.0

    def global_rate(self, sample_sizes: Sequence[int]) -> float:
        """Size-weighted mean rate over independent captures."""
        if self.dbr is not None:
            return float(self.dbr)
        sizes = np.asarray(list(sample_sizes), dtype=float)
        if sizes.size == 0 or sizes.sum() == 0:
            return 0.0
        rates = self.per_thousand * sizes / 1000.0
        return float((rates * sizes).sum() / sizes.sum())

    def expected_doublets(self, clusters: Sequence[str]) -> pd.Series:
        """Expected number of doublets per unordered cluster pair.

        Pairs are weighted by the product of cluster sizes; homotypic pairs
        count half. Weights are normalized so that the total equals
        ``rate * n_cells``.

        Parameters
        ----------
        clusters : Sequence[str]
            Cluster label of every real cell

        Returns
        -------
        pd.Series
            Expected doublet counts indexed by origin label
        """
        labels = pd.Series(np.asarray(clusters).astype(str))
        n_cells = len(labels)
        if n_cells == 0:
            return pd.Series(dtype=float)
        sizes = labels.value_counts().sort_index()
        return expected_from_sizes(
            sizes.to_dict(), self.rate_for(n_cells), self.include_homotypic
        )


def expected_from_sizes(
    sizes: Mapping[str, int],
    rate: float,
    include_homotypic: bool = True,
) -> pd.Series:
    """Distribute ``rate * total`` expected doublets over cluster pairs.

    Parameters
    ----------
    sizes : Mapping[str, int]
        Cluster sizes
    rate : float
        Global doublet rate
    include_homotypic : bool
        Include same-cluster pairs at half weight

    Returns
    -------
    pd.Series
        Expected doublet counts indexed by origin label
    """
    names = sorted(str(k) for k in sizes)
    values = np.array([float(sizes[k]) for k in sorted(sizes, key=str)])
    total = values.sum()
    labels = []
    weights = []
    for i in range(len(names)):
        start = i if include_homotypic else i + 1
        for j in range(start, len(names)):
            w = values[i] * values[j]
            if i == j:
                w *= 0.5
            labels.append(origin_label(names[i], names[j]))
            weights.append(w)
    weights = np.asarray(weights, dtype=float)
    if weights.size == 0 or weights.sum() == 0:
        return pd.Series(np.zeros(len(labels)), index=labels, dtype=float)
    expected = rate * total * weights / weights.sum()
    return pd.Series(expected, index=labels, dtype=float)
