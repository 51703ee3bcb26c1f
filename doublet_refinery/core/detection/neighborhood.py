"""Neighborhood features of real and artificial cells.

A KNN index is built over the joint embedding; each cell is described by
the doublet density of its neighborhood (plain and distance-weighted), its
distances to the closest cells of either class, and the most frequent
origin among its artificial neighbors.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import logging
import math

import numpy as np
import pandas as pd

from .config import NeighborConfig
from .embedding import JointEmbedding
from .errors import InvalidArgumentError


def default_k(n_cells: int) -> List[int]:
    """Reasonable set of neighbor counts for ``n_cells`` real cells."""
    k = [3, 10, 20]
    kmax = max(int(math.ceil(math.sqrt(n_cells / 6))), 20)
    if kmax >= 30:
        k.append(kmax)
    return k


@dataclass
class KNNResult:
    """Nearest neighbors of every cell, excluding itself.

    Attributes
    ----------
    indices : np.ndarray
        Cells x Kmax neighbor rows, ordered by (distance, index)
    distances : np.ndarray
        Matching distances
    k_values : List[int]
        Requested neighbor counts after clipping, ascending
    """

    indices: np.ndarray
    distances: np.ndarray
    k_values: List[int]

    @property
    def kmax(self) -> int:
        return self.indices.shape[1]


@dataclass
class NeighborhoodFeatures:
    """Per-cell neighborhood features (one entry per embedding row).

    Attributes
    ----------
    weighted : np.ndarray
        Distance- and rank-weighted fraction of doublet neighbors
    distance_to_nearest : np.ndarray
        Distance to the first neighbor (zeros replaced)
    distance_to_nearest_doublet : np.ndarray
        Distance to the closest doublet neighbor
    distance_to_nearest_real : np.ndarray
        Distance to the closest real neighbor
    nearest_class : np.ndarray
        1 if the first neighbor is a doublet, else 0
    ratio : np.ndarray
        Fraction of doublet neighbors at the largest k
    ratios_by_k : Dict[int, np.ndarray]
        Fraction of doublet neighbors at every smaller requested k
    most_likely_origin : np.ndarray
        Most frequent origin among artificial neighbors (None if none)
    origin_ambiguous : np.ndarray
        Whether the runner-up origin is within the ambiguity margin
    difficulty : np.ndarray
        1 - mean weighted score of doublets sharing the same origin
    expected : np.ndarray
        Expected doublets for the cell's origin
    observed : np.ndarray
        Real cells assigned to the cell's origin
    """

    weighted: np.ndarray
    distance_to_nearest: np.ndarray
    distance_to_nearest_doublet: np.ndarray
    distance_to_nearest_real: np.ndarray
    nearest_class: np.ndarray
    ratio: np.ndarray
    ratios_by_k: Dict[int, np.ndarray] = field(default_factory=dict)
    most_likely_origin: Optional[np.ndarray] = None
    origin_ambiguous: Optional[np.ndarray] = None
    difficulty: Optional[np.ndarray] = None
    expected: Optional[np.ndarray] = None
    observed: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return len(self.ratio)


class NeighborhoodEvaluator:
    """Derives doublet-density features from a joint embedding.

    Parameters
    ----------
    config : NeighborConfig, optional
        Neighborhood configuration. If None, uses defaults.
    n_jobs : int
        Threads for KNN index construction and queries
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.
    """

    def __init__(
        self,
        config: Optional[NeighborConfig] = None,
        n_jobs: int = 1,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or NeighborConfig()
        self.n_jobs = n_jobs
        self.logger = logger or logging.getLogger(__name__)

    def find_knn(self, coords: np.ndarray, k: Sequence[int]) -> KNNResult:
        """Find the ``max(k)`` nearest neighbors of every row.

        ``k`` is clipped to the number of other cells. Rows are re-sorted by
        (distance, neighbor index) so ties do not depend on the index backend.
        """
        from sklearn.neighbors import NearestNeighbors

        n_cells = coords.shape[0]
        if n_cells < 2:
            raise InvalidArgumentError("At least two cells are needed for neighbor search")
        k_values = sorted({int(min(max(ki, 1), n_cells - 1)) for ki in k})
        kmax = k_values[-1]

        self.logger.info("Finding %d nearest neighbors of %d cells...", kmax, n_cells)
        nn = NearestNeighbors(n_neighbors=kmax, metric="euclidean", n_jobs=self.n_jobs)
        nn.fit(coords)
        distances, indices = nn.kneighbors()

        order = np.lexsort((indices, distances), axis=-1)
        indices = np.take_along_axis(indices, order, axis=1)
        distances = np.take_along_axis(distances, order, axis=1)
        return KNNResult(indices=indices, distances=distances, k_values=k_values)

    @staticmethod
    def replace_zero_distances(distances: np.ndarray) -> np.ndarray:
        """Replace zeros with the smallest non-zero first-neighbor distance."""
        distances = np.array(distances, dtype=float, copy=True)
        zero = distances == 0
        if not zero.any():
            return distances
        first = distances[:, 0]
        positive = first[first > 0]
        if positive.size == 0:
            positive = distances[distances > 0]
        fill = float(positive.min()) if positive.size else 1.0
        distances[zero] = fill
        return distances

    def most_likely_origins(
        self,
        neighbor_origins: np.ndarray,
    ) -> tuple:
        """Most frequent origin per row and whether it is ambiguous.

        Parameters
        ----------
        neighbor_origins : np.ndarray
            Cells x K integer origin codes (-1 for neighbors without origin)

        Returns
        -------
        tuple
            (origin code per cell, -1 if none; ambiguity flags)
        """
        margin = self.config.origin_ambiguity_margin
        n_cells = neighbor_origins.shape[0]
        best = np.full(n_cells, -1, dtype=int)
        ambiguous = np.zeros(n_cells, dtype=bool)
        for i in range(n_cells):
            row = neighbor_origins[i]
            row = row[row >= 0]
            if row.size == 0:
                continue
            codes, counts = np.unique(row, return_counts=True)
            top = int(np.argmax(counts))
            best[i] = codes[top]
            if len(counts) > 1:
                runner_up = np.partition(counts, -2)[-2]
                ambiguous[i] = runner_up >= counts[top] * (1.0 - margin)
        return best, ambiguous

    def evaluate(
        self,
        embedding: JointEmbedding,
        is_doublet: np.ndarray,
        origins: np.ndarray,
        is_real: np.ndarray,
        expected: Optional[pd.Series] = None,
        k: Optional[Sequence[int]] = None,
    ) -> NeighborhoodFeatures:
        """Compute neighborhood features for every embedded cell.

        Parameters
        ----------
        embedding : JointEmbedding
            Joint embedding of real and artificial cells
        is_doublet : np.ndarray
            True for artificial and known doublets
        origins : np.ndarray
            Origin label of artificial doublets (None for real cells)
        is_real : np.ndarray
            True for real cells (including known doublets)
        expected : pd.Series, optional
            Expected doublet counts by origin label
        k : Sequence[int], optional
            Neighbor counts. Uses config, then a size-based default.

        Returns
        -------
        NeighborhoodFeatures
            Features aligned with the embedding rows
        """
        is_doublet = np.asarray(is_doublet, dtype=bool)
        is_real = np.asarray(is_real, dtype=bool)
        n_cells = embedding.coords.shape[0]
        if len(is_doublet) != n_cells or len(origins) != n_cells:
            raise InvalidArgumentError("Cell annotations do not match the embedding rows")

        if k is None:
            k = self.config.k or default_k(int(is_real.sum()))
        knn = self.find_knn(embedding.coords, k)
        kmax = knn.kmax

        self.logger.info("Evaluating cell neighborhoods (k=%s)...", knn.k_values)
        nb_dbl = is_doublet[knn.indices]
        distances = self.replace_zero_distances(knn.distances)
        rows = np.arange(n_cells)

        max_first = float(distances[:, 0].max())
        has_dbl = nb_dbl.any(axis=1)
        has_real = (~nb_dbl).any(axis=1)
        d_dbl = np.where(has_dbl, distances[rows, np.argmax(nb_dbl, axis=1)], 2 * max_first)
        d_real = np.where(has_real, distances[rows, np.argmax(~nb_dbl, axis=1)], 2 * max_first)

        if kmax > 1:
            rank_weight = np.sqrt(kmax - np.arange(1, kmax + 1, dtype=float))
        else:
            rank_weight = np.ones(1)
        weights = rank_weight[None, :] / distances
        weights = weights / weights.sum(axis=1, keepdims=True)

        features = NeighborhoodFeatures(
            weighted=np.clip((nb_dbl * weights).sum(axis=1), 0.0, 1.0),
            distance_to_nearest=distances[:, 0].copy(),
            distance_to_nearest_doublet=d_dbl,
            distance_to_nearest_real=d_real,
            nearest_class=nb_dbl[:, 0].astype(int),
            ratio=nb_dbl.sum(axis=1) / kmax,
        )
        for ki in knn.k_values[:-1]:
            features.ratios_by_k[ki] = nb_dbl[:, :ki].sum(axis=1) / ki

        self._assign_origins(features, knn, is_doublet, origins, is_real, expected)
        return features

    def _assign_origins(
        self,
        features: NeighborhoodFeatures,
        knn: KNNResult,
        is_doublet: np.ndarray,
        origins: np.ndarray,
        is_real: np.ndarray,
        expected: Optional[pd.Series],
    ) -> None:
        """Fill origin, difficulty and expected/observed features."""
        n_cells = len(is_doublet)
        origin_values = pd.Series(origins, dtype=object)
        labels = np.array(sorted(origin_values.dropna().unique()), dtype=object)
        code_of = {label: i for i, label in enumerate(labels)}
        codes = np.array(
            [code_of.get(o, -1) if o is not None and o == o else -1 for o in origins],
            dtype=int,
        )

        best, ambiguous = self.most_likely_origins(codes[knn.indices])
        mlo = np.full(n_cells, None, dtype=object)
        has_origin = best >= 0
        mlo[has_origin] = labels[best[has_origin]]
        features.most_likely_origin = mlo
        features.origin_ambiguous = ambiguous

        # difficulty: how weakly doublets of an origin stand out
        frame = pd.DataFrame({"origin": mlo, "weighted": features.weighted})
        dbl_frame = frame[is_doublet & has_origin]
        class_weighted = dbl_frame.groupby("origin")["weighted"].mean()
        difficulty = 1.0 - frame["origin"].map(class_weighted)
        features.difficulty = difficulty.fillna(1.0).to_numpy(dtype=float)

        if expected is None:
            expected = pd.Series(dtype=float)
        features.expected = (
            frame["origin"].map(expected).fillna(0.0).to_numpy(dtype=float)
        )
        observed = frame.loc[is_real & has_origin, "origin"].value_counts()
        features.observed = frame["origin"].map(observed).fillna(0.0).to_numpy(dtype=float)
