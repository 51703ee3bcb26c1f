"""Artificial doublet synthesis.

Artificial doublets are the elementwise sum of the raw counts of two real
cells. A fraction of them pairs uniformly random cells; the rest pairs cells
from different clusters so that every cluster pair is represented.

No library-size rescaling is applied: after library-size normalization the
expression of a summed profile already lies between the two parents.
"""

from dataclasses import dataclass
from itertools import combinations
from typing import Optional, Sequence
import logging
import math

import numpy as np
from scipy import sparse

from .config import GenerationConfig
from .errors import InsufficientClustersError, InvalidArgumentError
from .rates import origin_label

RANDOM_ORIGIN = "random"
ARTIFICIAL_PREFIX = "artDbl"


def artificial_prefix(sample: Optional[str] = None) -> str:
    """Name prefix of the artificial doublets of a partition."""
    return ARTIFICIAL_PREFIX if sample is None else f"{sample}.{ARTIFICIAL_PREFIX}"


@dataclass(frozen=True)
class ArtificialDoublets:
    """Synthetic doublet profiles of one detection run.

    Attributes
    ----------
    counts : sparse.csr_matrix
        Doublets x genes summed raw counts
    origins : np.ndarray
        Origin label per doublet (``"a+b"`` or ``"random"``)
    parents : np.ndarray
        Row positions (n x 2) of the two parent real cells
    prefix : str
        Name prefix (``artDbl``, or ``<sample>.artDbl`` within a sample)
    """

    counts: sparse.csr_matrix
    origins: np.ndarray
    parents: np.ndarray
    prefix: str = ARTIFICIAL_PREFIX

    def __len__(self) -> int:
        return self.counts.shape[0]

    @property
    def names(self) -> np.ndarray:
        return np.asarray([f"{self.prefix}{i + 1}" for i in range(len(self))], dtype=object)


def resolve_n_artificial(
    requested: Optional[float],
    n_cells: int,
    n_clusters: int,
    config: Optional[GenerationConfig] = None,
) -> int:
    """Turn the requested amount of artificial doublets into a count.

    Parameters
    ----------
    requested : float, optional
        Absolute count, a multiplier of ``n_cells`` when below 2, or None
        for the default ``max(min(cap, max(floor, 0.6 * n_cells)), 10 * C^2)``
    n_cells : int
        Number of real cells
    n_clusters : int
        Number of clusters (C)
    config : GenerationConfig, optional
        Supplies the cap and floor

    Returns
    -------
    int
        Number of artificial doublets to create
    """
    cfg = config or GenerationConfig()
    if requested is None:
        base = min(cfg.max_doublets, max(cfg.min_doublets, math.ceil(0.6 * n_cells)))
        return int(max(base, 10 * n_clusters ** 2))
    if requested < 2:
        return int(min(math.ceil(requested * n_cells), cfg.max_doublets))
    return int(round(requested))


def _allocate(total: int, weights: np.ndarray, floor: int) -> np.ndarray:
    """Split ``total`` over bins, at least ``floor`` each when possible.

    Uses largest-remainder rounding so the allocation sums to ``total``.
    """
    n_bins = len(weights)
    floor = min(floor, total // n_bins) if n_bins else 0
    base = np.full(n_bins, floor, dtype=int)
    rest = total - base.sum()
    if rest <= 0:
        return base
    share = weights / weights.sum() * rest
    alloc = np.floor(share).astype(int)
    remainder = rest - alloc.sum()
    if remainder > 0:
        order = np.argsort(-(share - alloc), kind="stable")
        alloc[order[:remainder]] += 1
    return base + alloc


class ArtificialDoubletGenerator:
    """Generates artificial doublets from clustered real cells.

    Parameters
    ----------
    config : GenerationConfig, optional
        Generation configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> generator = ArtificialDoubletGenerator()
    >>> doublets = generator.generate(counts, clusters, n=5000, rng=np.random.default_rng(0))
    >>> doublets.counts.shape[0]
    5000
    """

    def __init__(
        self,
        config: Optional[GenerationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or GenerationConfig()
        self.logger = logger or logging.getLogger(__name__)

    def pair_weights(self, sizes: np.ndarray, pairs: Sequence[tuple]) -> np.ndarray:
        """Relative weight of every cluster pair."""
        mode = self.config.pair_weighting
        if mode == "uniform":
            return np.ones(len(pairs), dtype=float)
        prod = np.array([sizes[i] * sizes[j] for i, j in pairs], dtype=float)
        if mode == "sqrt":
            return np.sqrt(prod)
        if mode == "proportional":
            return prod
        raise InvalidArgumentError(f"Unknown pair weighting '{mode}'")

    def sample_pairs(
        self,
        clusters: np.ndarray,
        n: int,
        rng: np.random.Generator,
    ) -> tuple:
        """Draw parent pairs and their origin labels.

        Parameters
        ----------
        clusters : np.ndarray
            Cluster label per real cell
        n : int
            Number of pairs
        rng : np.random.Generator
            Random generator

        Returns
        -------
        tuple
            (parents array of shape (n, 2), origins array of length n)

        Raises
        ------
        InsufficientClustersError
            If fewer than two clusters are present
        """
        clusters = np.asarray(clusters).astype(str)
        levels = np.unique(clusters)
        if len(levels) < 2:
            raise InsufficientClustersError(len(levels))

        n_cells = len(clusters)
        n_random = int(math.ceil(n * self.config.prop_random))
        n_random = min(n_random, n)
        n_guided = n - n_random

        parents = []
        origins = []

        if n_random > 0:
            parents.append(rng.integers(0, n_cells, size=(n_random, 2)))
            origins.append(np.full(n_random, RANDOM_ORIGIN, dtype=object))

        if n_guided > 0:
            members = [np.flatnonzero(clusters == lvl) for lvl in levels]
            sizes = np.array([len(m) for m in members])
            pairs = list(combinations(range(len(levels)), 2))
            alloc = _allocate(
                n_guided, self.pair_weights(sizes, pairs), self.config.min_per_pair
            )
            for (i, j), n_pair in zip(pairs, alloc):
                if n_pair == 0:
                    continue
                left = rng.choice(members[i], size=n_pair, replace=True)
                right = rng.choice(members[j], size=n_pair, replace=True)
                parents.append(np.column_stack([left, right]))
                origins.append(
                    np.full(n_pair, origin_label(levels[i], levels[j]), dtype=object)
                )

        return np.vstack(parents).astype(int), np.concatenate(origins)

    def generate(
        self,
        counts,
        clusters: Sequence[str],
        n: int,
        rng: Optional[np.random.Generator] = None,
        prefix: str = ARTIFICIAL_PREFIX,
    ) -> ArtificialDoublets:
        """Create about ``n`` artificial doublets.

        Parameters
        ----------
        counts : array or sparse matrix
            Cells x genes raw counts of real (non-doublet) cells
        clusters : Sequence[str]
            Cluster label per real cell
        n : int
            Number of artificial doublets
        rng : np.random.Generator, optional
            Random generator. Defaults to a fresh unseeded generator.
        prefix : str
            Name prefix of the doublets

        Returns
        -------
        ArtificialDoublets
            Summed profiles with their origins
        """
        rng = rng if rng is not None else np.random.default_rng()
        clusters = np.asarray(clusters)
        if counts.shape[0] != len(clusters):
            raise InvalidArgumentError(
                f"Got {len(clusters)} cluster labels for {counts.shape[0]} cells"
            )
        if n < 1:
            raise InvalidArgumentError("Number of artificial doublets must be positive")

        self.logger.info("Creating ~%d artificial doublets...", n)
        parents, origins = self.sample_pairs(clusters, int(n), rng)

        csr = sparse.csr_matrix(counts)
        summed = csr[parents[:, 0]] + csr[parents[:, 1]]
        summed = sparse.csr_matrix(summed)
        summed.sort_indices()

        n_random = int((origins == RANDOM_ORIGIN).sum())
        self.logger.info(
            "Created %d artificial doublets (%d random, %d inter-cluster over %d origins)",
            len(origins),
            n_random,
            len(origins) - n_random,
            len(np.unique(origins[origins != RANDOM_ORIGIN])),
        )
        return ArtificialDoublets(
            counts=summed, origins=origins, parents=parents, prefix=prefix
        )
