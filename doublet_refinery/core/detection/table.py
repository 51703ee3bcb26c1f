"""Typed per-cell score table.

The table is a struct of arrays composed of fixed blocks: cell identity,
neighborhood features, quality features and (after classification) the
doublet calls. Blocks are joined by row position; ``to_frame`` renders the
whole table as a pandas DataFrame indexed by cell name.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .neighborhood import NeighborhoodFeatures

REAL = "real"
ARTIFICIAL = "artificial"
DOUBLET = "doublet"
SINGLET = "singlet"

# never used as classifier predictors
NON_PREDICTORS = {
    "type",
    "src",
    "cluster",
    "sample",
    "most_likely_origin",
    "origin_ambiguous",
    "distance_to_nearest",
    "distance_to_nearest_doublet",
    "nearest_class",
    "score",
    "score_global",
    "class",
    "include_in_training",
}


@dataclass
class CellIdentity:
    """Identity and provenance of every row.

    Attributes
    ----------
    names : np.ndarray
        Cell names
    src : np.ndarray
        ``real`` or ``artificial``
    type : np.ndarray
        ``real`` or ``doublet`` (artificial and known doublets)
    cluster : np.ndarray
        Cluster label of real cells (None for artificial doublets)
    origin : np.ndarray
        Origin label of artificial doublets (None for real cells)
    sample : np.ndarray, optional
        Sample / capture label
    """

    names: np.ndarray
    src: np.ndarray
    type: np.ndarray
    cluster: np.ndarray
    origin: np.ndarray
    sample: Optional[np.ndarray] = None


@dataclass
class CellQuality:
    """Library-level features of every row.

    Attributes
    ----------
    library_size : np.ndarray
        Total counts
    n_features : np.ndarray
        Number of detected genes
    cxds_score : np.ndarray, optional
        Co-expression doublet score
    total_prop_real : np.ndarray, optional
        Share of real cells in the row's partition
    pcs : np.ndarray, optional
        Selected principal components
    pc_indices : List[int]
        Component indices of ``pcs`` (0-based)
    """

    library_size: np.ndarray
    n_features: np.ndarray
    cxds_score: Optional[np.ndarray] = None
    total_prop_real: Optional[np.ndarray] = None
    pcs: Optional[np.ndarray] = None
    pc_indices: List[int] = field(default_factory=list)


@dataclass
class DoubletCalls:
    """Classification outcome of every row.

    Attributes
    ----------
    score : np.ndarray
        Final doublet score
    include_in_training : np.ndarray
        Whether the row was part of the last training pool
    score_global : np.ndarray, optional
        Score before local (per-origin) adjustment
    doublet_class : np.ndarray, optional
        ``doublet`` or ``singlet`` when thresholded
    threshold : float, optional
        Global threshold, None when thresholds are per sample
    sample_thresholds : Dict[str, float]
        Threshold per sample when thresholded per sample
    stats : Dict[str, pd.DataFrame]
        Threshold scan statistics (key ``global`` or sample names)
    """

    score: np.ndarray
    include_in_training: np.ndarray
    score_global: Optional[np.ndarray] = None
    doublet_class: Optional[np.ndarray] = None
    threshold: Optional[float] = None
    sample_thresholds: Dict[str, float] = field(default_factory=dict)
    stats: Dict[str, pd.DataFrame] = field(default_factory=dict)


@dataclass
class ScoreTable:
    """Per-cell table of real and artificial cells."""

    identity: CellIdentity
    neighborhood: NeighborhoodFeatures
    quality: CellQuality
    calls: Optional[DoubletCalls] = None

    def __len__(self) -> int:
        return len(self.identity.names)

    @property
    def is_real(self) -> np.ndarray:
        return self.identity.src == REAL

    @property
    def is_artificial(self) -> np.ndarray:
        return self.identity.src == ARTIFICIAL

    @property
    def is_doublet_type(self) -> np.ndarray:
        return self.identity.type == DOUBLET

    @property
    def is_known_doublet(self) -> np.ndarray:
        return self.is_real & self.is_doublet_type

    @property
    def real_singlet_candidates(self) -> np.ndarray:
        """Real cells not flagged as known doublets."""
        return self.identity.type == REAL

    def numeric_columns(self) -> Dict[str, np.ndarray]:
        """Numeric feature columns in a stable order."""
        nb = self.neighborhood
        q = self.quality
        cols: Dict[str, np.ndarray] = {
            "weighted": nb.weighted,
            "distance_to_nearest": nb.distance_to_nearest,
            "distance_to_nearest_doublet": nb.distance_to_nearest_doublet,
            "distance_to_nearest_real": nb.distance_to_nearest_real,
            "nearest_class": nb.nearest_class,
            "ratio": nb.ratio,
        }
        for ki in sorted(nb.ratios_by_k, reverse=True):
            cols[f"ratio_k{ki}"] = nb.ratios_by_k[ki]
        cols["difficulty"] = nb.difficulty
        cols["expected"] = nb.expected
        cols["observed"] = nb.observed
        cols["library_size"] = q.library_size
        cols["n_features"] = q.n_features
        if q.cxds_score is not None:
            cols["cxds_score"] = q.cxds_score
        if q.total_prop_real is not None:
            cols["total_prop_real"] = q.total_prop_real
        if q.pcs is not None:
            for j, pc in enumerate(q.pc_indices):
                cols[f"PC{pc + 1}"] = q.pcs[:, j]
        return cols

    def predictor_names(self) -> List[str]:
        """Columns eligible as classifier predictors."""
        return [c for c in self.numeric_columns() if c not in NON_PREDICTORS]

    def feature_matrix(self, names: Sequence[str]) -> np.ndarray:
        """Float matrix of the named numeric columns."""
        cols = self.numeric_columns()
        return np.column_stack([np.asarray(cols[n], dtype=float) for n in names])

    def to_frame(self) -> pd.DataFrame:
        """Render the table as a DataFrame indexed by cell name."""
        ident = self.identity
        nb = self.neighborhood
        data: Dict[str, object] = {
            "type": ident.type,
            "src": ident.src,
            "cluster": ident.cluster,
            "origin": ident.origin,
        }
        if ident.sample is not None:
            data["sample"] = ident.sample
        data.update(self.numeric_columns())
        data["most_likely_origin"] = nb.most_likely_origin
        data["origin_ambiguous"] = nb.origin_ambiguous
        if self.calls is not None:
            calls = self.calls
            data["score"] = calls.score
            if calls.score_global is not None:
                data["score_global"] = calls.score_global
            if calls.doublet_class is not None:
                data["class"] = calls.doublet_class
            data["include_in_training"] = calls.include_in_training
        frame = pd.DataFrame(data, index=pd.Index(ident.names, name="cell"))
        return frame

    def with_calls(self, calls: DoubletCalls) -> "ScoreTable":
        """Return a table sharing all feature blocks, with ``calls`` attached."""
        return replace(self, calls=calls)

    @classmethod
    def concat(cls, tables: Sequence["ScoreTable"], samples: Sequence[str]) -> "ScoreTable":
        """Stack per-sample tables.

        Only per-k ratios present in every table are kept; principal
        components are dropped (they are not comparable across samples) and
        the share of real cells of each partition is added.

        Parameters
        ----------
        tables : Sequence[ScoreTable]
            Per-sample tables without calls
        samples : Sequence[str]
            Sample name of each table

        Returns
        -------
        ScoreTable
            Combined table with a sample column
        """
        common_k = set.intersection(*[set(t.neighborhood.ratios_by_k) for t in tables])
        has_cxds = all(t.quality.cxds_score is not None for t in tables)

        def cat(getter):
            return np.concatenate([np.asarray(getter(t)) for t in tables])

        identity = CellIdentity(
            names=cat(lambda t: t.identity.names).astype(object),
            src=cat(lambda t: t.identity.src).astype(object),
            type=cat(lambda t: t.identity.type).astype(object),
            cluster=cat(lambda t: t.identity.cluster).astype(object),
            origin=cat(lambda t: t.identity.origin).astype(object),
            sample=np.concatenate(
                [np.full(len(t), str(s), dtype=object) for t, s in zip(tables, samples)]
            ),
        )
        neighborhood = NeighborhoodFeatures(
            weighted=cat(lambda t: t.neighborhood.weighted),
            distance_to_nearest=cat(lambda t: t.neighborhood.distance_to_nearest),
            distance_to_nearest_doublet=cat(lambda t: t.neighborhood.distance_to_nearest_doublet),
            distance_to_nearest_real=cat(lambda t: t.neighborhood.distance_to_nearest_real),
            nearest_class=cat(lambda t: t.neighborhood.nearest_class),
            ratio=cat(lambda t: t.neighborhood.ratio),
            ratios_by_k={
                ki: cat(lambda t, ki=ki: t.neighborhood.ratios_by_k[ki]) for ki in common_k
            },
            most_likely_origin=cat(lambda t: t.neighborhood.most_likely_origin).astype(object),
            origin_ambiguous=cat(lambda t: t.neighborhood.origin_ambiguous),
            difficulty=cat(lambda t: t.neighborhood.difficulty),
            expected=cat(lambda t: t.neighborhood.expected),
            observed=cat(lambda t: t.neighborhood.observed),
        )
        quality = CellQuality(
            library_size=cat(lambda t: t.quality.library_size),
            n_features=cat(lambda t: t.quality.n_features),
            cxds_score=cat(lambda t: t.quality.cxds_score) if has_cxds else None,
            total_prop_real=np.concatenate(
                [np.full(len(t), t.is_real.mean()) for t in tables]
            ),
        )
        return cls(identity=identity, neighborhood=neighborhood, quality=quality)
