"""Score thresholding.

Candidate cutoffs are scanned and scored by a cost combining the share of
artificial doublets missed (FNR), the share of real cells among the called
cells (FDR) and the squared deviation of the called real-cell proportion from
the expected doublet-rate band. Deviations inside the band cost nothing.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple
import logging

import numpy as np
import pandas as pd

from .config import ThresholdConfig
from .errors import InvalidArgumentError

COST_TOLERANCE = 1e-12


class ThresholdState(Enum):
    """Lifecycle of a ThresholdSelector."""

    UNTHRESHOLDED = "unthresholded"
    SCANNING = "scanning"
    THRESHOLDED = "thresholded"


@dataclass
class ThresholdResult:
    """Chosen threshold and scan summary.

    Attributes
    ----------
    threshold : float
        Score cutoff; scores at or above it are doublets
    stats : pd.DataFrame
        One row per candidate (threshold, fnr, fdr, rate, deviation, cost)
    expected_rate : float
        Expected doublet rate used
    called_rate : float
        Proportion of real cells at or above the threshold
    group_thresholds : Dict[str, float]
        Per-origin thresholds (local optimization only)
    """

    threshold: float
    stats: pd.DataFrame
    expected_rate: float
    called_rate: float
    group_thresholds: Dict[str, float] = field(default_factory=dict)


def rate_deviation(rate: np.ndarray, dbr: float, dbr_sd: float) -> np.ndarray:
    """Distance of ``rate`` to the band ``[dbr - dbr_sd, dbr + dbr_sd]``.

    Zero inside the band, relative to ``dbr + dbr_sd`` outside it.
    """
    low = max(dbr - dbr_sd, 0.0)
    high = dbr + dbr_sd
    below = np.clip(low - rate, 0.0, None)
    above = np.clip(rate - high, 0.0, None)
    scale = high if high > 0 else 1.0
    return (below + above) / scale


class ThresholdSelector:
    """Locates a doublet score cutoff consistent with the expected rate.

    Parameters
    ----------
    config : ThresholdConfig, optional
        Threshold configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> selector = ThresholdSelector()
    >>> result = selector.select(scores, is_real, is_artificial, dbr=0.08)
    >>> selector.state
    <ThresholdState.THRESHOLDED: 'thresholded'>
    """

    def __init__(
        self,
        config: Optional[ThresholdConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ThresholdConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.state = ThresholdState.UNTHRESHOLDED
        self.result: Optional[ThresholdResult] = None

    def candidates(
        self,
        scores: np.ndarray,
        bounds: Optional[Tuple[float, float]] = None,
    ) -> np.ndarray:
        """Evenly spaced candidate cutoffs over the score range."""
        finite = scores[np.isfinite(scores)]
        if finite.size == 0:
            return np.array([0.0])
        low, high = float(finite.min()), float(finite.max())
        if bounds is not None:
            low, high = max(low, bounds[0]), min(high, bounds[1])
        if high <= low:
            return np.array([low])
        return np.linspace(low, high, self.config.n_candidates)

    @staticmethod
    def scan(
        candidates: np.ndarray,
        real_scores: np.ndarray,
        artificial_scores: np.ndarray,
        dbr: Optional[float],
        dbr_sd: float,
    ) -> pd.DataFrame:
        """Evaluate the cost of every candidate cutoff.

        Parameters
        ----------
        candidates : np.ndarray
            Increasing cutoffs
        real_scores : np.ndarray
            Scores of real (non-known-doublet) cells
        artificial_scores : np.ndarray
            Scores of artificial doublets
        dbr : float, optional
            Expected doublet rate; None drops the rate term
        dbr_sd : float
            Tolerance around ``dbr``

        Returns
        -------
        pd.DataFrame
            Per-candidate statistics
        """
        real_sorted = np.sort(real_scores)
        art_sorted = np.sort(artificial_scores)
        n_real = len(real_sorted)
        n_art = len(art_sorted)

        real_above = n_real - np.searchsorted(real_sorted, candidates, side="left")
        art_below = np.searchsorted(art_sorted, candidates, side="left")
        art_above = n_art - art_below

        fnr = art_below / n_art if n_art else np.zeros(len(candidates))
        called = real_above + art_above
        fdr = np.divide(
            real_above, called, out=np.zeros(len(candidates)), where=called > 0
        )
        rate = real_above / n_real if n_real else np.zeros(len(candidates))
        if dbr is None:
            deviation = np.zeros(len(candidates))
        else:
            deviation = rate_deviation(rate, dbr, dbr_sd)

        return pd.DataFrame({
            "threshold": candidates,
            "fnr": fnr,
            "fdr": fdr,
            "rate": rate,
            "deviation": deviation,
            "cost": fnr + fdr + deviation ** 2,
        })

    @staticmethod
    def pick(stats: pd.DataFrame) -> float:
        """Center of the first block of minimal-cost candidates."""
        cost = stats["cost"].to_numpy()
        is_min = cost <= cost.min() + COST_TOLERANCE
        start = int(np.argmax(is_min))
        stop = start
        while stop + 1 < len(cost) and is_min[stop + 1]:
            stop += 1
        return float(stats["threshold"].iloc[(start + stop) // 2])

    def select(
        self,
        scores: np.ndarray,
        is_real: np.ndarray,
        is_artificial: np.ndarray,
        dbr: float,
        dbr_sd: Optional[float] = None,
    ) -> ThresholdResult:
        """Scan candidate cutoffs and choose one.

        Parameters
        ----------
        scores : np.ndarray
            Doublet score per row
        is_real : np.ndarray
            Real (non-known-doublet) rows
        is_artificial : np.ndarray
            Artificial doublet rows
        dbr : float
            Expected doublet rate
        dbr_sd : float, optional
            Tolerance around ``dbr``. Uses config default if None.

        Returns
        -------
        ThresholdResult
            Threshold with scan statistics
        """
        scores = np.asarray(scores, dtype=float)
        is_real = np.asarray(is_real, dtype=bool)
        is_artificial = np.asarray(is_artificial, dtype=bool)
        if len(scores) != len(is_real) or len(scores) != len(is_artificial):
            raise InvalidArgumentError("Scores and cell annotations differ in length")
        dbr_sd = dbr_sd if dbr_sd is not None else self.config.dbr_sd

        self.state = ThresholdState.SCANNING
        candidates = self.candidates(scores[is_real | is_artificial])
        stats = self.scan(candidates, scores[is_real], scores[is_artificial], dbr, dbr_sd)
        threshold = self.pick(stats)
        called_rate = float((scores[is_real] >= threshold).mean()) if is_real.any() else 0.0

        self.result = ThresholdResult(
            threshold=threshold,
            stats=stats,
            expected_rate=float(dbr),
            called_rate=called_rate,
        )
        self.state = ThresholdState.THRESHOLDED
        self.logger.info(
            "Threshold found: %.3f (%.1f%% of real cells, expected %.1f%% +/- %.1f%%)",
            threshold,
            100 * called_rate,
            100 * dbr,
            100 * dbr_sd,
        )
        return self.result

    def local_optimize(
        self,
        scores: np.ndarray,
        groups: Sequence,
        is_real: np.ndarray,
        is_artificial: np.ndarray,
        dbr: float,
        dbr_sd: Optional[float] = None,
    ) -> Tuple[np.ndarray, ThresholdResult]:
        """Per-group thresholds mapped onto one global threshold.

        A global threshold is selected first. Every group (most likely
        origin) with enough real and artificial cells then gets its own
        cutoff minimizing FNR + FDR within the group, bounded to
        ``local_max_shift`` around the global one. Group scores are rescaled
        piecewise-linearly so that the group cutoff lands on the global
        threshold.

        Returns
        -------
        Tuple[np.ndarray, ThresholdResult]
            Adjusted scores and the global threshold result
        """
        cfg = self.config
        scores = np.asarray(scores, dtype=float)
        result = self.select(scores, is_real, is_artificial, dbr, dbr_sd)
        t_global = result.threshold
        low = float(np.nanmin(scores))
        high = float(np.nanmax(scores))
        final = scores.copy()

        groups = pd.Series(np.asarray(groups, dtype=object))
        for group in sorted(groups.dropna().unique(), key=str):
            member = (groups == group).to_numpy()
            g_real = member & is_real
            g_art = member & is_artificial
            if g_real.sum() < cfg.local_min_cells or g_art.sum() < cfg.local_min_cells:
                continue
            bounds = (t_global - cfg.local_max_shift, t_global + cfg.local_max_shift)
            candidates = self.candidates(scores[g_real | g_art], bounds=bounds)
            stats = self.scan(candidates, scores[g_real], scores[g_art], None, 0.0)
            t_group = self.pick(stats)
            if not (low < t_group < high) or not (low < t_global < high):
                continue
            result.group_thresholds[str(group)] = t_group
            s = scores[member]
            below = s < t_group
            mapped = np.empty_like(s)
            mapped[below] = low + (s[below] - low) * (t_global - low) / (t_group - low)
            mapped[~below] = t_global + (s[~below] - t_group) * (high - t_global) / (high - t_group)
            final[member] = mapped

        self.logger.info(
            "Local optimization adjusted %d origin groups", len(result.group_thresholds)
        )
        return final, result
