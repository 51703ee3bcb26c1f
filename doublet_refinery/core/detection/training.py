"""Iterative classifier training.

Artificial (and known) doublets are the positive class, real cells the
negative one. Real cells that look like doublets would contaminate the
negatives, so the top ``dbr`` fraction of real cells (by a proxy score, then
by the classifier's own score) is left out of training at every round.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import logging
import os

import numpy as np

from ...utils.stats import ecdf_rank, top_fraction_mask
from .config import TrainingConfig
from .table import ScoreTable

INTERMEDIATE_MAX_DEPTH = 5
CV_MAX_ROUNDS = 500
CV_EARLY_STOPPING = 3


@dataclass
class RoundResult:
    """Outcome of one training round.

    Attributes
    ----------
    round : int
        Round number (1-based)
    success : bool
        Whether the classifier could be fitted
    scores : np.ndarray
        Scores after the round (previous scores when fitting failed)
    n_excluded : int
        Real cells excluded from the negatives
    nrounds : int, optional
        Boosting rounds used
    error : str, optional
        Failure message
    """

    round: int
    success: bool
    scores: np.ndarray
    n_excluded: int = 0
    nrounds: Optional[int] = None
    error: Optional[str] = None


@dataclass
class TrainingResult:
    """Final scores and training history.

    Attributes
    ----------
    scores : np.ndarray
        Doublet score per row
    include_in_training : np.ndarray
        Rows used by the last successful fit
    features : List[str]
        Predictor columns
    rounds : List[RoundResult]
        Per-round outcomes
    """

    scores: np.ndarray
    include_in_training: np.ndarray
    features: List[str] = field(default_factory=list)
    rounds: List[RoundResult] = field(default_factory=list)

    @property
    def n_failed(self) -> int:
        return sum(not r.success for r in self.rounds)


def proxy_score(table: ScoreTable) -> np.ndarray:
    """Initial score of real cells: ECDF of ``ratio`` (+ 2x ECDF of cxds).

    Rows that are not real singlet candidates get 0.
    """
    score = np.zeros(len(table))
    w = table.real_singlet_candidates
    if not w.any():
        return score
    score[w] = ecdf_rank(table.neighborhood.ratio[w])
    if table.quality.cxds_score is not None:
        score[w] += 2 * ecdf_rank(table.quality.cxds_score[w])
    return score


class ClassifierTrainer:
    """Trains a gradient-boosted doublet classifier on a ScoreTable.

    Parameters
    ----------
    config : TrainingConfig, optional
        Training configuration. If None, uses defaults.
    n_jobs : int
        Threads used by xgboost (-1 uses every core)
    random_seed : int
        Random seed
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.
    """

    def __init__(
        self,
        config: Optional[TrainingConfig] = None,
        n_jobs: int = 1,
        random_seed: int = 1337,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or TrainingConfig()
        self.n_jobs = n_jobs if n_jobs > 0 else (os.cpu_count() or 1)
        self.random_seed = random_seed
        self.logger = logger or logging.getLogger(__name__)

    def resolve_features(self, table: ScoreTable) -> List[str]:
        """Predictor columns: configured ones if given, else every eligible one."""
        eligible = table.predictor_names()
        if self.config.features is None:
            return eligible
        available = set(table.numeric_columns())
        missing = [f for f in self.config.features if f not in available]
        if missing:
            self.logger.warning(
                "The following features were not found: %s", ", ".join(missing)
            )
        return [f for f in self.config.features if f in available and f in eligible]

    def cv_nrounds(self, X: np.ndarray, y: np.ndarray, max_depth: int) -> int:
        """Pick boosting rounds by cross-validation.

        Returns the first round whose mean test error is within one standard
        deviation of the error at the best round.
        """
        import xgboost as xgb

        cfg = self.config
        dtrain = xgb.DMatrix(X, label=y)
        params = {
            "objective": "binary:logistic",
            "max_depth": max_depth,
            "tree_method": "hist",
            "subsample": cfg.subsample,
            "nthread": self.n_jobs,
            "seed": self.random_seed,
            # early stopping follows the last metric
            "eval_metric": [m for m in (cfg.metric, "error") if m != "error"] + ["error"],
        }
        res = xgb.cv(
            params,
            dtrain,
            num_boost_round=CV_MAX_ROUNDS,
            nfold=cfg.nfold,
            early_stopping_rounds=CV_EARLY_STOPPING,
            seed=self.random_seed,
            verbose_eval=False,
        )
        err_mean = res["test-error-mean"].to_numpy()
        err_std = res["test-error-std"].to_numpy()
        best = len(err_mean) - 1
        cutoff = err_mean[best] + err_std[best]
        return int(np.flatnonzero(err_mean <= cutoff)[0]) + 1

    def fit_predict(
        self,
        X_train: np.ndarray,
        y_train: np.ndarray,
        X_all: np.ndarray,
        max_depth: int,
    ) -> tuple:
        """Fit one classifier and score every row.

        Returns
        -------
        tuple
            (scores, nrounds)
        """
        import xgboost as xgb

        cfg = self.config
        if len(np.unique(y_train)) < 2:
            raise ValueError("Training data contains a single class")
        nrounds = cfg.nrounds
        if nrounds is None:
            nrounds = self.cv_nrounds(X_train, y_train, max_depth)
            self.logger.info("Cross-validation selected %d boosting rounds", nrounds)
        model = xgb.XGBClassifier(
            n_estimators=nrounds,
            max_depth=max_depth,
            objective="binary:logistic",
            eval_metric=cfg.metric,
            tree_method="hist",
            subsample=cfg.subsample,
            n_jobs=self.n_jobs,
            random_state=self.random_seed,
        )
        model.fit(X_train, y_train)
        return model.predict_proba(X_all)[:, 1], nrounds

    def train(self, table: ScoreTable, dbr: float) -> TrainingResult:
        """Run the iterative training loop.

        Parameters
        ----------
        table : ScoreTable
            Table of real and artificial cells
        dbr : float
            Expected doublet rate among real cells

        Returns
        -------
        TrainingResult
            Final scores and per-round outcomes
        """
        cfg = self.config
        features = self.resolve_features(table)
        X_all = table.feature_matrix(features)
        y_all = table.is_doublet_type.astype(int)
        candidates = table.real_singlet_candidates

        scores = proxy_score(table)
        include = np.ones(len(table), dtype=bool)
        rounds: List[RoundResult] = []

        self.logger.info(
            "Training model on %d features (%d rounds, dbr=%.4f)...",
            len(features),
            cfg.iter,
            dbr,
        )
        for i in range(1, cfg.iter + 1):
            excluded = np.zeros(len(table), dtype=bool)
            excluded[candidates] = top_fraction_mask(scores[candidates], dbr)
            pool = ~excluded
            max_depth = cfg.max_depth if i == cfg.iter else INTERMEDIATE_MAX_DEPTH
            try:
                new_scores, nrounds = self.fit_predict(
                    X_all[pool], y_all[pool], X_all, max_depth
                )
            except Exception as e:
                self.logger.warning(
                    "Classifier fit failed in round %d (%s); keeping previous scores",
                    i,
                    e,
                )
                rounds.append(
                    RoundResult(
                        round=i,
                        success=False,
                        scores=scores,
                        n_excluded=int(excluded.sum()),
                        error=str(e),
                    )
                )
                continue
            scores = np.asarray(new_scores, dtype=float)
            include = pool
            rounds.append(
                RoundResult(
                    round=i,
                    success=True,
                    scores=scores,
                    n_excluded=int(excluded.sum()),
                    nrounds=nrounds,
                )
            )
            self.logger.info(
                "Round %d: trained on %d rows (%d real cells excluded)",
                i,
                int(pool.sum()),
                int(excluded.sum()),
            )

        return TrainingResult(
            scores=scores,
            include_in_training=include,
            features=features,
            rounds=rounds,
        )
