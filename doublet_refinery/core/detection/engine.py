"""Doublet detection engine.

Orchestrates the per-partition pipeline, classifier training on the merged
score table, thresholding and the write-back of results.

Example
-------
>>> from doublet_refinery import DoubletDetectionEngine
>>> engine = DoubletDetectionEngine()
>>> adata = engine.run(adata, clusters="leiden")
>>> adata.obs["doublet_class"].value_counts()
"""

from typing import Any, Dict, List, Optional, Sequence, Union
import logging
import warnings

import numpy as np
import pandas as pd
from scipy import sparse

from .config import RETURN_TYPES, DetectionConfig
from .errors import InvalidArgumentError
from .features import FeatureSelector
from .generation import ARTIFICIAL_PREFIX
from .parallel import (
    PartitionResult,
    PartitionWorkItem,
    advise_on_size,
    run_partitions,
)
from .rates import RateModel
from .table import DOUBLET, REAL, SINGLET, DoubletCalls, ScoreTable
from .threshold import ThresholdSelector
from .training import ClassifierTrainer

ClusterArg = Union[None, int, str, Sequence[Any]]

# table columns copied to obs (prefixed)
OBS_COLUMNS = (
    "sample",
    "cluster",
    "class",
    "score",
    "score_global",
    "ratio",
    "weighted",
    "difficulty",
    "cxds_score",
    "nearest_class",
    "most_likely_origin",
    "origin_ambiguous",
)
CATEGORICAL_COLUMNS = ("sample", "cluster", "most_likely_origin")


class DoubletDetectionEngine:
    """Detects doublets in a cells x genes count matrix.

    Parameters
    ----------
    config : DetectionConfig, optional
        Detection configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Attributes
    ----------
    last_summary : dict
        Plain summary of the last run (rates, thresholds, counts)
    last_table : ScoreTable, optional
        Score table of the last run
    """

    def __init__(
        self,
        config: Optional[DetectionConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or DetectionConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.last_summary: Dict[str, Any] = {}
        self.last_table: Optional[ScoreTable] = None

    # ------------------------------------------------------------------
    # Input resolution
    # ------------------------------------------------------------------

    def _as_anndata(self, data):
        import anndata as ad

        if isinstance(data, ad.AnnData):
            return data
        if sparse.issparse(data) or isinstance(data, np.ndarray):
            return ad.AnnData(X=sparse.csr_matrix(data))
        raise InvalidArgumentError(
            f"Expected an AnnData, numpy array or sparse matrix, got {type(data).__name__}"
        )

    def _get_counts(self, adata) -> sparse.csr_matrix:
        """Raw counts from the configured layer, else X."""
        layer = self.config.output.counts_layer
        if layer and layer in adata.layers:
            matrix = adata.layers[layer]
        else:
            matrix = adata.X
        if matrix is None:
            raise InvalidArgumentError("No count matrix found (X is empty and no counts layer)")
        if adata.n_obs == 0 or adata.n_vars == 0:
            raise InvalidArgumentError("The count matrix has no cells or no genes")
        counts = sparse.csr_matrix(matrix)
        if counts.nnz and counts.data.min() < 0:
            raise InvalidArgumentError("The count matrix contains negative values")
        return counts

    def _obs_vector(self, adata, value, name: str) -> Optional[np.ndarray]:
        """Resolve an obs column name or a per-cell vector."""
        if value is None:
            return None
        if isinstance(value, str):
            if value not in adata.obs.columns:
                raise InvalidArgumentError(f"Column '{value}' ({name}) not found in adata.obs")
            return adata.obs[value].to_numpy()
        values = np.asarray(value)
        if values.ndim != 1 or len(values) != adata.n_obs:
            raise InvalidArgumentError(
                f"`{name}` must have one value per cell ({adata.n_obs}), got shape {values.shape}"
            )
        return values

    def _resolve_clusters(self, adata, clusters: ClusterArg) -> Optional[Union[int, np.ndarray]]:
        if clusters is None:
            return None
        if isinstance(clusters, (int, np.integer)) and not isinstance(clusters, bool):
            if clusters < 2:
                raise InvalidArgumentError("A target cluster count must be at least 2")
            return int(clusters)
        labels = self._obs_vector(adata, clusters, "clusters")
        return pd.Series(labels).astype(str).to_numpy(dtype=object)

    def _resolve_known_doublets(self, adata, known_doublets) -> np.ndarray:
        values = self._obs_vector(adata, known_doublets, "known_doublets")
        if values is None:
            return np.zeros(adata.n_obs, dtype=bool)
        if values.dtype == bool:
            return values
        series = pd.Series(values)
        if series.dtype == object or isinstance(series.dtype, pd.CategoricalDtype):
            return series.astype(str).str.lower().isin(["true", "doublet", "1"]).to_numpy()
        return series.fillna(0).astype(bool).to_numpy()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _build_work_items(
        self,
        counts: sparse.csr_matrix,
        cell_names: np.ndarray,
        gene_names: np.ndarray,
        clusters,
        samples: Optional[np.ndarray],
        known: np.ndarray,
    ) -> List[PartitionWorkItem]:
        """One work item per sample, or one for the whole dataset."""
        if samples is None:
            groups = [(None, np.arange(counts.shape[0]))]
        else:
            labels = pd.Series(samples).astype(str).to_numpy()
            groups = [(s, np.flatnonzero(labels == s)) for s in sorted(np.unique(labels))]

        seeds = np.random.SeedSequence(self.config.random_seed).spawn(len(groups))
        items = []
        for (sample, idx), seed in zip(groups, seeds):
            advise_on_size(len(idx), samples is not None, self.logger)
            items.append(PartitionWorkItem(
                sample=sample,
                counts=counts[idx],
                cell_names=cell_names[idx],
                gene_names=gene_names,
                clusters=clusters[idx] if isinstance(clusters, np.ndarray) else clusters,
                known_doublets=known[idx],
                seed=seed,
                include_pcs=samples is None,
            ))
        return items

    def _score(self, table: ScoreTable, dbr: float):
        """Classifier or heuristic scores."""
        score_type = self.config.training.score
        if score_type in ("ratio", "weighted"):
            self.logger.info("Using the neighborhood '%s' feature as score", score_type)
            scores = np.asarray(getattr(table.neighborhood, score_type), dtype=float)
            return scores, np.ones(len(table), dtype=bool), None

        trainer = ClassifierTrainer(
            self.config.training,
            n_jobs=self.config.n_jobs,
            random_seed=self.config.random_seed,
            logger=self.logger,
        )
        training = trainer.train(table, dbr)
        return training.scores, training.include_in_training, training

    def _threshold(
        self,
        table: ScoreTable,
        scores: np.ndarray,
        include: np.ndarray,
        rate_model: RateModel,
        dbr: float,
    ) -> DoubletCalls:
        """Turn scores into calls.

        Thresholds are per sample when samples are given, the rate is not
        explicit and the score is not locally optimized; otherwise a single
        global threshold is used.
        """
        cfg = self.config.threshold
        score_type = self.config.training.score
        calls = DoubletCalls(score=scores, include_in_training=include)
        if not cfg.enabled:
            return calls

        is_real = table.real_singlet_candidates
        is_art = table.is_artificial
        doublet_class = np.full(len(table), SINGLET, dtype=object)
        samples = table.identity.sample

        if samples is not None and not rate_model.is_explicit and score_type != "xgb.local.optim":
            for sample in sorted(np.unique(samples.astype(str))):
                member = samples == sample
                n_cells = int((table.is_real & member).sum())
                result = ThresholdSelector(cfg, logger=self.logger).select(
                    scores[member],
                    is_real[member],
                    is_art[member],
                    rate_model.rate_for(n_cells),
                )
                calls.sample_thresholds[sample] = result.threshold
                calls.stats[sample] = result.stats
                doublet_class[member] = np.where(
                    scores[member] >= result.threshold, DOUBLET, SINGLET
                )
        elif score_type == "xgb.local.optim":
            final, result = ThresholdSelector(cfg, logger=self.logger).local_optimize(
                scores,
                table.neighborhood.most_likely_origin,
                is_real,
                is_art,
                dbr,
            )
            calls.score_global = scores
            calls.score = final
            calls.threshold = result.threshold
            calls.stats["global"] = result.stats
            doublet_class = np.where(final >= result.threshold, DOUBLET, SINGLET).astype(object)
        else:
            result = ThresholdSelector(cfg, logger=self.logger).select(
                scores, is_real, is_art, dbr
            )
            calls.threshold = result.threshold
            calls.stats["global"] = result.stats
            doublet_class = np.where(scores >= result.threshold, DOUBLET, SINGLET).astype(object)

        doublet_class[table.is_known_doublet] = DOUBLET
        calls.doublet_class = doublet_class
        n_called = int((doublet_class[table.is_real] == DOUBLET).sum())
        self.logger.info(
            "%d (%.1f%%) doublets called", n_called, 100 * n_called / max(int(table.is_real.sum()), 1)
        )
        return calls

    def run(
        self,
        adata,
        clusters: ClusterArg = None,
        samples: Optional[Union[str, Sequence[Any]]] = None,
        known_doublets: Optional[Union[str, Sequence[Any]]] = None,
        return_type: str = "anndata",
    ):
        """Run doublet detection.

        Parameters
        ----------
        adata : AnnData, np.ndarray or sparse matrix
            Cells x genes raw counts (``layers['counts']`` or X)
        clusters : int, str or array-like, optional
            Cluster labels (obs column or vector), a target number of
            clusters for k-means, or None for Leiden clustering
        samples : str or array-like, optional
            Sample / capture of each cell (obs column or vector). Samples are
            processed independently.
        known_doublets : str or array-like, optional
            Boolean flag of cells known to be doublets
        return_type : str
            ``anndata`` (annotate and return the input), ``table`` (score
            table DataFrame including artificial doublets) or ``full`` (new
            AnnData of real and artificial cells)

        Returns
        -------
        AnnData or pd.DataFrame
            Depending on ``return_type``

        Raises
        ------
        InvalidArgumentError
            On malformed inputs or configuration
        InsufficientClustersError
            If fewer than two clusters are available
        PartitionError
            If processing of a sample fails
        """
        cfg = self.config
        cfg.validate()
        if return_type not in RETURN_TYPES:
            raise InvalidArgumentError(
                f"Unknown return type '{return_type}'; expected one of {', '.join(RETURN_TYPES)}"
            )

        adata = self._as_anndata(adata)
        if not adata.obs_names.is_unique:
            raise InvalidArgumentError("Cell names must be unique")
        clash = adata.obs_names.str.contains(rf"(?:^|\.){ARTIFICIAL_PREFIX}\d+$", regex=True)
        if clash.any():
            raise InvalidArgumentError(
                f"Cell names may not look like artificial doublet names "
                f"(e.g. '{adata.obs_names[clash][0]}'); rename them first"
            )
        counts = self._get_counts(adata)
        cluster_arg = self._resolve_clusters(adata, clusters)
        sample_labels = self._obs_vector(adata, samples, "samples")
        known = self._resolve_known_doublets(adata, known_doublets)

        if return_type == "full" and sample_labels is not None:
            msg = "return_type='full' is not available when splitting by sample; returning anndata"
            warnings.warn(msg, UserWarning)
            self.logger.warning(msg)
            return_type = "anndata"

        self.logger.info(
            "Detecting doublets in %d cells x %d genes (score=%s)",
            adata.n_obs,
            adata.n_vars,
            cfg.training.score,
        )

        # Genes chosen once with the supplied labels; partitions may reselect
        gene_names = np.asarray(adata.var_names, dtype=object)
        if isinstance(cluster_arg, np.ndarray) and adata.n_vars > cfg.features.nfeatures:
            selector = FeatureSelector(cfg.features, logger=self.logger)
            keep = ~known
            selected = selector.select(counts[keep], gene_names, clusters=cluster_arg[keep])
            cols = np.flatnonzero(pd.Index(gene_names).isin(selected))
            gene_names = gene_names[cols]
            work_counts = counts[:, cols]
        else:
            work_counts = counts

        items = self._build_work_items(
            work_counts,
            np.asarray(adata.obs_names, dtype=object),
            gene_names,
            cluster_arg,
            sample_labels,
            known,
        )
        results = run_partitions(items, cfg, n_workers=cfg.n_workers, logger=self.logger)

        if len(results) == 1 and results[0].sample is None:
            table = results[0].table
        else:
            table = ScoreTable.concat([r.table for r in results], [r.sample for r in results])

        rate_model = RateModel(dbr=cfg.threshold.dbr, per_thousand=cfg.threshold.per_thousand)
        dbr = rate_model.global_rate([r.n_real for r in results])
        scores, include, training = self._score(table, dbr)
        calls = self._threshold(table, scores, include, rate_model, dbr)
        table = table.with_calls(calls)

        self.last_table = table
        self.last_summary = self._summarize(table, results, dbr, training)

        if return_type == "table":
            return table.to_frame()
        if return_type == "full":
            return self._full_anndata(adata, counts, table, results[0])
        return self._annotate(adata, table, results)

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def _summarize(
        self,
        table: ScoreTable,
        results: List[PartitionResult],
        dbr: float,
        training,
    ) -> Dict[str, Any]:
        """Plain (YAML/h5ad-friendly) summary of a run."""
        calls = table.calls
        summary: Dict[str, Any] = {
            "score_type": self.config.training.score,
            "dbr": float(dbr),
            "n_cells": int(table.is_real.sum()),
            "n_artificial": int(table.is_artificial.sum()),
            "n_known_doublets": int(table.is_known_doublet.sum()),
            "n_clusters": {str(r.sample or "all"): int(r.n_clusters) for r in results},
        }
        if calls.threshold is not None:
            summary["threshold"] = float(calls.threshold)
        if calls.sample_thresholds:
            summary["sample_thresholds"] = {
                str(k): float(v) for k, v in calls.sample_thresholds.items()
            }
        if calls.doublet_class is not None:
            summary["n_doublets"] = int((calls.doublet_class[table.is_real] == DOUBLET).sum())
        if training is not None:
            summary["features"] = list(training.features)
            summary["training_rounds"] = len(training.rounds)
            summary["failed_rounds"] = int(training.n_failed)
        return summary

    def _annotate(self, adata, table: ScoreTable, results: List[PartitionResult]):
        """Write results onto the input AnnData."""
        prefix = self.config.output.key_prefix
        frame = table.to_frame()
        real = frame[frame["src"] == REAL].reindex(adata.obs_names)

        for col in OBS_COLUMNS:
            if col not in real.columns:
                continue
            if col == "class":
                values = pd.Categorical(real[col], categories=[SINGLET, DOUBLET])
            elif col in CATEGORICAL_COLUMNS:
                values = pd.Categorical(real[col])
            elif col == "origin_ambiguous":
                values = real[col].fillna(False).to_numpy(dtype=bool)
            else:
                values = real[col].to_numpy()
            adata.obs[prefix + col] = values
        if table.calls.sample_thresholds:
            adata.obs[prefix + "threshold"] = (
                real["sample"].map(table.calls.sample_thresholds).to_numpy(dtype=float)
            )

        selected = set()
        for r in results:
            selected.update(r.selected_genes)
        adata.var[prefix + "selected"] = adata.var_names.isin(list(selected))

        adata.uns["doublet_refinery"] = dict(self.last_summary)
        adata.uns["doublet_refinery"]["stats"] = dict(table.calls.stats)
        return adata

    def _full_anndata(self, adata, counts: sparse.csr_matrix, table: ScoreTable, result: PartitionResult):
        """New AnnData of real and artificial cells with the table as obs."""
        import anndata as ad

        frame = table.to_frame()
        gene_pos = pd.Index(adata.var_names).get_indexer(result.selected_genes)
        real_names = frame.index[frame["src"] == REAL]
        cell_pos = adata.obs_names.get_indexer(real_names)
        matrix = sparse.vstack(
            [counts[cell_pos][:, gene_pos], result.artificial.counts], format="csr"
        )

        obs = frame.copy()
        for col in CATEGORICAL_COLUMNS + ("type", "src", "origin"):
            if col in obs.columns:
                obs[col] = pd.Categorical(obs[col])
        if "class" in obs.columns:
            obs["class"] = pd.Categorical(obs["class"], categories=[SINGLET, DOUBLET])
        obs.index = obs.index.astype(str)

        full = ad.AnnData(
            X=matrix,
            obs=obs,
            var=pd.DataFrame(index=pd.Index([str(g) for g in result.selected_genes])),
        )
        full.obsm["X_pca"] = np.asarray(result.embedding.coords)
        full.uns["doublet_refinery"] = dict(self.last_summary)
        full.uns["doublet_refinery"]["stats"] = dict(table.calls.stats)
        return full


def find_doublets(
    adata,
    clusters: ClusterArg = None,
    samples: Optional[Union[str, Sequence[Any]]] = None,
    known_doublets: Optional[Union[str, Sequence[Any]]] = None,
    return_type: str = "anndata",
    config: Optional[DetectionConfig] = None,
    logger: Optional[logging.Logger] = None,
):
    """Convenience wrapper around ``DoubletDetectionEngine.run``."""
    engine = DoubletDetectionEngine(config=config, logger=logger)
    return engine.run(
        adata,
        clusters=clusters,
        samples=samples,
        known_doublets=known_doublets,
        return_type=return_type,
    )
