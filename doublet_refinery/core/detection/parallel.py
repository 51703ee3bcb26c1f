"""Per-partition detection pipeline and its parallel fan-out.

A partition is one independent capture (sample), or the whole dataset when
no samples are given. ``run_partition`` is a pure function of its work item:
clustering, gene selection, artificial doublets, quality features, joint
embedding and neighborhood evaluation. Classifier training happens later on
the merged tables.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union
import logging
import time
import warnings

import numpy as np
from scipy import sparse

from ...utils.stats import detected_features, library_sizes
from ..clustering import ClusteringEngine
from .config import DetectionConfig
from .cxds import cxds_score
from .embedding import EmbeddingReducer, JointEmbedding
from .errors import InsufficientClustersError, PartitionError
from .features import FeatureSelector
from .generation import (
    ArtificialDoubletGenerator,
    ArtificialDoublets,
    artificial_prefix,
    resolve_n_artificial,
)
from .neighborhood import NeighborhoodEvaluator
from .rates import RateModel
from .table import ARTIFICIAL, DOUBLET, REAL, CellIdentity, CellQuality, ScoreTable

MIN_ADVISED_CELLS = 100
MAX_ADVISED_CELLS = 25000


@dataclass
class PartitionWorkItem:
    """Inputs of one partition.

    Attributes
    ----------
    sample : str, optional
        Sample name (None when the whole dataset is one partition)
    counts : sparse.csr_matrix
        Cells x genes raw counts
    cell_names : np.ndarray
        Cell names (rows)
    gene_names : np.ndarray
        Gene names (columns)
    clusters : np.ndarray or int, optional
        Cluster labels, a target cluster count, or None for Leiden
    known_doublets : np.ndarray
        Boolean flag of cells known to be doublets
    seed : np.random.SeedSequence
        Independent seed of the partition
    include_pcs : bool
        Keep principal components as table features
    """

    sample: Optional[str]
    counts: sparse.csr_matrix
    cell_names: np.ndarray
    gene_names: np.ndarray
    clusters: Optional[Union[np.ndarray, int]]
    known_doublets: np.ndarray
    seed: np.random.SeedSequence
    include_pcs: bool = True


@dataclass
class PartitionResult:
    """Outputs of one partition.

    Attributes
    ----------
    sample : str, optional
        Sample name
    table : ScoreTable
        Features of real and artificial cells
    embedding : JointEmbedding
        Joint embedding (rows aligned with the table)
    artificial : ArtificialDoublets
        Artificial doublets created
    selected_genes : List[str]
        Genes used for the embedding
    n_clusters : int
        Clusters among real singlet candidates
    timing_seconds : float
        Wall time of the partition
    """

    sample: Optional[str]
    table: ScoreTable
    embedding: JointEmbedding
    artificial: ArtificialDoublets
    selected_genes: List[str] = field(default_factory=list)
    n_clusters: int = 0
    timing_seconds: float = 0.0

    @property
    def n_real(self) -> int:
        return int(self.table.is_real.sum())


def advise_on_size(n_cells: int, split_by_sample: bool, logger: logging.Logger) -> None:
    """Warn about partitions outside the range the method is tuned for."""
    if n_cells < MIN_ADVISED_CELLS:
        msg = f"Only {n_cells} cells; doublet detection is unreliable on so few cells"
    elif n_cells > MAX_ADVISED_CELLS and not split_by_sample:
        msg = (
            f"{n_cells} cells in a single partition; if they come from several "
            "captures, pass `samples` so each is processed separately"
        )
    else:
        return
    warnings.warn(msg, UserWarning)
    logger.warning(msg)


def run_partition(
    item: PartitionWorkItem,
    config: DetectionConfig,
    logger: Optional[logging.Logger] = None,
) -> PartitionResult:
    """Compute the score table of one partition.

    Parameters
    ----------
    item : PartitionWorkItem
        Partition inputs
    config : DetectionConfig
        Detection configuration (read only)
    logger : logging.Logger, optional
        Logger for progress tracking

    Returns
    -------
    PartitionResult
        Score table with the intermediate objects

    Raises
    ------
    InsufficientClustersError
        If fewer than two clusters are found among real cells
    """
    _logger = logger or logging.getLogger(__name__)
    start_time = time.time()
    gen_seed, embed_seed, cluster_seed = item.seed.spawn(3)
    rng = np.random.default_rng(gen_seed)

    counts = sparse.csr_matrix(item.counts)
    known = np.asarray(item.known_doublets, dtype=bool)
    singlets = np.flatnonzero(~known)
    doublets = np.flatnonzero(known)
    if known.any():
        _logger.info("Setting aside %d known doublets", len(doublets))
    real_counts = counts[singlets]

    # Clusters of real singlet candidates
    if item.clusters is None or np.isscalar(item.clusters):
        n_target = None if item.clusters is None else int(item.clusters)
        clustering = ClusteringEngine(config.clustering, logger=_logger).cluster(
            real_counts,
            n_clusters=n_target,
            random_seed=int(cluster_seed.generate_state(1)[0]),
        )
        clusters = clustering.labels
    else:
        clusters = np.asarray(item.clusters).astype(str)[singlets]
    levels = np.unique(clusters)
    if len(levels) < 2:
        raise InsufficientClustersError(len(levels))

    # Genes
    gene_names = np.asarray(item.gene_names, dtype=object)
    selected = list(gene_names)
    if len(gene_names) > config.features.nfeatures:
        selector = FeatureSelector(config.features, logger=_logger)
        selected = selector.select(real_counts, gene_names, clusters=clusters)
        position = {g: i for i, g in enumerate(gene_names)}
        cols = np.array([position[g] for g in selected], dtype=int)
        counts = counts[:, cols]
        real_counts = counts[singlets]

    # Artificial doublets
    n_art = resolve_n_artificial(
        config.generation.artificial_doublets, len(singlets), len(levels), config.generation
    )
    generator = ArtificialDoubletGenerator(config.generation, logger=_logger)
    artificial = generator.generate(
        real_counts, clusters, n_art, rng=rng, prefix=artificial_prefix(item.sample)
    )

    joint = sparse.vstack(
        [real_counts, counts[doublets], artificial.counts], format="csr"
    )
    n_real = len(singlets) + len(doublets)
    n_rows = joint.shape[0]
    names = np.concatenate([
        np.asarray(item.cell_names, dtype=object)[singlets],
        np.asarray(item.cell_names, dtype=object)[doublets],
        artificial.names,
    ])
    src = np.array([REAL] * n_real + [ARTIFICIAL] * len(artificial), dtype=object)
    cell_type = np.array(
        [REAL] * len(singlets) + [DOUBLET] * (len(doublets) + len(artificial)),
        dtype=object,
    )
    cluster_col = np.full(n_rows, None, dtype=object)
    cluster_col[: len(singlets)] = clusters
    origin_col = np.full(n_rows, None, dtype=object)
    origin_col[n_real:] = artificial.origins
    is_doublet = cell_type == DOUBLET

    # Library-level features
    cxds = None
    if config.neighbors.use_cxds:
        cxds = cxds_score(
            joint, doublet_rows=np.flatnonzero(is_doublet), ntop=config.neighbors.cxds_ntop
        )

    reducer = EmbeddingReducer(config.embedding, logger=_logger)
    embedding = reducer.reduce(
        joint, names, random_seed=int(embed_seed.generate_state(1)[0])
    )

    rate_model = RateModel(
        dbr=config.threshold.dbr, per_thousand=config.threshold.per_thousand
    )
    expected = rate_model.expected_doublets(clusters)
    evaluator = NeighborhoodEvaluator(config.neighbors, n_jobs=config.n_jobs, logger=_logger)
    neighborhood = evaluator.evaluate(
        embedding,
        is_doublet=is_doublet,
        origins=origin_col,
        is_real=src == REAL,
        expected=expected,
    )

    pcs = None
    pc_indices: List[int] = []
    if item.include_pcs:
        pc_indices = [i for i in config.embedding.include_pcs if i < embedding.dims]
        if pc_indices:
            pcs = np.asarray(embedding.coords[:, pc_indices])

    table = ScoreTable(
        identity=CellIdentity(
            names=names,
            src=src,
            type=cell_type,
            cluster=cluster_col,
            origin=origin_col,
        ),
        neighborhood=neighborhood,
        quality=CellQuality(
            library_size=library_sizes(joint),
            n_features=detected_features(joint),
            cxds_score=cxds,
            pcs=pcs,
            pc_indices=pc_indices,
        ),
    )
    return PartitionResult(
        sample=item.sample,
        table=table,
        embedding=embedding,
        artificial=artificial,
        selected_genes=[str(g) for g in selected],
        n_clusters=len(levels),
        timing_seconds=time.time() - start_time,
    )


def run_partitions(
    items: List[PartitionWorkItem],
    config: DetectionConfig,
    n_workers: int = 1,
    logger: Optional[logging.Logger] = None,
    worker: Callable[..., PartitionResult] = run_partition,
) -> List[PartitionResult]:
    """Run every partition and return results in input order.

    Failures of a named sample are re-raised as ``PartitionError``; the
    single unnamed partition propagates its error unchanged.

    Parameters
    ----------
    items : List[PartitionWorkItem]
        Work items
    config : DetectionConfig
        Detection configuration
    n_workers : int
        Number of worker threads
    logger : logging.Logger, optional
        Logger for progress tracking
    worker : callable
        Per-partition function (``run_partition``)

    Returns
    -------
    List[PartitionResult]
        One result per work item
    """
    _logger = logger or logging.getLogger(__name__)
    if not items:
        return []

    def _wrapped(item: PartitionWorkItem) -> PartitionResult:
        try:
            return worker(item, config, _logger)
        except Exception as e:
            if item.sample is None:
                raise
            raise PartitionError(item.sample, str(e)) from e

    _logger.info("Processing %d partition(s) with %d worker(s)", len(items), n_workers)
    start_time = time.time()

    if n_workers <= 1 or len(items) == 1:
        results = [_wrapped(item) for item in items]
    else:
        results: List[Optional[PartitionResult]] = [None] * len(items)
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = {executor.submit(_wrapped, item): i for i, item in enumerate(items)}
            for future in as_completed(futures):
                idx = futures[future]
                results[idx] = future.result()
                _logger.info(
                    "  Sample %s: %d cells (%.2f sec)",
                    results[idx].sample,
                    results[idx].n_real,
                    results[idx].timing_seconds,
                )

    _logger.info("Partitions completed in %.2f seconds", time.time() - start_time)
    return results
