"""Doublet detection module.

Scores every cell by how closely its neighborhood in a joint embedding of
real cells and artificial doublets resembles a doublet neighborhood, then
calls doublets with a rate-aware threshold.

Pipeline:
1. Clustering (when no labels are supplied) and gene selection
2. Artificial doublet synthesis across cluster pairs
3. Joint embedding and neighborhood features (+ co-expression score)
4. Iterative gradient-boosted classification
5. Thresholding, globally or per sample

Example Usage
-------------
>>> from doublet_refinery.core.detection import DoubletDetectionEngine, DetectionConfig
>>> config = DetectionConfig.default()
>>> config.threshold.dbr = 0.08
>>> engine = DoubletDetectionEngine(config)
>>> adata = engine.run(adata, clusters="leiden", samples="sample")
>>> adata.obs["doublet_class"].value_counts()
"""

from .config import (
    PAIR_WEIGHTINGS,
    RETURN_TYPES,
    SCORE_TYPES,
    DetectionConfig,
    EmbeddingConfig,
    FeatureConfig,
    GenerationConfig,
    NeighborConfig,
    OutputConfig,
    ThresholdConfig,
    TrainingConfig,
)
from .cxds import cxds_score
from .embedding import EmbeddingReducer, JointEmbedding
from .engine import DoubletDetectionEngine, find_doublets
from .errors import (
    DoubletRefineryError,
    InsufficientClustersError,
    InvalidArgumentError,
    PartitionError,
)
from .features import FeatureSelector
from .generation import ArtificialDoubletGenerator, ArtificialDoublets, resolve_n_artificial
from .neighborhood import KNNResult, NeighborhoodEvaluator, NeighborhoodFeatures, default_k
from .parallel import PartitionResult, PartitionWorkItem, run_partition, run_partitions
from .rates import RateModel, origin_label
from .table import CellIdentity, CellQuality, DoubletCalls, ScoreTable
from .threshold import ThresholdResult, ThresholdSelector, ThresholdState
from .training import ClassifierTrainer, TrainingResult, proxy_score

__all__ = [
    # Engine
    "DoubletDetectionEngine",
    "find_doublets",
    # Config
    "DetectionConfig",
    "EmbeddingConfig",
    "FeatureConfig",
    "GenerationConfig",
    "NeighborConfig",
    "OutputConfig",
    "ThresholdConfig",
    "TrainingConfig",
    "PAIR_WEIGHTINGS",
    "RETURN_TYPES",
    "SCORE_TYPES",
    # Errors
    "DoubletRefineryError",
    "InsufficientClustersError",
    "InvalidArgumentError",
    "PartitionError",
    # Components
    "ArtificialDoubletGenerator",
    "ArtificialDoublets",
    "resolve_n_artificial",
    "FeatureSelector",
    "EmbeddingReducer",
    "JointEmbedding",
    "KNNResult",
    "NeighborhoodEvaluator",
    "NeighborhoodFeatures",
    "default_k",
    "RateModel",
    "origin_label",
    "cxds_score",
    "CellIdentity",
    "CellQuality",
    "DoubletCalls",
    "ScoreTable",
    "ClassifierTrainer",
    "TrainingResult",
    "proxy_score",
    "ThresholdResult",
    "ThresholdSelector",
    "ThresholdState",
    # Partitions
    "PartitionResult",
    "PartitionWorkItem",
    "run_partition",
    "run_partitions",
]
