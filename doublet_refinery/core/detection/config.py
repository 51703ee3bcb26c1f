"""Configuration classes for the doublet detection engine.

Every tunable of the detection run lives here, so that a run is a pure
function of its inputs and one ``DetectionConfig``.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..clustering.config import ClusteringConfig
from .errors import InvalidArgumentError

SCORE_TYPES = ("xgb", "xgb.local.optim", "weighted", "ratio")
RETURN_TYPES = ("anndata", "table", "full")
PAIR_WEIGHTINGS = ("uniform", "proportional", "sqrt")


@dataclass
class GenerationConfig:
    """Configuration for artificial doublet synthesis.

    Attributes
    ----------
    artificial_doublets : float, optional
        Target number of artificial doublets. Values below 2 are read as a
        multiplier of the number of real cells. None picks a default from
        the number of cells and clusters.
    prop_random : float
        Fraction of artificial doublets made of two random cells
    pair_weighting : str
        How inter-cluster doublets are spread over cluster pairs
        (uniform, proportional, sqrt)
    min_per_pair : int
        Minimum number of doublets for every cluster pair
    max_doublets : int
        Upper bound for the default and multiplier-derived counts
    min_doublets : int
        Lower bound for the default count
    """

    artificial_doublets: Optional[float] = None
    prop_random: float = 0.1
    pair_weighting: str = "proportional"
    min_per_pair: int = 5
    max_doublets: int = 25000
    min_doublets: int = 5000


@dataclass
class FeatureConfig:
    """Configuration for gene selection.

    Attributes
    ----------
    nfeatures : int
        Maximum number of genes kept
    prop_markers : float
        Fraction of selected genes taken from cluster markers
    """

    nfeatures: int = 1000
    prop_markers: float = 0.0


@dataclass
class EmbeddingConfig:
    """Configuration for the joint real + artificial embedding.

    Attributes
    ----------
    dims : int
        Number of principal components
    max_cells_normalization : int
        Joint matrices with more cells skip library-size normalization
    include_pcs : List[int]
        Indices of principal components passed to the classifier as features
    """

    dims: int = 20
    max_cells_normalization: int = 50000
    include_pcs: List[int] = field(default_factory=lambda: [0, 1, 2, 3, 4])


@dataclass
class NeighborConfig:
    """Configuration for neighborhood evaluation.

    Attributes
    ----------
    k : List[int], optional
        Neighbor counts. Ratios are computed at every k, other features at
        the largest. None picks a default from the number of cells.
    origin_ambiguity_margin : float
        The origin call is ambiguous when the runner-up origin count is
        within this relative margin of the top count
    use_cxds : bool
        Compute the co-expression (cxds) score as an extra feature
    cxds_ntop : int
        Number of genes used by the co-expression score
    """

    k: Optional[List[int]] = None
    origin_ambiguity_margin: float = 0.1
    use_cxds: bool = True
    cxds_ntop: int = 500


@dataclass
class TrainingConfig:
    """Configuration for the iterative classifier.

    Attributes
    ----------
    score : str
        Score type: xgb, xgb.local.optim, weighted or ratio
    metric : str
        xgboost evaluation metric
    nrounds : int, optional
        Boosting rounds. None selects them by cross-validation
    max_depth : int
        Maximum tree depth for the final round
    iter : int
        Number of training rounds purging likely doublets from the negatives
    nfold : int
        Folds for cross-validation
    subsample : float
        Row subsampling used during cross-validation
    features : List[str], optional
        Explicit predictor columns. None uses every eligible column
    """

    score: str = "xgb"
    metric: str = "aucpr"
    nrounds: Optional[int] = 50
    max_depth: int = 5
    iter: int = 1
    nfold: int = 5
    subsample: float = 0.6
    features: Optional[List[str]] = None


@dataclass
class ThresholdConfig:
    """Configuration for score thresholding.

    Attributes
    ----------
    enabled : bool
        Convert scores into doublet/singlet calls
    dbr : float, optional
        Expected doublet rate. None derives it from the number of cells
        (``per_thousand`` per 1000 cells). An explicit value forces a single
        global threshold even when samples are given.
    dbr_sd : float
        Tolerance around the expected rate
    per_thousand : float
        Doublet rate per thousand captured cells used when ``dbr`` is None
    n_candidates : int
        Number of candidate thresholds scanned
    local_max_shift : float
        Largest shift of a per-origin threshold from the global one
    local_min_cells : int
        Minimum cells per origin group for local optimization
    """

    enabled: bool = True
    dbr: Optional[float] = None
    dbr_sd: float = 0.015
    per_thousand: float = 0.01
    n_candidates: int = 201
    local_max_shift: float = 0.2
    local_min_cells: int = 20


@dataclass
class OutputConfig:
    """Configuration for results attached to the cell collection.

    Attributes
    ----------
    key_prefix : str
        Prefix of the obs columns written back
    counts_layer : str
        Layer holding raw counts (falls back to X)
    """

    key_prefix: str = "doublet_"
    counts_layer: str = "counts"


@dataclass
class DetectionConfig:
    """Master configuration for doublet detection.

    Attributes
    ----------
    generation : GenerationConfig
        Artificial doublet synthesis
    features : FeatureConfig
        Gene selection
    embedding : EmbeddingConfig
        Joint embedding
    neighbors : NeighborConfig
        Neighborhood evaluation
    training : TrainingConfig
        Classifier training
    threshold : ThresholdConfig
        Thresholding
    output : OutputConfig
        Output columns
    clustering : ClusteringConfig
        Fast clustering used when no labels are supplied
    n_workers : int
        Parallel workers across sample partitions
    n_jobs : int
        Threads for neighbor search and boosting (-1 uses every core)
    random_seed : int
        Seed for every random step
    """

    generation: GenerationConfig = field(default_factory=GenerationConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    neighbors: NeighborConfig = field(default_factory=NeighborConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    threshold: ThresholdConfig = field(default_factory=ThresholdConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    n_workers: int = 1
    n_jobs: int = -1
    random_seed: int = 1337

    @classmethod
    def from_yaml(cls, path: Path) -> "DetectionConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested doublet_refinery section
        if "doublet_refinery" in data:
            data = data["doublet_refinery"]

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectionConfig":
        """Build configuration from a (possibly partial) nested dictionary."""
        return cls(
            generation=GenerationConfig(**data.get("generation", {})),
            features=FeatureConfig(**data.get("features", {})),
            embedding=EmbeddingConfig(**data.get("embedding", {})),
            neighbors=NeighborConfig(**data.get("neighbors", {})),
            training=TrainingConfig(**data.get("training", {})),
            threshold=ThresholdConfig(**data.get("threshold", {})),
            output=OutputConfig(**data.get("output", {})),
            clustering=ClusteringConfig(**data.get("clustering", {})),
            n_workers=data.get("n_workers", 1),
            n_jobs=data.get("n_jobs", -1),
            random_seed=data.get("random_seed", 1337),
        )

    @classmethod
    def default(cls) -> "DetectionConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    def validate(self) -> None:
        """Check proportions, score types and counts.

        Raises
        ------
        InvalidArgumentError
            If any value is outside its admissible range
        """
        _check_proportion("prop_random", self.generation.prop_random)
        _check_proportion("prop_markers", self.features.prop_markers)
        _check_proportion("dbr_sd", self.threshold.dbr_sd)
        if self.threshold.dbr is not None:
            _check_proportion("dbr", self.threshold.dbr)
        if self.training.score not in SCORE_TYPES:
            raise InvalidArgumentError(
                f"Unknown score type '{self.training.score}'; "
                f"expected one of {', '.join(SCORE_TYPES)}"
            )
        if self.generation.pair_weighting not in PAIR_WEIGHTINGS:
            raise InvalidArgumentError(
                f"Unknown pair weighting '{self.generation.pair_weighting}'; "
                f"expected one of {', '.join(PAIR_WEIGHTINGS)}"
            )
        if self.training.iter < 1:
            raise InvalidArgumentError("`iter` must be a positive integer")
        if self.training.nrounds is not None and self.training.nrounds < 1:
            raise InvalidArgumentError("`nrounds` must be positive or None")
        if self.n_jobs == 0 or self.n_jobs < -1:
            raise InvalidArgumentError("`n_jobs` must be positive or -1")
        if self.features.nfeatures < 2:
            raise InvalidArgumentError("`nfeatures` must be at least 2")
        if self.embedding.dims < 2:
            raise InvalidArgumentError("`dims` must be at least 2")
        if self.neighbors.k is not None:
            if len(self.neighbors.k) == 0 or min(self.neighbors.k) < 1:
                raise InvalidArgumentError("`k` values must be positive integers")
        ad = self.generation.artificial_doublets
        if ad is not None and ad <= 0:
            raise InvalidArgumentError("`artificial_doublets` must be positive")


def _check_proportion(name: str, value: float) -> None:
    """Raise if value is not a proportion."""
    if value is None or not (0.0 <= float(value) <= 1.0):
        raise InvalidArgumentError(
            f"`{name}` should be a proportion between 0 and 1 (got {value!r})"
        )
