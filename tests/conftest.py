"""Pytest configuration and shared fixtures for doublet-refinery tests."""

import sys
from pathlib import Path

import pytest
import numpy as np

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import synthetic data generators
from tests.fixtures import (
    create_count_matrix,
    create_doublet_adata,
    create_score_table,
)


# ============================================================================
# Count Fixtures
# ============================================================================


@pytest.fixture
def clustered_counts():
    """Three well-separated clusters of 100 cells, 200 genes."""
    return create_count_matrix(n_cells_per_cluster=100, n_clusters=3, n_genes=200)


@pytest.fixture
def doublet_adata():
    """300 singlets in 3 clusters plus 30 cross-cluster doublets (cluster 4)."""
    return create_doublet_adata(n_cells_per_cluster=100, n_clusters=3, n_doublets=30)


@pytest.fixture
def two_sample_adata():
    """Same layout as doublet_adata, dealt into samples S1 and S2."""
    return create_doublet_adata(
        n_cells_per_cluster=100, n_clusters=3, n_doublets=30, n_samples=2
    )


@pytest.fixture
def score_table():
    """Hand-made score table with separable real doublets."""
    return create_score_table()


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(1337)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def fast_config():
    """Detection config tuned for small synthetic data."""
    from doublet_refinery.core.detection import DetectionConfig

    config = DetectionConfig()
    config.generation.artificial_doublets = 1000
    config.threshold.dbr = 0.09
    config.training.nrounds = 30
    return config


@pytest.fixture
def sample_detection_config(tmp_path) -> Path:
    """Create sample detection configuration file."""
    import yaml

    config = {
        "doublet_refinery": {
            "generation": {"artificial_doublets": 800, "prop_random": 0.2},
            "neighbors": {"k": [5, 15]},
            "training": {"score": "weighted", "iter": 2},
            "threshold": {"dbr": 0.05},
            "random_seed": 7,
        },
    }

    path = tmp_path / "doublets.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir
