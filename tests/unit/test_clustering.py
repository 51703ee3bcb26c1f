"""Unit tests for clustering module."""

import numpy as np
import pytest

from doublet_refinery.core.clustering import (
    ClusteringConfig,
    ClusteringEngine,
    ClusteringResult,
)


class TestClusteringConfig:
    """Tests for ClusteringConfig dataclass."""

    def test_default_values(self):
        config = ClusteringConfig()
        assert config.n_pcs == 20
        assert config.n_top_genes == 1000
        assert config.neighbors_k == 15
        assert config.resolution == 1.0
        assert config.random_seed == 1337

    def test_custom_values(self):
        config = ClusteringConfig(n_pcs=10, resolution=0.5)
        assert config.n_pcs == 10
        assert config.resolution == 0.5


class TestClusteringEngine:
    """Tests for ClusteringEngine class."""

    def test_kmeans_recovers_clusters(self, clustered_counts):
        counts, truth = clustered_counts
        result = ClusteringEngine().cluster(counts, n_clusters=3)
        assert isinstance(result, ClusteringResult)
        assert result.method == "kmeans"
        assert result.n_clusters == 3
        assert set(result.labels) == {"1", "2", "3"}
        for label in np.unique(truth):
            assert len(np.unique(result.labels[truth == label])) == 1

    def test_kmeans_sizes(self, clustered_counts):
        counts, _ = clustered_counts
        result = ClusteringEngine().cluster(counts, n_clusters=3)
        assert sum(result.cluster_sizes.values()) == counts.shape[0]
        assert sorted(result.cluster_sizes.values()) == [100, 100, 100]

    def test_leiden(self, clustered_counts):
        counts, truth = clustered_counts
        result = ClusteringEngine(ClusteringConfig(resolution=0.5)).cluster(counts)
        assert result.method == "leiden"
        assert result.n_clusters >= 2
        assert len(result.labels) == counts.shape[0]
        # clusters never mix the well-separated populations
        for label in np.unique(result.labels):
            assert len(np.unique(truth[result.labels == label])) == 1

    def test_reproducible(self, clustered_counts):
        counts, _ = clustered_counts
        engine = ClusteringEngine()
        a = engine.cluster(counts, n_clusters=4, random_seed=5)
        b = engine.cluster(counts, n_clusters=4, random_seed=5)
        np.testing.assert_array_equal(a.labels, b.labels)
