"""Unit tests for gene selection."""

import numpy as np

from doublet_refinery.core.detection import FeatureConfig, FeatureSelector


class TestFeatureSelector:
    """Tests for FeatureSelector."""

    def test_all_genes_when_few(self, clustered_counts):
        counts, clusters = clustered_counts
        genes = [f"g{i}" for i in range(counts.shape[1])]
        selected = FeatureSelector(FeatureConfig(nfeatures=1000)).select(counts, genes)
        assert selected == genes

    def test_limits_and_keeps_order(self, clustered_counts):
        counts, _ = clustered_counts
        genes = [f"g{i}" for i in range(counts.shape[1])]
        selected = FeatureSelector().select(counts, genes, nfeatures=50)
        assert len(selected) == 50
        positions = [genes.index(g) for g in selected]
        assert positions == sorted(positions)

    def test_prefers_marker_blocks(self, clustered_counts):
        """Cluster marker genes are the most dispersed ones."""
        counts, _ = clustered_counts
        genes = [f"g{i}" for i in range(counts.shape[1])]
        selected = FeatureSelector().select(counts, genes, nfeatures=60)
        in_blocks = sum(genes.index(g) < 90 for g in selected)
        assert in_blocks >= 55

    def test_deterministic(self, clustered_counts):
        counts, _ = clustered_counts
        genes = [f"g{i}" for i in range(counts.shape[1])]
        selector = FeatureSelector()
        assert selector.select(counts, genes, nfeatures=40) == selector.select(counts, genes, nfeatures=40)

    def test_skips_unexpressed_genes(self, clustered_counts):
        counts, _ = clustered_counts
        dense = counts.toarray()
        dense[:, :150] = 0
        genes = [f"g{i}" for i in range(dense.shape[1])]
        selected = FeatureSelector().select(dense, genes, nfeatures=100)
        assert len(selected) == 50

    def test_with_markers(self, clustered_counts):
        counts, clusters = clustered_counts
        genes = [f"g{i}" for i in range(counts.shape[1])]
        selector = FeatureSelector(FeatureConfig(prop_markers=0.5))
        selected = selector.select(counts, genes, clusters=clusters, nfeatures=40)
        assert len(selected) == 40
        assert len(set(selected)) == 40
