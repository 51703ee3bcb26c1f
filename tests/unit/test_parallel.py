"""Unit tests for partition fan-out."""

import time
from types import SimpleNamespace

import numpy as np
import pytest
from scipy import sparse

from doublet_refinery.core.detection import (
    DetectionConfig,
    InsufficientClustersError,
    PartitionError,
    PartitionWorkItem,
    run_partition,
    run_partitions,
)
from tests.fixtures import create_count_matrix


def _item(sample, n_cells=4, clusters=None):
    return PartitionWorkItem(
        sample=sample,
        counts=sparse.csr_matrix(np.ones((n_cells, 3))),
        cell_names=np.array([f"{sample}_{i}" for i in range(n_cells)], dtype=object),
        gene_names=np.array(["a", "b", "c"], dtype=object),
        clusters=clusters,
        known_doublets=np.zeros(n_cells, dtype=bool),
        seed=np.random.SeedSequence(0),
    )


def _fake_worker(item, config, logger):
    # later samples finish first
    time.sleep(0.05 if item.sample == "S1" else 0.0)
    return SimpleNamespace(sample=item.sample, n_real=item.counts.shape[0], timing_seconds=0.0)


class TestRunPartitions:
    """Tests for run_partitions."""

    def test_preserves_order_with_threads(self):
        items = [_item("S1"), _item("S2"), _item("S3")]
        results = run_partitions(items, DetectionConfig(), n_workers=3, worker=_fake_worker)
        assert [r.sample for r in results] == ["S1", "S2", "S3"]

    def test_sequential(self):
        items = [_item("S1"), _item("S2")]
        results = run_partitions(items, DetectionConfig(), n_workers=1, worker=_fake_worker)
        assert [r.sample for r in results] == ["S1", "S2"]

    def test_empty(self):
        assert run_partitions([], DetectionConfig()) == []

    def test_wraps_sample_errors(self):
        def failing(item, config, logger):
            raise ValueError("bad matrix")

        with pytest.raises(PartitionError, match="sample 'S2': bad matrix") as excinfo:
            run_partitions([_item("S2")], DetectionConfig(), worker=failing)
        assert excinfo.value.sample == "S2"
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_unnamed_partition_not_wrapped(self):
        def failing(item, config, logger):
            raise ValueError("bad matrix")

        with pytest.raises(ValueError, match="bad matrix"):
            run_partitions([_item(None)], DetectionConfig(), worker=failing)


class TestRunPartition:
    """Tests for the per-partition pipeline."""

    def test_table_layout(self):
        counts, clusters = create_count_matrix(n_cells_per_cluster=60)
        config = DetectionConfig()
        config.generation.artificial_doublets = 200
        known = np.zeros(counts.shape[0], dtype=bool)
        known[:5] = True
        item = PartitionWorkItem(
            sample=None,
            counts=counts,
            cell_names=np.array([f"c{i}" for i in range(counts.shape[0])], dtype=object),
            gene_names=np.array([f"g{i}" for i in range(counts.shape[1])], dtype=object),
            clusters=clusters,
            known_doublets=known,
            seed=np.random.SeedSequence(1),
        )
        result = run_partition(item, config)
        table = result.table
        assert len(table) == counts.shape[0] + 200
        assert table.is_real.sum() == counts.shape[0]
        assert table.is_known_doublet.sum() == 5
        assert table.is_artificial.sum() == 200
        assert result.embedding.coords.shape[0] == len(table)
        assert table.quality.pcs.shape == (len(table), 5)
        assert result.n_clusters == 3
        # known doublets are not given a cluster
        known_rows = table.is_known_doublet
        assert all(c is None for c in table.identity.cluster[known_rows])

    def test_single_cluster(self):
        counts, _ = create_count_matrix(n_cells_per_cluster=20)
        item = _item(None)
        item.counts = counts
        item.cell_names = np.array([f"c{i}" for i in range(counts.shape[0])], dtype=object)
        item.gene_names = np.array([f"g{i}" for i in range(counts.shape[1])], dtype=object)
        item.known_doublets = np.zeros(counts.shape[0], dtype=bool)
        item.clusters = np.full(counts.shape[0], "1", dtype=object)
        with pytest.raises(InsufficientClustersError):
            run_partition(item, DetectionConfig())
