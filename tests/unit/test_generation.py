"""Unit tests for artificial doublet generation."""

import numpy as np
import pytest

from doublet_refinery.core.detection import (
    ArtificialDoubletGenerator,
    GenerationConfig,
    InsufficientClustersError,
    InvalidArgumentError,
    resolve_n_artificial,
)
from doublet_refinery.core.detection.generation import RANDOM_ORIGIN, _allocate, artificial_prefix


class TestResolveCount:
    """Tests for resolve_n_artificial."""

    def test_default_floor(self):
        assert resolve_n_artificial(None, n_cells=1000, n_clusters=3) == 5000

    def test_default_scales_with_cells(self):
        assert resolve_n_artificial(None, n_cells=20000, n_clusters=5) == 12000

    def test_default_cap(self):
        assert resolve_n_artificial(None, n_cells=100000, n_clusters=5) == 25000

    def test_default_many_clusters(self):
        assert resolve_n_artificial(None, n_cells=1000, n_clusters=30) == 9000

    def test_multiplier(self):
        assert resolve_n_artificial(0.5, n_cells=1000, n_clusters=3) == 500

    def test_absolute(self):
        assert resolve_n_artificial(300, n_cells=1000, n_clusters=3) == 300


class TestAllocate:
    def test_sums_to_total(self):
        alloc = _allocate(101, np.array([1.0, 2.0, 3.0]), floor=5)
        assert alloc.sum() == 101
        assert (alloc >= 5).all()

    def test_floor_limited_by_total(self):
        alloc = _allocate(4, np.array([1.0, 1.0, 1.0]), floor=5)
        assert alloc.sum() == 4


class TestArtificialDoubletGenerator:
    """Tests for ArtificialDoubletGenerator."""

    def test_count_and_origins(self, clustered_counts, rng):
        counts, clusters = clustered_counts
        doublets = ArtificialDoubletGenerator().generate(counts, clusters, 500, rng=rng)
        assert len(doublets) == 500
        assert doublets.counts.shape == (500, counts.shape[1])
        valid = {"1+2", "1+3", "2+3", RANDOM_ORIGIN}
        assert set(doublets.origins) <= valid
        assert (doublets.origins == RANDOM_ORIGIN).sum() == 50

    def test_every_pair_represented(self, clustered_counts, rng):
        counts, clusters = clustered_counts
        config = GenerationConfig(prop_random=0.0, min_per_pair=5)
        doublets = ArtificialDoubletGenerator(config).generate(counts, clusters, 30, rng=rng)
        for pair in ("1+2", "1+3", "2+3"):
            assert (doublets.origins == pair).sum() >= 5

    def test_parents_match_origin(self, clustered_counts, rng):
        counts, clusters = clustered_counts
        doublets = ArtificialDoubletGenerator().generate(counts, clusters, 200, rng=rng)
        for (i, j), origin in zip(doublets.parents, doublets.origins):
            if origin == RANDOM_ORIGIN:
                continue
            assert sorted([clusters[i], clusters[j]]) == origin.split("+")

    def test_counts_are_parent_sums(self, clustered_counts, rng):
        counts, clusters = clustered_counts
        doublets = ArtificialDoubletGenerator().generate(counts, clusters, 50, rng=rng)
        dense = counts.toarray()
        for row, (i, j) in enumerate(doublets.parents):
            np.testing.assert_array_equal(doublets.counts[row].toarray().ravel(), dense[i] + dense[j])

    def test_intermediacy(self, clustered_counts, rng):
        """Library-normalized doublets lie between their parents."""
        counts, clusters = clustered_counts
        doublets = ArtificialDoubletGenerator().generate(counts, clusters, 100, rng=rng)
        dense = counts.toarray().astype(float)
        norm = dense / dense.sum(axis=1, keepdims=True)
        dbl = doublets.counts.toarray().astype(float)
        dbl_norm = dbl / dbl.sum(axis=1, keepdims=True)
        low = np.minimum(norm[doublets.parents[:, 0]], norm[doublets.parents[:, 1]])
        high = np.maximum(norm[doublets.parents[:, 0]], norm[doublets.parents[:, 1]])
        assert (dbl_norm >= low - 1e-12).all()
        assert (dbl_norm <= high + 1e-12).all()

    def test_names(self, clustered_counts, rng):
        counts, clusters = clustered_counts
        doublets = ArtificialDoubletGenerator().generate(counts, clusters, 3, rng=rng)
        assert list(doublets.names) == ["artDbl1", "artDbl2", "artDbl3"]

    def test_names_with_sample_prefix(self, clustered_counts, rng):
        counts, clusters = clustered_counts
        doublets = ArtificialDoubletGenerator().generate(
            counts, clusters, 2, rng=rng, prefix=artificial_prefix("S1")
        )
        assert list(doublets.names) == ["S1.artDbl1", "S1.artDbl2"]

    def test_reproducible(self, clustered_counts):
        counts, clusters = clustered_counts
        gen = ArtificialDoubletGenerator()
        a = gen.generate(counts, clusters, 100, rng=np.random.default_rng(3))
        b = gen.generate(counts, clusters, 100, rng=np.random.default_rng(3))
        np.testing.assert_array_equal(a.parents, b.parents)

    def test_single_cluster_raises(self, clustered_counts, rng):
        counts, _ = clustered_counts
        clusters = np.full(counts.shape[0], "1", dtype=object)
        with pytest.raises(InsufficientClustersError):
            ArtificialDoubletGenerator().generate(counts, clusters, 100, rng=rng)

    def test_length_mismatch_raises(self, clustered_counts, rng):
        counts, clusters = clustered_counts
        with pytest.raises(InvalidArgumentError):
            ArtificialDoubletGenerator().generate(counts, clusters[:-1], 100, rng=rng)

    @pytest.mark.parametrize("mode", ["uniform", "proportional", "sqrt"])
    def test_pair_weightings(self, mode, rng):
        clusters = np.array(["1"] * 200 + ["2"] * 20 + ["3"] * 20, dtype=object)
        config = GenerationConfig(prop_random=0.0, pair_weighting=mode, min_per_pair=0)
        _, origins = ArtificialDoubletGenerator(config).sample_pairs(clusters, 300, rng)
        n12 = (origins == "1+2").sum()
        n23 = (origins == "2+3").sum()
        if mode == "uniform":
            assert n12 == n23
        else:
            assert n12 > n23
