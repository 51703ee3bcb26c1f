"""Unit tests for neighborhood features."""

import numpy as np
import pandas as pd
import pytest

from doublet_refinery.core.detection import (
    InvalidArgumentError,
    JointEmbedding,
    NeighborConfig,
    NeighborhoodEvaluator,
    default_k,
)


def _blobs(seed=0, n_real=120, n_art=60, duplicates=True):
    """Real cells in two blobs, artificial doublets between them."""
    rng = np.random.default_rng(seed)
    real = np.vstack([
        rng.normal([0, 0], 0.5, (n_real // 2, 2)),
        rng.normal([6, 0], 0.5, (n_real // 2, 2)),
    ])
    art = rng.normal([3, 0], 0.5, (n_art, 2))
    coords = np.vstack([real, art])
    if duplicates:
        coords[1] = coords[0]
    is_doublet = np.array([False] * n_real + [True] * n_art)
    origins = np.array([None] * n_real + ["1+2"] * (n_art // 2) + ["random"] * (n_art - n_art // 2), dtype=object)
    names = np.array([f"c{i}" for i in range(len(coords))], dtype=object)
    return JointEmbedding(coords=coords, names=names), is_doublet, origins


class TestDefaultK:
    def test_small(self):
        assert default_k(100) == [3, 10, 20]

    def test_large(self):
        assert default_k(60000) == [3, 10, 20, 100]


class TestJointEmbedding:
    def test_read_only(self):
        emb = JointEmbedding(coords=np.zeros((3, 2)), names=np.array(["a", "b", "c"]))
        with pytest.raises(ValueError):
            emb.coords[0, 0] = 1.0

    def test_copy_on_construction(self):
        coords = np.zeros((3, 2))
        emb = JointEmbedding(coords=coords, names=np.array(["a", "b", "c"]))
        coords[0, 0] = 5.0
        assert emb.coords[0, 0] == 0.0


class TestNeighborhoodEvaluator:
    """Tests for NeighborhoodEvaluator."""

    @pytest.fixture
    def features(self):
        emb, is_doublet, origins = _blobs()
        evaluator = NeighborhoodEvaluator(NeighborConfig(k=[3, 10]))
        return evaluator.evaluate(emb, is_doublet, origins, ~is_doublet)

    def test_ranges(self, features):
        assert ((features.ratio >= 0) & (features.ratio <= 1)).all()
        assert ((features.weighted >= 0) & (features.weighted <= 1)).all()
        for values in features.ratios_by_k.values():
            assert ((values >= 0) & (values <= 1)).all()
        assert (features.distance_to_nearest_doublet >= 0).all()
        assert (features.distance_to_nearest_real >= 0).all()

    def test_weighted_capped_when_all_neighbors_are_doublets(self):
        rng = np.random.default_rng(11)
        real = rng.normal([0, 0], 0.5, (60, 2))
        art = rng.normal([50, 50], rng.uniform(0.01, 3.0, (80, 1)), (80, 2))
        coords = np.vstack([real, art])
        is_doublet = np.array([False] * 60 + [True] * 80)
        origins = np.array([None] * 60 + ["1+2"] * 80, dtype=object)
        emb = JointEmbedding(coords=coords, names=np.array([f"c{i}" for i in range(140)], dtype=object))
        features = NeighborhoodEvaluator(NeighborConfig(k=[3, 10, 20])).evaluate(
            emb, is_doublet, origins, ~is_doublet
        )
        assert (features.weighted <= 1.0).all()
        np.testing.assert_allclose(features.weighted[60:], 1.0)

    def test_no_zero_distances(self, features):
        assert (features.distance_to_nearest > 0).all()

    def test_per_k_ratios(self, features):
        assert set(features.ratios_by_k) == {3}

    def test_doublets_have_doublet_neighbors(self, features):
        assert features.ratio[120:].mean() > 0.8
        assert features.ratio[:120].mean() < 0.2

    def test_origin_only_from_artificial(self, features):
        assert set(pd.Series(features.most_likely_origin).dropna()) <= {"1+2", "random"}

    def test_difficulty_range(self, features):
        assert ((features.difficulty >= 0) & (features.difficulty <= 1)).all()

    def test_scale_invariance(self):
        emb, is_doublet, origins = _blobs(seed=3)
        evaluator = NeighborhoodEvaluator(NeighborConfig(k=[3, 10]))
        base = evaluator.evaluate(emb, is_doublet, origins, ~is_doublet)
        scaled = evaluator.evaluate(emb.scaled(2.0), is_doublet, origins, ~is_doublet)
        np.testing.assert_array_equal(base.ratio, scaled.ratio)
        np.testing.assert_array_equal(base.ratios_by_k[3], scaled.ratios_by_k[3])
        np.testing.assert_array_equal(base.most_likely_origin, scaled.most_likely_origin)
        np.testing.assert_allclose(base.weighted, scaled.weighted)
        np.testing.assert_allclose(scaled.distance_to_nearest, 2 * base.distance_to_nearest)

    def test_mismatched_annotations(self):
        emb, is_doublet, origins = _blobs()
        with pytest.raises(InvalidArgumentError):
            NeighborhoodEvaluator().evaluate(emb, is_doublet[:-1], origins, ~is_doublet)

    def test_expected_and_observed(self):
        emb, is_doublet, origins = _blobs()
        expected = pd.Series({"1+2": 7.5})
        features = NeighborhoodEvaluator(NeighborConfig(k=[5])).evaluate(
            emb, is_doublet, origins, ~is_doublet, expected=expected
        )
        has_12 = features.most_likely_origin == "1+2"
        assert (features.expected[has_12] == 7.5).all()
        assert (features.expected[~has_12] == 0.0).all()
        assert (features.observed >= 0).all()


class TestHelpers:
    def test_replace_zero_distances(self):
        distances = np.array([[0.0, 1.0], [0.5, 2.0], [0.0, 0.0]])
        replaced = NeighborhoodEvaluator.replace_zero_distances(distances)
        assert (replaced > 0).all()
        assert replaced[0, 0] == 0.5
        assert distances[0, 0] == 0.0

    def test_k_clipped(self):
        coords = np.random.default_rng(0).normal(size=(5, 2))
        knn = NeighborhoodEvaluator().find_knn(coords, [3, 10])
        assert knn.kmax == 4
        assert knn.k_values == [3, 4]
        # self excluded
        assert not (knn.indices == np.arange(5)[:, None]).any()

    def test_most_likely_origins(self):
        evaluator = NeighborhoodEvaluator(NeighborConfig(origin_ambiguity_margin=0.1))
        codes = np.array([
            [0, 0, 0, 1, -1],
            [0, 0, 1, 1, -1],
            [-1, -1, -1, -1, -1],
        ])
        best, ambiguous = evaluator.most_likely_origins(codes)
        assert list(best) == [0, 0, -1]
        assert list(ambiguous) == [False, True, False]
