"""Tests for the generic RANSAC loop."""

import numpy as np
import pytest

from consistentcv.ransac import (
    AffineFamily, DegenerateSamplesExhaustedError, HomographyFamily,
    InsufficientConsensusError, apply_T, ransac, required_iterations,
)


def _affine_data(T, n_in=200, n_out=80, noise=0.8, seed=0):
    rng = np.random.default_rng(seed)
    pts0 = rng.uniform([0, 0], [640, 480], size=(n_in, 2))
    pts1 = apply_T(T, pts0) + rng.normal(0.0, noise, size=(n_in, 2))
    o0 = rng.uniform([0, 0], [640, 480], size=(n_out, 2))
    o1 = rng.uniform([0, 0], [640, 480], size=(n_out, 2))
    return np.vstack([pts0, o0]), np.vstack([pts1, o1])


class TestRequiredIterations:
    """Adaptive stopping formula k = log(1-p) / log(1-w^s)."""

    def test_all_inliers_needs_one(self):
        assert required_iterations(confidence=0.99, inlier_ratio=1.0, sample_size=4) == 1

    def test_no_inliers_is_unbounded(self):
        assert required_iterations(confidence=0.99, inlier_ratio=0.0, sample_size=4) >= 10 ** 9

    def test_known_value(self):
        # log(0.01) / log(1 - 0.5^4) = 71.4
        assert required_iterations(confidence=0.99, inlier_ratio=0.5, sample_size=4) == 72

    def test_more_outliers_need_more_iterations(self):
        low = required_iterations(confidence=0.99, inlier_ratio=0.8, sample_size=3)
        high = required_iterations(confidence=0.99, inlier_ratio=0.3, sample_size=3)
        assert high > low


class TestRansacAffine:
    """Affine recovery with injected outliers."""

    def test_recovers_transform(self, affine_true):
        pts0, pts1 = _affine_data(affine_true)
        res = ransac(AffineFamily(), pts0, pts1, tau=3.0, max_iters=2000, seed=42)
        np.testing.assert_allclose(res.model[:2, :2], affine_true[:2, :2], atol=0.01)
        np.testing.assert_allclose(res.model[:2, 2], affine_true[:2, 2], atol=1.0)

    def test_partitions_inliers_and_outliers(self, affine_true):
        pts0, pts1 = _affine_data(affine_true)
        res = ransac(AffineFamily(), pts0, pts1, tau=3.0, max_iters=2000, seed=42)
        assert np.count_nonzero(res.inliers[:200]) >= 190
        assert np.count_nonzero(res.inliers[200:]) <= 2
        assert res.num_inliers == int(np.count_nonzero(res.inliers))
        assert res.threshold == 3.0

    def test_same_seed_is_bit_identical(self, affine_true):
        pts0, pts1 = _affine_data(affine_true)
        a = ransac(AffineFamily(), pts0, pts1, tau=3.0, max_iters=300, seed=5)
        b = ransac(AffineFamily(), pts0, pts1, tau=3.0, max_iters=300, seed=5)
        np.testing.assert_array_equal(a.model, b.model)
        np.testing.assert_array_equal(a.inliers, b.inliers)
        assert a.iterations == b.iterations
        assert a.rms_error == b.rms_error


class TestRansacTermination:
    """Iteration budget, adaptive stopping, cancellation."""

    def test_fixed_budget_without_confidence(self, affine_true):
        pts0, pts1 = _affine_data(affine_true, n_out=0, noise=0.0)
        res = ransac(AffineFamily(), pts0, pts1, tau=1.0, max_iters=37, seed=0)
        assert res.iterations == 37

    def test_adaptive_stopping_on_clean_data(self, affine_true):
        pts0, pts1 = _affine_data(affine_true, n_out=0, noise=0.0)
        res = ransac(
            AffineFamily(), pts0, pts1, tau=1.0, max_iters=1000, seed=0, confidence=0.99,
        )
        assert res.iterations < 10
        assert res.num_inliers == 200

    def test_cancel_before_first_iteration(self, affine_true):
        pts0, pts1 = _affine_data(affine_true)
        with pytest.raises(InsufficientConsensusError) as info:
            ransac(
                AffineFamily(), pts0, pts1, tau=3.0, max_iters=100, seed=0,
                should_stop=lambda: True,
            )
        assert info.value.cancelled
        assert info.value.iterations == 0

    def test_cancel_polled_once_per_iteration(self, affine_true):
        pts0, pts1 = _affine_data(affine_true)
        polls = []

        def should_stop():
            polls.append(1)
            return len(polls) > 5

        with pytest.raises(InsufficientConsensusError) as info:
            ransac(
                AffineFamily(), pts0, pts1, tau=3.0, max_iters=100, seed=0,
                should_stop=should_stop,
            )
        assert info.value.iterations == 5
        assert info.value.cancelled

    def test_invalid_arguments(self, affine_true):
        pts0, pts1 = _affine_data(affine_true)
        with pytest.raises(ValueError):
            ransac(AffineFamily(), pts0, pts1, tau=0.0, max_iters=10, seed=0)
        with pytest.raises(ValueError):
            ransac(AffineFamily(), pts0, pts1, tau=1.0, max_iters=0, seed=0)
        with pytest.raises(ValueError):
            ransac(AffineFamily(), pts0, pts1, tau=1.0, max_iters=10, seed=0, confidence=1.0)
        with pytest.raises(ValueError):
            ransac(AffineFamily(), pts0, pts1[:-1], tau=1.0, max_iters=10, seed=0)


class TestRansacFailures:
    """Surfaced failure outcomes."""

    def test_too_few_points_runs_zero_iterations(self):
        pts = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        with pytest.raises(InsufficientConsensusError) as info:
            ransac(HomographyFamily(), pts, pts, tau=1.0, max_iters=100, seed=0)
        assert info.value.iterations == 0

    def test_all_collinear_exhausts_samples(self):
        x = np.linspace(0.0, 500.0, 30)
        pts0 = np.stack([x, 0.3 * x + 4.0], axis=1)
        pts1 = pts0 + 10.0
        with pytest.raises(DegenerateSamplesExhaustedError) as info:
            ransac(HomographyFamily(), pts0, pts1, tau=2.0, max_iters=50, seed=0)
        assert info.value.iterations == 50

    def test_random_data_has_no_consensus(self):
        rng = np.random.default_rng(3)
        pts0 = rng.uniform([0, 0], [640, 480], size=(60, 2))
        pts1 = rng.uniform([0, 0], [640, 480], size=(60, 2))
        with pytest.raises(InsufficientConsensusError) as info:
            ransac(
                AffineFamily(), pts0, pts1, tau=2.0, max_iters=200, seed=0, min_inliers=20,
            )
        assert not info.value.cancelled
        assert info.value.best_inliers < 20
        assert info.value.required == 20


class TestRansacScoring:
    """Hypothesis selection and warm-start seeds."""

    def test_seed_model_is_scored(self, affine_true):
        pts0, pts1 = _affine_data(affine_true, noise=0.0)
        res = ransac(
            AffineFamily(), pts0, pts1, tau=1.0, max_iters=1, seed=0,
            seed_models=[affine_true],
        )
        assert np.all(res.inliers[:200])
        np.testing.assert_allclose(res.model, affine_true, atol=1e-8)

    def test_tie_broken_by_lower_residual_sum(self):
        rng = np.random.default_rng(6)
        pts0 = rng.uniform([0, 0], [100, 100], size=(20, 2))
        pts1 = pts0 + np.array([10.0, 0.0])
        exact = np.array([[1.0, 0.0, 10.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
        shifted = np.array([[1.0, 0.0, 10.5], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
        # both explain every point within tau, the exact one must win
        res = ransac(
            AffineFamily(), pts0, pts1, tau=1.0, max_iters=1, seed=0,
            seed_models=[shifted, exact],
        )
        assert res.num_inliers == 20
        assert res.residual_sum < 1e-6

    def test_inlier_threshold_is_inclusive(self):
        pts0 = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
        pts1 = pts0.copy()
        pts1[3] += np.array([2.0, 0.0])  # residual exactly 2.0 under identity
        res = ransac(
            AffineFamily(), pts0, pts1, tau=2.0, max_iters=1, seed=0,
            seed_models=[np.eye(3)],
        )
        assert res.num_inliers == 4
