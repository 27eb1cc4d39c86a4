"""Tests for matching one model against many queries."""

import dataclasses

import numpy as np
import pytest

from consistentcv.matching import ConsistentMatcher, FailureReason, FeatureSet, match_many


@pytest.fixture
def queries(scene, scene_factory, homography_true):
    other = scene_factory(homography_true, seed=3, noise_px=0.3)
    rng = np.random.default_rng(21)
    n = len(scene.model)
    unrelated = FeatureSet(
        rng.uniform([0.0, 0.0], [640.0, 480.0], size=(n, 2)),
        rng.uniform(0.0, 1.0, size=(n, scene.model.descriptor_length)),
    )
    return [scene.query, unrelated, other.query]


class TestMatchMany:
    """Parallel fan-out over query sets."""

    def test_same_as_sequential(self, homography_config, scene, queries):
        matcher = ConsistentMatcher(homography_config)
        parallel = match_many(matcher, scene.model, queries, max_workers=3)
        sequential = [matcher.match(scene.model, q) for q in queries]

        assert len(parallel) == len(queries)
        for p, s in zip(parallel, sequential):
            assert p.ok == s.ok
            assert p.failure == s.failure
            assert p.num_candidates == s.num_candidates
            if p.ok:
                np.testing.assert_allclose(p.result.transform.matrix, s.result.transform.matrix, atol=1e-9)
                np.testing.assert_array_equal(p.result.inlier_mask, s.result.inlier_mask)

    def test_order_and_failures(self, homography_config, scene, queries):
        outcomes = match_many(ConsistentMatcher(homography_config), scene.model, queries)
        assert [o.ok for o in outcomes] == [True, False, True]
        assert outcomes[1].failure in (
            FailureReason.NO_CANDIDATES, FailureReason.INSUFFICIENT_CONSENSUS,
        )

    def test_feature_vector_model(self, homography_config, scene):
        outcomes = match_many(ConsistentMatcher(homography_config), list(scene.model), [scene.query])
        assert outcomes[0].ok

    def test_empty_query_list(self, homography_config, scene):
        assert match_many(ConsistentMatcher(homography_config), scene.model, []) == []

    def test_rejects_warm_start_matcher(self, homography_config, scene):
        matcher = ConsistentMatcher(dataclasses.replace(homography_config, warm_start=True))
        with pytest.raises(ValueError):
            match_many(matcher, scene.model, [scene.query])

    def test_rejects_bad_worker_count(self, homography_config, scene):
        with pytest.raises(ValueError):
            match_many(ConsistentMatcher(homography_config), scene.model, [scene.query], max_workers=0)
