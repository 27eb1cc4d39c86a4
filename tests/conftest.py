"""Shared test fixtures for matching / RANSAC tests."""

from dataclasses import dataclass

import numpy as np
import pytest

from consistentcv.matching import FeatureSet, MatchConfig
from consistentcv.ransac import apply_T


@dataclass
class Scene:
    """Synthetic model/query pair with known ground truth."""
    model: FeatureSet
    query: FeatureSet
    H: np.ndarray
    inlier_query_idx: np.ndarray   # query indices that are true projections
    outlier_query_idx: np.ndarray  # query indices placed at random locations
    true_model_idx: np.ndarray     # for each query index, the model index it copies


def make_scene(H, *, n_model=80, n_outliers=25, desc_dim=32, noise_px=0.0, seed=0):
    """
    Model features scattered over a 640x480 image with random descriptors.
    Query = every model feature moved by H (+ optional pixel noise), plus
    n_outliers features that copy a model descriptor but sit at a random spot.
    Query order is shuffled.
    """
    rng = np.random.default_rng(seed)

    model_pts = rng.uniform([20.0, 20.0], [620.0, 460.0], size=(n_model, 2))
    model_desc = rng.uniform(0.0, 1.0, size=(n_model, desc_dim))

    in_pts = apply_T(H, model_pts)
    if noise_px > 0:
        in_pts = in_pts + rng.normal(0.0, noise_px, size=in_pts.shape)
    in_desc = model_desc + rng.normal(0.0, 0.01, size=model_desc.shape)

    src = rng.choice(n_model, size=n_outliers, replace=False)
    out_pts = rng.uniform([0.0, 0.0], [640.0, 480.0], size=(n_outliers, 2))
    out_desc = model_desc[src] + rng.normal(0.0, 0.01, size=(n_outliers, desc_dim))

    pts = np.vstack([in_pts, out_pts])
    desc = np.vstack([in_desc, out_desc])
    copies = np.concatenate([np.arange(n_model), src])

    perm = rng.permutation(pts.shape[0])
    is_inlier = perm < n_model

    return Scene(
        model=FeatureSet(model_pts, model_desc),
        query=FeatureSet(pts[perm], desc[perm]),
        H=np.asarray(H, dtype=np.float64),
        inlier_query_idx=np.flatnonzero(is_inlier),
        outlier_query_idx=np.flatnonzero(~is_inlier),
        true_model_idx=copies[perm],
    )


@pytest.fixture
def homography_true():
    """Moderate perspective: w stays within [1, 1.09] over a 640x480 frame."""
    return np.array(
        [[0.9, 0.05, 30.0],
         [-0.04, 1.1, 15.0],
         [1e-4, 5e-5, 1.0]],
        dtype=np.float64,
    )


@pytest.fixture
def affine_true():
    return np.array(
        [[1.05, 0.02, 15.0],
         [-0.01, 0.98, -8.0],
         [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )


@pytest.fixture
def scene(homography_true):
    return make_scene(homography_true, seed=3)


@pytest.fixture
def scene_factory():
    return make_scene


@pytest.fixture
def homography_config():
    return MatchConfig(
        distance_metric="l2",
        ratio_threshold=0.8,
        transform_family="homography",
        inlier_threshold=2.0,
        max_iterations=500,
        minimum_inliers=8,
        random_seed=7,
    )


@pytest.fixture
def unit_square_sets():
    """4 corners of the unit square, query = scale 2 + translate (5,5)."""
    model_pts = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
    desc = np.eye(4, dtype=np.float64)
    query_pts = model_pts * 2.0 + 5.0
    return FeatureSet(model_pts, desc), FeatureSet(query_pts, desc.copy())
