# Andy Zhao
"""
Homography model utilities (planar projective, 8 DoF).

We estimate H such that:

    [x', y', w']^T  ~  H @ [x, y, 1]^T,      (x', y') / w' = query point

H is defined up to scale, so 9 entries carry 8 degrees of freedom.

Direct Linear Transform (DLT):
  each correspondence (x, y) -> (u, v) gives two rows of A h = 0

    [-x, -y, -1,  0,  0,  0, u*x, u*y, u]
    [ 0,  0,  0, -x, -y, -1, v*x, v*y, v]

  h is the right singular vector of A with the smallest singular value.

Raw pixel coordinates (hundreds to thousands) make A badly conditioned,
the x*u terms dwarf the constant column. So both point sets are
normalized first (Hartley):
  - translate the centroid to the origin
  - scale so the mean distance from the origin is sqrt(2)
then H = inv(T1) @ Hn @ T0.
"""

from __future__ import annotations

from itertools import combinations

import numpy as np

from .affine import triangle_area2, _check_pairs
from .errors import DegenerateSampleError
from .types import Points2D, Mat3x3, FloatArray, is_valid_mat3x3

SQRT2 = float(np.sqrt(2.0))


def normalize_points(pts: Points2D, eps: float = 1e-12) -> tuple[Mat3x3, Points2D]:
    """
    Hartley normalization.

    Returns (T, pts_n) with pts_n = apply(T, pts):
      - mean of pts_n is (0, 0)
      - mean distance of pts_n from the origin is sqrt(2)

    Raises DegenerateSampleError if all points coincide (no spread to scale).
    """
    mean = pts.mean(axis=0)
    centered = pts - mean
    mean_dist = float(np.mean(np.hypot(centered[:, 0], centered[:, 1])))
    if not np.isfinite(mean_dist) or mean_dist < eps:
        raise DegenerateSampleError("points have no spatial spread")

    s = SQRT2 / mean_dist
    T = np.array(
        [
            [s, 0.0, -s * mean[0]],
            [0.0, s, -s * mean[1]],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )
    return T, centered * s


def _has_collinear_triple(pts: Points2D, eps_area: float) -> bool:
    # 4 points -> 4 triples
    return any(
        triangle_area2(pts[i], pts[j], pts[k]) < eps_area
        for i, j, k in combinations(range(pts.shape[0]), 3)
    )


def _dlt_system(p0: Points2D, p1: Points2D) -> FloatArray:
    n = p0.shape[0]
    x, y = p0[:, 0], p0[:, 1]
    u, v = p1[:, 0], p1[:, 1]

    A = np.zeros((2 * n, 9), dtype=np.float64)
    A[0::2, 0] = -x
    A[0::2, 1] = -y
    A[0::2, 2] = -1.0
    A[0::2, 6] = u * x
    A[0::2, 7] = u * y
    A[0::2, 8] = u

    A[1::2, 3] = -x
    A[1::2, 4] = -y
    A[1::2, 5] = -1.0
    A[1::2, 6] = v * x
    A[1::2, 7] = v * y
    A[1::2, 8] = v
    return A


def fit_homography(
        pts0: Points2D,
        pts1: Points2D,
        *,
        eps_area: float = 1e-6,
        rank_tol: float = 1e-10,
) -> Mat3x3:
    """
    Fit a homography from N >= 4 correspondences (normalized DLT, SVD solve).

    N == 4 is the minimal case (exact fit), N > 4 is the least-squares refit
    (minimizes algebraic error in normalized coordinates).

    Degenerate cases raise DegenerateSampleError:
      - fewer than 4 points, or no spatial spread on either side
      - minimal sample containing a collinear triple (in normalized coords)
      - rank-deficient system: second smallest singular value ~ 0,
        i.e. the null space is not 1-dimensional
      - non-finite result
    """
    _check_pairs(pts0, pts1)
    n = pts0.shape[0]
    if n < 4:
        raise DegenerateSampleError(f"homography fit needs >= 4 points, got {n}")

    T0, p0 = normalize_points(pts0)
    T1, p1 = normalize_points(pts1)

    # Normalized coords have mean distance sqrt(2), so eps_area is scale-free here.
    if n == 4 and (_has_collinear_triple(p0, eps_area) or _has_collinear_triple(p1, eps_area)):
        raise DegenerateSampleError("collinear triple in homography sample")

    A = _dlt_system(p0, p1)

    try:
        # full_matrices=True so Vt is 9x9 even when A has only 8 rows
        _, s, Vt = np.linalg.svd(A, full_matrices=True)
    except np.linalg.LinAlgError as exc:
        raise DegenerateSampleError(f"homography SVD failed: {exc}") from exc

    # With 8 rows s has 8 entries, the 9th singular value is implicitly 0.
    # Unique solution needs the 8th largest singular value to be non-zero.
    if s[0] <= 0.0 or s[7] / s[0] < rank_tol:
        raise DegenerateSampleError("rank-deficient homography system")

    Hn = Vt[-1].reshape(3, 3)

    # Denormalize
    H = np.linalg.inv(T1) @ Hn @ T0

    # Fix the scale. H[2,2] == 0 is a valid (if unusual) homography,
    # fall back to unit Frobenius norm in that case.
    if abs(H[2, 2]) > 1e-12:
        H = H / H[2, 2]
    else:
        H = H / np.linalg.norm(H)

    if not is_valid_mat3x3(H):
        raise DegenerateSampleError("homography fit produced non-finite values")
    return H
