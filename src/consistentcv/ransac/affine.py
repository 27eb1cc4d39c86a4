# Andy Zhao
"""
Affine model utilities (3x3 homogeneous form), plus the point mapping and
transfer-error residual shared by every 3x3 model family.

We estimate an affine transform T such that:

    [x', y', 1]^T  ≈  T @ [x, y, 1]^T

where:

    T = [[a, b, tx],
         [c, d, ty],
         [0, 0,  1]]

Unknowns are 6 parameters: a, b, tx, c, d, ty.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .errors import DegenerateSampleError
from .types import (
    Points2D, PointsHomog, Mat3x3, FloatArray, ResidualScratch,
    as_homogeneous, is_valid_mat3x3)

# |w| below this means the point maps to (or near) the line at infinity
W_EPS = 1e-12


# ---------- Degeneracy Check Helpers ----------
def triangle_area2(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray) -> float:
    """
    Return 2x the triangle area formed by (p1, p2, p3).
    Compute the magnitude of the 2D cross product:

        area2 = |(p2 - p1) x (p3 - p1)|

    If area2 is near 0, the three points are collinear.
    """
    u = p2 - p1
    v = p3 - p1

    # In 2D, "cross product magnitude" is a scalar
    return float(abs(u[0] * v[1] - u[1] * v[0]))


def _is_degenerate_triplet(pts: Points2D, eps_area: float = 1e-6) -> bool:
    """
    Check whether 3 points (shape (3,2)) are nearly collinear.

    eps_area is threshold on 2x area.
    """
    if pts.shape != (3, 2):
        raise ValueError(f"Expected (3,2) triplet, got {pts.shape}")

    return triangle_area2(pts[0], pts[1], pts[2]) < eps_area


def _check_pairs(pts0: Points2D, pts1: Points2D) -> None:
    if pts0.shape != pts1.shape:
        raise ValueError(f"pts0 and pts1 must have same shape, got {pts0.shape} vs {pts1.shape}")
    if pts0.ndim != 2 or pts0.shape[1] != 2:
        raise ValueError(f"Expected pts shape (N,2), got {pts0.shape}")


# ---------- Affine Fitting ----------
def _theta_to_mat3x3(theta: np.ndarray) -> Mat3x3:
    """
    Convert parameter vector theta = [a, b, tx, c, d, ty] into a 3x3 affine matrix.
    """
    T = np.eye(3, dtype=np.float64)
    T[0, :] = theta[0:3]
    T[1, :] = theta[3:6]
    return T


def _affine_system(pts0: Points2D, pts1: Points2D) -> tuple[FloatArray, FloatArray]:
    """
    Build the linear system A theta = b.

    For each correspondence (x, y) -> (x', y'):
      x' = a*x + b*y + tx      -> row [x, y, 1, 0, 0, 0]
      y' = c*x + d*y + ty      -> row [0, 0, 0, x, y, 1]

    Each point gives 2 rows, so A is (2N, 6) and b is (2N,).
    Rows are interleaved: even rows are x' equations, odd rows are y'.
    """
    n = pts0.shape[0]
    ph = as_homogeneous(pts0)

    A = np.zeros((2 * n, 6), dtype=np.float64)
    A[0::2, 0:3] = ph
    A[1::2, 3:6] = ph

    b_vec = np.asarray(pts1, dtype=np.float64).reshape(-1)  # [x0', y0', x1', y1', ...]
    return A, b_vec


def fit_affine_minimal(pts0: Points2D, pts1: Points2D, eps_area: float = 1e-6) -> Mat3x3:
    """
    Fit affine transform from exactly 3 point correspondences.

    pts0: (3,2) source points
    pts1: (3,2) target points

    Raises DegenerateSampleError if either triplet is collinear or the solve fails.
    """
    if pts0.shape != (3, 2) or (pts1.shape != (3, 2)):
        raise ValueError(f"fit_affine_minimal expects (3,2) inputs, got {pts0.shape} and {pts1.shape}")

    # If any triplet is collinear, the affine solve is not uniquely determined.
    if _is_degenerate_triplet(pts0, eps_area) or _is_degenerate_triplet(pts1, eps_area=eps_area):
        raise DegenerateSampleError("collinear affine sample")

    A, b_vec = _affine_system(pts0, pts1)

    # A is square (6x6). If singular (numerically), solve throws.
    try:
        theta = np.linalg.solve(A, b_vec)
    except np.linalg.LinAlgError as exc:
        raise DegenerateSampleError(f"affine solve failed: {exc}") from exc

    T = _theta_to_mat3x3(theta)
    if not is_valid_mat3x3(T):
        raise DegenerateSampleError("affine solve produced non-finite values")
    return T


def fit_affine_least_squares(pts0: Points2D, pts1: Points2D) -> Mat3x3:
    """
    Fit affine transform from N >= 3 correspondences using least squares.

    This is used after RANSAC picks inliers: refit with all inliers for best estimate.

    Uses np.linalg.lstsq(A, b): finds theta that minimizes ||A theta - b||^2.
    """
    _check_pairs(pts0, pts1)
    if pts0.shape[0] < 3:
        raise DegenerateSampleError(f"affine fit needs >= 3 points, got {pts0.shape[0]}")

    A, b_vec = _affine_system(pts0, pts1)

    try:
        theta, _, rank, _ = np.linalg.lstsq(A, b_vec, rcond=None)
    except np.linalg.LinAlgError as exc:
        raise DegenerateSampleError(f"affine lstsq failed: {exc}") from exc

    # Affine has 6 unknowns, rank < 6 means the points don't pin them down
    # (all collinear, repeated points, ...).
    if rank < 6:
        raise DegenerateSampleError(f"rank-deficient affine system (rank={rank})")

    T = _theta_to_mat3x3(theta)
    if not is_valid_mat3x3(T):
        raise DegenerateSampleError("affine lstsq produced non-finite values")
    return T


# ---------- Apply transform + residuals ----------
def apply_T(T: Mat3x3, pts: Points2D) -> Points2D:
    """
    Apply a 3x3 transform to (N,2) points, returning (N,2) points.

        [x', y', w]^T = T @ [x, y, 1]^T,   result = (x'/w, y'/w)

    For affine w is always 1.
    """
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"Expected pts shape (N,2), got {pts.shape}")
    if T.shape != (3, 3):
        raise ValueError(f"Expected T shape (3,3), got {T.shape}")

    ph: PointsHomog = as_homogeneous(pts)

    # Each point is a row, so multiply by T^T
    ph_t = ph @ T.T  # shape (N,3)

    with np.errstate(divide="ignore", invalid="ignore"):
        out = ph_t[:, :2] / ph_t[:, 2:3]
    return out.astype(np.float64)


def residuals_L2(
        T: Mat3x3,
        pts0: Points2D,
        pts1: Points2D,
        out: Optional[FloatArray] = None,
        scratch: Optional[ResidualScratch] = None,
) -> FloatArray:
    """
    Compute per-point one-directional transfer error in pixels:

        e_i = || apply_T(T, pts0[i]) - pts1[i] ||_2

    Points that map to infinity (|w| ~ 0) get +inf.

    Called once per RANSAC iteration. With `out` and `scratch` provided
    nothing is allocated: every intermediate is written in place.
    Returns shape (N,).
    """
    if pts0.shape != pts1.shape:
        raise ValueError(f"pts0 and pts1 must have same shape, got {pts0.shape} vs {pts1.shape}")
    n = pts0.shape[0]
    if out is None:
        out = np.empty((n,), dtype=np.float64)
    if scratch is None:
        scratch = ResidualScratch.for_size(n)
    elif len(scratch) != n:
        raise ValueError(f"scratch sized for {len(scratch)} points, got {n}")

    x = pts0[:, 0]
    y = pts0[:, 1]
    px, py, w = scratch.xyw

    # row r of T applied to every point: T[r,0]*x + T[r,1]*y + T[r,2]
    # (`out` is free until the final hypot, so it holds the y term)
    def project_row(r: int, dst: FloatArray) -> None:
        np.multiply(x, T[r, 0], out=dst)
        np.multiply(y, T[r, 1], out=out)
        dst += out
        dst += T[r, 2]

    project_row(0, px)
    project_row(1, py)

    projective = T[2, 0] != 0.0 or T[2, 1] != 0.0 or T[2, 2] != 1.0
    if projective:
        project_row(2, w)
        with np.errstate(divide="ignore", invalid="ignore"):
            px /= w
            py /= w
        np.abs(w, out=w)
        np.less(w, W_EPS, out=scratch.far)

    px -= pts1[:, 0]
    py -= pts1[:, 1]
    np.hypot(px, py, out=out)

    if projective:
        np.copyto(out, np.inf, where=scratch.far)
    return out
