# Andy Zhao

"""
Shared typed primitives for the matching/RANSAC pipeline.

Defines:
- Typed NumPy aliases for geometry
    - Points are (N,2) float arrays
    - Transforms are 3x3 homogeneous matrices
- Capability protocol for a transform family (affine, homography)
- Fitted transform container (matrix + the family that produced it)
- Structured RANSAC result container (model + inliers + stats)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, TypeVar, Generic, Optional, TypeAlias, Tuple

import numpy as np
import numpy.typing as npt

# ---------- Numpy typing aliases ----------
# standardize numeric dtypes so bugs are easier to spot and code is consistent.
# - float64 for geometry / matrices (more stable for linear algebra)
# - bool_ for masks

FloatArray: TypeAlias = npt.NDArray[np.float64]
BoolArray: TypeAlias = npt.NDArray[np.bool_]

# Points in 2D image coordinates. Stored as float64 for consistency in math.
Points2D: TypeAlias = FloatArray      # shape: (N, 2)

# Homogeneous points [x, y, 1] for 3x3 transforms (affine/homography).
PointsHomog: TypeAlias = FloatArray   # shape: (N, 3)

# Boolean inlier mask: True as inlier, False as outlier
Mask2D: TypeAlias = BoolArray         # shape: (N,)

# 3x3 homogeneous transform matrix.
# Affine is represented as 3x3 with last row [0,0,1].
Mat3x3: TypeAlias = FloatArray        # shape: (3, 3)

# ---------- Residual scratch space ----------
@dataclass(frozen=True, eq=False)
class ResidualScratch:
    """
    Work arrays for residual evaluation over N correspondences.

    RANSAC scores every hypothesis against the same N points, so it allocates
    one of these up front and hands it to every residuals() call.
    - xyw: (3,N) float64, rows hold projected x, y and the homogeneous w
    - far: (N,) bool, points whose |w| is ~0 (mapped to infinity)
    """
    xyw: FloatArray
    far: BoolArray

    @classmethod
    def for_size(cls, n: int) -> "ResidualScratch":
        return cls(
            xyw=np.empty((3, n), dtype=np.float64),
            far=np.empty((n,), dtype=np.bool_),
        )

    def __len__(self) -> int:
        return int(self.far.shape[0])


# ---------- Generic model typing ----------
# For affine/homography, will use Mat3x3
# Keeping it generic to make RANSAC reusable.
M = TypeVar("M")


class TransformFamily(Protocol[M]):
    """
    Capabilities a parametric model family must provide to be usable by the
    generic RANSAC implementation.

    RANSAC steps:
    1) Fit a model from a minimal sample
    2) Score all correspondences with a per-point residual error
    3) Refit a better model from all inliers (same fit, more points)

    The family is chosen at configuration time (see family_for), there is no
    class hierarchy behind it.
    """

    name: str
    degrees_of_freedom: int
    min_samples: int

    def fit(self, pts0: Points2D, pts1: Points2D) -> M:
        """
        Fit from min_samples (minimal solver) or more (least squares) pairs.
        Raise DegenerateSampleError if the points do not determine a unique model.
        """
        ...

    def apply(self, model: M, pts: Points2D) -> Points2D:
        """Map (N,2) model-space points into query space."""
        ...

    def residuals(
            self,
            model: M,
            pts0: Points2D,
            pts1: Points2D,
            out: Optional[FloatArray] = None,
            scratch: Optional[ResidualScratch] = None,
    ) -> FloatArray:
        """
        Return a vector of residual errors, one per correspondence.
        Shape: (N,). Smaller = better. Written into `out` when given,
        intermediates go to `scratch` when given.
        """
        ...


# ---------- RANSAC output container ----------
# A typed result struct to store RANSAC output
# frozen=True means "immutable" after construction
# eq=False: holds ndarrays, compare fields explicitly
@dataclass(frozen=True, eq=False)
class RansacResult(Generic[M]):
    model: M              # refit model (e.g., 3x3 homography)
    inliers: Mask2D       # boolean mask of inliers under the winning hypothesis
    num_inliers: int      # count of True values in inliers
    rms_error: float      # RMS error of inliers under the refit model
    residual_sum: float   # summed inlier residual of the winning hypothesis
    iterations: int       # how many RANSAC iterations were actually run
    threshold: float      # the inlier threshold tau used


# ---------- Fitted transform ----------
@dataclass(frozen=True, eq=False)
class Transform:
    """
    A fitted model instance: 3x3 matrix plus the family that produced it.

    Maps model-image coordinates to query-image coordinates.
    """
    matrix: Mat3x3
    family: TransformFamily[Mat3x3]

    @property
    def degrees_of_freedom(self) -> int:
        return self.family.degrees_of_freedom

    @property
    def min_samples(self) -> int:
        return self.family.min_samples

    def apply(self, pts: Points2D) -> Points2D:
        return self.family.apply(self.matrix, np.asarray(pts, dtype=np.float64).reshape(-1, 2))

    def residuals(self, pts0: Points2D, pts1: Points2D) -> FloatArray:
        pts0 = np.asarray(pts0, dtype=np.float64).reshape(-1, 2)
        pts1 = np.asarray(pts1, dtype=np.float64).reshape(-1, 2)
        return self.family.residuals(self.matrix, pts0, pts1)

    def residual(self, model_pt: Tuple[float, float], query_pt: Tuple[float, float]) -> float:
        return float(self.residuals(np.asarray([model_pt]), np.asarray([query_pt]))[0])

    def inverse(self) -> "Transform":
        """
        Query -> model mapping. Raises numpy LinAlgError if the matrix is singular.
        """
        inv = np.linalg.inv(self.matrix)
        if abs(inv[2, 2]) > 1e-12:
            inv = inv / inv[2, 2]
        return Transform(matrix=inv, family=self.family)

    def project_box(self, width: float, height: float) -> Points2D:
        """
        Project the model image bounds into the query image.
        Returns (4,2) corners in order: top-left, top-right, bottom-right, bottom-left.
        """
        corners = np.array(
            [[0.0, 0.0], [width, 0.0], [width, height], [0.0, height]],
            dtype=np.float64,
        )
        return self.apply(corners)


# ---------- Helper Function ----------
def as_homogeneous(pts: Points2D) -> PointsHomog:
    """
    Convert (N,2) points -> (N,3) homogeneous points: [x, y, 1].
    - 3x3 transforms (affine/homography) are easiest to apply to homogeneous points.
    """
    # Validate shape
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"Expected points shape (N, 2) but got {pts.shape}")

    # Create a column filled with 1 for the homogeneous coordinate.
    ones = np.ones((pts.shape[0], 1), dtype=np.float64)

    # Horizontally stack [x, y] with [1].
    # Ensure float64
    return np.hstack([pts.astype(np.float64), ones])


def is_valid_mat3x3(T: Mat3x3) -> bool:
    """
    Verify a 3x3 transform matrix.
    Used for rejecting failed fits.
    """
    return isinstance(T, np.ndarray) and T.shape == (3, 3) and np.isfinite(T).all()
