# Andy Zhao
"""
RANSAC package

This module provides:
- A reusable generic RANSAC implementation
- Typed geometry primitives
- Transform family capability definitions
- Affine and homography models
- The matching error taxonomy
"""

from .types import (
    FloatArray, BoolArray, Points2D, PointsHomog, Mask2D, Mat3x3,
    TransformFamily, Transform, RansacResult, ResidualScratch, as_homogeneous, is_valid_mat3x3,
)

from .errors import (
    MatchingError, DegenerateSampleError, NoCandidatesError,
    DegenerateSamplesExhaustedError, InsufficientConsensusError,
)

from .affine import (
    fit_affine_minimal, fit_affine_least_squares, apply_T, residuals_L2,
)

from .homography import fit_homography, normalize_points

from .affine_fitter import AffineFamily

from .homography_fitter import HomographyFamily

from .families import family_for, FamilyName

from .core import ransac, required_iterations

__all__ = [
    "FloatArray", "BoolArray", "Points2D", "PointsHomog", "Mask2D", "Mat3x3",
    "TransformFamily", "Transform", "RansacResult", "ResidualScratch", "as_homogeneous", "is_valid_mat3x3",
    "MatchingError", "DegenerateSampleError", "NoCandidatesError",
    "DegenerateSamplesExhaustedError", "InsufficientConsensusError",
    "fit_affine_minimal", "fit_affine_least_squares", "apply_T", "residuals_L2",
    "fit_homography", "normalize_points",
    "AffineFamily",
    "HomographyFamily",
    "family_for", "FamilyName",
    "ransac", "required_iterations",
]
