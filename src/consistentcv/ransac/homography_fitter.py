# Andy Zhao
"""
Adapter: makes homography functions conform to the TransformFamily Protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional

from .types import Points2D, Mat3x3, FloatArray, ResidualScratch, TransformFamily
from .affine import apply_T, residuals_L2
from .homography import fit_homography


@dataclass(frozen=True)
class HomographyFamily(TransformFamily[Mat3x3]):
    """
    8-DoF planar projective model, minimal sample of 4 correspondences.

    The same normalized DLT handles the minimal sample and the inlier refit.
    Residual is the one-directional transfer error (model -> query), same
    as AffineFamily, so inlier counts are comparable across families.
    """
    name: ClassVar[str] = "homography"
    degrees_of_freedom: ClassVar[int] = 8
    min_samples: ClassVar[int] = 4

    eps_area: float = 1e-6
    rank_tol: float = 1e-10

    def fit(self, pts0: Points2D, pts1: Points2D) -> Mat3x3:
        return fit_homography(pts0, pts1, eps_area=self.eps_area, rank_tol=self.rank_tol)

    def apply(self, model: Mat3x3, pts: Points2D) -> Points2D:
        return apply_T(model, pts)

    def residuals(
            self,
            model: Mat3x3,
            pts0: Points2D,
            pts1: Points2D,
            out: Optional[FloatArray] = None,
            scratch: Optional[ResidualScratch] = None,
    ) -> FloatArray:
        return residuals_L2(model, pts0, pts1, out=out, scratch=scratch)
