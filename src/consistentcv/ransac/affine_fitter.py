# Andy Zhao
"""
Adapter: makes affine functions conform to the TransformFamily Protocol.

This keeps ransac/core.py generic and reusable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional

from .errors import DegenerateSampleError
from .types import Points2D, Mat3x3, FloatArray, ResidualScratch, TransformFamily
from .affine import fit_affine_minimal, fit_affine_least_squares, apply_T, residuals_L2


@dataclass(frozen=True)
class AffineFamily(TransformFamily[Mat3x3]):
    """
    6-DoF affine model, minimal sample of 3 correspondences.

    eps_area: minimum 2x triangle area of a minimal sample (pixels^2)
    before it is treated as collinear.
    """
    name: ClassVar[str] = "affine"
    degrees_of_freedom: ClassVar[int] = 6
    min_samples: ClassVar[int] = 3

    eps_area: float = 1e-6

    def fit(self, pts0: Points2D, pts1: Points2D) -> Mat3x3:
        n = pts0.shape[0]
        if n < self.min_samples:
            raise DegenerateSampleError(f"affine fit needs >= {self.min_samples} points, got {n}")
        if n == self.min_samples:
            return fit_affine_minimal(pts0, pts1, eps_area=self.eps_area)
        return fit_affine_least_squares(pts0, pts1)

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
