# Andy Zhao
"""
Utilities for cleaning correspondence sets before robust estimation.

Remove:
- NaN/Inf locations (extractors occasionally emit them at image borders)
- extreme displacement outliers, for frame-to-frame tracking where the
  model and query are consecutive frames (helps stability and speed)
"""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from ..ransac.types import Points2D, BoolArray
from .features import Correspondence


def clean_points(
    pts0: Points2D,
    pts1: Points2D,
    *,
    max_motion_px: float | None = None,
) -> BoolArray:
    """
    Keep-mask over (pts0[i], pts1[i]) pairs.
    """
    if pts0.ndim != 2 or pts1.ndim != 2 or pts0.shape != pts1.shape or pts0.shape[1] != 2:
        raise ValueError(f"Expected pts0/pts1 shape (N,2) matching; got {pts0.shape} vs {pts1.shape}")

    # Check if points are finite
    mask = np.isfinite(pts0).all(axis=1)
    mask &= np.isfinite(pts1).all(axis=1)

    # big-jump pruning
    if max_motion_px is not None:
        with np.errstate(invalid="ignore"):
            motion = np.linalg.norm(pts1 - pts0, axis=1)
            mask &= motion <= float(max_motion_px)

    return mask


def clean_correspondences(
    candidates: Sequence[Correspondence],
    pts0: Points2D,
    pts1: Points2D,
    *,
    max_displacement: float | None = None,
) -> tuple[List[Correspondence], Points2D, Points2D]:
    """
    Filter candidates together with their gathered point arrays.

    Returns (kept candidates, pts0[kept], pts1[kept]); order is preserved,
    so the kept list is always a subsequence of `candidates`.
    """
    mask = clean_points(pts0, pts1, max_motion_px=max_displacement)
    if mask.all():
        return list(candidates), pts0, pts1

    kept = [c for c, keep in zip(candidates, mask) if keep]
    return kept, pts0[mask], pts1[mask]
