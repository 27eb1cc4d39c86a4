# Andy Zhao
"""
Resolve a transform family by name at configuration time.
"""

from __future__ import annotations

from typing import Dict, Literal

from .types import Mat3x3, TransformFamily
from .affine_fitter import AffineFamily
from .homography_fitter import HomographyFamily

FamilyName = Literal["affine", "homography"]

_FAMILIES: Dict[str, TransformFamily[Mat3x3]] = {
    AffineFamily.name: AffineFamily(),
    HomographyFamily.name: HomographyFamily(),
}


def family_for(name: str) -> TransformFamily[Mat3x3]:
    """
    "affine" -> AffineFamily(), "homography" -> HomographyFamily().
    Families are stateless frozen dataclasses, so the instances are shared.
    """
    try:
        return _FAMILIES[name.lower()]
    except (KeyError, AttributeError):
        raise ValueError(
            f"Unknown transform family {name!r}; expected one of {sorted(_FAMILIES)}"
        ) from None
