# Andy Zhao
"""
Feature containers for matching.

- FeatureVector: one local feature, 2D location + fixed-length descriptor.
  This is what an external extractor (SIFT, ORB, ...) hands us.
- FeatureSet: the columnar form the matcher works on.
    locations   (N,2) float64
    descriptors (N,D) float64 or uint8
- Correspondence: a claimed pairing (model index, query index, distance).
  Only indices, descriptors are never copied into it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple, Union

import numpy as np

from ..ransac.types import Points2D


@dataclass(frozen=True, eq=False)
class FeatureVector:
    location: Tuple[float, float]
    descriptor: np.ndarray


@dataclass(frozen=True, eq=False)
class FeatureSet:
    """
    N features as two aligned arrays.

    The descriptor array is held by reference (np.asarray, no copy when it is
    already an ndarray), so the caller keeps ownership of descriptor memory.
    """
    locations: Points2D
    descriptors: np.ndarray

    def __post_init__(self) -> None:
        locations = np.asarray(self.locations, dtype=np.float64)
        descriptors = np.asarray(self.descriptors)

        if locations.ndim != 2 or locations.shape[1] != 2:
            raise ValueError(f"Expected locations shape (N,2), got {locations.shape}")
        if descriptors.ndim != 2:
            raise ValueError(f"Expected descriptors shape (N,D), got {descriptors.shape}")
        if descriptors.shape[0] != locations.shape[0]:
            raise ValueError(
                f"locations and descriptors disagree on N: {locations.shape[0]} vs {descriptors.shape[0]}"
            )
        if not (np.issubdtype(descriptors.dtype, np.number) and not np.iscomplexobj(descriptors)):
            raise ValueError(f"descriptors must be real numeric, got dtype {descriptors.dtype}")

        # frozen dataclass: normalize fields in place
        object.__setattr__(self, "locations", locations)
        object.__setattr__(self, "descriptors", descriptors)

    @classmethod
    def from_features(cls, features: Sequence[FeatureVector]) -> "FeatureSet":
        """
        Stack a sequence of FeatureVector. All descriptors must share one length.
        """
        if len(features) == 0:
            return cls(np.zeros((0, 2), dtype=np.float64), np.zeros((0, 0), dtype=np.float64))

        lengths = {np.asarray(f.descriptor).reshape(-1).shape[0] for f in features}
        if len(lengths) != 1:
            raise ValueError(f"descriptors must share one length, got lengths {sorted(lengths)}")

        locations = np.array([f.location for f in features], dtype=np.float64)
        descriptors = np.stack([np.asarray(f.descriptor).reshape(-1) for f in features])
        return cls(locations, descriptors)

    @property
    def descriptor_length(self) -> int:
        return int(self.descriptors.shape[1])

    def __len__(self) -> int:
        return int(self.locations.shape[0])

    def __getitem__(self, i: int) -> FeatureVector:
        x, y = self.locations[i]
        return FeatureVector(location=(float(x), float(y)), descriptor=self.descriptors[i])

    def __iter__(self) -> Iterator[FeatureVector]:
        for i in range(len(self)):
            yield self[i]


FeatureInput = Union[FeatureSet, Sequence[FeatureVector]]


def as_feature_set(features: FeatureInput) -> FeatureSet:
    if isinstance(features, FeatureSet):
        return features
    return FeatureSet.from_features(features)


@dataclass(frozen=True, order=True)
class Correspondence:
    """
    Pairing of model_set[model_index] with query_set[query_index].
    Valid only together with the two feature sets of the call that produced it.
    """
    model_index: int
    query_index: int
    distance: float


def correspondence_points(
        candidates: Sequence[Correspondence],
        model_set: FeatureSet,
        query_set: FeatureSet,
) -> tuple[Points2D, Points2D]:
    """
    Gather (pts0, pts1) for RANSAC: model locations -> query locations, (N,2) each.
    """
    model_idx = np.fromiter((c.model_index for c in candidates), dtype=np.intp, count=len(candidates))
    query_idx = np.fromiter((c.query_index for c in candidates), dtype=np.intp, count=len(candidates))
    return model_set.locations[model_idx], query_set.locations[query_idx]
