# Andy Zhao
"""
Nearest-neighbour descriptor matching with best/second-best ratio rejection
(Lowe's ratio test).

For each query descriptor:
  1) distance to every model descriptor (L1 or L2)
  2) keep best and second-best distance
  3) accept (model best, query) iff
        best <  second_best                     (ties are ambiguous)
        best <= ratio * second_best             (distinct enough)
        best <= absolute_threshold              (if configured)

The ratio test rejects a match when the model has near-duplicate
descriptors, even if the absolute distance is small.

Backends:
  - "brute": exact float64 numpy, processed in query blocks so the
    (B, M, D) difference tensor stays bounded.
  - "opencv": cv2.BFMatcher knnMatch(k=2) on float32 copies picks the two
    neighbours, their distances are recomputed in float64 and go through
    the same acceptance rule.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Literal, Optional, Tuple

import cv2
import numpy as np

from .features import Correspondence, FeatureInput, FeatureSet, as_feature_set

logger = logging.getLogger(__name__)

Metric = Literal["l1", "l2"]
Backend = Literal["brute", "opencv"]

_CV_NORMS = {"l1": cv2.NORM_L1, "l2": cv2.NORM_L2}


@dataclass(frozen=True)
class NNMatchParams:
    """
    Parameters:
    - metric: "l1" or "l2" over the descriptor vector
    - ratio: accept iff best <= ratio * second_best, must be in (0, 1]
    - absolute_threshold: optional upper bound on the best distance
    - backend: "brute" (exact numpy) or "opencv" (cv2.BFMatcher)
    - max_block_elements: cap on B*M*D for one brute-force block
    """
    metric: Metric = "l2"
    ratio: float = 0.8
    absolute_threshold: Optional[float] = None
    backend: Backend = "brute"
    max_block_elements: int = 1 << 22

    def validate(self) -> None:
        if self.metric not in _CV_NORMS:
            raise ValueError(f"metric must be 'l1' or 'l2', got {self.metric!r}")
        if not (0.0 < self.ratio <= 1.0):
            raise ValueError(f"ratio must be in (0, 1], got {self.ratio}")
        if self.absolute_threshold is not None and not self.absolute_threshold > 0.0:
            raise ValueError(f"absolute_threshold must be > 0, got {self.absolute_threshold}")
        if self.backend not in ("brute", "opencv"):
            raise ValueError(f"backend must be 'brute' or 'opencv', got {self.backend!r}")
        if self.max_block_elements < 1:
            raise ValueError("max_block_elements must be >= 1")


# ---------- Two-nearest search ----------
def _two_nearest_brute(
        model_desc: np.ndarray,
        query_desc: np.ndarray,
        metric: Metric,
        max_block_elements: int,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Returns (best_idx, best_dist, second_dist), one entry per query.
    second_dist is +inf when the model set has a single feature.
    """
    model = model_desc.astype(np.float64, copy=False)
    query = query_desc.astype(np.float64, copy=False)
    nq, d = query.shape
    nm = model.shape[0]

    best_idx = np.empty((nq,), dtype=np.intp)
    best = np.empty((nq,), dtype=np.float64)
    second = np.full((nq,), np.inf, dtype=np.float64)

    block = max(1, max_block_elements // max(1, nm * d))
    for start in range(0, nq, block):
        stop = min(nq, start + block)
        diff = query[start:stop, None, :] - model[None, :, :]  # (B, M, D)
        if metric == "l2":
            dist = np.sqrt(np.einsum("bmd,bmd->bm", diff, diff))
        else:
            dist = np.abs(diff).sum(axis=2)

        rows = np.arange(stop - start)
        i_best = np.argmin(dist, axis=1)
        best_idx[start:stop] = i_best
        best[start:stop] = dist[rows, i_best]

        if nm > 1:
            # mask out the winner, the next minimum is the runner-up
            dist[rows, i_best] = np.inf
            second[start:stop] = dist.min(axis=1)

    return best_idx, best, second


def _row_distances(a: np.ndarray, b: np.ndarray, metric: Metric) -> np.ndarray:
    """Row-wise distance between two (N,D) float64 arrays."""
    diff = a - b
    if metric == "l2":
        return np.sqrt(np.einsum("nd,nd->n", diff, diff))
    return np.abs(diff).sum(axis=1)


def _two_nearest_opencv(
        model_desc: np.ndarray,
        query_desc: np.ndarray,
        metric: Metric,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    BFMatcher only picks the two neighbours. Their distances are recomputed
    in float64, so float32 rounding cannot create or break a ratio-test tie.
    """
    model = model_desc.astype(np.float64, copy=False)
    query = query_desc.astype(np.float64, copy=False)
    nq = query.shape[0]

    # -1 = no neighbour returned
    nn_idx = np.full((nq, 2), -1, dtype=np.intp)

    bf = cv2.BFMatcher(_CV_NORMS[metric], crossCheck=False)
    knn = bf.knnMatch(
        np.ascontiguousarray(query_desc, dtype=np.float32),
        np.ascontiguousarray(model_desc, dtype=np.float32),
        k=2,
    )
    for pair in knn:
        for k, m in enumerate(pair[:2]):
            nn_idx[m.queryIdx, k] = m.trainIdx

    dist = np.full((nq, 2), np.inf, dtype=np.float64)
    for k in range(2):
        found = nn_idx[:, k] >= 0
        dist[found, k] = _row_distances(model[nn_idx[found, k]], query[found], metric)

    # float64 may order the pair differently than float32 did
    swap = dist[:, 1] < dist[:, 0]
    nn_idx[swap] = nn_idx[swap, ::-1]
    dist[swap] = dist[swap, ::-1]

    best_idx = np.maximum(nn_idx[:, 0], 0)
    return best_idx, dist[:, 0], dist[:, 1]


# ---------- Ratio test ----------
def ratio_test(
        best: np.ndarray,
        second: np.ndarray,
        *,
        ratio: float,
        absolute_threshold: Optional[float] = None,
) -> np.ndarray:
    """Boolean accept mask for (best, second-best) distance pairs."""
    accept = (best < second) & (best <= ratio * second)
    if absolute_threshold is not None:
        accept &= best <= absolute_threshold
    return accept


def _declared_length(features: FeatureSet) -> Optional[int]:
    if len(features) == 0 and features.descriptor_length == 0:
        return None
    return features.descriptor_length


def match_descriptors(
        model_set: FeatureInput,
        query_set: FeatureInput,
        params: NNMatchParams,
) -> List[Correspondence]:
    """
    Produce candidate correspondences, ordered by query index.

    Pure function of its inputs. Empty list when nothing passes (or either
    set is empty); empty is a normal outcome, not an error.
    """
    params.validate()
    model_set = as_feature_set(model_set)
    query_set = as_feature_set(query_set)

    # An empty set stacked from no FeatureVectors is (0,0) and carries no length
    model_len = _declared_length(model_set)
    query_len = _declared_length(query_set)
    if model_len is not None and query_len is not None and model_len != query_len:
        raise ValueError(
            f"descriptor length mismatch: model {model_len} vs query {query_len}"
        )
    if len(model_set) == 0 or len(query_set) == 0:
        return []

    if params.backend == "opencv":
        best_idx, best, second = _two_nearest_opencv(
            model_set.descriptors, query_set.descriptors, params.metric,
        )
    else:
        best_idx, best, second = _two_nearest_brute(
            model_set.descriptors, query_set.descriptors, params.metric, params.max_block_elements,
        )

    accept = ratio_test(
        best, second, ratio=params.ratio, absolute_threshold=params.absolute_threshold,
    )

    matches = [
        Correspondence(model_index=int(best_idx[q]), query_index=int(q), distance=float(best[q]))
        for q in np.flatnonzero(accept)
    ]
    logger.debug(
        "NN %s/%s: %d/%d query features passed ratio=%.2f",
        params.backend, params.metric, len(matches), len(query_set), params.ratio,
    )
    return matches


class NearestNeighbourMatcher:
    """
    Stateless wrapper holding NNMatchParams.

        matcher = NearestNeighbourMatcher(NNMatchParams(metric="l2", ratio=0.8))
        candidates = matcher.match(model_set, query_set)
    """

    def __init__(self, params: NNMatchParams = NNMatchParams()) -> None:
        params.validate()
        self.params = params

    def match(self, model_set: FeatureInput, query_set: FeatureInput) -> List[Correspondence]:
        return match_descriptors(model_set, query_set, self.params)

