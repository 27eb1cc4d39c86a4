# Andy Zhao
"""
ConsistentMatcher: "is this model present in this query, and where?"

Pipeline per call:
  a) model_set, query_set -> NN ratio matching -> candidate correspondences
  b) drop candidates with non-finite / implausible locations
  c) RANSAC(candidates) under the configured transform family
  d) -> MatchResult (transform, inliers, outlier count, iterations)

"No match" is a normal outcome. match() reports it as a FailureReason,
find_correspondence() as None. Nothing here raises for a missing model;
only precondition violations (bad config, descriptor length mismatch)
raise ValueError.

Warm start:
  pass the previous frame's MatchResult as `previous`. Its transform and
  the refit over current candidates that share model features with its
  inliers are scored as seed hypotheses before random sampling.
  With config.warm_start=True the matcher remembers its own last result
  and does this automatically. That is the only cross-call state, so such
  a matcher must not be shared across threads without a lock.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import MISSING, dataclass, fields
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..ransac.core import ransac
from ..ransac.errors import (
    DegenerateSampleError, DegenerateSamplesExhaustedError, InsufficientConsensusError,
    MatchingError, NoCandidatesError,
)
from ..ransac.families import FamilyName, family_for
from ..ransac.types import Mask2D, Mat3x3, Points2D, RansacResult, Transform, TransformFamily
from .clean_points import clean_correspondences
from .features import Correspondence, FeatureInput, as_feature_set, correspondence_points
from .nn_matcher import Backend, Metric, NearestNeighbourMatcher, NNMatchParams

logger = logging.getLogger(__name__)


# Configuration
def _is_int(value: Any) -> bool:
    # bool is an int subclass but never a valid count or seed
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


@dataclass(frozen=True)
class MatchConfig:
    """
    Immutable configuration for one ConsistentMatcher.

    Required:
    - distance_metric: "l1" | "l2" descriptor distance
    - ratio_threshold: NN ratio test, in (0, 1] (0.8 is the usual choice)
    - transform_family: "affine" | "homography"
    - inlier_threshold: max transfer error in pixels for an inlier
    - max_iterations: RANSAC iteration budget
    - minimum_inliers: consensus needed to report a match
    - random_seed: seed for the per-call RNG (uint64 range)

    Optional:
    - absolute_threshold: max best-match descriptor distance
    - confidence: adaptive stopping probability, None = fixed max_iterations
    - nn_backend: "brute" (exact numpy) | "opencv" (cv2.BFMatcher)
    - max_displacement: drop candidates that moved further (pixels),
      for tracking between consecutive frames
    - warm_start: remember the last result and seed the next call with it
    """
    distance_metric: Metric
    ratio_threshold: float
    transform_family: FamilyName
    inlier_threshold: float
    max_iterations: int
    minimum_inliers: int
    random_seed: int

    absolute_threshold: Optional[float] = None
    confidence: Optional[float] = None
    nn_backend: Backend = "brute"
    max_displacement: Optional[float] = None
    warm_start: bool = False

    def validate(self) -> None:
        self.nn_params().validate()
        family_for(self.transform_family)

        if not self.inlier_threshold > 0.0:
            raise ValueError(f"inlier_threshold must be > 0, got {self.inlier_threshold}")
        if not _is_int(self.max_iterations) or self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be a positive int, got {self.max_iterations!r}")
        if not _is_int(self.minimum_inliers) or self.minimum_inliers < 0:
            raise ValueError(f"minimum_inliers must be a non-negative int, got {self.minimum_inliers!r}")
        if not _is_int(self.random_seed) or not (0 <= int(self.random_seed) < 2 ** 64):
            raise ValueError(f"random_seed must be an int in uint64 range, got {self.random_seed!r}")
        if self.confidence is not None and not (0.0 < self.confidence < 1.0):
            raise ValueError(f"confidence must be in (0, 1), got {self.confidence}")
        if self.max_displacement is not None and not self.max_displacement > 0.0:
            raise ValueError(f"max_displacement must be > 0, got {self.max_displacement}")

    def nn_params(self) -> NNMatchParams:
        return NNMatchParams(
            metric=self.distance_metric,
            ratio=self.ratio_threshold,
            absolute_threshold=self.absolute_threshold,
            backend=self.nn_backend,
        )

    @property
    def family(self) -> TransformFamily[Mat3x3]:
        return family_for(self.transform_family)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "MatchConfig":
        """
        Build from an already-parsed mapping (JSON/YAML/TOML section, kwargs...).
        Unknown keys are rejected rather than silently ignored.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ValueError(f"Unknown MatchConfig keys: {unknown}")
        missing = sorted(
            f.name for f in fields(cls)
            if f.name not in mapping and f.default is MISSING and f.default_factory is MISSING
        )
        if missing:
            raise ValueError(f"Missing MatchConfig keys: {missing}")

        cfg = cls(**dict(mapping))
        cfg.validate()
        return cfg


# Results
class FailureReason(enum.Enum):
    NO_CANDIDATES = "no_candidates"
    DEGENERATE_SAMPLES_EXHAUSTED = "degenerate_samples_exhausted"
    INSUFFICIENT_CONSENSUS = "insufficient_consensus"


@dataclass(frozen=True, eq=False)
class MatchResult:
    """
    Terminal artifact of one successful match. Recomputed on every call.

    - transform: fitted model, maps model coordinates -> query coordinates
    - inliers: verified correspondences (subset of candidates)
    - outlier_count: candidates rejected by the geometric check
    - num_iterations: RANSAC sampling iterations actually run
    - inlier_mask: aligned with candidates
    - candidates: every correspondence that entered RANSAC
    - rms_error: inlier RMS transfer error under the refit transform
    - threshold: inlier threshold used
    """
    transform: Transform
    inliers: Tuple[Correspondence, ...]
    outlier_count: int
    num_iterations: int
    inlier_mask: Mask2D
    candidates: Tuple[Correspondence, ...]
    rms_error: float
    threshold: float

    @property
    def model(self) -> Transform:
        return self.transform

    @property
    def num_inliers(self) -> int:
        return len(self.inliers)

    def summary(self) -> Dict[str, Any]:
        n = len(self.candidates)
        return {
            "family": self.transform.family.name,
            "num_inliers": self.num_inliers,
            "num_candidates": n,
            "outlier_count": self.outlier_count,
            "inlier_ratio": float(self.num_inliers / max(1, n)),
            "rms_error": self.rms_error,
            "iterations": self.num_iterations,
            "threshold": self.threshold,
        }


@dataclass(frozen=True, eq=False)
class MatchOutcome:
    """
    Either a result or a failure reason, never both.
    """
    result: Optional[MatchResult]
    failure: Optional[FailureReason]
    num_candidates: int
    num_iterations: int = 0
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.result is not None


def _failure(reason: FailureReason, num_candidates: int, exc: MatchingError, iterations: int) -> MatchOutcome:
    logger.debug("match failed (%s): %s", reason.value, exc)
    return MatchOutcome(
        result=None,
        failure=reason,
        num_candidates=num_candidates,
        num_iterations=iterations,
        detail=str(exc),
    )


class ConsistentMatcher:
    """
    Façade: NN ratio matching -> RANSAC geometric verification.

    - match(model_set, query_set) -> MatchOutcome
    - find_correspondence(model_set, query_set) -> MatchResult | None

    Config is fixed at construction. Calls are independent unless
    config.warm_start is on (see module docstring).
    """

    def __init__(self, config: MatchConfig) -> None:
        config.validate()
        self._config = config
        self._family = config.family
        self._nn = NearestNeighbourMatcher(config.nn_params())

        # Only written when config.warm_start is True
        self.last_result: Optional[MatchResult] = None

    @property
    def config(self) -> MatchConfig:
        return self._config

    @property
    def family(self) -> TransformFamily[Mat3x3]:
        return self._family

    def reset(self) -> None:
        """Forget the remembered result (new video / new model)."""
        self.last_result = None

    def match(
            self,
            model_set: FeatureInput,
            query_set: FeatureInput,
            *,
            previous: Optional[MatchResult] = None,
            should_stop: Optional[Callable[[], bool]] = None,
    ) -> MatchOutcome:
        """
        Run one full match.

        previous: explicit warm-start state (overrides the remembered result)
        should_stop: polled once per RANSAC iteration, True cancels the match
        (reported as INSUFFICIENT_CONSENSUS)
        """
        cfg = self._config
        model_set = as_feature_set(model_set)
        query_set = as_feature_set(query_set)

        if previous is None and cfg.warm_start:
            previous = self.last_result

        # Step 1. Candidate correspondences
        candidates = self._nn.match(model_set, query_set)
        pts0, pts1 = correspondence_points(candidates, model_set, query_set)

        # Step 2. Clean
        candidates, pts0, pts1 = clean_correspondences(
            candidates, pts0, pts1, max_displacement=cfg.max_displacement,
        )

        outcome = self._verify(candidates, pts0, pts1, previous, should_stop)

        if cfg.warm_start:
            self.last_result = outcome.result
        return outcome

    def find_correspondence(
            self,
            model_set: FeatureInput,
            query_set: FeatureInput,
            *,
            previous: Optional[MatchResult] = None,
            should_stop: Optional[Callable[[], bool]] = None,
    ) -> Optional[MatchResult]:
        """None whenever match() reports a failure."""
        return self.match(model_set, query_set, previous=previous, should_stop=should_stop).result

    # ---------- internals ----------
    def _verify(
            self,
            candidates: List[Correspondence],
            pts0: Points2D,
            pts1: Points2D,
            previous: Optional[MatchResult],
            should_stop: Optional[Callable[[], bool]],
    ) -> MatchOutcome:
        cfg = self._config
        n = len(candidates)

        try:
            # Step 3. Boundary: cannot draw a single sample, zero iterations
            if n < self._family.min_samples:
                raise NoCandidatesError(n, self._family.min_samples)

            # Step 4. RANSAC
            rr = ransac(
                self._family,
                pts0,
                pts1,
                tau=cfg.inlier_threshold,
                max_iters=cfg.max_iterations,
                seed=cfg.random_seed,
                min_inliers=cfg.minimum_inliers,
                confidence=cfg.confidence,
                seed_models=self._seed_models(previous, candidates, pts0, pts1),
                should_stop=should_stop,
            )
        except NoCandidatesError as exc:
            return _failure(FailureReason.NO_CANDIDATES, n, exc, 0)
        except DegenerateSamplesExhaustedError as exc:
            return _failure(FailureReason.DEGENERATE_SAMPLES_EXHAUSTED, n, exc, exc.iterations)
        except InsufficientConsensusError as exc:
            return _failure(FailureReason.INSUFFICIENT_CONSENSUS, n, exc, exc.iterations)

        result = self._to_result(rr, candidates)
        logger.debug("match ok: %s", result.summary())
        return MatchOutcome(
            result=result,
            failure=None,
            num_candidates=n,
            num_iterations=rr.iterations,
        )

    def _seed_models(
            self,
            previous: Optional[MatchResult],
            candidates: Sequence[Correspondence],
            pts0: Points2D,
            pts1: Points2D,
    ) -> List[Mat3x3]:
        if previous is None:
            return []
        if previous.transform.family.name != self._family.name:
            logger.warning(
                "ignoring warm start from a %s result in a %s matcher",
                previous.transform.family.name, self._family.name,
            )
            return []

        seeds: List[Mat3x3] = [previous.transform.matrix]

        # Current candidates whose model feature was verified last time
        prev_model_idx = {c.model_index for c in previous.inliers}
        sel = np.fromiter(
            (c.model_index in prev_model_idx for c in candidates), dtype=np.bool_, count=len(candidates),
        )
        if int(np.count_nonzero(sel)) >= self._family.min_samples:
            try:
                seeds.append(self._family.fit(pts0[sel], pts1[sel]))
            except DegenerateSampleError:
                logger.debug("warm-start refit over previous inliers was degenerate")
        return seeds

    def _to_result(self, rr: RansacResult[Mat3x3], candidates: Sequence[Correspondence]) -> MatchResult:
        inliers = tuple(c for c, keep in zip(candidates, rr.inliers) if keep)
        return MatchResult(
            transform=Transform(matrix=rr.model, family=self._family),
            inliers=inliers,
            outlier_count=len(candidates) - len(inliers),
            num_iterations=rr.iterations,
            inlier_mask=rr.inliers,
            candidates=tuple(candidates),
            rms_error=rr.rms_error,
            threshold=rr.threshold,
        )
