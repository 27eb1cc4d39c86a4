# Andy Zhao
"""
Error taxonomy for matching + robust fitting.

None of these are fatal. They describe the outcome of a single match attempt:

- DegenerateSampleError:
    raised by a model fit when the point set does not determine a unique
    transform (collinear triplet, coincident points, rank-deficient system).
    RANSAC catches it and resamples. It never leaves the loop.
- NoCandidatesError:
    too few putative correspondences to even draw one minimal sample.
- DegenerateSamplesExhaustedError:
    every RANSAC iteration drew a degenerate sample (e.g. all points collinear).
    Usually means malformed input.
- InsufficientConsensusError:
    the best model did not gather enough inliers, or the loop was cancelled.
    The legitimate "model not present in this query" outcome.

Precondition violations (bad config, mismatched shapes) are plain ValueError.
"""

from __future__ import annotations


class MatchingError(Exception):
    """Base class for recoverable matching failures."""


class DegenerateSampleError(MatchingError):
    pass


class NoCandidatesError(MatchingError):
    def __init__(self, num_candidates: int, min_samples: int) -> None:
        super().__init__(
            f"{num_candidates} candidate correspondences, need at least {min_samples}"
        )
        self.num_candidates = num_candidates
        self.min_samples = min_samples


class DegenerateSamplesExhaustedError(MatchingError):
    def __init__(self, iterations: int) -> None:
        super().__init__(f"all {iterations} RANSAC samples were degenerate")
        self.iterations = iterations


class InsufficientConsensusError(MatchingError):
    def __init__(
            self,
            *,
            best_inliers: int,
            required: int,
            iterations: int,
            cancelled: bool = False,
    ) -> None:
        reason = "cancelled" if cancelled else "insufficient consensus"
        super().__init__(
            f"{reason}: best model has {best_inliers} inliers, "
            f"need {required} (after {iterations} iterations)"
        )
        self.best_inliers = best_inliers
        self.required = required
        self.iterations = iterations
        self.cancelled = cancelled
