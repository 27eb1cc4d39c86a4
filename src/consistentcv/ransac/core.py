# Andy Zhao
"""
Generic RANSAC loop (model-agnostic).

RANSAC overview:
- Randomly sample a *minimal* subset of correspondences
- Fit a candidate model from that subset
- Score all correspondences by computing residual errors
- Mark inliers where error <= tau
- Keep the model with the most inliers (tie: lower summed inlier residual)
- Refit using all inliers (same fit routine, more points) to get the final model

Uses the TransformFamily Protocol from types.py:
    RANSAC works with both affine and homography

Failures are raised (see errors.py), never returned as None:
- fewer than min_samples correspondences -> InsufficientConsensusError, 0 iterations
- every sample degenerate               -> DegenerateSamplesExhaustedError
- best model below min_inliers          -> InsufficientConsensusError
- should_stop() returned True           -> InsufficientConsensusError(cancelled=True)
"""
from __future__ import annotations

import logging
import os
from typing import Callable, Optional, Sequence, TypeVar

import numpy as np

from .errors import (
    DegenerateSampleError, DegenerateSamplesExhaustedError, InsufficientConsensusError,
)
from .types import Points2D, Mask2D, FloatArray, ResidualScratch, TransformFamily, RansacResult

M = TypeVar("M")
logger = logging.getLogger(__name__)
_RANSAC_DEBUG = os.environ.get("CONSISTENTCV_RANSAC_DEBUG", "0") == "1"


def required_iterations(
        *,
        confidence: float,
        inlier_ratio: float,
        sample_size: int,
) -> int:
    """
    Compute the number of RANSAC iterations needed so that the probability
    of having drawn at least ONE all-inlier minimal sample is >= confidence.

    inlier ratio w = (# inliers) / N, Minimal sample s = min_samples,
    - P(all-inliers) = w^s
    - P(not-all-inlier-for-k-times) = (1 - w^s)^k
    - P(at-least-once-all-inliers) = 1 - (1 - w^s)^k >= p

    Formula:
       k >= log(1 - p) / log(1 - w^s)

    Edge cases:
     - w == 0  -> impossible, return "infinite-ish" (capped by max_iters)
     - w == 1  -> 1 iteration is enough
    """
    p = float(np.clip(confidence, 1e-12, 1.0 - 1e-12))
    w = float(np.clip(inlier_ratio, 0.0, 1.0))
    s = int(sample_size)

    if s <= 0:
        raise ValueError("sample_size must be >= 1")
    if w >= 1.0:
        return 1
    if w <= 0.0:
        return int(1e9)

    # If w^s is extremely tiny, log(1 - w^s) close to 0
    w_to_s = float(np.clip(w ** s, 1e-12, 1.0 - 1e-12))

    k = int(np.ceil(np.log(1.0 - p) / np.log(1.0 - w_to_s)))
    return max(1, k)


def ransac(
        family: TransformFamily[M],
        pts0: Points2D,
        pts1: Points2D,
        *,
        tau: float,
        max_iters: int,
        seed: int,
        min_inliers: Optional[int] = None,
        confidence: Optional[float] = None,
        seed_models: Sequence[M] = (),
        should_stop: Optional[Callable[[], bool]] = None,
) -> RansacResult[M]:
    """
    Run RANSAC to fit a model between pts0 -> pts1.

    Inputs:
    - family: provides fit, residuals, min_samples
    - pts0, pts1: (N,2) corresponding points (same N), model -> query
    - tau: inlier threshold in pixels, inlier iff residual <= tau
    - max_iters: upper bound of number of sampling iterations
    - seed: RNG seed, the generator is private to this call
    - min_inliers: consensus needed for success (never less than min_samples)
    - confidence: enables adaptive stopping (e.g. 0.99). None runs exactly
      max_iters iterations.
    - seed_models: warm-start hypotheses, scored before sampling starts.
      They do not consume the iteration budget.
    - should_stop: polled once per iteration, True cancels the run

    Returns:
    - RansacResult with refit model + inlier mask of the winning hypothesis.
    """
    # ---------- Input validation ----------
    if pts0.shape != pts1.shape:
        raise ValueError(f"pts0 and pts1 must have same shape, got {pts0.shape} vs {pts1.shape}")
    if pts0.ndim != 2 or pts0.shape[1] != 2:
        raise ValueError(f"Expected pts shape (N,2), got {pts0.shape}")
    if not tau > 0.0:
        raise ValueError(f"tau must be > 0, got {tau}")
    if int(max_iters) <= 0:
        raise ValueError(f"max_iters must be > 0, got {max_iters}")
    if confidence is not None and not (0.0 < confidence < 1.0):
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")

    pts0 = np.ascontiguousarray(pts0, dtype=np.float64)
    pts1 = np.ascontiguousarray(pts1, dtype=np.float64)

    n = pts0.shape[0]
    min_samples = family.min_samples
    required = max(min_samples, int(min_inliers or 0))

    if n < min_samples:
        # Not enough matches to draw a single sample
        raise InsufficientConsensusError(best_inliers=0, required=required, iterations=0)

    # RNG: reproducible sampling
    rng = np.random.default_rng(seed)

    # Scratch buffers reused by every hypothesis
    err: FloatArray = np.empty((n,), dtype=np.float64)
    mask: Mask2D = np.empty((n,), dtype=np.bool_)
    scratch = ResidualScratch.for_size(n)

    # Track the best hypothesis
    best_model: Optional[M] = None
    best_inliers: Optional[Mask2D] = None
    best_num_inliers = -1
    best_sum = float("inf")

    def score(model: M) -> bool:
        """Score a hypothesis against all correspondences, keep it if it is the best so far."""
        nonlocal best_model, best_inliers, best_num_inliers, best_sum

        family.residuals(model, pts0, pts1, out=err, scratch=scratch)
        np.less_equal(err, tau, out=mask)

        num_inliers = int(np.count_nonzero(mask))
        if num_inliers < min_samples:
            # Not enough inliers to be meaningful
            return False

        residual_sum = float(np.sum(err, where=mask))

        # Primary criterion: more inliers. Tie: lower summed residual.
        is_better = (num_inliers > best_num_inliers) or (
                num_inliers == best_num_inliers and residual_sum < best_sum
        )
        if is_better:
            best_model = model
            best_inliers = mask.copy()
            best_num_inliers = num_inliers
            best_sum = residual_sum
        return is_better

    def update_target(target: int, iters_run: int) -> int:
        if confidence is None:
            return target
        iter_needed = required_iterations(
            confidence=confidence,
            inlier_ratio=best_num_inliers / float(n),
            sample_size=min_samples,
        )
        return min(target, max(iter_needed, iters_run))

    target_iters = int(max_iters)

    # ---------- Warm start ----------
    for model in seed_models:
        if score(model):
            target_iters = update_target(target_iters, 0)
            if _RANSAC_DEBUG:
                logger.debug("[RANSAC] seed model: inliers=%d/%d", best_num_inliers, n)

    # ---------- Main RANSAC Loop ----------
    all_idx = np.arange(n)
    iters_run = 0
    num_degenerate = 0

    while iters_run < target_iters:
        if should_stop is not None and should_stop():
            logger.debug("RANSAC cancelled after %d iterations", iters_run)
            raise InsufficientConsensusError(
                best_inliers=max(best_num_inliers, 0),
                required=required,
                iterations=iters_run,
                cancelled=True,
            )
        iters_run += 1

        # Sample a minimal subset of correspondences (unique indices, no replacement)
        sample_idx = rng.choice(all_idx, size=min_samples, replace=False)

        try:
            model = family.fit(pts0[sample_idx], pts1[sample_idx])
        except DegenerateSampleError:
            # Counts toward the budget, not toward "found a model"
            num_degenerate += 1
            continue

        if score(model):
            target_iters = update_target(target_iters, iters_run)
            if _RANSAC_DEBUG:
                logger.debug(
                    "[RANSAC] better model: inliers=%d/%d, w=%.3f, target_iters=%d",
                    best_num_inliers, n, best_num_inliers / float(n), target_iters,
                )

    # ---------- Outcome ----------
    if best_model is None or best_inliers is None:
        if iters_run > 0 and num_degenerate == iters_run:
            raise DegenerateSamplesExhaustedError(iters_run)
        raise InsufficientConsensusError(best_inliers=0, required=required, iterations=iters_run)

    if best_num_inliers < required:
        raise InsufficientConsensusError(
            best_inliers=best_num_inliers, required=required, iterations=iters_run,
        )

    # Refit on all inliers
    try:
        final_model = family.fit(pts0[best_inliers], pts1[best_inliers])
    except DegenerateSampleError:
        # Least squares refit failed, fall back to the best hypothesis
        logger.debug("inlier refit degenerate, keeping best minimal model")
        final_model = best_model

    # RMS on inliers for the final model
    final_err = family.residuals(final_model, pts0, pts1, out=err, scratch=scratch)[best_inliers]
    final_rms = float(np.sqrt(np.mean(final_err * final_err)))

    logger.debug(
        "RANSAC(%s): %d/%d inliers, rms=%.4f, iterations=%d (%d degenerate)",
        family.name, best_num_inliers, n, final_rms, iters_run, num_degenerate,
    )

    return RansacResult(
        model=final_model,
        inliers=best_inliers,
        num_inliers=best_num_inliers,
        rms_error=final_rms,
        residual_sum=best_sum,
        iterations=iters_run,
        threshold=float(tau),
    )
