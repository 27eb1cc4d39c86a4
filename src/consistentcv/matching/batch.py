# Andy Zhao
"""
Match one model against many queries (video frames, gallery images) in parallel.

Each query is an independent match() call: the config's explicit seed drives
a private RNG per call and the model set is only read, so no locks are needed.
Most of the work is numpy (distance blocks, SVD, residuals), which releases
the GIL, so a thread pool is enough.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

from .consistent import ConsistentMatcher, MatchOutcome
from .features import FeatureInput, as_feature_set

logger = logging.getLogger(__name__)


def match_many(
        matcher: ConsistentMatcher,
        model_set: FeatureInput,
        query_sets: Sequence[FeatureInput],
        *,
        max_workers: Optional[int] = None,
) -> List[MatchOutcome]:
    """
    Run matcher.match(model_set, q) for every q, one task per query.

    Returns outcomes in the same order as query_sets.
    Warm-start matchers carry per-instance state and are rejected.
    """
    if matcher.config.warm_start:
        raise ValueError("match_many needs a matcher without warm_start (its state is per-instance)")
    if max_workers is not None and max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")

    # Stack the model once, every task shares it read-only
    model_set = as_feature_set(model_set)

    if len(query_sets) == 0:
        return []

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(matcher.match, model_set, q) for q in query_sets]
        outcomes = [f.result() for f in futures]

    logger.debug(
        "match_many: %d/%d queries matched",
        sum(1 for o in outcomes if o.ok), len(outcomes),
    )
    return outcomes
