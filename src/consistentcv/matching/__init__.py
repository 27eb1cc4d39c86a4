"""
Matching package
"""
from .features import (
    FeatureVector, FeatureSet, FeatureInput, Correspondence,
    as_feature_set, correspondence_points,
)
from .nn_matcher import NearestNeighbourMatcher, NNMatchParams, match_descriptors, ratio_test
from .clean_points import clean_points, clean_correspondences
from .consistent import (
    ConsistentMatcher, MatchConfig, MatchResult, MatchOutcome, FailureReason,
)
from .batch import match_many

__all__ = [
    "FeatureVector", "FeatureSet", "FeatureInput", "Correspondence",
    "as_feature_set", "correspondence_points",
    "NearestNeighbourMatcher", "NNMatchParams", "match_descriptors", "ratio_test",
    "clean_points", "clean_correspondences",
    "ConsistentMatcher", "MatchConfig", "MatchResult", "MatchOutcome", "FailureReason",
    "match_many",
]
