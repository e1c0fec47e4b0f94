"""
Recommendation Engine

Profile normalization, constraint filtering, similarity ranking and the
heuristic fallback scorer. The orchestrator lives in
engines.recommendation.core and is imported from there, since it depends
on the provider-backed services.
"""

from .fallback_scorer import FallbackScorer, natural_timing
from .filtering_service import ConstraintFilter, apply_hard_constraints
from .profile_normalizer import normalize_profile, normalize_training_context
from .schemas import (
    CandidateProduct,
    ConsumptionTiming,
    RecommendationItem,
    RecommendationOutcome,
    RecommendationResult,
    TrainingContext,
    UserProfile,
)
from .similarity import SimilarityRanker, cosine_similarity

__all__ = [
    "FallbackScorer",
    "natural_timing",
    "ConstraintFilter",
    "apply_hard_constraints",
    "normalize_profile",
    "normalize_training_context",
    "CandidateProduct",
    "ConsumptionTiming",
    "RecommendationItem",
    "RecommendationOutcome",
    "RecommendationResult",
    "TrainingContext",
    "UserProfile",
    "SimilarityRanker",
    "cosine_similarity",
]
