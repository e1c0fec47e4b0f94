"""
Fallback Scorer

Deterministic heuristic used when the language model is disabled, fails or
returns an unusable answer. Scores candidates by goal-specific nutrient
weights, penalises constraint mismatches, then distributes the best
products over the before / during / after slots.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .filtering_service import LOW_CAFFEINE_THRESHOLD_MG, ConstraintFilter
from .schemas import (
    CaffeineTolerance,
    CandidateProduct,
    ConsumptionTiming,
    Goal,
    RecommendationItem,
    RecommendationResult,
    RecommendationSource,
    ScoredCandidate,
    UserProfile,
)

logger = logging.getLogger(__name__)

DIET_MISMATCH_PENALTY = -1000
NO_CAFFEINE_PENALTY = -1000
LOW_CAFFEINE_PENALTY = -500

SLOT_ORDER = (ConsumptionTiming.BEFORE, ConsumptionTiming.DURING, ConsumptionTiming.AFTER)

# First match wins, checked against the product name then its category
NATURAL_TIMING_KEYWORDS: Tuple[Tuple[Tuple[str, ...], ConsumptionTiming], ...] = (
    (("rego", "recovery", "protein"), ConsumptionTiming.AFTER),
    (("gel", "hydro", "electrolyte", "isotonic"), ConsumptionTiming.DURING),
    (("energy", "pre-workout", "beta fuel"), ConsumptionTiming.BEFORE),
    (("vitamin", "bcaa", "immune", "multivit"), ConsumptionTiming.DAILY),
)

OVERALL_REASONING = "Recommendations spread across before, during and after training."
EMPTY_REASONING = "No eligible products matched your profile and restrictions."


@dataclass
class ServingGuide:
    quantity: str = "1 serving"
    instructions: str = "Follow package directions"
    timing_minutes: Optional[int] = None
    note: str = ""


def natural_timing(product: CandidateProduct) -> ConsumptionTiming:
    """When a product is naturally consumed, judged from its name and category"""
    for text in (product.name or "", product.category or ""):
        lowered = text.lower()
        for keywords, timing in NATURAL_TIMING_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return timing
    return ConsumptionTiming.DURING


def serving_guide(product: CandidateProduct, timing: ConsumptionTiming) -> ServingGuide:
    name = (product.name or "").lower()

    if timing == ConsumptionTiming.BEFORE:
        guide = ServingGuide(timing_minutes=30)
        if "energy" in name or "bar" in name:
            guide.quantity = "1 bar or serving"
            guide.instructions = "Consume 30 minutes before for sustained energy"
            guide.note = " Ideal to prepare your body before the effort."
        return guide

    if timing == ConsumptionTiming.DURING:
        if "gel" in name:
            return ServingGuide(
                quantity="1 gel every 30-45 minutes",
                instructions="Take with small sips of water if needed",
                note=" Provides fast energy during exercise.",
            )
        if "hydro" in name or "electrolyte" in name:
            return ServingGuide(
                quantity="500ml during training",
                instructions="Sip every 15-20 minutes",
                note=" Keeps your hydration on track.",
            )
        return ServingGuide()

    if timing == ConsumptionTiming.AFTER:
        guide = ServingGuide(timing_minutes=30)
        if "rego" in name or "recovery" in name:
            guide.quantity = "1 serving mixed with 250ml water"
            guide.instructions = "Consume within 30 minutes post-training for best absorption"
            guide.note = " Speeds up muscle recovery."
        elif "protein" in name:
            guide.instructions = "Consume within 30 minutes for maximal protein synthesis"
            guide.note = " Supports muscle rebuilding."
        return guide

    return ServingGuide()


class FallbackScorer:
    """Heuristic recommender; never raises"""

    def __init__(self, constraint_filter: ConstraintFilter = None, num_recommendations: int = 3):
        self.constraint_filter = constraint_filter or ConstraintFilter()
        self.num_recommendations = num_recommendations

    def score(self, product: CandidateProduct, profile: UserProfile) -> float:
        score = 0.0
        goal = profile.primary_goal
        category = (product.category or "").lower()

        if goal == Goal.MUSCLE_GAIN:
            score += (product.protein_g or 0) * 2
            if "protein" in category or "recovery" in category:
                score += 10
        elif goal in (Goal.PERFORMANCE, Goal.ENDURANCE):
            score += (product.carbs_g or 0) * 1.5
            if "energy" in category:
                score += 10
        elif goal == Goal.WEIGHT_LOSS:
            score += 500 - (product.energy_kcal or 0)

        if self.constraint_filter.violates_diet(product, profile.dietary_restriction):
            score += DIET_MISMATCH_PENALTY

        caffeine = product.caffeine_mg or 0
        if profile.caffeine_tolerance == CaffeineTolerance.NONE and caffeine > 0:
            score += NO_CAFFEINE_PENALTY
        elif profile.caffeine_tolerance == CaffeineTolerance.LOW and caffeine > LOW_CAFFEINE_THRESHOLD_MG:
            score += LOW_CAFFEINE_PENALTY

        return score

    def rank(self, candidates: Sequence[CandidateProduct], profile: UserProfile) -> List[ScoredCandidate]:
        scored = [ScoredCandidate(product=p, score=self.score(p, profile)) for p in candidates]
        scored.sort(key=lambda s: (-s.score, s.product.product_id))
        return scored

    def assign_slots(self, ranked: Sequence[ScoredCandidate]) -> List[Tuple[ConsumptionTiming, ScoredCandidate]]:
        """Best candidate per slot by natural timing, then best leftovers into open slots"""
        assigned = {}
        used = set()

        for slot in SLOT_ORDER:
            for candidate in ranked:
                if candidate.product.product_id in used:
                    continue
                timing = natural_timing(candidate.product)
                if timing == slot or timing == ConsumptionTiming.DAILY:
                    assigned[slot] = candidate
                    used.add(candidate.product.product_id)
                    break

        open_slots = [slot for slot in SLOT_ORDER if slot not in assigned]
        leftovers = [c for c in ranked if c.product.product_id not in used]
        for slot, candidate in zip(open_slots, leftovers):
            assigned[slot] = candidate

        return [(slot, assigned[slot]) for slot in SLOT_ORDER if slot in assigned][: self.num_recommendations]

    def _reasoning(self, product: CandidateProduct, profile: UserProfile, note: str) -> str:
        reasoning = f"This product suits your profile and your {profile.primary_goal.value.replace('_', ' ')} goal"
        if (product.protein_g or 0) > 15:
            reasoning += f". High in protein ({product.protein_g:g}g)."
        elif (product.carbs_g or 0) > 20:
            reasoning += f". Good source of carbohydrates ({product.carbs_g:g}g)."
        else:
            reasoning += "."
        return reasoning + note

    def recommend(self, candidates: Sequence[CandidateProduct], profile: UserProfile) -> RecommendationResult:
        """
        Build up to three recommendations with distinct timings

        Args:
            candidates: Already filtered candidate products
            profile: Normalized user profile

        Returns:
            RecommendationResult with source=fallback
        """
        if not candidates:
            logger.info("Fallback scorer received no candidates")
            return RecommendationResult(
                items=[],
                overall_reasoning=EMPTY_REASONING,
                source=RecommendationSource.FALLBACK,
                prompt_used="fallback",
            )

        ranked = self.rank(candidates, profile)
        items = []
        for slot, candidate in self.assign_slots(ranked):
            guide = serving_guide(candidate.product, slot)
            items.append(
                RecommendationItem(
                    product_id=candidate.product.product_id,
                    reasoning=self._reasoning(candidate.product, profile, guide.note),
                    consumption_timing=slot,
                    timing_minutes=guide.timing_minutes,
                    quantity=guide.quantity,
                    instructions=guide.instructions,
                )
            )

        logger.info(
            f"Fallback generated {len(items)} recommendations: "
            + ", ".join(f"{i.consumption_timing.value}={i.product_id}" for i in items)
        )
        return RecommendationResult(
            items=items,
            overall_reasoning=OVERALL_REASONING,
            source=RecommendationSource.FALLBACK,
            prompt_used="fallback",
        )
