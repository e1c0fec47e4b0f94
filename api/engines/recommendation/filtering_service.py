"""
Constraint Filter

Hard dietary, caffeine and negative-feedback rules. Applied to every
candidate list regardless of how it was retrieved; order is preserved.
"""
import logging
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from .schemas import CaffeineTolerance, CandidateProduct, DietaryRestriction, UserProfile

logger = logging.getLogger(__name__)

LOW_CAFFEINE_THRESHOLD_MG = 50

# A candidate satisfies a restriction when it carries any of these tags
DIETARY_TAGS: Dict[DietaryRestriction, FrozenSet[str]] = {
    DietaryRestriction.VEGAN: frozenset({"vegan"}),
    DietaryRestriction.VEGETARIAN: frozenset({"vegetarian", "vegan"}),
    DietaryRestriction.GLUTEN_FREE: frozenset({"gluten-free"}),
}


class ConstraintFilter:
    """Removes candidates that violate a profile's hard constraints"""

    @staticmethod
    def required_tags(restriction: DietaryRestriction) -> Optional[FrozenSet[str]]:
        """Accepted tag set for a restriction, or None when it is not enforced"""
        return DIETARY_TAGS.get(restriction)

    @staticmethod
    def caffeine_limit(tolerance: CaffeineTolerance) -> Optional[float]:
        """Maximum caffeine in mg for a tolerance, or None when unrestricted"""
        if tolerance == CaffeineTolerance.NONE:
            return 0
        if tolerance == CaffeineTolerance.LOW:
            return LOW_CAFFEINE_THRESHOLD_MG
        return None

    def violates_diet(self, product: CandidateProduct, restriction: DietaryRestriction) -> bool:
        tags = self.required_tags(restriction)
        if tags is None:
            return False
        return not any(product.has_tag(tag) for tag in tags)

    def violates_caffeine(self, product: CandidateProduct, tolerance: CaffeineTolerance) -> bool:
        limit = self.caffeine_limit(tolerance)
        if limit is None:
            return False
        return (product.caffeine_mg or 0) > limit

    def apply(
        self,
        candidates: Iterable[CandidateProduct],
        profile: UserProfile,
        negative_ids: Optional[Set[int]] = None,
    ) -> List[CandidateProduct]:
        """
        Filter candidates against the profile

        Args:
            candidates: Products in retrieval order
            profile: Normalized user profile
            negative_ids: Products the user gave negative feedback on

        Returns:
            Surviving candidates, order preserved
        """
        negative_ids = negative_ids or set()
        candidates = list(candidates)

        filtered = [
            p for p in candidates
            if p.product_id not in negative_ids
            and not self.violates_diet(p, profile.dietary_restriction)
            and not self.violates_caffeine(p, profile.caffeine_tolerance)
        ]

        removed = len(candidates) - len(filtered)
        if removed:
            logger.debug(
                f"Constraint filter removed {removed}/{len(candidates)} candidates "
                f"(diet={profile.dietary_restriction.value}, caffeine={profile.caffeine_tolerance.value}, negative={len(negative_ids)})"
            )
        return filtered


def apply_hard_constraints(
    candidates: Iterable[CandidateProduct],
    profile: UserProfile,
    negative_ids: Optional[Set[int]] = None,
) -> List[CandidateProduct]:
    return ConstraintFilter().apply(candidates, profile, negative_ids)
