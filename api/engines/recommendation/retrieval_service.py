"""
Candidate Retrieval

Two strategies produce the same CandidateProduct list:

- vector: embed the profile, rank stored product embeddings by cosine
  similarity, load the top products, apply hard constraints
- sql: hard constraints as query predicates plus a goal-keyed priority
  ordering

In vector mode the SQL strategy is the fallback for embedding/vector
failures and for empty results. Hard constraints are re-applied to the
final list whichever strategy produced it.
"""
import logging
from typing import List, Optional, Set, Tuple

from sqlalchemy import case, func, not_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import EmbeddingProviderError, EmbeddingUnavailable, StorageUnavailable, VectorSearchError
from database.models import Product, ProductAttribute, ProductCategory, ProductNutrition
from services.catalog_service import (
    active_products_query,
    canonical_tag_column,
    load_candidates_by_ids,
    product_to_candidate,
)
from services.embedding_service import EmbeddingService

from .filtering_service import ConstraintFilter
from .schemas import (
    ActivityLevel,
    CandidateProduct,
    Goal,
    RetrievalMode,
    RetrievalResult,
    TrainingContext,
    UserProfile,
)
from .similarity import SimilarityRanker

logger = logging.getLogger(__name__)

RECOVERABLE_RETRIEVAL_ERRORS = (EmbeddingUnavailable, EmbeddingProviderError, VectorSearchError)


class RetrievalStrategy:
    """Produces constraint-respecting candidates for a profile"""

    mode = RetrievalMode.NONE

    async def retrieve(
        self,
        profile: UserProfile,
        context: Optional[TrainingContext],
        negative_ids: Set[int],
        db: AsyncSession,
    ) -> List[CandidateProduct]:
        raise NotImplementedError


class VectorRetrievalStrategy(RetrievalStrategy):
    """Cosine similarity between the profile embedding and stored product embeddings"""

    mode = RetrievalMode.VECTOR

    def __init__(
        self,
        embedding_service: EmbeddingService,
        ranker: Optional[SimilarityRanker] = None,
        constraint_filter: Optional[ConstraintFilter] = None,
        top_k: Optional[int] = None,
        max_candidates: Optional[int] = None,
    ):
        self.embedding_service = embedding_service
        self.ranker = ranker or SimilarityRanker()
        self.constraint_filter = constraint_filter or ConstraintFilter()
        self.top_k = top_k or settings.vector_top_k
        self.max_candidates = max_candidates or settings.max_candidates

    async def retrieve(self, profile, context, negative_ids, db) -> List[CandidateProduct]:
        query_vector = await self.embedding_service.embed_user_profile(profile, context)
        stored = await self.embedding_service.load_product_embeddings(db)
        if not stored:
            logger.info("No stored product embeddings - vector retrieval has nothing to rank")
            return []

        comparable = self.ranker.comparable(query_vector, stored)
        if not comparable:
            # Every score would be 0.0 and the ranking would just be id order
            raise VectorSearchError(
                f"No stored embedding is comparable with the {len(query_vector)}-dimension profile embedding"
            )

        ranked = self.ranker.rank(query_vector, comparable, self.top_k)
        ranked_ids = [product_id for product_id, _ in ranked]

        try:
            products = await load_candidates_by_ids(db, ranked_ids)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load ranked products: {e}")
            await db.rollback()
            raise VectorSearchError("Ranked products could not be loaded") from e

        filtered = self.constraint_filter.apply(products, profile, negative_ids)
        logger.info(f"Vector retrieval: {len(ranked)} ranked, {len(products)} active, {len(filtered)} after constraints")
        return filtered[: self.max_candidates]


class SqlRetrievalStrategy(RetrievalStrategy):
    """Hard constraints as predicates, goal-keyed priority ordering"""

    mode = RetrievalMode.SQL

    def __init__(self, constraint_filter: Optional[ConstraintFilter] = None, max_candidates: Optional[int] = None):
        self.constraint_filter = constraint_filter or ConstraintFilter()
        self.max_candidates = max_candidates or settings.max_candidates

    @staticmethod
    def _has_tag(tags):
        return (
            select(ProductAttribute.id)
            .where(
                ProductAttribute.product_id == Product.id,
                canonical_tag_column().in_(list(tags)),
            )
            .correlate(Product)
            .exists()
        )

    def _category_first(self, *names: str):
        return case((func.lower(ProductCategory.name).in_(names), 0), else_=1)

    def _priority_ordering(self, profile: UserProfile) -> list:
        goal = profile.primary_goal
        ordering = []

        if goal in (Goal.MUSCLE_GAIN, Goal.RECOVERY):
            ordering += [
                self._category_first("recovery"),
                case((self._has_tag({"high-protein"}), 0), else_=1),
                ProductNutrition.protein_g.desc().nulls_last(),
            ]
        elif goal in (Goal.PERFORMANCE, Goal.ENDURANCE):
            ordering += [
                self._category_first("energy"),
                case((self._has_tag({"high-carb"}), 0), else_=1),
                ProductNutrition.carbs_g.desc().nulls_last(),
            ]
        elif goal == Goal.WEIGHT_LOSS:
            ordering += [
                ProductNutrition.energy_kcal.asc().nulls_last(),
                ProductNutrition.sugars_g.asc().nulls_last(),
            ]

        if profile.activity_level in (ActivityLevel.ACTIVE, ActivityLevel.VERY_ACTIVE):
            ordering.append(self._category_first("energy", "recovery"))

        ordering.append(Product.id.asc())
        return ordering

    def build_query(self, profile: UserProfile, negative_ids: Set[int]):
        query = (
            active_products_query()
            .outerjoin(ProductNutrition, ProductNutrition.product_id == Product.id)
            .outerjoin(ProductCategory, ProductCategory.id == Product.category_id)
        )

        tags = self.constraint_filter.required_tags(profile.dietary_restriction)
        if tags:
            query = query.where(self._has_tag(tags))

        caffeine_limit = self.constraint_filter.caffeine_limit(profile.caffeine_tolerance)
        if caffeine_limit is not None:
            query = query.where(or_(ProductNutrition.caffeine_mg.is_(None), ProductNutrition.caffeine_mg <= caffeine_limit))

        if negative_ids:
            query = query.where(not_(Product.id.in_(list(negative_ids))))

        return query.order_by(*self._priority_ordering(profile)).limit(self.max_candidates)

    async def retrieve(self, profile, context, negative_ids, db) -> List[CandidateProduct]:
        try:
            result = await db.execute(self.build_query(profile, negative_ids))
            products = [product_to_candidate(p) for p in result.scalars().unique().all()]
        except SQLAlchemyError as e:
            logger.error(f"SQL candidate retrieval failed: {e}")
            raise StorageUnavailable() from e

        filtered = self.constraint_filter.apply(products, profile, negative_ids)
        logger.info(f"SQL retrieval returned {len(filtered)} candidates (goal={profile.primary_goal.value})")
        return filtered


class FallbackRetrievalStrategy(RetrievalStrategy):
    """Primary strategy, secondary on recoverable failure or empty result"""

    def __init__(self, primary: RetrievalStrategy, secondary: RetrievalStrategy):
        self.primary = primary
        self.secondary = secondary
        self.last_mode = RetrievalMode.NONE

    async def retrieve_with_mode(self, profile, context, negative_ids, db) -> Tuple[List[CandidateProduct], RetrievalMode]:
        try:
            candidates = await self.primary.retrieve(profile, context, negative_ids, db)
            if candidates:
                return candidates, self.primary.mode
            logger.info(f"{self.primary.mode.value} retrieval returned no candidates - falling back to {self.secondary.mode.value}")
        except RECOVERABLE_RETRIEVAL_ERRORS as e:
            logger.warning(f"{self.primary.mode.value} retrieval failed ({type(e).__name__}: {e}) - falling back to {self.secondary.mode.value}")

        candidates = await self.secondary.retrieve(profile, context, negative_ids, db)
        return candidates, self.secondary.mode

    async def retrieve(self, profile, context, negative_ids, db) -> List[CandidateProduct]:
        candidates, self.last_mode = await self.retrieve_with_mode(profile, context, negative_ids, db)
        return candidates


class CandidateRetriever:
    """Selects a retrieval strategy from configuration and bounds its output"""

    def __init__(
        self,
        embedding_service: Optional[EmbeddingService] = None,
        retrieval_mode: Optional[str] = None,
        constraint_filter: Optional[ConstraintFilter] = None,
        max_candidates: Optional[int] = None,
        top_k: Optional[int] = None,
    ):
        self.constraint_filter = constraint_filter or ConstraintFilter()
        self.max_candidates = max_candidates or settings.max_candidates
        self.retrieval_mode = (retrieval_mode or settings.retrieval_mode).lower()

        self.sql_strategy = SqlRetrievalStrategy(self.constraint_filter, self.max_candidates)
        self.vector_strategy = None
        if self.retrieval_mode == RetrievalMode.VECTOR.value and embedding_service is not None:
            self.vector_strategy = VectorRetrievalStrategy(
                embedding_service,
                constraint_filter=self.constraint_filter,
                top_k=top_k,
                max_candidates=self.max_candidates,
            )
        elif self.retrieval_mode == RetrievalMode.VECTOR.value:
            logger.warning("Vector retrieval configured without an embedding service - using SQL retrieval")

    async def retrieve(
        self,
        profile: UserProfile,
        context: Optional[TrainingContext],
        negative_ids: Optional[Set[int]],
        db: AsyncSession,
    ) -> RetrievalResult:
        """
        Retrieve bounded, constraint-respecting candidates

        Args:
            profile: Normalized user profile
            context: Optional training context
            negative_ids: Products excluded by negative feedback
            db: Database session

        Returns:
            RetrievalResult with the candidates and the mode that produced them

        Raises:
            StorageUnavailable: the catalog could not be queried
        """
        negative_ids = set(negative_ids or ())

        if self.vector_strategy is not None:
            strategy = FallbackRetrievalStrategy(self.vector_strategy, self.sql_strategy)
            candidates, mode = await strategy.retrieve_with_mode(profile, context, negative_ids, db)
        else:
            candidates = await self.sql_strategy.retrieve(profile, context, negative_ids, db)
            mode = RetrievalMode.SQL

        candidates = self.constraint_filter.apply(candidates, profile, negative_ids)[: self.max_candidates]
        if not candidates:
            mode = RetrievalMode.NONE

        logger.info(f"Retrieved {len(candidates)} candidates for user {profile.user_id} via {mode.value}")
        return RetrievalResult(candidates=candidates, mode=mode)
