"""
Recommendation Engine Core

Main orchestration class for sports-nutrition recommendations:
profile -> candidates -> LLM (or fallback scorer) -> persistence.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.exceptions import LLMError, NoCandidates, ProfileMissing, StorageUnavailable
from database.models import TrainingSession, UserProfileRecord
from services.embedding_service import get_embedding_service
from services.llm_service import LLMRecommender, build_provider
from services.recommendation_store import FeedbackRepository, RecommendationStore

from .fallback_scorer import FallbackScorer
from .profile_normalizer import normalize_profile, normalize_training_context
from .retrieval_service import CandidateRetriever
from .schemas import (
    CandidateProduct,
    RecommendationOutcome,
    RecommendationResult,
    RecommendedProduct,
    RetrievalMode,
    RetrievalResult,
    TrainingContext,
    UserProfile,
)

logger = logging.getLogger(__name__)

NO_CANDIDATES_MESSAGE = "No products match your profile and dietary restrictions right now."
NO_RECOMMENDATIONS_MESSAGE = "We could not find a suitable recommendation for this session."
SUCCESS_MESSAGE = "Recommendations generated successfully."


class RecommendationEngine:
    """
    Main Recommendation Engine

    Orchestrates profile normalization, candidate retrieval, LLM ranking with
    heuristic fallback, and best-effort persistence.
    """

    def __init__(
        self,
        retriever: CandidateRetriever,
        llm_recommender: LLMRecommender,
        store: RecommendationStore,
        fallback_scorer: Optional[FallbackScorer] = None,
        feedback_repository: Optional[FeedbackRepository] = None,
    ):
        self.retriever = retriever
        self.llm_recommender = llm_recommender
        self.store = store
        self.fallback_scorer = fallback_scorer or FallbackScorer(num_recommendations=settings.num_recommendations)
        self.feedback_repository = feedback_repository or store.feedback_repository

        logger.info(
            f"RecommendationEngine initialized (retrieval={retriever.retrieval_mode}, llm_enabled={llm_recommender.enabled()})"
        )

    async def load_profile(self, db: AsyncSession, user_id: int) -> UserProfile:
        """Stored profile for a user, normalized"""
        try:
            result = await db.execute(select(UserProfileRecord).where(UserProfileRecord.user_id == user_id))
            record = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load profile for user {user_id}: {e}")
            raise StorageUnavailable() from e

        if record is None:
            raise ProfileMissing(user_id)
        return normalize_profile(record.to_dict())

    async def _feedback_sets(self, db: AsyncSession, user_id: int) -> Tuple[Set[int], Set[int]]:
        """Negative and positive product ids; advisory, empty on failure"""
        try:
            negative = await self.feedback_repository.get_negative_feedback_product_ids(db, user_id)
            positive = await self.feedback_repository.get_positive_feedback_product_ids(db, user_id)
            return negative, positive
        except SQLAlchemyError as e:
            logger.warning(f"Could not load feedback for user {user_id}, continuing without it: {e}")
            await db.rollback()
            return set(), set()

    async def _retrieve(
        self,
        profile: UserProfile,
        context: Optional[TrainingContext],
        negative_ids: Set[int],
        db: AsyncSession,
    ) -> RetrievalResult:
        retrieval = await self.retriever.retrieve(profile, context, negative_ids, db)
        if not retrieval.candidates:
            raise NoCandidates(f"No candidates for user {profile.user_id} after filtering")
        return retrieval

    async def _rank(
        self,
        profile: UserProfile,
        context: Optional[TrainingContext],
        candidates: List[CandidateProduct],
        positive_ids: Set[int],
    ) -> RecommendationResult:
        if not self.llm_recommender.enabled():
            logger.info(f"LLM disabled - using fallback scorer for user {profile.user_id}")
            return self.fallback_scorer.recommend(candidates, profile)

        try:
            return await self.llm_recommender.recommend(profile, context, candidates, positive_ids)
        except LLMError as e:
            logger.warning(f"LLM recommendation failed for user {profile.user_id} ({type(e).__name__}: {e}) - using fallback scorer")
            return self.fallback_scorer.recommend(candidates, profile)

    @staticmethod
    def _join(result: RecommendationResult, candidates: List[CandidateProduct]) -> List[RecommendedProduct]:
        by_id = {c.product_id: c for c in candidates}
        joined = []
        for item in result.items:
            product = by_id.get(item.product_id)
            if product is None:
                continue
            joined.append(
                RecommendedProduct(
                    **product.model_dump(),
                    reasoning=item.reasoning,
                    consumption_timing=item.consumption_timing,
                    timing_minutes=item.timing_minutes,
                    quantity=item.quantity,
                    instructions=item.instructions,
                )
            )
        return joined

    async def get_recommendations(
        self,
        db: AsyncSession,
        user_id: int,
        training_data: Optional[Mapping[str, Any]] = None,
        session_id: Optional[int] = None,
    ) -> RecommendationOutcome:
        """
        Generate, persist and return recommendations for a user

        Args:
            db: Database session used for reads
            user_id: User whose stored profile drives the recommendation
            training_data: Optional training session details
            session_id: Optional training session the recommendations belong to

        Returns:
            RecommendationOutcome (possibly empty, never an error for no candidates)

        Raises:
            ProfileMissing: the user has no stored profile
            StorageUnavailable: profile or catalog storage unreachable
        """
        start_time = datetime.now()

        profile = await self.load_profile(db, user_id)
        context = normalize_training_context(training_data)
        negative_ids, positive_ids = await self._feedback_sets(db, user_id)

        try:
            retrieval = await self._retrieve(profile, context, negative_ids, db)
        except NoCandidates as e:
            logger.info(str(e))
            return self._empty_response(NO_CANDIDATES_MESSAGE)

        result = await self._rank(profile, context, retrieval.candidates, positive_ids)
        recommendations = self._join(result, retrieval.candidates)
        if not recommendations:
            return self._empty_response(result.overall_reasoning or NO_RECOMMENDATIONS_MESSAGE, retrieval.mode, len(retrieval.candidates))

        saved = await self.store.save_recommendations(
            user_id,
            result.items,
            result.overall_reasoning,
            result.source,
            session_id=session_id,
        )

        elapsed = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"Generated {len(recommendations)} recommendations for user {user_id} "
            f"(source={result.source.value}, mode={retrieval.mode.value}, candidates={len(retrieval.candidates)}, "
            f"saved={saved}, {elapsed:.2f}s)"
        )

        return RecommendationOutcome(
            message=SUCCESS_MESSAGE,
            recommendations=recommendations,
            source=result.source,
            overall_reasoning=result.overall_reasoning,
            candidate_count=len(retrieval.candidates),
            mode=retrieval.mode,
            saved_count=saved,
        )

    async def get_session_recommendations(self, db: AsyncSession, user_id: int, session_id: int) -> RecommendationOutcome:
        """Recommendations for a stored training session"""
        try:
            result = await db.execute(
                select(TrainingSession).where(TrainingSession.id == session_id, TrainingSession.user_id == user_id)
            )
            session = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load training session {session_id}: {e}")
            raise StorageUnavailable() from e

        training_data = session.to_training_data() if session else None
        if session is None:
            logger.warning(f"Training session {session_id} not found for user {user_id} - using profile only")
        return await self.get_recommendations(db, user_id, training_data=training_data, session_id=session_id if session else None)

    def _empty_response(
        self,
        message: str,
        mode: RetrievalMode = RetrievalMode.NONE,
        candidate_count: int = 0,
    ) -> RecommendationOutcome:
        return RecommendationOutcome(message=message, recommendations=[], candidate_count=candidate_count, mode=mode)

    def get_stats(self) -> Dict[str, Any]:
        return {"llm": self.llm_recommender.get_usage_stats(), "retrieval_mode": self.retriever.retrieval_mode}


def build_recommendation_engine(session_factory: async_sessionmaker) -> RecommendationEngine:
    """Wire an engine from settings; the embedding service is shared process-wide"""
    embedding_service = get_embedding_service() if settings.retrieval_mode == RetrievalMode.VECTOR.value else None
    return RecommendationEngine(
        retriever=CandidateRetriever(embedding_service=embedding_service),
        llm_recommender=LLMRecommender(build_provider()),
        store=RecommendationStore(session_factory),
    )
