"""
Recommendation persistence and the feedback loop.

Recommendation writes are best-effort: each item is written through its own
session, concurrently, and a failed write is logged and counted but never
raised. Feedback is one row per (user, product), latest write wins; negative
feedback feeds exclusion and positive feedback feeds prompt priority.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import PersistenceError
from database.models import FeedbackSentiment, Product, Recommendation, UserProductFeedback
from engines.recommendation.schemas import RecommendationItem, RecommendationSource

logger = logging.getLogger(__name__)

MAX_REASONING_LENGTH = 250
MAX_OVERALL_REASONING_LENGTH = 255


def truncate_text(text: Optional[str], max_length: int, default: str = "") -> str:
    """Cut text to max_length, ending in '...' only when something was cut"""
    if not text:
        return default
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def _sentiment(value: Union[str, FeedbackSentiment]) -> FeedbackSentiment:
    if isinstance(value, FeedbackSentiment):
        return value
    try:
        return FeedbackSentiment(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Feedback must be 'positive' or 'negative', got {value!r}")


class FeedbackRepository:
    """Per-user product feedback"""

    async def save_feedback(
        self,
        db: AsyncSession,
        user_id: int,
        product_id: int,
        sentiment: Union[str, FeedbackSentiment],
        notes: Optional[str] = None,
    ) -> UserProductFeedback:
        """Insert or overwrite the user's feedback for a product"""
        sentiment = _sentiment(sentiment)
        result = await db.execute(
            select(UserProductFeedback).where(
                UserProductFeedback.user_id == user_id,
                UserProductFeedback.product_id == product_id,
            )
        )
        feedback = result.scalar_one_or_none()

        if feedback is None:
            feedback = UserProductFeedback(user_id=user_id, product_id=product_id, sentiment=sentiment.value, notes=notes)
            db.add(feedback)
        else:
            feedback.sentiment = sentiment.value
            feedback.notes = notes
            feedback.updated_at = datetime.utcnow()

        await db.flush()
        logger.info(f"Saved {sentiment.value} feedback for user {user_id}, product {product_id}")
        return feedback

    async def get_feedback(self, db: AsyncSession, user_id: int, product_id: int) -> Optional[UserProductFeedback]:
        result = await db.execute(
            select(UserProductFeedback).where(
                UserProductFeedback.user_id == user_id,
                UserProductFeedback.product_id == product_id,
            )
        )
        return result.scalar_one_or_none()

    async def _product_ids_with(self, db: AsyncSession, user_id: int, sentiment: FeedbackSentiment) -> Set[int]:
        result = await db.execute(
            select(UserProductFeedback.product_id).where(
                UserProductFeedback.user_id == user_id,
                UserProductFeedback.sentiment == sentiment.value,
            )
        )
        return set(result.scalars().all())

    async def get_negative_feedback_product_ids(self, db: AsyncSession, user_id: int) -> Set[int]:
        return await self._product_ids_with(db, user_id, FeedbackSentiment.NEGATIVE)

    async def get_positive_feedback_product_ids(self, db: AsyncSession, user_id: int) -> Set[int]:
        return await self._product_ids_with(db, user_id, FeedbackSentiment.POSITIVE)

    async def get_feedback_history(self, db: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
        """All feedback for a user with product names, most recent first"""
        result = await db.execute(
            select(UserProductFeedback, Product.name)
            .outerjoin(Product, Product.id == UserProductFeedback.product_id)
            .where(UserProductFeedback.user_id == user_id)
            .order_by(UserProductFeedback.updated_at.desc(), UserProductFeedback.id.desc())
        )
        history = []
        for feedback, product_name in result.all():
            history.append(
                {
                    "product_id": feedback.product_id,
                    "product_name": product_name,
                    "sentiment": feedback.sentiment,
                    "notes": feedback.notes,
                    "created_at": feedback.created_at,
                    "updated_at": feedback.updated_at,
                }
            )
        return history

    async def delete_feedback(self, db: AsyncSession, user_id: int, product_id: int) -> bool:
        result = await db.execute(
            delete(UserProductFeedback).where(
                UserProductFeedback.user_id == user_id,
                UserProductFeedback.product_id == product_id,
            )
        )
        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info(f"Deleted feedback for user {user_id}, product {product_id}")
        return deleted


class RecommendationStore:
    """Append-only recommendation history"""

    def __init__(self, session_factory: async_sessionmaker, feedback_repository: Optional[FeedbackRepository] = None):
        self.session_factory = session_factory
        self.feedback_repository = feedback_repository or FeedbackRepository()

    async def _write_one(
        self,
        user_id: int,
        session_id: Optional[int],
        item: RecommendationItem,
        overall_reasoning: str,
        source: RecommendationSource,
    ) -> None:
        try:
            async with self.session_factory() as session:
                session.add(
                    Recommendation(
                        user_id=user_id,
                        session_id=session_id,
                        product_id=item.product_id,
                        recommended_at=datetime.utcnow(),
                        consumption_timing=item.consumption_timing.value,
                        timing_minutes=item.timing_minutes,
                        quantity=item.quantity,
                        instructions=item.instructions,
                        reasoning=truncate_text(item.reasoning, MAX_REASONING_LENGTH),
                        overall_reasoning=truncate_text(overall_reasoning, MAX_OVERALL_REASONING_LENGTH),
                        source=source.value,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not save recommendation for product {item.product_id}") from e

    async def save_recommendations(
        self,
        user_id: int,
        items: Sequence[RecommendationItem],
        overall_reasoning: str,
        source: RecommendationSource,
        session_id: Optional[int] = None,
    ) -> int:
        """
        Write one row per item, concurrently

        Returns:
            Number of rows written; failures are logged, never raised
        """
        if not items:
            return 0

        results = await asyncio.gather(
            *(self._write_one(user_id, session_id, item, overall_reasoning, source) for item in items),
            return_exceptions=True,
        )

        saved = 0
        for item, outcome in zip(items, results):
            if isinstance(outcome, BaseException):
                logger.error(f"Failed to persist recommendation (user={user_id}, product={item.product_id}): {outcome}")
            else:
                saved += 1

        logger.info(f"Persisted {saved}/{len(items)} recommendations for user {user_id}")
        return saved

    async def get_saved_recommendations(self, db: AsyncSession, user_id: int, limit: int = 10) -> List[Recommendation]:
        """Most recent recommendations for a user"""
        result = await db.execute(
            select(Recommendation)
            .where(Recommendation.user_id == user_id)
            .order_by(Recommendation.recommended_at.desc(), Recommendation.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_session_recommendations(self, db: AsyncSession, user_id: int, session_id: int) -> List[Recommendation]:
        result = await db.execute(
            select(Recommendation)
            .where(Recommendation.user_id == user_id, Recommendation.session_id == session_id)
            .order_by(Recommendation.recommended_at.desc(), Recommendation.id.desc())
        )
        return list(result.scalars().all())

    async def record_recommendation_feedback(
        self,
        db: AsyncSession,
        user_id: int,
        recommendation_id: int,
        sentiment: Union[str, FeedbackSentiment],
        notes: Optional[str] = None,
    ) -> bool:
        """
        Attach feedback to a recommendation row and to the user-product pair

        Returns:
            False when the recommendation does not exist or belongs to another user
        """
        sentiment = _sentiment(sentiment)
        result = await db.execute(
            select(Recommendation).where(Recommendation.id == recommendation_id, Recommendation.user_id == user_id)
        )
        recommendation = result.scalar_one_or_none()
        if recommendation is None:
            logger.warning(f"Recommendation {recommendation_id} not found for user {user_id}")
            return False

        recommendation.feedback = sentiment.value
        recommendation.feedback_notes = notes
        await self.feedback_repository.save_feedback(db, user_id, recommendation.product_id, sentiment, notes)
        return True
