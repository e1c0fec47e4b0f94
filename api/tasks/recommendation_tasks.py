"""
Background recommendation generation.

Triggered after a profile is saved and after a training session is created.
The triggering request never waits for these tasks, and their failures are
only logged.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from celery_app import celery_app
from core.database import build_engine, build_session_factory, get_db_session
from core.exceptions import ProfileMissing
from engines.recommendation.core import build_recommendation_engine
from services.embedding_service import get_embedding_service

logger = logging.getLogger(__name__)


async def _generate(
    user_id: int,
    session_id: Optional[int] = None,
    training_data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    # Each run owns its database engine; the embedding service and its cache are process-wide
    db_engine = build_engine()
    session_factory = build_session_factory(db_engine)
    try:
        recommendation_engine = build_recommendation_engine(session_factory)
        async with get_db_session(session_factory) as db:
            if session_id is not None and training_data is None:
                outcome = await recommendation_engine.get_session_recommendations(db, user_id, session_id)
            else:
                outcome = await recommendation_engine.get_recommendations(
                    db, user_id, training_data=training_data, session_id=session_id
                )
    finally:
        await db_engine.dispose()

    return {
        "status": "success",
        "user_id": user_id,
        "session_id": session_id,
        "count": len(outcome.recommendations),
        "saved": outcome.saved_count,
        "source": outcome.source.value if outcome.source else None,
        "mode": outcome.mode.value,
        "message": outcome.message,
    }


_worker_loop: Optional[asyncio.AbstractEventLoop] = None


def _run(coro) -> Dict[str, Any]:
    # Celery workers run in sync context; one loop per worker process keeps
    # the shared embedding client bound to a live loop between tasks
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_worker_loop)
    return _worker_loop.run_until_complete(coro)


def run_generation(
    task_id: str,
    user_id: int,
    session_id: Optional[int] = None,
    training_data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Run the pipeline, turning every failure into a logged error result"""
    try:
        logger.info(f"Background task {task_id} started for user {user_id} (session={session_id})")
        result = _run(_generate(user_id, session_id, training_data))
        logger.info(
            f"Background task {task_id} completed: {result['count']} recommendations "
            f"(source={result['source']}, mode={result['mode']}, saved={result['saved']})"
        )
        return result

    except ProfileMissing as e:
        logger.warning(f"Background task {task_id} skipped: {e}")
        return {"status": "skipped", "user_id": user_id, "session_id": session_id, "error": str(e)}

    except Exception as e:
        logger.error(f"Background task {task_id} failed for user {user_id}: {e}", exc_info=True)
        return {"status": "error", "user_id": user_id, "session_id": session_id, "error": str(e)}


@celery_app.task(bind=True, name="tasks.generate_profile_recommendations")
def generate_profile_recommendations(self, user_id: int) -> Dict[str, Any]:
    """Generate general recommendations after a profile is saved"""
    return run_generation(self.request.id, user_id)


@celery_app.task(bind=True, name="tasks.generate_session_recommendations")
def generate_session_recommendations(
    self,
    user_id: int,
    session_id: int,
    training_data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Generate recommendations for a newly created training session"""
    return run_generation(self.request.id, user_id, session_id, training_data)


def schedule_profile_recommendations(user_id: int) -> Optional[str]:
    """Enqueue profile-triggered generation; returns the task id, None if enqueueing failed"""
    try:
        task = generate_profile_recommendations.delay(user_id)
        logger.info(f"Queued profile recommendations for user {user_id} (task={task.id})")
        return task.id
    except Exception as e:
        logger.error(f"Could not queue profile recommendations for user {user_id}: {e}")
        return None


def schedule_session_recommendations(
    user_id: int,
    session_id: int,
    training_data: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Enqueue session-triggered generation; returns the task id, None if enqueueing failed"""
    try:
        task = generate_session_recommendations.delay(user_id, session_id, training_data)
        logger.info(f"Queued session recommendations for user {user_id}, session {session_id} (task={task.id})")
        return task.id
    except Exception as e:
        logger.error(f"Could not queue session recommendations for user {user_id}, session {session_id}: {e}")
        return None


async def _regenerate_embeddings(product_ids: Optional[list] = None) -> Dict[str, int]:
    db_engine = build_engine()
    session_factory = build_session_factory(db_engine)
    try:
        async with get_db_session(session_factory) as db:
            return await get_embedding_service().regenerate_product_embeddings(db, product_ids)
    finally:
        await db_engine.dispose()


@celery_app.task(bind=True, name="tasks.regenerate_product_embeddings", soft_time_limit=1700)
def regenerate_product_embeddings(self, product_ids: Optional[list] = None) -> Dict[str, Any]:
    """Re-embed active products (all of them when product_ids is empty)"""
    try:
        logger.info(f"Embedding regeneration task {self.request.id} started ({len(product_ids) if product_ids else 'all'} products)")
        stats = _run(_regenerate_embeddings(product_ids))
        return {"status": "success", **stats}
    except Exception as e:
        logger.error(f"Embedding regeneration task {self.request.id} failed: {e}", exc_info=True)
        return {"status": "error", "error": str(e)}
