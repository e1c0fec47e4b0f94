"""
Celery application for background recommendation generation.

Generation runs on the "recommendations" queue; embedding regeneration is a
long batch job and gets its own "embeddings" queue so it never delays
profile- or session-triggered work.
"""
from celery import Celery
from celery.signals import worker_process_init

from core.config import settings
from core.logging import setup_logging

celery_app = Celery(
    "fuelwise",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["tasks.recommendation_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_default_queue="recommendations",
    task_routes={"tasks.regenerate_product_embeddings": {"queue": "embeddings"}},
    # One generation is bounded by the LLM and embedding timeouts plus storage
    task_soft_time_limit=int(settings.llm_timeout_seconds + settings.embedding_timeout_seconds) + 60,
    task_time_limit=1800,  # embedding regeneration over a full catalog
    result_expires=3600,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)


@worker_process_init.connect
def configure_worker_logging(**kwargs):
    setup_logging()


if __name__ == "__main__":
    celery_app.start()
