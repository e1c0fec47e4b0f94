"""
Embedding gateway using Google text-embedding-004.

Turns user profiles (plus optional training context) and catalog products
into vectors, and stores/loads product vectors as JSON text, one row per
product. Unlike the retrieval layer, this gateway raises on failure so the
caller can fall back to SQL retrieval.
"""
import asyncio
import hashlib
import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from google import genai
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import EmbeddingProviderError, EmbeddingUnavailable, VectorSearchError
from database.models import Product, ProductEmbedding
from engines.recommendation.schemas import CandidateProduct, TrainingContext, UserProfile
from services.catalog_service import load_active_candidates

logger = logging.getLogger(__name__)


def _fmt(value: Any, default: str = "unknown") -> str:
    if value is None or value == "":
        return default
    if hasattr(value, "value"):
        value = value.value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def build_profile_embedding_text(profile: UserProfile, context: Optional[TrainingContext] = None) -> str:
    """Fixed-order text template describing an athlete and their session"""
    context = context or TrainingContext()
    lines = [
        f"Goal: {_fmt(profile.primary_goal)}",
        f"Training type: {_fmt(context.type, 'general')}",
        f"Intensity: {_fmt(context.intensity, 'general')}",
        f"Duration minutes: {_fmt(context.duration_minutes)}",
        f"Activity level: {_fmt(profile.activity_level)}",
        f"Frequency: {_fmt(profile.training_frequency)}",
        f"Dietary restrictions: {_fmt(profile.dietary_restriction)}",
        f"Caffeine tolerance: {_fmt(profile.caffeine_tolerance)}",
        f"Sweat level: {_fmt(profile.sweat_level)}",
    ]
    return "\n".join(lines)


def build_product_embedding_text(product: CandidateProduct) -> str:
    """Fixed-order text template describing a catalog product"""
    lines = [
        f"Name: {_fmt(product.name)}",
        f"Category: {_fmt(product.category)}",
        f"Type: {_fmt(product.type)}",
        f"Description: {_fmt(product.description, '')}",
        f"Usage recommendation: {_fmt(product.usage_recommendation, '')}",
        f"Protein g: {_fmt(product.protein_g, '0')}",
        f"Carbs g: {_fmt(product.carbs_g, '0')}",
        f"Calories kcal: {_fmt(product.energy_kcal, '0')}",
        f"Caffeine mg: {_fmt(product.caffeine_mg, '0')}",
        f"Attributes: {', '.join(product.attributes) if product.attributes else 'none'}",
    ]
    return "\n".join(lines)


class EmbeddingService:
    """Service for generating and managing profile/product embeddings."""

    # Caching configuration
    QUERY_CACHE_TTL = 3600  # 1 hour TTL for query cache
    MAX_CACHE_SIZE = 1000  # Maximum cached queries

    # Rate limiting
    BATCH_SIZE = 100
    RATE_LIMIT_DELAY = 0.5  # seconds between batches

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
        max_chars: Optional[int] = None,
        timeout: Optional[float] = None,
        client: Any = None,
    ):
        self.model = model or settings.embedding_model
        self.dimension = dimension or settings.embedding_dimension
        self.max_chars = max_chars or settings.embedding_max_chars
        self.timeout = timeout or settings.embedding_timeout_seconds
        self._query_cache: Dict[str, Dict[str, Any]] = {}

        self.client = client
        if self.client is None:
            api_key = settings.google_ai_api_key if api_key is None else api_key
            if api_key:
                self.client = genai.Client(api_key=api_key)
                logger.info(f"EmbeddingService initialized with model {self.model}")
            else:
                logger.warning("Google AI API key not configured - embeddings unavailable")

    @property
    def available(self) -> bool:
        return self.client is not None

    async def embed(self, text: str, task_type: str = "RETRIEVAL_DOCUMENT") -> List[float]:
        """
        Generate an embedding for text.

        Args:
            text: The text to embed, truncated to max_chars
            task_type: "RETRIEVAL_DOCUMENT" for products or "RETRIEVAL_QUERY" for profiles

        Returns:
            Embedding vector

        Raises:
            EmbeddingUnavailable: no provider configured
            EmbeddingProviderError: provider failed, timed out or returned nothing
        """
        if not self.client:
            raise EmbeddingUnavailable("No embedding provider configured")

        if not text or not text.strip():
            raise EmbeddingProviderError("Cannot embed empty text")

        truncated_text = text[: self.max_chars]

        try:
            result = await asyncio.wait_for(
                self.client.aio.models.embed_content(
                    model=self.model,
                    contents=truncated_text,
                    config={
                        "task_type": task_type,
                        "output_dimensionality": self.dimension,
                    },
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Embedding request timed out after {self.timeout}s")
            raise EmbeddingProviderError(f"Embedding request timed out after {self.timeout}s")
        except Exception as e:
            logger.error(f"Error generating embedding: {e}")
            raise EmbeddingProviderError(f"Embedding provider error: {e}") from e

        if not result or not result.embeddings or not result.embeddings[0].values:
            logger.warning("No embedding returned from API")
            raise EmbeddingProviderError("Embedding provider returned no vector")

        embedding = list(result.embeddings[0].values)
        logger.debug(f"Generated embedding with {len(embedding)} dimensions")
        return embedding

    async def embed_user_profile(self, profile: UserProfile, context: Optional[TrainingContext] = None) -> List[float]:
        """Embed a profile (with optional training context), cached by template text"""
        profile_text = build_profile_embedding_text(profile, context)
        cache_key = hashlib.md5(profile_text.encode()).hexdigest()

        cached = self._query_cache.get(cache_key)
        if cached and time.time() - cached["timestamp"] < self.QUERY_CACHE_TTL:
            logger.debug(f"Profile embedding cache hit for user {profile.user_id}")
            return cached["embedding"]

        embedding = await self.embed(profile_text, task_type="RETRIEVAL_QUERY")

        self._query_cache[cache_key] = {"embedding": embedding, "timestamp": time.time()}
        if len(self._query_cache) > self.MAX_CACHE_SIZE:
            self._prune_cache()

        return embedding

    async def embed_product(self, product: CandidateProduct) -> List[float]:
        return await self.embed(build_product_embedding_text(product), task_type="RETRIEVAL_DOCUMENT")

    def _prune_cache(self):
        """Remove oldest entries from cache."""
        if len(self._query_cache) <= self.MAX_CACHE_SIZE:
            return

        # Sort by timestamp and remove oldest 20%
        sorted_keys = sorted(self._query_cache.keys(), key=lambda k: self._query_cache[k]["timestamp"])
        keys_to_remove = sorted_keys[: int(len(sorted_keys) * 0.2)]

        for key in keys_to_remove:
            del self._query_cache[key]

        logger.info(f"Pruned {len(keys_to_remove)} entries from profile embedding cache")

    def clear_cache(self):
        self._query_cache.clear()

    async def load_product_embeddings(self, db: AsyncSession) -> Dict[int, List[float]]:
        """
        Load stored vectors for active products.

        Rows whose JSON cannot be parsed are skipped.

        Raises:
            VectorSearchError: the embeddings table could not be read
        """
        query = (
            select(ProductEmbedding.product_id, ProductEmbedding.embedding)
            .join(Product, Product.id == ProductEmbedding.product_id)
            .where(Product.is_active.is_(True))
        )
        try:
            result = await db.execute(query)
            rows = result.all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load product embeddings: {e}")
            await db.rollback()
            raise VectorSearchError("Stored embeddings could not be loaded") from e

        vectors: Dict[int, List[float]] = {}
        for product_id, embedding_json in rows:
            try:
                vector = json.loads(embedding_json)
            except (TypeError, json.JSONDecodeError):
                logger.warning(f"Skipping unparsable embedding for product {product_id}")
                continue
            if not isinstance(vector, list) or not vector:
                logger.warning(f"Skipping malformed embedding for product {product_id}")
                continue
            vectors[product_id] = vector

        logger.info(f"Loaded {len(vectors)} product embeddings")
        return vectors

    async def upsert_product_embedding(
        self,
        db: AsyncSession,
        product_id: int,
        vector: Sequence[float],
        embedding_text: Optional[str] = None,
    ) -> None:
        """Store one vector per product; last write wins"""
        result = await db.execute(select(ProductEmbedding).where(ProductEmbedding.product_id == product_id))
        row = result.scalar_one_or_none()
        payload = json.dumps(list(vector))

        if row is None:
            db.add(ProductEmbedding(product_id=product_id, embedding=payload, embedding_text=embedding_text))
        else:
            row.embedding = payload
            row.embedding_text = embedding_text
            row.updated_at = datetime.utcnow()
        await db.flush()

    async def regenerate_product_embeddings(
        self,
        db: AsyncSession,
        product_ids: Optional[List[int]] = None,
        progress_callback: Optional[callable] = None,
    ) -> Dict[str, int]:
        """
        Embed active products in batches and store the vectors.

        Args:
            db: Database session
            product_ids: Restrict to these products (default: all active)
            progress_callback: Optional callback(processed, total)

        Returns:
            Dict with stats: {"processed": N, "success": N, "failed": N}

        Raises:
            EmbeddingUnavailable: no provider configured
        """
        if not self.client:
            raise EmbeddingUnavailable("No embedding provider configured")

        products = await load_active_candidates(db, product_ids)
        stats = {"processed": 0, "success": 0, "failed": 0}
        total = len(products)

        for i in range(0, total, self.BATCH_SIZE):
            batch = products[i : i + self.BATCH_SIZE]

            for product in batch:
                embedding_text = build_product_embedding_text(product)
                try:
                    vector = await self.embed(embedding_text, task_type="RETRIEVAL_DOCUMENT")
                    await self.upsert_product_embedding(db, product.product_id, vector, embedding_text)
                    stats["success"] += 1
                except EmbeddingProviderError as e:
                    logger.error(f"Error embedding product {product.product_id}: {e}")
                    stats["failed"] += 1

                stats["processed"] += 1
                if progress_callback:
                    progress_callback(stats["processed"], total)

            await db.commit()

            # Rate limiting
            if i + self.BATCH_SIZE < total:
                await asyncio.sleep(self.RATE_LIMIT_DELAY)

        logger.info(f"Embedding regeneration complete: {stats}")
        return stats


# Singleton instance; the profile embedding cache lives as long as the process
_embedding_service: Optional[EmbeddingService] = None


def get_embedding_service() -> EmbeddingService:
    """Get or create the embedding service singleton."""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = EmbeddingService()
    return _embedding_service
