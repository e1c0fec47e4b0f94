"""
Catalog queries shared by retrieval, embedding regeneration and the engine.

Products are projected into CandidateProduct records: category and type
names resolved, tags canonicalised ("Gluten Free", "gluten_free" and
"gluten-free" all become "gluten-free"), nutrition flattened.
"""
import logging
import re
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database.models import Product, ProductAttribute
from engines.recommendation.schemas import CandidateProduct

logger = logging.getLogger(__name__)


def canonical_tag(name: str) -> str:
    """Lowercase, with runs of whitespace, underscores and hyphens as a single hyphen"""
    return re.sub(r"[\s_\-]+", "-", name.strip().lower())


def canonical_tag_column():
    """SQL counterpart of canonical_tag for ProductAttribute.attribute_name (single separators only)"""
    lowered = func.lower(func.trim(ProductAttribute.attribute_name))
    return func.replace(func.replace(lowered, "_", "-"), " ", "-")


def active_products_query():
    """Active products with everything the projection needs eagerly loaded"""
    return (
        select(Product)
        .where(Product.is_active.is_(True))
        .options(
            selectinload(Product.category),
            selectinload(Product.product_type),
            selectinload(Product.nutrition),
            selectinload(Product.attributes),
        )
    )


def product_to_candidate(product: Product) -> CandidateProduct:
    nutrition = product.nutrition
    return CandidateProduct(
        product_id=product.id,
        name=product.name,
        category=product.category.name if product.category else None,
        type=product.product_type.name if product.product_type else None,
        description=product.description,
        usage_recommendation=product.usage_recommendation,
        usage_context=product.usage_context,
        attributes=sorted(
            {canonical_tag(a.attribute_name) for a in product.attributes if a.attribute_name and a.attribute_name.strip()}
        ),
        serving_size=product.serving_size,
        energy_kcal=nutrition.energy_kcal if nutrition else None,
        protein_g=nutrition.protein_g if nutrition else None,
        carbs_g=nutrition.carbs_g if nutrition else None,
        sugars_g=nutrition.sugars_g if nutrition else None,
        sodium_mg=nutrition.sodium_mg if nutrition else None,
        caffeine_mg=nutrition.caffeine_mg if nutrition else None,
    )


async def load_candidates_by_ids(db: AsyncSession, product_ids: Sequence[int]) -> List[CandidateProduct]:
    """Active products for the given ids, returned in the order of product_ids"""
    if not product_ids:
        return []

    result = await db.execute(active_products_query().where(Product.id.in_(list(product_ids))))
    by_id: Dict[int, CandidateProduct] = {
        product.id: product_to_candidate(product) for product in result.scalars().unique().all()
    }
    missing = [pid for pid in product_ids if pid not in by_id]
    if missing:
        logger.debug(f"{len(missing)} ranked products are inactive or missing: {missing[:10]}")
    return [by_id[pid] for pid in product_ids if pid in by_id]


async def load_active_candidates(db: AsyncSession, product_ids: Optional[Sequence[int]] = None) -> List[CandidateProduct]:
    """All active products (optionally restricted to ids), ordered by id"""
    query = active_products_query().order_by(Product.id)
    if product_ids:
        query = query.where(Product.id.in_(list(product_ids)))
    result = await db.execute(query)
    return [product_to_candidate(product) for product in result.scalars().unique().all()]
