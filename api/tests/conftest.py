"""
Pytest configuration and fixtures for the recommendation service tests.
"""
import sys
from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.models import (  # noqa: E402
    Base,
    Product,
    ProductAttribute,
    ProductCategory,
    ProductNutrition,
    ProductType,
    UserProfileRecord,
)
from engines.recommendation.schemas import CandidateProduct  # noqa: E402


@pytest.fixture
def mock_db_session():
    """Create a mock async database session."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
async def db_engine():
    """In-memory SQLite engine with the full schema, one per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# Catalog fixtures

CATALOG = [
    {
        "id": 1,
        "name": "Rego Recovery Shake",
        "category": "recovery",
        "type": "powder",
        "tags": ["vegan", "vegetarian", "gluten-free", "high-protein"],
        "nutrition": {"protein_g": 20, "carbs_g": 30, "energy_kcal": 200, "sugars_g": 10, "caffeine_mg": 0},
    },
    {
        "id": 2,
        "name": "Caffeine Energy Gel",
        "category": "energy",
        "type": "gel",
        "tags": ["gluten-free", "high-carb"],
        "nutrition": {"protein_g": 0, "carbs_g": 25, "energy_kcal": 100, "sugars_g": 20, "caffeine_mg": 80},
    },
    {
        "id": 3,
        "name": "Hydro Electrolyte Drink",
        "category": "hydration",
        "type": "drink",
        "tags": ["vegan", "gluten-free"],
        "nutrition": {"protein_g": 0, "carbs_g": 5, "energy_kcal": 20, "sugars_g": 2, "caffeine_mg": 0},
    },
    {
        "id": 4,
        "name": "Beta Fuel Energy Bar",
        "category": "energy",
        "type": "bar",
        "tags": ["vegetarian", "high-carb"],
        "nutrition": {"protein_g": 5, "carbs_g": 40, "energy_kcal": 250, "sugars_g": 15, "caffeine_mg": 0},
    },
    {
        "id": 5,
        "name": "Whey Protein Isolate",
        "category": "protein",
        "type": "powder",
        "tags": ["gluten-free", "high-protein"],
        "nutrition": {"protein_g": 25, "carbs_g": 2, "energy_kcal": 110, "sugars_g": 1, "caffeine_mg": None},
    },
    {
        "id": 6,
        "name": "Pre-Workout Booster",
        "category": "energy",
        "type": "powder",
        "tags": ["vegan"],
        "nutrition": {"protein_g": 0, "carbs_g": 10, "energy_kcal": 40, "sugars_g": 3, "caffeine_mg": 200},
    },
    {
        "id": 7,
        "name": "Discontinued Vegan Bar",
        "category": "energy",
        "type": "bar",
        "tags": ["vegan", "vegetarian"],
        "nutrition": {"protein_g": 8, "carbs_g": 35, "energy_kcal": 210, "sugars_g": 12, "caffeine_mg": 0},
        "is_active": False,
    },
]


def make_candidate(product_id: int, name: str, **kwargs) -> CandidateProduct:
    """Build a CandidateProduct with sensible defaults."""
    return CandidateProduct(product_id=product_id, name=name, **kwargs)


def catalog_candidates():
    """CATALOG as CandidateProduct records (active products only)."""
    return [
        make_candidate(
            item["id"],
            item["name"],
            category=item["category"],
            type=item["type"],
            attributes=sorted(item["tags"]),
            **item["nutrition"],
        )
        for item in CATALOG
        if item.get("is_active", True)
    ]


@pytest.fixture
def sample_candidates():
    return catalog_candidates()


def seed_catalog(db_session):
    """Add CATALOG to the session (not committed)."""
    categories = {}
    types = {}
    for item in CATALOG:
        if item["category"] not in categories:
            categories[item["category"]] = ProductCategory(name=item["category"])
        if item["type"] not in types:
            types[item["type"]] = ProductType(name=item["type"])

    for item in CATALOG:
        product = Product(
            id=item["id"],
            name=item["name"],
            description=f"{item['name']} for athletes",
            usage_recommendation="Mix with water",
            is_active=item.get("is_active", True),
            category=categories[item["category"]],
            product_type=types[item["type"]],
        )
        product.nutrition = ProductNutrition(**item["nutrition"])
        product.attributes = [ProductAttribute(attribute_name=tag) for tag in item["tags"]]
        db_session.add(product)


def athlete_profile(user_id: int = 42) -> UserProfileRecord:
    """Stored profile with Spanish answers, as the onboarding form writes them."""
    return UserProfileRecord(
        user_id=user_id,
        age=30,
        weight=72.5,
        height=178,
        gender="hombre",
        activity_level="muy activo",
        training_frequency="5+",
        primary_goal="ganar musculo",
        sweat_level="alto",
        caffeine_tolerance="medio",
        dietary_restrictions="no",
    )


@pytest.fixture
async def seeded_session(db_session):
    """Session over a database holding CATALOG and one stored profile."""
    seed_catalog(db_session)
    db_session.add(athlete_profile())
    await db_session.commit()
    return db_session


@pytest.fixture
async def file_db_engine(tmp_path):
    """File-backed SQLite engine, for code that opens several sessions at once."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fuelwise.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def seed_database():
    """Async callable writing CATALOG and/or the stored profile through an engine."""

    async def seed(engine, catalog: bool = True, profile: bool = True):
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as session:
            if catalog:
                seed_catalog(session)
            if profile:
                session.add(athlete_profile())
            await session.commit()

    return seed
