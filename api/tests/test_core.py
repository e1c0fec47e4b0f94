"""
Tests for the database plumbing and logging setup.
"""
import logging
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from core.database import build_session_factory, create_tables, get_db_session, to_async_url
from core.logging import setup_logging
from database.models import ProductCategory


class TestDatabaseHelpers:

    def test_to_async_url(self):
        assert to_async_url("postgresql://u:p@db:5432/fuelwise") == "postgresql+asyncpg://u:p@db:5432/fuelwise"
        assert to_async_url("sqlite+aiosqlite:///:memory:") == "sqlite+aiosqlite:///:memory:"

    @pytest.fixture
    async def empty_engine(self):
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        await create_tables(engine)
        yield engine
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_session_commits_on_success(self, empty_engine):
        factory = build_session_factory(empty_engine)

        async with get_db_session(factory) as session:
            session.add(ProductCategory(name="hydration"))

        async with get_db_session(factory) as session:
            count = (await session.execute(select(func.count(ProductCategory.id)))).scalar()
        assert count == 1

    @pytest.mark.asyncio
    async def test_session_rolls_back_on_error(self, empty_engine):
        factory = build_session_factory(empty_engine)

        with pytest.raises(RuntimeError):
            async with get_db_session(factory) as session:
                session.add(ProductCategory(name="energy"))
                await session.flush()
                raise RuntimeError("abort")

        async with get_db_session(factory) as session:
            count = (await session.execute(select(func.count(ProductCategory.id)))).scalar()
        assert count == 0


class TestSetupLogging:

    @pytest.fixture
    def root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield root
        root.handlers = handlers
        root.setLevel(level)

    def test_configures_root_logger(self, root_logger):
        with patch("core.logging.settings") as mock_settings:
            mock_settings.log_level = "debug"
            mock_settings.log_format = "console"
            mock_settings.environment = "development"

            setup_logging(force=True)

        assert root_logger.level == logging.DEBUG
        assert len(root_logger.handlers) == 1
        assert logging.getLogger("openai").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_second_call_is_a_no_op(self, root_logger):
        with patch("core.logging.settings") as mock_settings:
            mock_settings.log_level = "info"
            mock_settings.log_format = "json"
            mock_settings.environment = "development"
            setup_logging(force=True)

            mock_settings.log_level = "error"
            setup_logging()

        assert root_logger.level == logging.INFO

    def test_production_adds_rotating_files(self, root_logger, tmp_path):
        with patch("core.logging.settings") as mock_settings, patch("core.logging.LOG_DIR", tmp_path / "logs"):
            mock_settings.log_level = "info"
            mock_settings.log_format = "json"
            mock_settings.environment = "production"

            setup_logging(force=True)

        assert len(root_logger.handlers) == 3
        assert (tmp_path / "logs").is_dir()
        for handler in root_logger.handlers[1:]:
            handler.close()
