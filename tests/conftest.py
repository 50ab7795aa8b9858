"""
Pytest configuration and fixtures for testing.

Provides a fresh SQLite database per test, repositories bound to it, and
deterministic stand-ins for the browser session, extractor, and labeler.
"""

from pathlib import Path

import pytest


def pytest_configure(config):
    """
    Load .env.test before any makergrade module is imported, so the
    module-level settings pick up test values.
    """
    from dotenv import load_dotenv

    test_env_path = Path(__file__).parent.parent / ".env.test"
    if test_env_path.exists():
        load_dotenv(test_env_path, override=True)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with all tables created.

    A file (rather than :memory:) gives every session its own connection,
    matching how concurrent workers use the database in production.
    """
    from makergrade.core.database import close_db, create_engine_for, init_db

    db_engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(db_engine)
    yield db_engine
    await close_db(db_engine)


@pytest.fixture
def session_factory(engine):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def jobs(session_factory):
    from makergrade.repositories.jobs import JobRepository

    return JobRepository(session_factory)


@pytest.fixture
def items(session_factory):
    from makergrade.repositories.items import ItemRepository

    return ItemRepository(session_factory)


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def extractor():
    from tests.fakes import FakeExtractor

    return FakeExtractor()


@pytest.fixture
def listing():
    from tests.fakes import FakeListingPage

    return FakeListingPage()


@pytest.fixture
def browser(extractor, listing):
    from tests.fakes import FakeBrowser

    return FakeBrowser(extractor, listing)


@pytest.fixture
def labeler():
    from tests.fakes import FakeLabeler

    return FakeLabeler()
