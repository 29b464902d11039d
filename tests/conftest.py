"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Session

from kudos.config import KudosConfig
from kudos.database.models import Base
from kudos.engine.catalog import DEFAULT_CATALOG
from kudos.services.engagement_service import EngagementService

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Kudos tables.

    Uses StaticPool so all threads share the same in-memory database.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


def _make_config(**overrides) -> KudosConfig:
    """KudosConfig with zero backoff so retry paths don't sleep."""
    values = {
        "community_name": "Test City",
        "storage_backoff_base": 0.0,
        "storage_backoff_max": 0.0,
    }
    values.update(overrides)
    return KudosConfig(**values)


@pytest.fixture
def config_factory():
    """Build a KudosConfig with overrides."""
    return _make_config


@pytest.fixture
def config() -> KudosConfig:
    return _make_config()


@pytest.fixture
def service(db_engine: Engine, config: KudosConfig) -> EngagementService:
    return EngagementService(db_engine, config, catalog=DEFAULT_CATALOG)


@pytest.fixture
def client(service: EngagementService):
    """FastAPI TestClient wired to the in-memory service."""
    from fastapi.testclient import TestClient

    from kudos.api.deps import get_service
    from kudos.api.main import app

    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
