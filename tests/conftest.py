"""
Pytest Configuration and Centralized Fixtures.

Provides reusable mocks and fixtures for testing:
- Database sessions and query results
- A fake Database handle (open or unconfigured)
- ORM rows in typical states
- API test client wired to the fake handle
"""

import os
from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

# Set environment BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from tests.factories import (
    FakeDatabase,
    create_billing_account,
    create_routine,
    make_result,
    stub_report_service,
)
from vivebien_admin.db.models import BillingAccount, HealthRoutine
from vivebien_admin.services.reports import ReportService

# ============================================================================
# Database Session Fixtures
# ============================================================================


@pytest.fixture
def db_session() -> AsyncMock:
    """Create a mock database session with sensible defaults."""
    session = AsyncMock(spec=AsyncSession)

    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.get = AsyncMock(return_value=None)

    # Default execute returns empty result
    session.execute = AsyncMock(return_value=make_result())

    return session


@pytest.fixture
def fake_database(db_session: AsyncMock) -> FakeDatabase:
    """Open fake database backed by db_session."""
    return FakeDatabase(db_session)


@pytest.fixture
def closed_database() -> FakeDatabase:
    """Fake database with no DATABASE_URL."""
    return FakeDatabase(None, is_open=False)


@pytest.fixture
def report_service(fake_database: FakeDatabase) -> ReportService:
    return ReportService(fake_database)  # type: ignore[arg-type]


# ============================================================================
# ORM Row Fixtures
# ============================================================================


@pytest.fixture
def active_account() -> BillingAccount:
    return create_billing_account()


@pytest.fixture
def routine() -> HealthRoutine:
    return create_routine()


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================


@pytest.fixture
def app(fake_database: FakeDatabase) -> Iterator[FastAPI]:
    """The application with the fake database installed on app.state."""
    from vivebien_admin.api.status_routes import _status_cache
    from vivebien_admin.main import app as main_app

    main_app.state.database = fake_database
    _status_cache.clear()
    yield main_app
    main_app.dependency_overrides.clear()
    _status_cache.clear()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Synchronous test client (lifespan not run; app.state is set by the fixture)."""
    return TestClient(app)


@pytest.fixture
def reports(app: FastAPI) -> AsyncMock:
    """Override the report service dependency with an empty stub."""
    from vivebien_admin.api.dependencies import get_report_service

    stub = stub_report_service()
    app.dependency_overrides[get_report_service] = lambda: stub
    return stub
