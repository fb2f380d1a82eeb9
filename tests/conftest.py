"""Pytest fixtures for payroll sync tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_sync.config import LocationMap, LocationSource, Settings
from payroll_sync.metrics import sync_metrics
from payroll_sync.models import Base, Employee, Location
from payroll_sync.providers.stub import StubWorkforcePlatform
from payroll_sync.services.identity_resolver import IdentityResolver

# In-memory SQLite shared across connections of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite://"

MANHEIM_FORM = "9001"
MANHEIM_CLOCK = "7001"
LANCASTER_FORM = "9002"
LANCASTER_CLOCK = "7002"

# Group B pay date: two whole weeks after the 2025-01-03 reference
PAY_DATE = date(2025, 1, 17)


@pytest_asyncio.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def reset_metrics():
    """Counters are process-wide; isolate each test."""
    sync_metrics.reset()
    yield
    sync_metrics.reset()


@pytest.fixture
def locations() -> LocationMap:
    return LocationMap(
        sources=(
            LocationSource("Manheim", form_id=MANHEIM_FORM, time_clock_id=MANHEIM_CLOCK),
            LocationSource("Lancaster", form_id=LANCASTER_FORM, time_clock_id=LANCASTER_CLOCK),
        )
    )


@pytest.fixture
def platform() -> StubWorkforcePlatform:
    """Stub platform seeded with three users, one without an email."""
    stub = StubWorkforcePlatform()
    stub.add_user(101, "Alice@Example.com")
    stub.add_user(102, "bob@example.com")
    stub.add_user(103, None)
    return stub


@pytest.fixture
def resolver(platform) -> IdentityResolver:
    return IdentityResolver(platform, page_size=100, max_pages=10)


@pytest.fixture
def settings(locations) -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        connecteam_api_base_url="https://api.connecteam.test",
        connecteam_api_key="test-key",
        user_page_size=100,
        user_page_cap=10,
        poll_page_size=100,
        poll_page_cap=500,
        request_timeout_seconds=5.0,
        retry_count=0,
        retry_backoff_seconds=0.0,
        pay_reference_date=date(2025, 1, 3),
        locations=locations,
    )


@dataclass
class SeededOrg:
    location: Location
    other_location: Location
    hourly: Employee
    production: Employee
    fixed: Employee
    group_a: Employee
    elsewhere: Employee


@pytest_asyncio.fixture
async def seeded(session) -> SeededOrg:
    """One organization with a Manheim crew in group B."""
    org_id = uuid4()
    manheim = Location(organization_id=org_id, name="Manheim")
    lancaster = Location(organization_id=org_id, name="Lancaster")
    session.add_all([manheim, lancaster])
    await session.flush()

    def employee(location: Location, email: str, group: str, comp: str, **rates) -> Employee:
        return Employee(
            organization_id=org_id,
            location_id=location.location_id,
            email=email,
            full_name=email.split("@")[0].title(),
            payroll_group=group,
            compensation_type=comp,
            **rates,
        )

    hourly = employee(manheim, "alice@example.com", "B", "hourly", hourly_rate=Decimal("20.00"))
    production = employee(manheim, "bob@example.com", "B", "production", piece_rate=Decimal("5.00"))
    fixed = employee(manheim, "carol@example.com", "B", "fixed", fixed_pay=Decimal("500.00"))
    group_a = employee(manheim, "dave@example.com", "A", "hourly", hourly_rate=Decimal("18.00"))
    elsewhere = employee(lancaster, "erin@example.com", "B", "hourly", hourly_rate=Decimal("22.00"))
    session.add_all([hourly, production, fixed, group_a, elsewhere])
    await session.commit()

    return SeededOrg(
        location=manheim,
        other_location=lancaster,
        hourly=hourly,
        production=production,
        fixed=fixed,
        group_a=group_a,
        elsewhere=elsewhere,
    )
