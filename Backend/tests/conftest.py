"""
Pytest configuration and fixtures for async database testing.

Each test gets its own SQLite database file (aiosqlite) with the full schema
created, so provisioning tests can open several sessions and observe
committed or rolled-back state exactly as the application does.
"""
import copy
from datetime import date

import pytest
import yaml
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tenantkit.core.config import Settings
from tenantkit.core.db import Base
import tenantkit.models  # noqa: F401  (registers tables on Base.metadata)

# Fixed reference date for validation; exception dates in fixtures are after it
TODAY = date(2026, 3, 2)

BASE_CONFIG = {
    "version": "1.0.0",
    "business": {
        "id": "bella-salon",
        "name": "Bella Salon",
        "description": "Neighbourhood hair and beauty studio",
        "timezone": "America/New_York",
        "locale": "en-US",
        "currency": "USD",
    },
    "contact": {
        "address": {
            "street": "12 Main St",
            "city": "Springfield",
            "state": "IL",
            "postalCode": "62701",
            "country": "US",
        },
        "email": "hello@bella-salon.com",
        "phone": "+15551234567",
        "website": "https://bella-salon.com",
    },
    "branding": {
        "primaryColor": "#14b8a6",
        "logoUrl": "https://bella-salon.com/logo.png",
    },
    "timeSlotDuration": 30,
    "availability": [
        {"day": "monday", "enabled": True, "slots": [{"open": "09:00", "close": "17:00"}]},
        {"day": "tuesday", "enabled": True, "slots": [{"open": "09:00", "close": "17:00"}]},
        {"day": "wednesday", "enabled": True, "slots": [{"open": "09:00", "close": "17:00"}]},
        {"day": "thursday", "enabled": True, "slots": [{"open": "09:00", "close": "17:00"}]},
        {"day": "friday", "enabled": True, "slots": [{"open": "09:00", "close": "17:00"}]},
        {"day": "saturday", "enabled": True, "slots": [{"open": "10:00", "close": "14:30"}]},
        {"day": "sunday", "enabled": False},
    ],
    "availabilityExceptions": [
        {"date": "2099-12-25", "reason": "Christmas", "closed": True},
    ],
    "categories": [
        {
            "id": "hair",
            "name": "Hair",
            "sortOrder": 0,
            "services": [
                {
                    "id": "haircut",
                    "name": "Haircut",
                    "description": "Wash, cut and style",
                    "duration": 30,
                    "price": 3500,
                },
                {
                    "id": "color",
                    "name": "Color",
                    "description": "Full color treatment",
                    "duration": 90,
                    "price": 9000,
                    "bufferAfter": 15,
                    "maxSimultaneousBookings": 1,
                },
            ],
        },
        {
            "id": "nails",
            "name": "Nails",
            "sortOrder": 1,
            "services": [
                {
                    "id": "manicure",
                    "name": "Manicure",
                    "description": "Classic manicure",
                    "duration": 45,
                    "price": 2500,
                },
            ],
        },
    ],
    "bookingRequirements": {
        "requireEmail": True,
        "requirePhone": True,
        "allowGuestBooking": True,
    },
    "bookingLimits": {
        "maxSimultaneousBookings": 3,
        "advanceBookingDays": 60,
        "minAdvanceBookingMinutes": 120,
    },
    "cancellationPolicy": {
        "allowCancellation": True,
        "cancellationDeadlineHours": 24,
        "refundPolicy": "full",
    },
    "notifications": {
        "ownerNotificationEmail": "owner@bella-salon.com",
    },
    "features": {
        "enableOnlinePayments": False,
    },
}


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def config_doc():
    """A fresh, valid, warning-free config document (camelCase source shape)."""
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def to_yaml():
    def _dump(document: dict) -> str:
        return yaml.safe_dump(document, sort_keys=False)
    return _dump


@pytest.fixture
def config_yaml(config_doc, to_yaml):
    return to_yaml(config_doc)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        APP_BASE_URL="https://book.example.com/",
        CONFIG_ROOT=str(tmp_path),
        STORE_TIMEOUT_SECONDS=5,
        FALLBACK_CONTACT_EMAIL="support@example.com",
    )


@pytest.fixture(scope="function")
async def async_engine(settings):
    """
    Create async SQLAlchemy engine for the per-test database.

    Tables are created up front; the file lives in tmp_path and goes away
    with it.
    """
    engine = create_async_engine(settings.database_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def async_session(session_factory):
    """Session for arranging and asserting on store state."""
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
async def client(session_factory, settings):
    """
    Create FastAPI AsyncClient with the loader, provisioner and activator
    bound to the test database.
    """
    # Import here so the app module's settings don't load before the fixtures
    from tenantkit.main import app
    from tenantkit.onboarding import OnboardingProvisioner
    from tenantkit.routes import get_config_loader, get_provisioner, get_activator
    from tenantkit.tenancy.activation import ConfigActivator
    from tenantkit.tenancy.loader import ConfigLoader

    loader = ConfigLoader(session_factory, settings=settings)

    app.dependency_overrides[get_config_loader] = lambda: loader
    app.dependency_overrides[get_provisioner] = lambda: OnboardingProvisioner(session_factory, settings=settings)
    app.dependency_overrides[get_activator] = lambda: ConfigActivator(loader, session_factory, settings=settings)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    # Clean up overrides
    app.dependency_overrides.clear()


@pytest.fixture
def provisioner(session_factory, settings, today):
    from tenantkit.onboarding import OnboardingProvisioner

    return OnboardingProvisioner(session_factory, settings=settings, today=lambda: today)


class FakeClock:
    """Monotonic clock stand-in for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def loader(session_factory, settings, clock, today):
    from tenantkit.tenancy.loader import ConfigCache, ConfigLoader

    return ConfigLoader(
        session_factory,
        cache=ConfigCache(ttl_seconds=300, clock=clock),
        settings=settings,
        today=lambda: today,
    )
