# backend/tests/conftest.py
"""
Pytest configuration for Slotwise.

Every test gets a fresh in-memory SQLite database with the full schema
(including the booking overlap triggers), an in-process cache and a
recording payment gateway. Nothing here talks to Redis, Stripe or Celery.
"""

import os

# Set test settings BEFORE any slotwise imports
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("NOTIFICATION_PROVIDER_RAISE_ON", None)

from typing import Any, Callable, Iterator

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from slotwise.database import create_db_engine, init_db
from slotwise.models import Provider, Service
from slotwise.services.availability_service import AvailabilityService
from slotwise.services.booking_service import BookingService
from slotwise.services.cache_service import CacheService
from slotwise.services.payment_gateway import NullPaymentGateway


@pytest.fixture
def db_engine() -> Iterator[Engine]:
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(db_engine: Engine) -> Iterator[Session]:
    TestingSessionLocal = sessionmaker(
        bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def make_provider(db: Session) -> Callable[..., Provider]:
    counter = {"n": 0}

    def _make(**overrides: Any) -> Provider:
        counter["n"] += 1
        n = counter["n"]
        values: dict[str, Any] = {
            "name": f"Provider {n}",
            "email": f"provider{n}@example.com",
            "slug": f"provider-{n}",
            "timezone": "UTC",
        }
        values.update(overrides)
        provider = Provider(**values)
        db.add(provider)
        db.commit()
        return provider

    return _make


@pytest.fixture
def make_service(db: Session) -> Callable[..., Service]:
    def _make(provider: Provider, **overrides: Any) -> Service:
        values: dict[str, Any] = {
            "provider_id": provider.id,
            "name": "Standard clean",
            "duration": 60,
            "deposit_amount": 5000,
            "deposit_type": "fixed",
            "full_price": 15000,
            "cancellation_window_hours": 24,
            "minimum_cancellation_hours": 2,
            "late_cancellation_fee": 2000,
            "no_show_fee": 3000,
        }
        values.update(overrides)
        service = Service(**values)
        db.add(service)
        db.commit()
        return service

    return _make


@pytest.fixture
def provider(make_provider: Callable[..., Provider]) -> Provider:
    return make_provider(slug="acme-cleaning", name="Acme Cleaning")


@pytest.fixture
def service(provider: Provider, make_service: Callable[..., Service]) -> Service:
    return make_service(provider)


@pytest.fixture
def cache_service() -> Iterator[CacheService]:
    cache = CacheService(redis_client=None, connect=False)
    yield cache
    cache.close()


@pytest.fixture
def payment_gateway() -> NullPaymentGateway:
    return NullPaymentGateway()


@pytest.fixture
def booking_service(db: Session, payment_gateway: NullPaymentGateway) -> BookingService:
    return BookingService(db, payment_gateway=payment_gateway)


@pytest.fixture
def availability_service(db: Session, cache_service: CacheService) -> AvailabilityService:
    return AvailabilityService(db, cache_service)
