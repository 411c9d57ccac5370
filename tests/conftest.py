"""Test configuration and fixtures"""

from datetime import datetime, timedelta
from typing import List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from uuid import uuid4

from app.main import app
from app.config import settings
from app.database import Base, get_db
from app.api.auth import create_access_token
from app.models.restaurant import Restaurant, Table, TableStatus
from app.models.reservation import Reservation, ReservationStatus
from app.services.telephony import CallPlacementError, PlacedCall, get_call_placer


# Test database URL (use in-memory SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

WEBHOOK_TOKEN = "test-webhook-token"
DINER_ID = "diner-1"


class FakeCallPlacer:
    """Stands in for Twilio; records every call it is asked to place"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail_with: Optional[str] = None

    async def place(self, reservation_id, to):
        if self.fail_with:
            raise CallPlacementError(self.fail_with)
        self.calls.append((reservation_id, to))
        return PlacedCall(call_sid=f"CA{len(self.calls):04d}", status="queued", to=to)


def auth_headers(subject: str = DINER_ID) -> dict:
    return {"Authorization": f"Bearer {create_access_token(subject)}"}


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings for every test"""
    monkeypatch.setattr(settings, "twilio_webhook_token", WEBHOOK_TOKEN)
    monkeypatch.setattr(settings, "twilio_validate_signature", False)
    monkeypatch.setattr(settings, "test_to_number", "")
    monkeypatch.setattr(settings, "public_base_url", "https://api.test")
    monkeypatch.setattr(settings, "display_timezone", "UTC")
    monkeypatch.setattr(settings, "admission_recheck_enabled", True)
    return settings


@pytest.fixture
async def test_db():
    """Create test database"""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_restaurant(test_db):
    """Create a test restaurant"""
    restaurant = Restaurant(
        id=uuid4(),
        name="Trattoria Test",
        phone="+41441234567",
    )
    test_db.add(restaurant)
    await test_db.commit()
    return restaurant


@pytest.fixture
async def test_table(test_db, test_restaurant):
    """Create a free four-seat table"""
    table = Table(
        id=uuid4(),
        restaurant_id=test_restaurant.id,
        label="T1",
        seats=4,
        status=TableStatus.FREE.value,
    )
    test_db.add(table)
    await test_db.commit()
    return table


@pytest.fixture
async def second_table(test_db, test_restaurant):
    table = Table(
        id=uuid4(),
        restaurant_id=test_restaurant.id,
        label="T2",
        seats=2,
        status=TableStatus.FREE.value,
    )
    test_db.add(table)
    await test_db.commit()
    return table


@pytest.fixture
def make_reservation(test_db, test_restaurant, test_table):
    """Factory for reservations in a given state, bypassing the call"""
    async def _make(
        status: ReservationStatus = ReservationStatus.PENDING,
        user_id: Optional[str] = DINER_ID,
        created_at: Optional[datetime] = None,
        responded_at: Optional[datetime] = None,
        table_status: Optional[TableStatus] = TableStatus.REQUESTED,
        **fields,
    ) -> Reservation:
        created_at = created_at or datetime.utcnow()
        reservation = Reservation(
            id=uuid4(),
            restaurant_id=test_restaurant.id,
            table_id=test_table.id,
            user_id=user_id,
            reserved_for=fields.pop("reserved_for", "Anna"),
            seats=fields.pop("seats", 4),
            eta_minutes=fields.pop("eta_minutes", 10),
            status=status.value,
            created_at=created_at,
            expires_at=fields.pop("expires_at", created_at + timedelta(minutes=15)),
            responded_at=responded_at,
            **fields,
        )
        test_db.add(reservation)
        if table_status is not None:
            test_table.status = table_status.value
        await test_db.commit()
        return reservation

    return _make


@pytest.fixture
def call_placer():
    return FakeCallPlacer()


@pytest.fixture
async def client(test_db, call_placer):
    """Create test client with overridden database and telephony"""
    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_call_placer] = lambda: call_placer

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def authenticated_client(client):
    """Create authenticated test client"""
    client.headers.update(auth_headers(DINER_ID))
    return client
