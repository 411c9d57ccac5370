"""Tests for lifecycle operations outside the HTTP layer"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from uuid import uuid4

from app.core.errors import Conflict, InvalidRequest
from app.database import Base
from app.models.reservation import Reservation, ReservationStatus
from app.models.restaurant import Restaurant, Table, TableStatus
from app.services import admission, lifecycle, reconciler, records
from app.services.telephony import CallPlacementError, CallPlacer, PlacedCall


@pytest.mark.asyncio
async def test_recheck_after_insert_catches_concurrent_request(
    monkeypatch, test_db, test_restaurant, test_table, call_placer, make_reservation
):
    """A request that slipped past the first check is failed once its own row exists"""
    competing = await make_reservation(table_status=None)
    real_check = admission.find_active_reservation
    calls = []

    async def stale_first_check(db, user_id, now, exclude_id=None):
        calls.append(exclude_id)
        if len(calls) == 1:
            return None
        return await real_check(db, user_id, now, exclude_id=exclude_id)

    monkeypatch.setattr(admission, "find_active_reservation", stale_first_check)

    with pytest.raises(Conflict) as exc:
        await lifecycle.create_reservation(
            test_db,
            call_placer,
            user_id="diner-1",
            restaurant_id=test_restaurant.id,
            table_id=test_table.id,
            reserved_for="Anna",
            seats=2,
            eta_minutes=5,
        )

    assert exc.value.code == "active_reservation_exists"
    assert exc.value.extra["active_reservation_id"] == str(competing.id)
    assert call_placer.calls == []

    rows = (await test_db.execute(
        select(Reservation).where(Reservation.id != competing.id)
    )).scalars().all()
    assert len(rows) == 1
    await test_db.refresh(rows[0])
    await test_db.refresh(test_table)
    assert rows[0].status == ReservationStatus.FAILED.value
    assert test_table.status == TableStatus.FREE.value


@pytest.mark.asyncio
async def test_reservation_statuses_filters_and_attaches(test_db, make_reservation):
    mine = await make_reservation()
    legacy = await make_reservation(user_id=None, table_status=None)
    theirs = await make_reservation(user_id="diner-2", table_status=None)

    rows = await lifecycle.reservation_statuses(
        test_db,
        reservation_ids=[mine.id, legacy.id, theirs.id],
        user_id="diner-1",
    )

    assert {r.id for r in rows} == {mine.id, legacy.id}
    assert await lifecycle.reservation_statuses(test_db, reservation_ids=[], user_id="diner-1") == []


@pytest.mark.asyncio
async def test_expire_stale_closes_overdue_pending(test_db, test_table, make_reservation):
    now = datetime.utcnow()
    overdue = await make_reservation(
        created_at=now - timedelta(minutes=20),
        expires_at=now - timedelta(minutes=5),
    )

    closed = await lifecycle.expire_stale(test_db, now)

    assert closed == 1
    await test_db.refresh(overdue)
    await test_db.refresh(test_table)
    assert overdue.status == ReservationStatus.NO_RESPONSE.value
    assert overdue.responded_at == now
    assert test_table.status == TableStatus.FREE.value

    assert await lifecycle.expire_stale(test_db, now) == 0


@pytest.mark.asyncio
async def test_expire_stale_leaves_live_and_answered(test_db, test_table, make_reservation):
    now = datetime.utcnow()
    live = await make_reservation(created_at=now)
    accepted = await make_reservation(
        status=ReservationStatus.ACCEPTED,
        created_at=now - timedelta(hours=1),
        expires_at=now - timedelta(minutes=45),
        responded_at=now - timedelta(minutes=55),
        table_status=TableStatus.RESERVED,
    )

    assert await lifecycle.expire_stale(test_db, now) == 0

    await test_db.refresh(live)
    await test_db.refresh(accepted)
    assert live.status == ReservationStatus.PENDING.value
    assert accepted.status == ReservationStatus.ACCEPTED.value


@pytest.mark.asyncio
async def test_guarded_transition_single_winner(test_db, make_reservation):
    reservation = await make_reservation()

    won = await records.transition_if_unanswered(test_db, reservation.id, ReservationStatus.ACCEPTED)
    lost = await records.transition_if_unanswered(test_db, reservation.id, ReservationStatus.NO_RESPONSE)

    assert won is True
    assert lost is False
    await test_db.refresh(reservation)
    assert reservation.status == ReservationStatus.ACCEPTED.value


@pytest.mark.asyncio
async def test_guarded_transition_rejects_non_outcomes(test_db, make_reservation):
    reservation = await make_reservation()

    with pytest.raises(ValueError):
        await records.transition_if_unanswered(test_db, reservation.id, ReservationStatus.CANCELLED)


def test_validate_request_order():
    with pytest.raises(InvalidRequest) as exc:
        lifecycle.validate_request("", 0, 0)
    assert exc.value.code == "missing_fields"

    with pytest.raises(InvalidRequest) as exc:
        lifecycle.validate_request("Anna", 0, 0)
    assert exc.value.code == "eta_minutes_must_be_1_to_20"

    lifecycle.validate_request("Anna", 1, 20)


def test_test_number_overrides_restaurant_phone(monkeypatch, test_settings):
    class Stub:
        phone = "+41441234567"

    assert lifecycle.destination_number(Stub()) == "+41441234567"
    monkeypatch.setattr(test_settings, "test_to_number", "+41790000000")
    assert lifecycle.destination_number(Stub()) == "+41790000000"


@pytest.mark.asyncio
async def test_unconfigured_twilio_refuses_to_call(monkeypatch, test_settings):
    monkeypatch.setattr(test_settings, "twilio_account_sid", "")

    with pytest.raises(CallPlacementError) as exc:
        await CallPlacer().place(None, "+41441234567")
    assert str(exc.value) == "telephony_not_configured"


def test_whole_number_accepts_integral_values_only():
    assert lifecycle.whole_number(4) == 4
    assert lifecycle.whole_number("10") == 10
    assert lifecycle.whole_number(5.0) == 5
    assert lifecycle.whole_number(2.5) is None
    assert lifecycle.whole_number("abc") is None
    assert lifecycle.whole_number("inf") is None
    assert lifecycle.whole_number(10 ** 400) is None
    assert lifecycle.whole_number(True) is None
    assert lifecycle.whole_number(None) is None


def test_validate_request_converts_numeric_strings():
    assert lifecycle.validate_request("Anna", "4", "10") == (4, 10)

    with pytest.raises(InvalidRequest) as exc:
        lifecycle.validate_request("Anna", 1.5, 10)
    assert exc.value.code == "invalid_seats"


@pytest.mark.asyncio
async def test_cancel_keeps_responded_at_of_concurrent_answer():
    """An answer committed after cancel loaded the row keeps its responded_at"""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    restaurant_id, table_id, reservation_id = uuid4(), uuid4(), uuid4()
    created_at = datetime(2026, 1, 1, 11, 55)
    answered_at = datetime(2026, 1, 1, 12, 0)
    async with session_factory() as db:
        db.add(Restaurant(id=restaurant_id, name="Busy Place", phone="+41441111111"))
        db.add(Table(id=table_id, restaurant_id=restaurant_id, seats=2, status=TableStatus.REQUESTED.value))
        await db.flush()
        db.add(Reservation(
            id=reservation_id,
            restaurant_id=restaurant_id,
            table_id=table_id,
            user_id="diner-1",
            reserved_for="Anna",
            seats=2,
            eta_minutes=10,
            status=ReservationStatus.PENDING.value,
            created_at=created_at,
            expires_at=created_at + timedelta(minutes=15),
        ))
        await db.commit()

    async with session_factory() as canceller, session_factory() as answerer:
        loaded = await records.get_reservation(canceller, reservation_id)
        assert loaded.responded_at is None

        won = await records.transition_if_unanswered(
            answerer, reservation_id, ReservationStatus.ACCEPTED, now=answered_at
        )
        assert won is True

        await records.mark_cancelled(canceller, reservation_id, "diner-1", now=datetime(2026, 1, 1, 12, 1))

    async with session_factory() as db:
        reservation = await records.get_reservation(db, reservation_id)
        assert reservation.status == ReservationStatus.CANCELLED.value
        assert reservation.responded_at == answered_at

    await engine.dispose()


@pytest.mark.asyncio
async def test_cancel_stamps_responded_at_when_unanswered(test_db, make_reservation):
    reservation = await make_reservation()
    cancelled_at = datetime(2026, 1, 1, 12, 0)

    await records.mark_cancelled(test_db, reservation.id, "diner-1", now=cancelled_at)

    await test_db.refresh(reservation)
    assert reservation.status == ReservationStatus.CANCELLED.value
    assert reservation.responded_at == cancelled_at


class EarlyCallbackPlacer:
    """Delivers the provider's status callback before place() returns"""

    def __init__(self, db, call_status):
        self.db = db
        self.call_status = call_status

    async def place(self, reservation_id, to):
        await reconciler.reconcile_call_status(self.db, reservation_id, "CA-early", self.call_status)
        return PlacedCall(call_sid="CA-early", status="queued", to=to)


@pytest.mark.asyncio
async def test_early_status_callback_not_overwritten_by_placement(test_db, test_restaurant, test_table):
    created = await lifecycle.create_reservation(
        test_db,
        EarlyCallbackPlacer(test_db, "busy"),
        user_id="diner-1",
        restaurant_id=test_restaurant.id,
        table_id=test_table.id,
        reserved_for="Anna",
        seats=2,
        eta_minutes=10,
    )

    assert created.call_sid == "CA-early"
    reservation = await test_db.get(Reservation, created.reservation_id)
    await test_db.refresh(reservation)
    assert reservation.call_sid == "CA-early"
    assert reservation.call_status == "busy"
    assert reservation.status == ReservationStatus.FAILED.value

    await test_db.refresh(test_table)
    assert test_table.status == TableStatus.FREE.value


@pytest.mark.asyncio
async def test_record_placed_call_replaces_previous_call(test_db, make_reservation):
    reservation = await make_reservation(call_sid="CA-old", call_status="no-answer")

    assert await records.record_placed_call(test_db, reservation.id, "CA-new", "queued") is True
    assert await records.record_placed_call(test_db, reservation.id, "CA-new", "queued") is False

    await test_db.refresh(reservation)
    assert reservation.call_sid == "CA-new"
    assert reservation.call_status == "queued"
