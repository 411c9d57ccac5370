"""Reservation lifecycle operations used by the API and background jobs"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.config import settings
from app.core import errors
from app.core.errors import Conflict, Forbidden, InternalFailure, InvalidRequest, NotFound, UpstreamFailure
from app.models.reservation import Reservation, ReservationStatus
from app.models.restaurant import Restaurant, TableStatus
from app.services import admission, ledger, records
from app.services.telephony import CallPlacementError, CallPlacer

logger = structlog.get_logger()

ETA_MIN_MINUTES = 1
ETA_MAX_MINUTES = 20


@dataclass
class CreatedReservation:
    reservation_id: UUID
    expires_at: datetime
    call_sid: Optional[str]


def whole_number(value: Any) -> Optional[int]:
    """Integer value of a number or numeric string, None for anything else"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(number) or not number.is_integer():
        return None
    return int(number)


def validate_request(reserved_for: str, seats: Any, eta_minutes: Any) -> Tuple[int, int]:
    """Check the request fields; returns (seats, eta_minutes) as integers"""
    if not (reserved_for or "").strip():
        raise InvalidRequest(errors.MISSING_FIELDS)
    eta = whole_number(eta_minutes)
    if eta is None or not ETA_MIN_MINUTES <= eta <= ETA_MAX_MINUTES:
        raise InvalidRequest(errors.INVALID_ETA)
    party = whole_number(seats)
    if party is None or party < 1:
        raise InvalidRequest(errors.INVALID_SEATS)
    return party, eta


def destination_number(restaurant: Restaurant) -> str:
    return (settings.test_to_number or restaurant.phone or "").strip()


async def _abort(db: AsyncSession, reservation: Reservation) -> None:
    """Fail a reservation that never reached the restaurant and free its table"""
    await records.transition_if_unanswered(db, reservation.id, ReservationStatus.FAILED)
    await ledger.release_table(db, reservation.table_id, TableStatus.FREE)


async def create_reservation(
    db: AsyncSession,
    placer: CallPlacer,
    *,
    user_id: str,
    restaurant_id: UUID,
    table_id: UUID,
    reserved_for: str,
    seats: Any,
    eta_minutes: Any,
    now: Optional[datetime] = None,
) -> CreatedReservation:
    """
    Claim the table, record a pending reservation and call the restaurant.

    The admission check before the claim is read-then-decide. When
    admission_recheck_enabled is set, it is repeated after the pending row is
    committed so two racing requests of one diner can never both go through.
    """
    seats, eta_minutes = validate_request(reserved_for, seats, eta_minutes)
    now = now or datetime.utcnow()
    log = logger.bind(user_id=user_id, restaurant_id=str(restaurant_id), table_id=str(table_id))

    active = await admission.find_active_reservation(db, user_id, now)
    if active is not None:
        log.info("Admission rejected", active_reservation_id=str(active.id))
        raise Conflict(errors.ACTIVE_RESERVATION_EXISTS, active_reservation_id=str(active.id))

    result = await db.execute(select(Restaurant).where(Restaurant.id == restaurant_id))
    restaurant = result.scalar_one_or_none()
    if restaurant is None:
        raise NotFound(errors.RESTAURANT_NOT_FOUND)

    to = destination_number(restaurant)
    if not to:
        raise InvalidRequest(errors.MISSING_RESTAURANT_PHONE)

    await ledger.claim_table(db, table_id, restaurant_id)

    try:
        reservation = await records.insert_pending(
            db,
            restaurant_id=restaurant_id,
            table_id=table_id,
            user_id=user_id,
            reserved_for=reserved_for.strip(),
            seats=seats,
            eta_minutes=eta_minutes,
            now=now,
            ttl=timedelta(minutes=settings.reservation_ttl_minutes),
        )
    except SQLAlchemyError as e:
        log.error("Reservation insert failed", error=str(e))
        await db.rollback()
        await ledger.release_table(db, table_id, TableStatus.FREE)
        raise InternalFailure(errors.INSERT_FAILED)

    log = log.bind(reservation_id=str(reservation.id))

    if settings.admission_recheck_enabled:
        competing = await admission.find_active_reservation(db, user_id, now, exclude_id=reservation.id)
        if competing is not None:
            log.warning("Concurrent reservation detected after insert", competing_id=str(competing.id))
            await _abort(db, reservation)
            raise Conflict(errors.ACTIVE_RESERVATION_EXISTS, active_reservation_id=str(competing.id))

    try:
        call = await placer.place(reservation.id, to)
    except CallPlacementError as e:
        await _abort(db, reservation)
        raise UpstreamFailure(errors.CALL_FAILED, details=str(e))

    await records.record_placed_call(db, reservation.id, call.call_sid, call.status)
    log.info("Reservation created", call_sid=call.call_sid, expires_at=reservation.expires_at.isoformat())

    return CreatedReservation(
        reservation_id=reservation.id,
        expires_at=reservation.expires_at,
        call_sid=call.call_sid,
    )


async def _owned(db: AsyncSession, reservation_id: UUID, user_id: str) -> Reservation:
    reservation = await records.get_reservation(db, reservation_id)
    if reservation is None:
        raise NotFound(errors.RESERVATION_NOT_FOUND)
    if (reservation.user_id or "") != user_id:
        raise Forbidden(errors.FORBIDDEN)
    return reservation


async def cancel_reservation(db: AsyncSession, *, reservation_id: UUID, user_id: str) -> None:
    """Cancel an owned reservation and free its table, whatever state it was in"""
    reservation = await _owned(db, reservation_id, user_id)
    await records.mark_cancelled(db, reservation.id, user_id)
    await ledger.release_table(db, reservation.table_id, TableStatus.FREE)
    logger.info("Reservation cancelled", reservation_id=str(reservation_id), user_id=user_id)


async def redial_reservation(
    db: AsyncSession,
    placer: CallPlacer,
    *,
    reservation_id: UUID,
    user_id: str,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Call the restaurant again for a reservation that is still waiting"""
    now = now or datetime.utcnow()
    reservation = await _owned(db, reservation_id, user_id)
    if reservation.is_answered or reservation.expires_at <= now:
        raise Conflict(errors.RESERVATION_NOT_PENDING, status=reservation.status)

    result = await db.execute(select(Restaurant).where(Restaurant.id == reservation.restaurant_id))
    restaurant = result.scalar_one_or_none()
    if restaurant is None:
        raise NotFound(errors.RESTAURANT_NOT_FOUND)

    to = destination_number(restaurant)
    if not to:
        raise InvalidRequest(errors.MISSING_RESTAURANT_PHONE)

    try:
        call = await placer.place(reservation.id, to)
    except CallPlacementError as e:
        raise UpstreamFailure(errors.CALL_FAILED, details=str(e))

    await records.record_placed_call(db, reservation.id, call.call_sid, call.status)
    await records.record_event(db, reservation.id, "redialed", actor_type="diner", actor_id=user_id)
    return call.call_sid


async def reservation_statuses(
    db: AsyncSession,
    *,
    reservation_ids: List[UUID],
    user_id: str,
) -> Sequence[Reservation]:
    """
    Authoritative rows for the requested ids that belong to the caller.
    Ownerless legacy rows among them are attached to the caller first.
    """
    if not reservation_ids:
        return []

    rows = await records.load_many(db, reservation_ids)
    ownerless = [r.id for r in rows if not r.user_id]
    if ownerless:
        claimed = await records.attach_owner(db, ownerless, user_id)
        logger.info("Attached ownerless reservations", user_id=user_id, count=claimed)
        for r in rows:
            if r.id in ownerless:
                r.user_id = user_id

    return [r for r in rows if r.user_id == user_id]


async def expire_stale(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Close pending reservations nobody answered before they expired"""
    now = now or datetime.utcnow()
    expired = await records.expired_pending(db, now)

    closed = 0
    for reservation in expired:
        won = await records.transition_if_unanswered(
            db, reservation.id, ReservationStatus.NO_RESPONSE, now=now
        )
        if won:
            await ledger.release_table(db, reservation.table_id, TableStatus.FREE)
            closed += 1

    if closed:
        logger.info("Expired stale reservations", count=closed)
    return closed
