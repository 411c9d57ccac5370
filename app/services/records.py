"""Reservation record store"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
import structlog

from app.models.event import ReservationEvent
from app.models.reservation import Reservation, ReservationStatus

logger = structlog.get_logger()

# Statuses the responded-at guard may move a pending reservation into
GUARDED_OUTCOMES = {
    ReservationStatus.ACCEPTED,
    ReservationStatus.DECLINED,
    ReservationStatus.NO_RESPONSE,
    ReservationStatus.FAILED,
}


async def get_reservation(db: AsyncSession, reservation_id: UUID) -> Optional[Reservation]:
    result = await db.execute(select(Reservation).where(Reservation.id == reservation_id))
    return result.scalar_one_or_none()


async def insert_pending(
    db: AsyncSession,
    *,
    restaurant_id: UUID,
    table_id: UUID,
    user_id: str,
    reserved_for: str,
    seats: int,
    eta_minutes: int,
    now: datetime,
    ttl: timedelta,
) -> Reservation:
    reservation = Reservation(
        restaurant_id=restaurant_id,
        table_id=table_id,
        user_id=user_id,
        reserved_for=reserved_for,
        seats=seats,
        eta_minutes=eta_minutes,
        status=ReservationStatus.PENDING.value,
        created_at=now,
        expires_at=now + ttl,
    )
    db.add(reservation)
    await db.flush()
    db.add(ReservationEvent(
        reservation_id=reservation.id,
        actor_type="diner",
        actor_id=user_id,
        action="created",
        data_json={"table_id": str(table_id), "seats": seats, "eta_minutes": eta_minutes},
    ))
    await db.commit()
    return reservation


async def transition_if_unanswered(
    db: AsyncSession,
    reservation_id: UUID,
    status: ReservationStatus,
    *,
    now: Optional[datetime] = None,
    actor_type: str = "system",
    actor_id: Optional[str] = None,
) -> bool:
    """
    Move a pending reservation into `status`, stamping responded_at.

    Check-and-set in one UPDATE: only the first caller whose WHERE clause
    still sees responded_at IS NULL wins. Returns False for every later caller.
    """
    if status not in GUARDED_OUTCOMES:
        raise ValueError(f"{status.value} is not a response outcome")

    now = now or datetime.utcnow()
    result = await db.execute(
        update(Reservation)
        .where(
            Reservation.id == reservation_id,
            Reservation.responded_at.is_(None),
            Reservation.status == ReservationStatus.PENDING.value,
        )
        .values(status=status.value, responded_at=now, updated_at=now)
    )
    won = result.rowcount == 1

    if won:
        db.add(ReservationEvent(
            reservation_id=reservation_id,
            actor_type=actor_type,
            actor_id=actor_id,
            action=status.value,
        ))
    await db.commit()

    logger.info(
        "Reservation transition",
        reservation_id=str(reservation_id),
        status=status.value,
        applied=won,
    )
    return won


async def mark_cancelled(
    db: AsyncSession,
    reservation_id: UUID,
    user_id: str,
    now: Optional[datetime] = None,
) -> None:
    """
    Cancel regardless of prior status.

    responded_at is only stamped when the row still has none, decided inside
    the UPDATE so a concurrent answer keeps its timestamp.
    """
    now = now or datetime.utcnow()
    await db.execute(
        update(Reservation)
        .where(Reservation.id == reservation_id)
        .values(
            status=ReservationStatus.CANCELLED.value,
            responded_at=func.coalesce(Reservation.responded_at, now),
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    db.add(ReservationEvent(
        reservation_id=reservation_id,
        actor_type="diner",
        actor_id=user_id,
        action="cancelled",
    ))
    await db.commit()


async def record_call(
    db: AsyncSession,
    reservation_id: UUID,
    call_sid: Optional[str],
    call_status: Optional[str],
) -> None:
    """Mirror provider call metadata onto the reservation"""
    await db.execute(
        update(Reservation)
        .where(Reservation.id == reservation_id)
        .values(call_sid=call_sid, call_status=call_status)
    )
    await db.commit()


async def record_placed_call(
    db: AsyncSession,
    reservation_id: UUID,
    call_sid: Optional[str],
    call_status: Optional[str],
) -> bool:
    """
    Store the call the provider just accepted.

    Skipped when a status callback for this same call got there first, so the
    provider's later status is never replaced by the initial one.
    """
    result = await db.execute(
        update(Reservation)
        .where(
            Reservation.id == reservation_id,
            or_(Reservation.call_sid.is_(None), Reservation.call_sid != call_sid),
        )
        .values(call_sid=call_sid, call_status=call_status)
    )
    await db.commit()
    return result.rowcount == 1


async def record_event(
    db: AsyncSession,
    reservation_id: Optional[UUID],
    action: str,
    *,
    actor_type: str = "system",
    actor_id: Optional[str] = None,
    data: Optional[dict] = None,
) -> None:
    db.add(ReservationEvent(
        reservation_id=reservation_id,
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        data_json=data,
    ))
    await db.commit()


async def recent_for_user(
    db: AsyncSession,
    user_id: str,
    limit: int,
) -> Sequence[Reservation]:
    """Latest pending/accepted reservations of a diner, newest first"""
    result = await db.execute(
        select(Reservation)
        .where(
            Reservation.user_id == user_id,
            Reservation.status.in_([
                ReservationStatus.PENDING.value,
                ReservationStatus.ACCEPTED.value,
            ]),
        )
        .order_by(Reservation.created_at.desc())
        .limit(limit)
    )
    return result.scalars().all()


async def load_many(db: AsyncSession, reservation_ids: List[UUID]) -> Sequence[Reservation]:
    result = await db.execute(
        select(Reservation)
        .where(Reservation.id.in_(reservation_ids))
        .options(selectinload(Reservation.restaurant))
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def attach_owner(db: AsyncSession, reservation_ids: List[UUID], user_id: str) -> int:
    """Give ownerless legacy rows among `reservation_ids` to `user_id`"""
    if not reservation_ids:
        return 0
    result = await db.execute(
        update(Reservation)
        .where(Reservation.id.in_(reservation_ids), Reservation.user_id.is_(None))
        .values(user_id=user_id)
    )
    await db.commit()
    return result.rowcount


async def expired_pending(db: AsyncSession, now: datetime) -> Sequence[Reservation]:
    result = await db.execute(
        select(Reservation).where(
            Reservation.status == ReservationStatus.PENDING.value,
            Reservation.responded_at.is_(None),
            Reservation.expires_at <= now,
        )
    )
    return result.scalars().all()
