"""Admission control: at most one active reservation per diner"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.reservation import Reservation, ReservationStatus
from app.services import records


def is_active(
    reservation: Reservation,
    now: datetime,
    accepted_window: Optional[timedelta] = None,
) -> bool:
    """
    Pending counts until it expires; accepted counts for a fixed window after
    the restaurant answered (falling back to creation time).
    """
    if accepted_window is None:
        accepted_window = timedelta(hours=settings.accepted_active_hours)

    if reservation.status == ReservationStatus.PENDING.value:
        return reservation.expires_at is not None and reservation.expires_at > now

    if reservation.status == ReservationStatus.ACCEPTED.value:
        started = reservation.responded_at or reservation.created_at
        return started is not None and started > now - accepted_window

    return False


async def find_active_reservation(
    db: AsyncSession,
    user_id: str,
    now: datetime,
    exclude_id: Optional[UUID] = None,
) -> Optional[Reservation]:
    """Scan the diner's latest reservations for one that is still active"""
    candidates = await records.recent_for_user(db, user_id, settings.admission_lookback)
    for reservation in candidates:
        if reservation.id == exclude_id:
            continue
        if is_active(reservation, now):
            return reservation
    return None


async def has_active_reservation(db: AsyncSession, user_id: str, now: datetime) -> bool:
    return await find_active_reservation(db, user_id, now) is not None
