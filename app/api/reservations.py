"""Reservation API endpoints for diners"""

from datetime import datetime, timedelta, timezone, tzinfo
from uuid import UUID
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.auth import Identity, get_current_identity
from app.config import settings
from app.database import get_db
from app.schemas.history import HistoryRequest, HistoryView
from app.schemas.reservation import (
    RedialResponse,
    ReservationCreate,
    ReservationCreated,
    ReservationStatusItem,
    ReservationStatusRequest,
    ReservationStatusResponse,
)
from app.services import history, lifecycle
from app.services.telephony import CallPlacer, get_call_placer

router = APIRouter()


def display_timezone() -> tzinfo:
    if settings.display_timezone.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(settings.display_timezone)


@router.post("", response_model=ReservationCreated, status_code=201)
async def create_reservation(
    reservation_data: ReservationCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    placer: CallPlacer = Depends(get_call_placer),
):
    """Request a table; the restaurant is called to confirm"""
    created = await lifecycle.create_reservation(
        db,
        placer,
        user_id=identity.subject,
        restaurant_id=reservation_data.restaurant_id,
        table_id=reservation_data.table_id,
        reserved_for=reservation_data.reserved_for,
        seats=reservation_data.seats,
        eta_minutes=reservation_data.eta_minutes,
    )

    return ReservationCreated(
        reservation_id=created.reservation_id,
        expires_at=created.expires_at,
        call_sid=created.call_sid,
    )


@router.post("/status", response_model=ReservationStatusResponse)
async def get_reservation_statuses(
    request: ReservationStatusRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Current status of the caller's reservations"""
    rows = await lifecycle.reservation_statuses(
        db,
        reservation_ids=request.reservation_ids,
        user_id=identity.subject,
    )
    return ReservationStatusResponse(items=[ReservationStatusItem.from_reservation(r) for r in rows])


@router.post("/history", response_model=HistoryView)
async def reconcile_history(
    request: HistoryRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Merge the device's cached history with server statuses and shape it for display"""
    ids = []
    for entry in request.entries:
        try:
            ids.append(UUID(entry.id))
        except ValueError:
            continue

    rows = await lifecycle.reservation_statuses(db, reservation_ids=ids, user_id=identity.subject)
    items = [ReservationStatusItem.from_reservation(r) for r in rows]

    now = datetime.utcnow()
    merged = history.reconcile_history(
        request.entries,
        items,
        now,
        retention=timedelta(days=settings.history_retention_days),
        rounding=timedelta(minutes=settings.slot_rounding_minutes),
    )
    current, past = history.partition(
        merged,
        now,
        tz=display_timezone(),
        current_window=timedelta(hours=settings.current_window_hours),
    )

    return HistoryView(
        history=merged,
        current=current,
        past=past,
        poll=history.needs_polling(merged),
        poll_interval_seconds=settings.status_poll_seconds,
    )


@router.post("/{reservation_id}/call", response_model=RedialResponse)
async def redial_reservation(
    reservation_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    placer: CallPlacer = Depends(get_call_placer),
):
    """Call the restaurant again for a reservation still waiting for an answer"""
    call_sid = await lifecycle.redial_reservation(
        db,
        placer,
        reservation_id=reservation_id,
        user_id=identity.subject,
    )
    return RedialResponse(call_sid=call_sid)


@router.delete("/{reservation_id}", status_code=204)
async def cancel_reservation(
    reservation_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a reservation"""
    await lifecycle.cancel_reservation(db, reservation_id=reservation_id, user_id=identity.subject)
