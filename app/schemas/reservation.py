"""Reservation schemas"""

from datetime import datetime
from typing import Optional, List, Union
from uuid import UUID
from pydantic import BaseModel


class ReservationCreate(BaseModel):
    """Create reservation request; value ranges are checked by the lifecycle service"""
    restaurant_id: UUID
    table_id: UUID
    reserved_for: str = ""
    # Loosely typed like the mobile client sends them; whole numbers are enforced on create
    seats: Optional[Union[int, float, str]] = None
    eta_minutes: Optional[Union[int, float, str]] = None


class ReservationCreated(BaseModel):
    """Create reservation response"""
    ok: bool = True
    reservation_id: UUID
    expires_at: datetime
    call_sid: Optional[str] = None


class RedialResponse(BaseModel):
    ok: bool = True
    call_sid: Optional[str] = None


class ReservationStatusRequest(BaseModel):
    """Status poll for reservations cached on the device"""
    reservation_ids: List[UUID] = []


class ReservationStatusItem(BaseModel):
    """Server-authoritative view of one reservation"""
    id: UUID
    status: str
    restaurant_name: Optional[str] = None
    seats: Optional[int] = None
    reserved_for: Optional[str] = None
    eta_minutes: Optional[int] = None
    responded_at: Optional[datetime] = None
    call_status: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_reservation(cls, reservation) -> "ReservationStatusItem":
        return cls(
            id=reservation.id,
            status=reservation.status,
            restaurant_name=reservation.restaurant.name if reservation.restaurant else None,
            seats=reservation.seats,
            reserved_for=reservation.reserved_for,
            eta_minutes=reservation.eta_minutes,
            responded_at=reservation.responded_at,
            call_status=reservation.call_status,
            created_at=reservation.created_at,
            expires_at=reservation.expires_at,
        )


class ReservationStatusResponse(BaseModel):
    ok: bool = True
    items: List[ReservationStatusItem]
