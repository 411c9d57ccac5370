"""Pydantic schemas for request/response validation"""

from app.schemas.reservation import (
    ReservationCreate,
    ReservationCreated,
    RedialResponse,
    ReservationStatusRequest,
    ReservationStatusItem,
    ReservationStatusResponse,
)
from app.schemas.history import (
    HistoryEntry,
    HistoryRequest,
    HistoryGroup,
    HistoryView,
)

__all__ = [
    "ReservationCreate",
    "ReservationCreated",
    "RedialResponse",
    "ReservationStatusRequest",
    "ReservationStatusItem",
    "ReservationStatusResponse",
    "HistoryEntry",
    "HistoryRequest",
    "HistoryGroup",
    "HistoryView",
]
