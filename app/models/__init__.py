"""Database models"""

from app.models.restaurant import Restaurant, Table, TableStatus
from app.models.reservation import Reservation, ReservationStatus
from app.models.event import ReservationEvent

__all__ = [
    "Restaurant",
    "Table",
    "TableStatus",
    "Reservation",
    "ReservationStatus",
    "ReservationEvent",
]
