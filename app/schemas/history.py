"""Client reservation history schemas"""

from datetime import date, datetime, timezone
from typing import Optional, List
from pydantic import BaseModel, field_validator


class HistoryEntry(BaseModel):
    """Reservation as cached on the diner's device"""
    id: str
    restaurant_name: Optional[str] = None
    seats: Optional[int] = None
    reserved_for: Optional[str] = None
    eta_minutes: Optional[int] = None
    status: str = "pending"
    created_at: Optional[datetime] = None
    target_time: Optional[datetime] = None  # when the diner expects to arrive
    accepted_at: Optional[datetime] = None

    @field_validator("created_at", "target_time", "accepted_at")
    @classmethod
    def as_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Server timestamps are naive UTC; bring client timestamps in line"""
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class HistoryRequest(BaseModel):
    entries: List[HistoryEntry] = []


class HistoryGroup(BaseModel):
    """Past accepted reservations of one calendar day; day is None when unknown"""
    day: Optional[date] = None
    items: List[HistoryEntry]


class HistoryView(BaseModel):
    ok: bool = True
    history: List[HistoryEntry]  # write back to the device cache
    current: List[HistoryEntry]
    past: List[HistoryGroup]
    poll: bool
    poll_interval_seconds: int
