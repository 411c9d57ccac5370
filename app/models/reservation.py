"""Reservation model"""

import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class ReservationStatus(str, enum.Enum):
    """Reservation lifecycle states"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    NO_RESPONSE = "no_response"
    FAILED = "failed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Reservation(Base):
    """Table request confirmed by phone"""
    __tablename__ = "reservations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id"), nullable=False)
    table_id = Column(Uuid, ForeignKey("tables.id"), nullable=False)

    # Subject id from the identity provider; NULL on legacy rows
    user_id = Column(String(255), index=True)

    # Request details
    reserved_for = Column(String(255), nullable=False)
    seats = Column(Integer, nullable=False)
    eta_minutes = Column(Integer, nullable=False)

    # Status
    status = Column(String(20), nullable=False, default=ReservationStatus.PENDING.value)
    expires_at = Column(DateTime, nullable=False)
    responded_at = Column(DateTime)  # set once, by the first transition out of pending

    # Provider call mirror
    call_sid = Column(String(64))
    call_status = Column(String(32))

    # Metadata
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="reservations")
    table = relationship("Table")
    events = relationship("ReservationEvent", back_populates="reservation")

    @property
    def is_answered(self) -> bool:
        return self.responded_at is not None or self.status != ReservationStatus.PENDING.value
