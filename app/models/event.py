"""Reservation event log"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class ReservationEvent(Base):
    """Status history and webhook trail for a reservation"""
    __tablename__ = "reservation_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    reservation_id = Column(Uuid, ForeignKey("reservations.id"), index=True)

    # Actor information
    actor_type = Column(String(20))  # diner, provider, system
    actor_id = Column(String(255))  # diner subject id or provider call sid

    # Action details
    action = Column(String(64), nullable=False)  # created, accepted, call_status_received, webhook_error, ...
    data_json = Column(JSON)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    reservation = relationship("Reservation", back_populates="events")
