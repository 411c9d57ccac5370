"""Restaurant and table models"""

import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class TableStatus(str, enum.Enum):
    """Availability of a physical table"""
    FREE = "free"
    REQUESTED = "requested"
    RESERVED = "reserved"


class Restaurant(Base):
    """Restaurant, managed by the partner dashboard"""
    __tablename__ = "restaurants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    phone = Column(String(20))  # E.164 number the confirmation call goes to
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    tables = relationship("Table", back_populates="restaurant")
    reservations = relationship("Reservation", back_populates="restaurant")


class Table(Base):
    """Physical table; status only changes through the table ledger"""
    __tablename__ = "tables"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id"), nullable=False, index=True)
    label = Column(String(50))
    seats = Column(Integer, nullable=False, default=2)
    status = Column(String(20), nullable=False, default=TableStatus.FREE.value)  # free, requested, reserved
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="tables")
