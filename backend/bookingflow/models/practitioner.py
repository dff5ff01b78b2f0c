# backend/bookingflow/models/practitioner.py
"""
Practitioner model.

Practitioners are created by an administrative process and are read-only
from the booking flow. Rates are integer minor currency units (pence).
"""

from sqlalchemy import CheckConstraint, Column, Integer, String, Text
from sqlalchemy.orm import relationship

from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime, utc_now


class Practitioner(Base):
    """A bookable practitioner with a fixed hourly rate."""

    __tablename__ = "practitioners"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=False)
    description = Column(Text, nullable=True)
    hourly_rate = Column(Integer, nullable=False, comment="Minor currency units, e.g. pence")

    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime(), nullable=False, default=utc_now, onupdate=utc_now)

    bookings = relationship("Booking", back_populates="practitioner")

    __table_args__ = (
        CheckConstraint("hourly_rate >= 0", name="ck_practitioners_rate_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Practitioner {self.id}: {self.name} rate={self.hourly_rate}>"
