# backend/bookingflow/models/booking.py
"""
Booking model for BookingFlow.

A booking reserves one practitioner slot for one client. It is created
``pending`` before payment, becomes ``confirmed`` exactly once when the
payment provider reports a paid checkout, or ``cancelled`` while still
pending. Both end states are terminal.

Architecture: the charged amount is snapshotted from the practitioner's
rate at booking time, and so is the slot length: the end instant is
derived from ``start_time`` and ``duration_minutes``.
"""

from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Optional

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship

from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime, utc_now

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"  # Awaiting payment
    CONFIRMED = "confirmed"  # Paid, terminal
    CANCELLED = "cancelled"  # Released, terminal


class Booking(Base):
    """
    Booking of a single practitioner slot.

    The partial unique index ``uq_bookings_active_slot`` guarantees at most
    one non-cancelled booking per (practitioner, start time). It is the
    authoritative conflict signal; any query-level check is only a fast path.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    practitioner_id = Column(String(26), ForeignKey("practitioners.id"), nullable=False, index=True)

    client_name = Column(String(255), nullable=False)
    client_email = Column(String(320), nullable=False)
    client_phone = Column(String(50), nullable=False)

    start_time = Column(UTCDateTime(), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)

    # External references
    checkout_session_ref = Column(String(255), nullable=True, unique=True, index=True)
    payment_ref = Column(String(255), nullable=True)
    calendar_event_ref = Column(String(255), nullable=True)

    amount = Column(Integer, nullable=False, comment="Minor currency units copied from hourly_rate")

    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime(), nullable=False, default=utc_now, onupdate=utc_now)
    confirmed_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    practitioner = relationship("Practitioner", back_populates="bookings")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_bookings_amount_non_negative"),
        CheckConstraint("duration_minutes > 0", name="ck_bookings_duration_positive"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')",
            name="ck_bookings_status",
        ),
        Index(
            "uq_bookings_active_slot",
            "practitioner_id",
            "start_time",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("ix_bookings_status_created_at", "status", "created_at"),
    )

    @property
    def end_time(self) -> Optional[datetime]:
        if self.start_time is None or self.duration_minutes is None:
            return None
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_pending(self) -> bool:
        return self.status == BookingStatus.PENDING.value

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED.value

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingStatus.CANCELLED.value

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: practitioner={self.practitioner_id} "
            f"start={self.start_time} status={self.status}>"
        )
