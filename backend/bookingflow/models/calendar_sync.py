# backend/bookingflow/models/calendar_sync.py
"""
Calendar sync outbox.

Holds calendar-event creations that failed on the confirmation path so they
can be retried out of band. Payment confirmation never waits on this table.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime, utc_now


class CalendarSyncStatus(str, Enum):
    """Lifecycle states for a calendar sync task."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class CalendarSyncTask(Base):
    """Outbox entry for one booking's missing calendar event."""

    __tablename__ = "calendar_sync_outbox"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    idempotency_key = Column(String(255), nullable=False)
    payload = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    status = Column(String(20), nullable=False, default=CalendarSyncStatus.PENDING.value, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(UTCDateTime(), nullable=True, index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime(), nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_calendar_sync_idempotency_key"),
    )
