"""
Database models for BookingFlow.

This module exports all SQLAlchemy models used in the application:
- Practitioners (read-only from the booking flow)
- Bookings and their status lifecycle
- Calendar sync outbox for failed calendar-event creations
"""

from .booking import Booking, BookingStatus
from .calendar_sync import CalendarSyncStatus, CalendarSyncTask
from .practitioner import Practitioner

__all__ = [
    "Booking",
    "BookingStatus",
    "CalendarSyncStatus",
    "CalendarSyncTask",
    "Practitioner",
]
