"""
Service layer for BookingFlow.

Services hold business logic and own database transactions; adapters wrap
the scheduling and payment providers.
"""

from .base import BaseService
from .booking_service import BookingService
from .calendar_sync_service import CalendarSyncService
from .scheduling_service import SchedulingService
from .stripe_service import StripeService

__all__ = [
    "BaseService",
    "BookingService",
    "CalendarSyncService",
    "SchedulingService",
    "StripeService",
]
