"""
FastAPI dependencies for BookingFlow.
"""

from .database import get_db
from .services import (
    get_booking_service,
    get_calendar_sync_service,
    get_provider_registry,
    get_scheduling_service,
    get_stripe_service,
)

__all__ = [
    "get_booking_service",
    "get_calendar_sync_service",
    "get_db",
    "get_provider_registry",
    "get_scheduling_service",
    "get_stripe_service",
]
