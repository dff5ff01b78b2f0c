"""
Repository layer for BookingFlow.

Repositories own data access and never commit; services own transactions.
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .calendar_sync_repository import CalendarSyncRepository
from .factory import RepositoryFactory
from .practitioner_repository import PractitionerRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "CalendarSyncRepository",
    "PractitionerRepository",
    "RepositoryFactory",
]
