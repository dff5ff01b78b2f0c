# backend/bookingflow/repositories/factory.py
"""
Repository Factory for BookingFlow

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .calendar_sync_repository import CalendarSyncRepository
    from .practitioner_repository import PractitionerRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_practitioner_repository(db: Session) -> "PractitionerRepository":
        """Create repository for practitioner lookups."""
        from .practitioner_repository import PractitionerRepository

        return PractitionerRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_calendar_sync_repository(db: Session) -> "CalendarSyncRepository":
        """Create repository for the calendar sync outbox."""
        from .calendar_sync_repository import CalendarSyncRepository

        return CalendarSyncRepository(db)
