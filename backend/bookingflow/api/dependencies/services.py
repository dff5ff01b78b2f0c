# backend/bookingflow/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. Provider adapters are
process-wide singletons built from settings once; database-bound services
are built per request.
"""

from functools import lru_cache
import logging
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.config import settings
from ...core.provider_registry import ProviderIdentifierRegistry
from ...integrations import CalComClient
from ...services.booking_service import BookingService
from ...services.calendar_sync_service import CalendarSyncService
from ...services.scheduling_service import SchedulingService
from ...services.stripe_service import StripeService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderIdentifierRegistry:
    """Registry of scheduling-provider identifiers built from settings."""
    return ProviderIdentifierRegistry.from_settings(settings)


def _build_calcom_client() -> Optional[CalComClient]:
    if not settings.calcom_enabled:
        logger.warning("Cal.com is not configured; availability will use the fallback grid")
        return None
    return CalComClient(
        api_key=settings.calcom_api_key,
        base_url=settings.calcom_api_url,
        timeout=settings.calcom_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_scheduling_service() -> SchedulingService:
    """Get singleton scheduling adapter."""
    return SchedulingService(settings, get_provider_registry(), client=_build_calcom_client())


@lru_cache(maxsize=1)
def get_stripe_service() -> StripeService:
    """Get singleton payment adapter."""
    if not settings.stripe_enabled:
        logger.warning("Stripe secret key not configured; checkout creation will fail")
    return StripeService(settings)


def get_booking_service(
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
    payments: StripeService = Depends(get_stripe_service),
) -> BookingService:
    """
    Get booking service instance with all dependencies.

    Args:
        db: Database session
        scheduling: Scheduling adapter
        payments: Payment adapter

    Returns:
        BookingService instance
    """
    return BookingService(db, scheduling, payments, settings)


def get_calendar_sync_service(
    db: Session = Depends(get_db),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> CalendarSyncService:
    return CalendarSyncService(db, scheduling, settings)
