# backend/bookingflow/routes/health.py
"""
Health check endpoint.

Reports database connectivity and whether each external provider is
configured. Provider reachability is not probed here.
"""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..core.config import settings
from ..schemas.monitoring import HealthCheckResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthCheckResponse)
def health_check(response: Response, db: Session = Depends(get_db)) -> HealthCheckResponse:
    """
    Basic health check endpoint.

    Returns:
        Simple status indicating the service is running.
    """
    response.headers["Cache-Control"] = "no-store"
    try:
        db.execute(text("SELECT 1"))
        db_status = True
        status = "healthy"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        db_status = False
        status = "degraded"

    return HealthCheckResponse(
        status=status,
        service="BookingFlow API",
        version="1.0.0",
        timestamp=datetime.now(timezone.utc),
        checks={
            "database": db_status,
            "stripe_configured": settings.stripe_enabled,
            "calcom_configured": settings.calcom_enabled,
        },
    )
