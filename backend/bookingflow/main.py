# backend/bookingflow/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI

from .api.dependencies import get_provider_registry
from .core.config import settings
from .database import SessionLocal, init_db
from .errors import register_error_handlers
from .repositories.factory import RepositoryFactory
from .routes import health, prometheus, stripe_webhooks
from .routes.v1 import bookings as bookings_v1, practitioners as practitioners_v1

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

API_TITLE = "BookingFlow API"
API_VERSION = "1.0.0"


def _validate_provider_registry() -> None:
    """Fail fast when a practitioner has no scheduling event type mapping."""
    if not settings.calcom_enabled:
        logger.warning("Cal.com disabled; skipping provider registry validation")
        return
    db = SessionLocal()
    try:
        practitioner_ids = RepositoryFactory.create_practitioner_repository(db).list_ids()
    finally:
        db.close()
    get_provider_registry().validate(practitioner_ids)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{API_TITLE} starting up...")
    logger.info(f"Environment: {settings.environment}")

    if settings.get_database_url().startswith("sqlite"):
        init_db()
    _validate_provider_registry()

    yield

    logger.info(f"{API_TITLE} shutting down...")


app = FastAPI(
    title=API_TITLE,
    description="Practitioner availability, booking and checkout",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

# Register unified error envelope handlers
register_error_handlers(app)

api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(practitioners_v1.router, prefix="/practitioners")
api_v1.include_router(bookings_v1.router, prefix="/bookings")
api_v1.include_router(stripe_webhooks.router)
app.include_router(api_v1)

app.include_router(health.router)
# Standard /metrics/prometheus path for Prometheus scraping
app.include_router(prometheus.router)
