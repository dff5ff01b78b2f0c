"""
Stripe Webhook Endpoints

Receives signed checkout notifications and hands the untouched raw body to
BookingService for verification and confirmation.

Responses:
- 200 with the processing outcome for confirmed, duplicate, irrelevant or
  unmatched events (the provider should not retry these)
- 400 when the signature or payload is invalid (nothing is processed)
"""

import asyncio
import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..api.dependencies import get_booking_service
from ..core.exceptions import DomainException
from ..schemas.payment_schemas import WebhookResponse
from ..services.booking_service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/stripe", tags=["stripe-webhooks"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=WebhookResponse)
async def handle_checkout_events(
    request: Request,
    booking_service: BookingService = Depends(get_booking_service),
) -> WebhookResponse:
    """
    Handle Stripe checkout webhook events.

    Confirms bookings on:
    - checkout.session.completed
    - checkout.session.async_payment_succeeded

    Every other event type is acknowledged without changing any booking.
    """
    # Raw bytes only; any re-serialization would break the signature
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.warning("Missing Stripe signature header")

    try:
        result = await asyncio.to_thread(
            booking_service.confirm_from_webhook, payload, signature
        )
    except DomainException as e:
        handle_domain_exception(e)

    logger.info(
        "Processed Stripe webhook %s: %s (booking %s)",
        result.event_type,
        result.outcome.value,
        result.booking_id,
    )
    return WebhookResponse(
        received=True,
        status=result.outcome.value,
        event_type=result.event_type,
        booking_id=result.booking_id,
    )
