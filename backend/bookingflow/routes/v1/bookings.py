# backend/bookingflow/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService.

Endpoints:
    POST / - Create a pending booking and open checkout
    GET /by-session/{session_id} - Booking for a checkout session (success page)
    GET /{booking_id} - Full booking details
    POST /{booking_id}/cancel - Cancel a pending booking
    POST /{booking_id}/checkout - Retry checkout for a booking without one
"""

import asyncio
import logging
from typing import Any, NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.params import Path

from ...api.dependencies import get_booking_service
from ...core.exceptions import DomainException
from ...core.ulid_helper import ULID_PATTERN
from ...schemas.booking import (
    BookingCheckoutResponse,
    BookingCreate,
    BookingResponse,
    BookingStatusResponse,
)
from ...services.booking_service import BookingService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _booking_id_path() -> Any:
    return Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    )


@router.post("", response_model=BookingCheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate = Body(...),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingCheckoutResponse:
    """
    Create a pending booking and return the hosted checkout URL.

    Returns 409 when the slot is taken and 502 when checkout could not be
    opened (the pending booking is kept and can be retried).
    """
    try:
        checkout = await asyncio.to_thread(
            booking_service.create_booking,
            booking_data.practitioner_id,
            booking_data.client_name,
            str(booking_data.client_email),
            booking_data.client_phone,
            booking_data.start_time,
        )
        return BookingCheckoutResponse(
            booking_id=checkout.booking_id,
            checkout_url=checkout.checkout_url,
            amount=checkout.amount,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/by-session/{session_id}", response_model=BookingResponse)
async def get_booking_by_session(
    session_id: str = Path(..., min_length=1, max_length=255, description="Checkout session id"),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.get_booking_by_checkout_session, session_id
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str = _booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.get_booking, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/cancel", response_model=BookingStatusResponse)
async def cancel_booking(
    booking_id: str = _booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingStatusResponse:
    """Cancel a pending booking. Confirmed bookings return 422."""
    try:
        booking = await asyncio.to_thread(booking_service.cancel_booking, booking_id)
        return BookingStatusResponse(booking_id=booking.id, status=booking.status)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/checkout", response_model=BookingCheckoutResponse)
async def retry_checkout(
    booking_id: str = _booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingCheckoutResponse:
    """Open a new checkout for a pending booking whose first checkout failed."""
    try:
        checkout = await asyncio.to_thread(booking_service.retry_checkout, booking_id)
        return BookingCheckoutResponse(
            booking_id=checkout.booking_id,
            checkout_url=checkout.checkout_url,
            amount=checkout.amount,
        )
    except DomainException as e:
        handle_domain_exception(e)
