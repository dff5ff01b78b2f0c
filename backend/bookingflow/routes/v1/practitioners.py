# backend/bookingflow/routes/v1/practitioners.py
"""
Practitioner routes - API v1

Endpoints:
    GET / - List practitioners
    GET /{practitioner_id}/availability - Bookable slots for a practitioner
"""

import asyncio
import logging
from typing import List, NoReturn

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.params import Path

from ...api.dependencies import get_booking_service
from ...core.exceptions import DomainException
from ...core.ulid_helper import ULID_PATTERN
from ...schemas.booking import AvailabilityResponse, PractitionerResponse, TimeSlotResponse
from ...services.booking_service import BookingService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["practitioners-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("", response_model=List[PractitionerResponse])
async def list_practitioners(
    booking_service: BookingService = Depends(get_booking_service),
) -> List[PractitionerResponse]:
    try:
        practitioners = await asyncio.to_thread(booking_service.list_practitioners)
        return [PractitionerResponse.model_validate(p) for p in practitioners]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{practitioner_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    practitioner_id: str = Path(
        ...,
        description="Practitioner ULID",
        pattern=ULID_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    booking_service: BookingService = Depends(get_booking_service),
) -> AvailabilityResponse:
    """
    Available slots for the next two weeks.

    Always answers for a known practitioner. When the scheduling provider is
    unreachable, ``is_fallback`` is true and the slots are the unfiltered grid.
    """
    try:
        quote = await asyncio.to_thread(booking_service.quote_availability, practitioner_id)
        return AvailabilityResponse(
            practitioner=PractitionerResponse.model_validate(quote.practitioner),
            slots=[
                TimeSlotResponse(start=slot.start, end=slot.end, available=slot.available)
                for slot in quote.slots
            ],
            source=quote.source,
            is_fallback=quote.is_fallback,
        )
    except DomainException as e:
        handle_domain_exception(e)
