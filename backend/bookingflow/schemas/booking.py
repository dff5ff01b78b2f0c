"""
Request and response schemas for practitioners, availability and bookings.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import AwareDatetime, EmailStr, Field, field_validator

from .base import StandardizedModel, StrictModel


class PractitionerResponse(StandardizedModel):
    id: str
    name: str
    email: str
    description: Optional[str] = None
    hourly_rate: int = Field(..., description="Minor currency units, e.g. pence")


class TimeSlotResponse(StandardizedModel):
    start: datetime
    end: datetime
    available: bool


class AvailabilityResponse(StandardizedModel):
    practitioner: PractitionerResponse
    slots: List[TimeSlotResponse]
    source: str = Field(..., description="'provider' or 'fallback'")
    is_fallback: bool


class BookingCreate(StrictModel):
    """Booking request. ``start_time`` must carry a timezone offset."""

    practitioner_id: str = Field(..., min_length=1, max_length=26)
    client_name: str = Field(..., min_length=1, max_length=255)
    client_email: EmailStr
    client_phone: str = Field(..., min_length=1, max_length=50)
    start_time: AwareDatetime

    @field_validator("practitioner_id", "client_name", "client_phone")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class BookingCheckoutResponse(StandardizedModel):
    booking_id: str
    checkout_url: str
    amount: int


class BookingResponse(StandardizedModel):
    id: str
    practitioner_id: str
    client_name: str
    client_email: str
    client_phone: str
    start_time: datetime
    end_time: datetime
    status: str
    checkout_session_id: Optional[str] = Field(None, validation_alias="checkout_session_ref")
    amount: int
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class BookingStatusResponse(StandardizedModel):
    booking_id: str
    status: str
