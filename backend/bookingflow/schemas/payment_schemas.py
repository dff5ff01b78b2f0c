"""
Schemas for payment provider webhooks.
"""

from typing import Optional

from pydantic import Field

from .base import StrictModel


class WebhookResponse(StrictModel):
    """Response for webhook processing."""

    received: bool = Field(True, description="Delivery was accepted")
    status: str = Field(..., description="Processing outcome (confirmed, ignored, ...)")
    event_type: Optional[str] = Field(None, description="Stripe event type")
    booking_id: Optional[str] = Field(None, description="Booking the event was applied to")
