# backend/bookingflow/services/stripe_service.py
"""
Stripe payment adapter for BookingFlow.

Opens hosted Checkout Sessions for pending bookings, verifies signed
webhook deliveries, and extracts paid-checkout confirmations. Amounts are
always integer minor currency units; nothing here does arithmetic on money.
"""

from dataclasses import dataclass
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import stripe

from ..core.config import Settings
from ..core.exceptions import ProviderUnavailableException, SignatureInvalidException

logger = logging.getLogger(__name__)

PROVIDER_NAME = "stripe"

# Event types that mean "the customer has paid for this checkout"
CONFIRMING_EVENT_TYPES = frozenset(
    {
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
    }
)


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    checkout_url: str


@dataclass(frozen=True)
class PaymentConfirmation:
    booking_id: str
    checkout_session_id: str
    payment_ref: Optional[str] = None


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str
    amount: Optional[int]


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class StripeService:
    """
    Service for the Stripe API calls the booking flow needs.

    The secret key is passed per call from the injected settings rather than
    set on the global ``stripe`` module.
    """

    def __init__(self, settings: Settings, clock: Optional[Callable[[], float]] = None):
        self.settings = settings
        self._clock = clock or time.time
        self.logger = logging.getLogger(self.__class__.__name__)

    def _api_key(self) -> str:
        key = self.settings.stripe_secret_key.get_secret_value()
        if not key:
            raise ProviderUnavailableException(PROVIDER_NAME, "Payment provider is not configured")
        return key

    def create_checkout_session(
        self,
        amount: int,
        currency: str,
        client_email: str,
        client_name: str,
        booking_id: str,
    ) -> CheckoutSession:
        """
        Open a hosted checkout page for exactly ``amount`` minor units.

        The booking id travels as ``client_reference_id`` and in metadata so
        the webhook can be correlated without a side table.

        Raises:
            ProviderUnavailableException: Stripe rejected the call or returned no URL
        """
        if amount < 0:
            raise ValueError("amount must be a non-negative integer of minor units")
        api_key = self._api_key()
        base_url = self.settings.public_base_url.rstrip("/")
        expires_at = int(self._clock()) + self.settings.checkout_session_expiry_minutes * 60

        try:
            session = stripe.checkout.Session.create(
                api_key=api_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "unit_amount": amount,
                            "product_data": {"name": self.settings.checkout_product_name},
                        },
                        "quantity": 1,
                    }
                ],
                customer_email=client_email,
                client_reference_id=booking_id,
                metadata={"booking_id": booking_id, "client_name": client_name},
                expires_at=expires_at,
                success_url=f"{base_url}/booking/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=base_url,
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating checkout for booking {booking_id}: {str(e)}")
            raise ProviderUnavailableException(
                PROVIDER_NAME,
                "Failed to create checkout session",
                details={"booking_id": booking_id},
            ) from e

        session_id = _get(session, "id")
        checkout_url = _get(session, "url")
        if not session_id or not checkout_url:
            self.logger.error("Stripe checkout session for booking %s has no URL", booking_id)
            raise ProviderUnavailableException(
                PROVIDER_NAME,
                "Checkout session was created without a URL",
                details={"booking_id": booking_id},
            )
        return CheckoutSession(session_id=str(session_id), checkout_url=str(checkout_url))

    def verify_notification(
        self,
        raw_payload: bytes,
        signature_header: Optional[str],
        shared_secret: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Verify a webhook delivery against the untouched raw body.

        Fails closed: a missing header or secret is treated like a bad signature.

        Raises:
            SignatureInvalidException: Verification or parsing failed
        """
        secret = shared_secret or self.settings.stripe_webhook_secret.get_secret_value()
        if not secret:
            self.logger.error("Webhook secret not configured; rejecting notification")
            raise SignatureInvalidException("Webhook secret not configured")
        if not signature_header:
            raise SignatureInvalidException("Missing signature header")

        try:
            stripe.Webhook.construct_event(raw_payload, signature_header, secret)
        except stripe.SignatureVerificationError as e:
            self.logger.warning("Invalid webhook signature")
            raise SignatureInvalidException() from e
        except ValueError as e:
            self.logger.warning("Unparseable webhook payload")
            raise SignatureInvalidException("Malformed webhook payload") from e

        try:
            event = json.loads(raw_payload)
        except ValueError as e:
            raise SignatureInvalidException("Malformed webhook payload") from e
        if not isinstance(event, dict):
            raise SignatureInvalidException("Malformed webhook payload")
        return event

    def extract_confirmation(self, event: Dict[str, Any]) -> Optional[PaymentConfirmation]:
        """
        Return the booking confirmation carried by a paid-checkout event, else None.

        Other event types, unpaid sessions, and sessions without a booking id
        are not errors; they simply carry no confirmation.
        """
        event_type = event.get("type")
        if event_type not in CONFIRMING_EVENT_TYPES:
            return None

        session = (event.get("data") or {}).get("object") or {}
        if session.get("payment_status") != "paid":
            self.logger.info(
                "Ignoring %s for session %s with payment_status=%s",
                event_type,
                session.get("id"),
                session.get("payment_status"),
            )
            return None

        metadata = session.get("metadata") or {}
        booking_id = metadata.get("booking_id") or session.get("client_reference_id")
        session_id = session.get("id")
        if not booking_id or not session_id:
            self.logger.warning("Paid checkout event %s has no booking reference", event.get("id"))
            return None

        payment_intent = session.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")
        return PaymentConfirmation(
            booking_id=str(booking_id),
            checkout_session_id=str(session_id),
            payment_ref=str(payment_intent) if payment_intent else None,
        )

    def refund(self, payment_reference_id: str, amount: Optional[int] = None) -> RefundResult:
        """
        Refund a payment intent, fully or by ``amount`` minor units.

        Raises:
            ProviderUnavailableException: Stripe rejected the refund
        """
        params: Dict[str, Any] = {"payment_intent": payment_reference_id}
        if amount is not None:
            params["amount"] = amount
        try:
            refund = stripe.Refund.create(api_key=self._api_key(), **params)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error refunding {payment_reference_id}: {str(e)}")
            raise ProviderUnavailableException(
                PROVIDER_NAME,
                "Failed to create refund",
                details={"payment_reference_id": payment_reference_id},
            ) from e
        return RefundResult(
            refund_id=str(_get(refund, "id")),
            status=str(_get(refund, "status", "unknown")),
            amount=_get(refund, "amount"),
        )
