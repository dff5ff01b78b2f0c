# backend/bookingflow/services/booking_service.py
"""
Booking Service for BookingFlow

Orchestrates the booking lifecycle across the database, the scheduling
provider and the payment provider:

    NoBooking -> pending -> confirmed
                 pending -> cancelled

Payment is authoritative; the calendar is advisory. A paid checkout always
confirms the booking, and a calendar failure afterwards is queued for retry
instead of undoing anything.

Provider calls are never made inside an open database transaction.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from typing import Any, Dict, List, Optional

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import (
    BusinessRuleException,
    NotFoundException,
    ProviderUnavailableException,
    ServiceException,
    SlotTakenException,
    ValidationException,
)
from ..models.booking import Booking, BookingStatus
from ..models.practitioner import Practitioner
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .scheduling_service import SchedulingService, TimeSlot
from .stripe_service import PaymentConfirmation, StripeService

logger = logging.getLogger(__name__)

# Extra time past checkout expiry before a pending booking counts as abandoned
STALE_PENDING_GRACE = timedelta(minutes=5)


class WebhookOutcome(str, Enum):
    """What a processed payment notification did."""

    IGNORED = "ignored"
    BOOKING_NOT_FOUND = "booking_not_found"
    ALREADY_CONFIRMED = "already_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class AvailabilityQuote:
    practitioner: Practitioner
    slots: List[TimeSlot]
    source: str

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


@dataclass(frozen=True)
class BookingCheckout:
    booking_id: str
    checkout_url: str
    amount: int


@dataclass(frozen=True)
class ConfirmationResult:
    outcome: WebhookOutcome
    booking_id: Optional[str] = None
    event_type: Optional[str] = None


@dataclass(frozen=True)
class _BookingRequest:
    practitioner_id: str
    client_name: str
    client_email: str
    client_phone: str
    start_time: datetime


class BookingService(BaseService):
    """
    Service layer for the booking lifecycle.

    Handles availability quotes, booking creation with checkout, webhook
    confirmation, cancellation and the operator cleanup paths.
    """

    def __init__(
        self,
        db: Session,
        scheduling: SchedulingService,
        payments: StripeService,
        settings: Optional[Settings] = None,
    ):
        super().__init__(db)
        self.scheduling = scheduling
        self.payments = payments
        self.settings = settings or default_settings
        self.practitioner_repository = RepositoryFactory.create_practitioner_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.calendar_sync_repository = RepositoryFactory.create_calendar_sync_repository(db)

    # ------------------------------------------------------------------ reads

    @BaseService.measure_operation("list_practitioners")
    def list_practitioners(self) -> List[Practitioner]:
        return self.practitioner_repository.list_practitioners()

    @BaseService.measure_operation("quote_availability")
    def quote_availability(self, practitioner_id: str) -> AvailabilityQuote:
        """
        Bookable slots for a practitioner.

        Never fails because of the scheduling provider; ``source`` tells the
        caller whether the slots are provider data or the fallback grid.

        Raises:
            NotFoundException: Unknown practitioner
        """
        practitioner = self.practitioner_repository.get_practitioner(practitioner_id)
        result = self.scheduling.list_availability(practitioner_id)
        slots = [slot for slot in result.slots if slot.available]
        return AvailabilityQuote(practitioner=practitioner, slots=slots, source=result.source)

    @BaseService.measure_operation("get_booking")
    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_booking(booking_id)
        if booking is None:
            raise NotFoundException(
                f"Booking {booking_id} not found",
                code="BOOKING_NOT_FOUND",
                details={"booking_id": booking_id},
            )
        return booking

    @BaseService.measure_operation("get_booking_by_checkout_session")
    def get_booking_by_checkout_session(self, session_id: str) -> Booking:
        booking = self.booking_repository.get_by_checkout_reference(session_id)
        if booking is None:
            raise NotFoundException(
                "No booking found for this checkout session",
                code="BOOKING_NOT_FOUND",
                details={"checkout_session_id": session_id},
            )
        return booking

    # --------------------------------------------------------------- creation

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        practitioner_id: str,
        client_name: str,
        client_email: str,
        client_phone: str,
        start_time: datetime,
    ) -> BookingCheckout:
        """
        Reserve a slot and open a checkout session for it.

        Phases:
            1. Validate, load practitioner, fast-path conflict check
            2. Insert the pending booking (own transaction; the unique index decides)
            3. Create the checkout session (no transaction open)
            4. Persist the checkout session id

        If step 3 fails the pending booking stays in place without a checkout
        reference; ``retry_checkout`` or ``release_stale_pending_bookings``
        handle it.

        Raises:
            ValidationException: Malformed input
            NotFoundException: Unknown practitioner
            SlotTakenException: The slot already has a live booking
            ProviderUnavailableException: Checkout could not be created
        """
        request = self._validate_booking_request(
            practitioner_id, client_name, client_email, client_phone, start_time
        )
        practitioner = self.practitioner_repository.get_practitioner(request.practitioner_id)

        existing = self.booking_repository.find_conflicting_booking(
            practitioner.id, request.start_time
        )
        if existing is not None:
            raise SlotTakenException(
                details={
                    "practitioner_id": practitioner.id,
                    "start_time": request.start_time.isoformat(),
                }
            )

        with self.transaction():
            booking = self.booking_repository.create_booking(
                practitioner_id=practitioner.id,
                client_name=request.client_name,
                client_email=request.client_email,
                client_phone=request.client_phone,
                start_time=request.start_time,
                amount=practitioner.hourly_rate,
                duration_minutes=self.settings.slot_duration_minutes,
            )
        booking_id = booking.id
        amount = booking.amount
        self.log_operation("booking_created", booking_id=booking_id, practitioner_id=practitioner.id)
        prometheus_metrics.inc_booking_transition(BookingStatus.PENDING.value)

        checkout = self.payments.create_checkout_session(
            amount=amount,
            currency=self.settings.stripe_currency,
            client_email=request.client_email,
            client_name=request.client_name,
            booking_id=booking_id,
        )

        with self.transaction():
            self.booking_repository.attach_payment_references(
                booking_id, checkout_ref=checkout.session_id
            )
        self.log_operation("checkout_attached", booking_id=booking_id)

        return BookingCheckout(
            booking_id=booking_id, checkout_url=checkout.checkout_url, amount=amount
        )

    @BaseService.measure_operation("retry_checkout")
    def retry_checkout(self, booking_id: str) -> BookingCheckout:
        """
        Open a new checkout for a pending booking whose first checkout failed.

        Raises:
            NotFoundException: Unknown booking
            BusinessRuleException: Booking is not pending or already has a checkout
            ProviderUnavailableException: Checkout could not be created
        """
        booking = self.get_booking(booking_id)
        if not booking.is_pending:
            raise BusinessRuleException(
                f"Cannot open checkout for a {booking.status} booking",
                code="BOOKING_NOT_PENDING",
                details={"booking_id": booking_id, "status": booking.status},
            )
        if booking.checkout_session_ref:
            raise BusinessRuleException(
                "Booking already has a checkout session",
                code="CHECKOUT_ALREADY_EXISTS",
                details={"booking_id": booking_id},
            )

        checkout = self.payments.create_checkout_session(
            amount=booking.amount,
            currency=self.settings.stripe_currency,
            client_email=booking.client_email,
            client_name=booking.client_name,
            booking_id=booking.id,
        )
        with self.transaction():
            self.booking_repository.attach_payment_references(
                booking.id, checkout_ref=checkout.session_id
            )
        self.log_operation("checkout_retried", booking_id=booking.id)
        return BookingCheckout(
            booking_id=booking.id, checkout_url=checkout.checkout_url, amount=booking.amount
        )

    # ----------------------------------------------------------- confirmation

    @BaseService.measure_operation("confirm_from_webhook")
    def confirm_from_webhook(
        self, raw_payload: bytes, signature_header: Optional[str]
    ) -> ConfirmationResult:
        """
        Apply a payment notification.

        Safe under at-least-once, out-of-order delivery: the pending to
        confirmed move is a single conditional update, and only the caller
        that wins it creates the calendar event.

        Raises:
            SignatureInvalidException: Verification failed; nothing was changed
        """
        event = self.payments.verify_notification(raw_payload, signature_header)
        event_type = event.get("type")
        confirmation = self.payments.extract_confirmation(event)
        if confirmation is None:
            self.logger.info("Acknowledging %s event %s without action", event_type, event.get("id"))
            return self._outcome(WebhookOutcome.IGNORED, None, event_type)

        booking = self._resolve_booking(confirmation)
        if booking is None:
            self.logger.warning(
                "No booking for checkout session %s (booking_id=%s); acknowledging",
                confirmation.checkout_session_id,
                confirmation.booking_id,
            )
            return self._outcome(WebhookOutcome.BOOKING_NOT_FOUND, None, event_type)

        booking_id = booking.id
        if booking.is_confirmed:
            return self._outcome(WebhookOutcome.ALREADY_CONFIRMED, booking_id, event_type)
        if booking.is_cancelled:
            return self._paid_after_cancel(booking_id, confirmation, event_type)

        with self.transaction():
            self.booking_repository.attach_payment_references(
                booking_id,
                checkout_ref=None if booking.checkout_session_ref else confirmation.checkout_session_id,
                payment_ref=None if booking.payment_ref else confirmation.payment_ref,
            )
            won = self.booking_repository.transition_status(
                booking_id, BookingStatus.PENDING, BookingStatus.CONFIRMED
            )

        if not won:
            current = self.get_booking(booking_id)
            if current.is_cancelled:
                return self._paid_after_cancel(booking_id, confirmation, event_type)
            return self._outcome(WebhookOutcome.ALREADY_CONFIRMED, booking_id, event_type)

        self.log_operation("booking_confirmed", booking_id=booking_id)
        prometheus_metrics.inc_booking_transition(BookingStatus.CONFIRMED.value)
        self._create_calendar_event(booking_id)
        return self._outcome(WebhookOutcome.CONFIRMED, booking_id, event_type)

    def _resolve_booking(self, confirmation: PaymentConfirmation) -> Optional[Booking]:
        """
        Find the booking a confirmation refers to.

        The checkout session id is the primary key for correlation. The
        metadata booking id is used only when that booking has no checkout
        reference yet or holds this same session.
        """
        booking = self.booking_repository.get_by_checkout_reference(
            confirmation.checkout_session_id
        )
        if booking is not None:
            if booking.id != confirmation.booking_id:
                self.logger.warning(
                    "Checkout session %s belongs to booking %s but metadata names %s",
                    confirmation.checkout_session_id,
                    booking.id,
                    confirmation.booking_id,
                )
            return booking

        candidate = self.booking_repository.get_booking(confirmation.booking_id)
        if candidate is None:
            return None
        if candidate.checkout_session_ref in (None, confirmation.checkout_session_id):
            return candidate
        self.logger.warning(
            "Booking %s is tied to checkout %s, not %s; ignoring confirmation",
            candidate.id,
            candidate.checkout_session_ref,
            confirmation.checkout_session_id,
        )
        return None

    def _paid_after_cancel(
        self, booking_id: str, confirmation: PaymentConfirmation, event_type: Optional[str]
    ) -> ConfirmationResult:
        self.logger.error(
            "Payment %s received for cancelled booking %s; manual refund required",
            confirmation.payment_ref,
            booking_id,
        )
        if confirmation.payment_ref:
            with self.transaction():
                self.booking_repository.attach_payment_references(
                    booking_id, payment_ref=confirmation.payment_ref
                )
        return self._outcome(WebhookOutcome.BOOKING_CANCELLED, booking_id, event_type)

    def _outcome(
        self, outcome: WebhookOutcome, booking_id: Optional[str], event_type: Optional[str]
    ) -> ConfirmationResult:
        prometheus_metrics.inc_webhook_outcome(outcome.value)
        self.log_operation("webhook_processed", outcome=outcome.value, booking_id=booking_id)
        return ConfirmationResult(outcome=outcome, booking_id=booking_id, event_type=event_type)

    # ------------------------------------------------------------- calendar

    def calendar_payload(self, booking: Booking) -> Dict[str, Any]:
        """Arguments for SchedulingService.create_event, JSON-safe for the outbox."""
        practitioner = booking.practitioner
        practitioner_name = practitioner.name if practitioner is not None else "practitioner"
        return {
            "practitioner_id": booking.practitioner_id,
            "client_name": booking.client_name,
            "client_email": booking.client_email,
            "client_phone": booking.client_phone,
            "start": booking.start_time.isoformat(),
            "end": booking.end_time.isoformat() if booking.end_time else None,
            "title": f"Session with {practitioner_name}",
            "description": f"Booking {booking.id}",
        }

    def _create_calendar_event(self, booking_id: str) -> None:
        """Best-effort calendar event; failures go to the calendar sync outbox."""
        if not self.scheduling.enabled:
            self.logger.info("Scheduling provider disabled; no calendar event for %s", booking_id)
            return

        booking = self.get_booking(booking_id)
        payload = self.calendar_payload(booking)
        try:
            event = self.scheduling.create_event(
                practitioner_id=payload["practitioner_id"],
                client_name=payload["client_name"],
                client_email=payload["client_email"],
                client_phone=payload["client_phone"],
                start=booking.start_time,
                end=booking.end_time,
                title=payload["title"],
                description=payload["description"],
            )
        except ProviderUnavailableException as exc:
            self.logger.error(
                "Calendar event for confirmed booking %s failed, queueing retry: %s",
                booking_id,
                exc.message,
            )
            self._queue_calendar_retry(booking_id, payload)
            return
        except Exception:
            self.logger.exception(
                "Unexpected error creating calendar event for booking %s, queueing retry",
                booking_id,
            )
            self._queue_calendar_retry(booking_id, payload)
            return

        try:
            with self.transaction():
                self.booking_repository.attach_calendar_event(booking_id, event.event_id)
        except ServiceException as exc:
            # the event exists; queueing would create a duplicate
            self.logger.error(
                "Calendar event %s created but not stored on booking %s: %s",
                event.event_id,
                booking_id,
                exc.message,
            )
            return
        prometheus_metrics.inc_calendar_sync("created")
        self.log_operation("calendar_event_created", booking_id=booking_id)

    def _queue_calendar_retry(self, booking_id: str, payload: Dict[str, Any]) -> None:
        prometheus_metrics.inc_calendar_sync("queued")
        try:
            with self.transaction():
                self.calendar_sync_repository.enqueue(booking_id, payload)
        except ServiceException as exc:
            self.logger.error(
                "Could not queue calendar sync for booking %s; manual reconciliation needed: %s",
                booking_id,
                exc.message,
            )

    # ----------------------------------------------------------- cancellation

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str) -> Booking:
        """
        Cancel a pending booking and release its slot.

        Cancelling an already cancelled booking returns it unchanged. Paid
        (confirmed) bookings are refunded through support, not here.

        Raises:
            NotFoundException: Unknown booking
            BusinessRuleException: Booking is confirmed
        """
        booking = self.get_booking(booking_id)
        if booking.is_cancelled:
            return booking
        if booking.is_confirmed:
            raise self._confirmed_cancel_error(booking_id)

        with self.transaction():
            won = self.booking_repository.transition_status(
                booking_id, BookingStatus.PENDING, BookingStatus.CANCELLED
            )
        booking = self.get_booking(booking_id)
        if not won:
            if booking.is_cancelled:
                return booking
            raise self._confirmed_cancel_error(booking_id)

        prometheus_metrics.inc_booking_transition(BookingStatus.CANCELLED.value)
        self.log_operation("booking_cancelled", booking_id=booking_id)
        if booking.calendar_event_ref:
            try:
                self.scheduling.cancel_event(booking.calendar_event_ref)
            except ProviderUnavailableException as exc:
                self.logger.error(
                    "Calendar event %s for cancelled booking %s was not removed: %s",
                    booking.calendar_event_ref,
                    booking_id,
                    exc.message,
                )
        return booking

    @staticmethod
    def _confirmed_cancel_error(booking_id: str) -> BusinessRuleException:
        return BusinessRuleException(
            "Confirmed bookings cannot be cancelled here; contact support for a refund",
            code="BOOKING_ALREADY_CONFIRMED",
            details={"booking_id": booking_id},
        )

    @BaseService.measure_operation("release_stale_pending_bookings")
    def release_stale_pending_bookings(self, older_than: Optional[timedelta] = None) -> List[str]:
        """
        Cancel pending bookings whose checkout has lapsed so their slots reopen.

        Defaults to the checkout expiry plus a short grace period. Returns the
        ids that were cancelled by this call.
        """
        age = older_than if older_than is not None else (
            timedelta(minutes=self.settings.checkout_session_expiry_minutes) + STALE_PENDING_GRACE
        )
        cutoff = datetime.now(timezone.utc) - age
        stale_ids = [b.id for b in self.booking_repository.list_stale_pending(cutoff)]

        released: List[str] = []
        for stale_id in stale_ids:
            with self.transaction():
                won = self.booking_repository.transition_status(
                    stale_id, BookingStatus.PENDING, BookingStatus.CANCELLED
                )
            if won:
                released.append(stale_id)
                prometheus_metrics.inc_booking_transition(BookingStatus.CANCELLED.value)

        if released:
            self.log_operation("stale_pending_released", count=len(released), cutoff=cutoff.isoformat())
        return released

    # ------------------------------------------------------------- validation

    def _validate_booking_request(
        self,
        practitioner_id: str,
        client_name: str,
        client_email: str,
        client_phone: str,
        start_time: datetime,
    ) -> _BookingRequest:
        fields = {
            "practitioner_id": (practitioner_id or "").strip(),
            "client_name": (client_name or "").strip(),
            "client_email": (client_email or "").strip(),
            "client_phone": (client_phone or "").strip(),
        }
        missing = [name for name, value in fields.items() if not value]
        if missing:
            raise ValidationException(
                "Missing required fields: " + ", ".join(missing),
                code="MISSING_FIELDS",
                details={"fields": missing},
            )

        try:
            email = validate_email(fields["client_email"], check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ValidationException(
                f"Invalid email address: {exc}", code="INVALID_EMAIL"
            ) from exc

        if start_time is None or start_time.tzinfo is None:
            raise ValidationException(
                "start_time must include a timezone offset", code="INVALID_START_TIME"
            )
        start_utc = start_time.astimezone(timezone.utc)
        if start_utc <= self.scheduling.now():
            raise ValidationException(
                "start_time must be in the future",
                code="START_TIME_NOT_FUTURE",
                details={"start_time": start_utc.isoformat()},
            )

        return _BookingRequest(
            practitioner_id=fields["practitioner_id"],
            client_name=fields["client_name"],
            client_email=email,
            client_phone=fields["client_phone"],
            start_time=start_utc,
        )
