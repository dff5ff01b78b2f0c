# backend/bookingflow/repositories/booking_repository.py
"""
Booking Repository for BookingFlow

Implements all data access operations for booking management:
- Creation guarded by the active-slot unique index
- Lookups by id and by checkout session reference
- Atomic single-row status transitions
- Attachment of external payment and calendar references
"""

from datetime import datetime
import logging
from typing import Any, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException, SlotTakenException
from ..models.booking import Booking, BookingStatus
from ..models.types import utc_now
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

ACTIVE_SLOT_INDEX = "uq_bookings_active_slot"
_SQLITE_ACTIVE_SLOT_MESSAGE = "unique constraint failed: bookings.practitioner_id, bookings.start_time"


def is_active_slot_violation(exc: IntegrityError) -> bool:
    """Return True when an IntegrityError comes from the active-slot unique index."""
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    if getattr(diag, "constraint_name", None) == ACTIVE_SLOT_INDEX:
        return True
    message = str(exc).lower()
    return ACTIVE_SLOT_INDEX in message or _SQLITE_ACTIVE_SLOT_MESSAGE in message


class BookingRepository(BaseRepository[Booking]):
    """
    Repository for booking data access.

    Every write bumps ``updated_at``. Bookings are never deleted;
    cancellation is a status change.
    """

    def __init__(self, db: Session):
        """Initialize with Booking model."""
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    # Creation

    def create_booking(self, **draft: Any) -> Booking:
        """
        Insert a pending booking.

        Raises:
            SlotTakenException: A non-cancelled booking already holds this slot
            RepositoryException: Any other storage failure
        """
        draft["status"] = BookingStatus.PENDING.value
        draft.setdefault("checkout_session_ref", None)
        draft.setdefault("payment_ref", None)
        try:
            return self.create(**draft)
        except RepositoryException as exc:
            cause = exc.__cause__
            if isinstance(cause, IntegrityError) and is_active_slot_violation(cause):
                self.logger.info(
                    "Active slot index rejected booking for practitioner %s at %s",
                    draft.get("practitioner_id"),
                    draft.get("start_time"),
                )
                raise SlotTakenException(
                    details={
                        "practitioner_id": draft.get("practitioner_id"),
                        "start_time": draft["start_time"].isoformat()
                        if draft.get("start_time")
                        else None,
                    }
                ) from cause
            raise

    # Lookups

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self.get_by_id(booking_id)

    def reload_booking(self, booking_id: str) -> Optional[Booking]:
        """Read the row from the database, overwriting any state cached in the session."""
        try:
            return self.db.get(Booking, booking_id, populate_existing=True)
        except SQLAlchemyError as e:
            self.logger.error(f"Error reloading booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to reload booking: {str(e)}") from e

    def get_by_checkout_reference(self, checkout_ref: str) -> Optional[Booking]:
        """Find the booking tied to a checkout session (indexed column)."""
        if not checkout_ref:
            return None
        return self.find_one_by(checkout_session_ref=checkout_ref)

    def find_conflicting_booking(
        self, practitioner_id: str, start_time: datetime
    ) -> Optional[Booking]:
        """
        Return any non-cancelled booking at exactly this instant for this practitioner.

        This is a fast path for a friendly error. The unique index is what
        actually prevents double booking.
        """
        try:
            return (
                self.db.query(Booking)
                .filter(
                    Booking.practitioner_id == practitioner_id,
                    Booking.start_time == start_time,
                    Booking.status != BookingStatus.CANCELLED.value,
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking slot conflict: {str(e)}")
            raise RepositoryException(f"Failed to check conflict: {str(e)}")

    def list_stale_pending(self, cutoff: datetime) -> List[Booking]:
        """Pending bookings created before ``cutoff``, oldest first."""
        query = (
            self._build_query()
            .filter(
                Booking.status == BookingStatus.PENDING.value,
                Booking.created_at < cutoff,
            )
            .order_by(Booking.created_at.asc())
        )
        return self._execute_query(query)

    # Status changes

    def transition_status(
        self, booking_id: str, from_status: BookingStatus, to_status: BookingStatus
    ) -> bool:
        """
        Atomically move a booking between statuses.

        Issues a single ``UPDATE ... WHERE status = from_status``. When several
        callers race, exactly one sees ``True``.
        """
        now = utc_now()
        values: dict[str, Any] = {"status": to_status.value, "updated_at": now}
        values.update(self._status_timestamps(to_status, now))
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == from_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        rowcount = self._execute_update(stmt, booking_id)
        return rowcount == 1

    def update_status(self, booking_id: str, status: BookingStatus) -> bool:
        """
        Set a booking's status unconditionally.

        Idempotent; setting the same status twice leaves the row untouched.
        Returns False when the booking does not exist.
        """
        now = utc_now()
        values: dict[str, Any] = {"status": status.value, "updated_at": now}
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status != status.value)
            .values(**values, **self._status_timestamps(status, now))
            .execution_options(synchronize_session=False)
        )
        if self._execute_update(stmt, booking_id):
            return True
        return self.exists(id=booking_id)

    def attach_payment_references(
        self,
        booking_id: str,
        checkout_ref: Optional[str] = None,
        payment_ref: Optional[str] = None,
    ) -> bool:
        """Store external payment references; ``None`` leaves a field unchanged."""
        values: dict[str, Any] = {}
        if checkout_ref is not None:
            values["checkout_session_ref"] = checkout_ref
        if payment_ref is not None:
            values["payment_ref"] = payment_ref
        if not values:
            return self.exists(id=booking_id)
        values["updated_at"] = utc_now()
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self._execute_update(stmt, booking_id) == 1

    def attach_calendar_event(self, booking_id: str, event_ref: str) -> bool:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(calendar_event_ref=event_ref, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return self._execute_update(stmt, booking_id) == 1

    # Helpers

    @staticmethod
    def _status_timestamps(status: BookingStatus, now: datetime) -> dict[str, Any]:
        if status is BookingStatus.CONFIRMED:
            return {"confirmed_at": now}
        if status is BookingStatus.CANCELLED:
            return {"cancelled_at": now}
        return {}

    def _execute_update(self, stmt: Any, booking_id: str) -> int:
        try:
            result = self.db.execute(stmt)
        except IntegrityError as e:
            self.logger.error(f"Integrity error updating booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Integrity constraint violated: {str(e)}") from e
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to update booking: {str(e)}") from e
        self._expire_cached(booking_id)
        return int(getattr(result, "rowcount", 0) or 0)

    def _expire_cached(self, booking_id: str) -> None:
        """Drop stale in-session state so the next read sees the database row."""
        instance = self.db.identity_map.get(self.db.identity_key(Booking, booking_id))
        if instance is not None:
            self.db.expire(instance)
