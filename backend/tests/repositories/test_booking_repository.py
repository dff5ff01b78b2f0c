"""Repository tests for bookings: the active-slot index, transitions and lookups."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy.exc import IntegrityError

from bookingflow.core.exceptions import RepositoryException, SlotTakenException
from bookingflow.models.booking import Booking, BookingStatus
from bookingflow.repositories.booking_repository import BookingRepository, is_active_slot_violation
from tests._utils.booking_data import future_slot


@pytest.fixture
def repo(db) -> BookingRepository:
    return BookingRepository(db)


def _draft(practitioner_id: str, start_time: datetime, **overrides):
    draft = {
        "practitioner_id": practitioner_id,
        "client_name": "Casey Client",
        "client_email": "casey@example.com",
        "client_phone": "+44 7700 900123",
        "start_time": start_time,
        "amount": 8000,
        "duration_minutes": 60,
    }
    draft.update(overrides)
    return draft


def _insert(db, repo, practitioner_id, start_time) -> Booking:
    booking = repo.create_booking(**_draft(practitioner_id, start_time))
    db.commit()
    return booking


class TestActiveSlotIndex:
    def test_second_live_booking_for_same_slot_rejected(self, db, repo, practitioner):
        start = future_slot()
        _insert(db, repo, practitioner.id, start)

        with pytest.raises(SlotTakenException):
            repo.create_booking(**_draft(practitioner.id, start, client_email="other@example.com"))

    def test_cancelled_booking_frees_slot(self, db, repo, practitioner):
        start = future_slot()
        first = _insert(db, repo, practitioner.id, start)
        assert repo.transition_status(first.id, BookingStatus.PENDING, BookingStatus.CANCELLED)
        db.commit()

        second = _insert(db, repo, practitioner.id, start)

        assert second.id != first.id
        assert second.status == BookingStatus.PENDING.value

    def test_same_instant_different_practitioners_allowed(self, db, repo, practitioner, second_practitioner):
        start = future_slot()
        _insert(db, repo, practitioner.id, start)

        other = _insert(db, repo, second_practitioner.id, start)

        assert other.practitioner_id == second_practitioner.id

    def test_same_instant_in_other_offset_conflicts(self, db, repo, practitioner):
        start = future_slot()
        _insert(db, repo, practitioner.id, start)
        same_instant = start.astimezone(timezone(timedelta(hours=2)))

        with pytest.raises(SlotTakenException):
            repo.create_booking(**_draft(practitioner.id, same_instant))

    def test_naive_start_time_rejected(self, db, repo, practitioner):
        naive = future_slot().replace(tzinfo=None)

        with pytest.raises(RepositoryException):
            repo.create_booking(**_draft(practitioner.id, naive))


class _FakeDiag:
    def __init__(self, constraint_name: Optional[str]) -> None:
        self.constraint_name = constraint_name


class _FakeOrig:
    def __init__(self, constraint_name: Optional[str], text: str = "") -> None:
        self.diag = _FakeDiag(constraint_name) if constraint_name else None
        self._text = text

    def __str__(self) -> str:
        return self._text


def _make_error(constraint: Optional[str], text: str = "") -> IntegrityError:
    return IntegrityError("stmt", params=None, orig=_FakeOrig(constraint, text=text))


def test_violation_detected_by_postgres_constraint_name():
    assert is_active_slot_violation(_make_error("uq_bookings_active_slot"))


def test_violation_detected_by_sqlite_message():
    error = _make_error(None, text="UNIQUE constraint failed: bookings.practitioner_id, bookings.start_time")
    assert is_active_slot_violation(error)


def test_other_integrity_errors_not_slot_violations():
    assert not is_active_slot_violation(_make_error("bookings_checkout_session_ref_key"))


class TestTransitions:
    def test_transition_succeeds_once(self, db, repo, practitioner):
        booking = _insert(db, repo, practitioner.id, future_slot())

        assert repo.transition_status(booking.id, BookingStatus.PENDING, BookingStatus.CONFIRMED) is True
        assert repo.transition_status(booking.id, BookingStatus.PENDING, BookingStatus.CONFIRMED) is False
        db.commit()

        refreshed = repo.get_booking(booking.id)
        assert refreshed.status == BookingStatus.CONFIRMED.value
        assert refreshed.confirmed_at is not None
        assert refreshed.cancelled_at is None

    def test_confirmed_cannot_be_cancelled_by_transition(self, db, repo, practitioner):
        booking = _insert(db, repo, practitioner.id, future_slot())
        repo.transition_status(booking.id, BookingStatus.PENDING, BookingStatus.CONFIRMED)

        assert repo.transition_status(booking.id, BookingStatus.PENDING, BookingStatus.CANCELLED) is False
        assert repo.get_booking(booking.id).status == BookingStatus.CONFIRMED.value

    def test_transition_expires_instance_held_by_session(self, db, repo, practitioner):
        booking = _insert(db, repo, practitioner.id, future_slot())
        assert booking.status == BookingStatus.PENDING.value

        repo.transition_status(booking.id, BookingStatus.PENDING, BookingStatus.CONFIRMED)

        # same object, no explicit refresh
        assert booking.status == BookingStatus.CONFIRMED.value

    def test_reload_overwrites_cached_columns(self, db, repo, practitioner):
        booking = _insert(db, repo, practitioner.id, future_slot())
        db.query(Booking).filter(Booking.id == booking.id).update(
            {Booking.calendar_event_ref: "evt-elsewhere"}, synchronize_session=False
        )
        db.commit()
        assert booking.calendar_event_ref is None

        reloaded = repo.reload_booking(booking.id)

        assert reloaded is booking
        assert reloaded.calendar_event_ref == "evt-elsewhere"

    def test_update_status_is_idempotent(self, db, repo, practitioner):
        booking = _insert(db, repo, practitioner.id, future_slot())

        assert repo.update_status(booking.id, BookingStatus.CANCELLED) is True
        first_cancelled_at = repo.get_booking(booking.id).cancelled_at
        assert repo.update_status(booking.id, BookingStatus.CANCELLED) is True

        assert repo.get_booking(booking.id).cancelled_at == first_cancelled_at

    def test_update_status_unknown_booking(self, repo):
        assert repo.update_status("01HF4G12ABCDEF3456789XYZZZ", BookingStatus.CANCELLED) is False

    def test_transition_bumps_updated_at(self, db, repo, practitioner):
        booking = _insert(db, repo, practitioner.id, future_slot())
        before = booking.updated_at

        repo.transition_status(booking.id, BookingStatus.PENDING, BookingStatus.CANCELLED)

        assert repo.get_booking(booking.id).updated_at >= before


class TestReferencesAndLookups:
    def test_attach_and_lookup_by_checkout_reference(self, db, repo, practitioner):
        booking = _insert(db, repo, practitioner.id, future_slot())

        assert repo.attach_payment_references(booking.id, checkout_ref="cs_test_1")
        db.commit()

        found = repo.get_by_checkout_reference("cs_test_1")
        assert found is not None and found.id == booking.id
        assert repo.get_by_checkout_reference("cs_unknown") is None
        assert repo.get_by_checkout_reference("") is None

    def test_none_leaves_reference_unchanged(self, db, repo, practitioner):
        booking = _insert(db, repo, practitioner.id, future_slot())
        repo.attach_payment_references(booking.id, checkout_ref="cs_test_1")

        repo.attach_payment_references(booking.id, checkout_ref=None, payment_ref="pi_1")

        refreshed = repo.get_booking(booking.id)
        assert refreshed.checkout_session_ref == "cs_test_1"
        assert refreshed.payment_ref == "pi_1"

    def test_attach_calendar_event(self, db, repo, practitioner):
        booking = _insert(db, repo, practitioner.id, future_slot())

        assert repo.attach_calendar_event(booking.id, "555")
        assert repo.get_booking(booking.id).calendar_event_ref == "555"

    def test_find_conflicting_booking_ignores_cancelled(self, db, repo, practitioner):
        start = future_slot()
        booking = _insert(db, repo, practitioner.id, start)

        assert repo.find_conflicting_booking(practitioner.id, start).id == booking.id
        repo.transition_status(booking.id, BookingStatus.PENDING, BookingStatus.CANCELLED)
        assert repo.find_conflicting_booking(practitioner.id, start) is None

    def test_list_stale_pending(self, db, repo, practitioner):
        pending = _insert(db, repo, practitioner.id, future_slot(days=3))
        confirmed = _insert(db, repo, practitioner.id, future_slot(days=4))
        repo.transition_status(confirmed.id, BookingStatus.PENDING, BookingStatus.CONFIRMED)
        db.commit()

        cutoff = datetime.now(timezone.utc) + timedelta(seconds=1)
        stale = repo.list_stale_pending(cutoff)

        assert [b.id for b in stale] == [pending.id]
        assert repo.list_stale_pending(datetime.now(timezone.utc) - timedelta(hours=1)) == []

    def test_round_trip_keeps_utc_instant(self, db, repo, practitioner):
        start = future_slot()
        booking = _insert(db, repo, practitioner.id, start)
        db.expire_all()

        loaded = repo.get_booking(booking.id)

        assert loaded.start_time == start
        assert loaded.start_time.tzinfo is not None
        assert loaded.end_time - loaded.start_time == timedelta(hours=1)

    def test_end_time_follows_stored_duration(self, db, repo, practitioner):
        booking = repo.create_booking(**_draft(practitioner.id, future_slot(), duration_minutes=30))
        db.commit()

        assert booking.end_time - booking.start_time == timedelta(minutes=30)
