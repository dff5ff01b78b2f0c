"""Unit tests for the slot grid and the Cal.com scheduling adapter."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import pytz

from bookingflow.core.exceptions import ProviderUnavailableException
from bookingflow.integrations.calcom_client import CalComError
from bookingflow.services.scheduling_service import (
    SchedulingService,
    default_window,
    generate_candidate_slots,
    intervals_overlap,
)
from tests._utils.booking_data import PRACTITIONER_ID, UNKNOWN_ID

LONDON = pytz.timezone("Europe/London")

# Monday 6 January 2025, London on GMT
WINTER_NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)
# Monday 7 July 2025, London on BST
SUMMER_NOW = datetime(2025, 7, 7, 12, 0, tzinfo=timezone.utc)


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestIntervalsOverlap:
    def test_overlapping(self):
        assert intervals_overlap(_utc(2025, 1, 7, 9), _utc(2025, 1, 7, 10), _utc(2025, 1, 7, 9, 30), _utc(2025, 1, 7, 11))

    def test_touching_endpoints_do_not_overlap(self):
        assert not intervals_overlap(_utc(2025, 1, 7, 9), _utc(2025, 1, 7, 10), _utc(2025, 1, 7, 10), _utc(2025, 1, 7, 11))
        assert not intervals_overlap(_utc(2025, 1, 7, 10), _utc(2025, 1, 7, 11), _utc(2025, 1, 7, 9), _utc(2025, 1, 7, 10))

    def test_containment(self):
        assert intervals_overlap(_utc(2025, 1, 7, 9), _utc(2025, 1, 7, 12), _utc(2025, 1, 7, 10), _utc(2025, 1, 7, 11))


class TestSlotGrid:
    def test_default_window_starts_tomorrow_at_local_midnight(self):
        start, end = default_window(WINTER_NOW, LONDON, 14)
        assert start == _utc(2025, 1, 7)
        assert end == _utc(2025, 1, 21)

    def test_weekdays_only_five_slots_per_day(self):
        start, end = default_window(WINTER_NOW, LONDON, 14)
        slots = generate_candidate_slots(start, end, LONDON, [9, 11, 13, 15, 17], 60)

        # Tue 7 .. Fri 10, Mon 13 .. Fri 17, Mon 20
        assert len(slots) == 10 * 5
        assert all(slot.start.astimezone(LONDON).weekday() < 5 for slot in slots)
        assert slots[0].start == _utc(2025, 1, 7, 9)
        assert slots[-1].start == _utc(2025, 1, 20, 17)

    def test_slots_are_one_hour_and_available(self):
        start, end = default_window(WINTER_NOW, LONDON, 1)
        slots = generate_candidate_slots(start, end, LONDON, [9, 11, 13, 15, 17], 60)

        assert [slot.start.hour for slot in slots] == [9, 11, 13, 15, 17]
        for slot in slots:
            assert (slot.end - slot.start).total_seconds() == 3600
            assert slot.available is True

    def test_business_hours_follow_summer_time(self):
        start, end = default_window(SUMMER_NOW, LONDON, 1)
        slots = generate_candidate_slots(start, end, LONDON, [9, 11, 13, 15, 17], 60)

        # 09:00 BST is 08:00 UTC
        assert slots[0].start == _utc(2025, 7, 8, 8)
        assert slots[0].start.astimezone(LONDON).hour == 9

    def test_weekend_window_is_empty(self):
        start, end = _utc(2025, 1, 11), _utc(2025, 1, 13)
        assert generate_candidate_slots(start, end, LONDON, [9, 11], 60) == []


class TestSchedulingService:
    @pytest.fixture
    def winter_scheduling(self, test_settings, registry, calcom_client) -> SchedulingService:
        return SchedulingService(test_settings, registry, client=calcom_client, clock=lambda: WINTER_NOW)

    def test_busy_interval_marks_overlapping_slot_unavailable(self, winter_scheduling, calcom_client):
        calcom_client.get_busy_intervals.return_value = [
            {"start": "2025-01-07T09:30:00Z", "end": "2025-01-07T10:00:00Z"},
            # touches the 11:00 slot only at its start
            {"start": "2025-01-07T10:00:00Z", "end": "2025-01-07T11:00:00Z"},
        ]

        result = winter_scheduling.list_availability(PRACTITIONER_ID)

        assert result.source == "provider"
        assert result.is_fallback is False
        by_start = {slot.start: slot for slot in result.slots}
        assert by_start[_utc(2025, 1, 7, 9)].available is False
        assert by_start[_utc(2025, 1, 7, 11)].available is True
        assert by_start[_utc(2025, 1, 8, 9)].available is True

    def test_provider_receives_shared_account_and_event_type(self, winter_scheduling, calcom_client):
        winter_scheduling.list_availability(PRACTITIONER_ID)

        kwargs = calcom_client.get_busy_intervals.call_args.kwargs
        assert kwargs["user_id"] == "4242"
        assert kwargs["event_type_id"] == "1001"
        assert kwargs["date_from"] == _utc(2025, 1, 7)
        assert kwargs["date_to"] == _utc(2025, 1, 21)

    def test_provider_failure_degrades_to_fallback_grid(self, winter_scheduling, calcom_client):
        calcom_client.get_busy_intervals.side_effect = CalComError("down", 503)

        result = winter_scheduling.list_availability(PRACTITIONER_ID)

        assert result.source == "fallback"
        assert result.is_fallback is True
        assert len(result.slots) == 50
        assert all(slot.available for slot in result.slots)

    def test_malformed_interval_degrades_to_fallback(self, winter_scheduling, calcom_client):
        calcom_client.get_busy_intervals.return_value = [{"start": "not-a-date", "end": "2025-01-07T10:00:00Z"}]

        result = winter_scheduling.list_availability(PRACTITIONER_ID)

        assert result.is_fallback is True

    def test_unmapped_practitioner_degrades_to_fallback(self, winter_scheduling, calcom_client):
        result = winter_scheduling.list_availability(UNKNOWN_ID)

        assert result.is_fallback is True
        calcom_client.get_busy_intervals.assert_not_called()

    def test_disabled_provider_serves_fallback(self, test_settings, registry):
        service = SchedulingService(test_settings, registry, client=None, clock=lambda: WINTER_NOW)

        result = service.list_availability(PRACTITIONER_ID)

        assert service.enabled is False
        assert result.is_fallback is True

    def test_slots_before_now_are_dropped(self, test_settings, registry, calcom_client):
        now = _utc(2025, 1, 7, 12)
        service = SchedulingService(test_settings, registry, client=calcom_client, clock=lambda: now)

        result = service.list_availability(
            PRACTITIONER_ID, window_start=_utc(2025, 1, 7), window_end=_utc(2025, 1, 8)
        )

        assert [slot.start.hour for slot in result.slots] == [13, 15, 17]

    def test_create_event_uses_mapped_event_type(self, winter_scheduling, calcom_client):
        event = winter_scheduling.create_event(
            practitioner_id=PRACTITIONER_ID,
            client_name="Casey Client",
            client_email="casey@example.com",
            client_phone="+44 7700 900123",
            start=_utc(2025, 1, 7, 9),
            end=_utc(2025, 1, 7, 10),
            title="Session with Dr Ada Example",
        )

        assert event.event_id == "555"
        kwargs = calcom_client.create_booking.call_args.kwargs
        assert kwargs["event_type_id"] == "1001"
        assert kwargs["time_zone"] == "Europe/London"
        assert kwargs["email"] == "casey@example.com"

    def test_create_event_failure_raises_provider_unavailable(self, winter_scheduling, calcom_client):
        calcom_client.create_booking.side_effect = CalComError("boom", 500)

        with pytest.raises(ProviderUnavailableException) as exc_info:
            winter_scheduling.create_event(
                practitioner_id=PRACTITIONER_ID,
                client_name="Casey",
                client_email="casey@example.com",
                client_phone=None,
                start=_utc(2025, 1, 7, 9),
                end=_utc(2025, 1, 7, 10),
                title="Session",
            )
        assert exc_info.value.provider == "calcom"

    def test_create_event_without_client_raises(self, test_settings, registry):
        service = SchedulingService(test_settings, registry, client=None)

        with pytest.raises(ProviderUnavailableException):
            service.create_event(
                practitioner_id=PRACTITIONER_ID,
                client_name="Casey",
                client_email="casey@example.com",
                client_phone=None,
                start=_utc(2025, 1, 7, 9),
                end=_utc(2025, 1, 7, 10),
                title="Session",
            )

    def test_cancel_event_maps_errors(self, winter_scheduling, calcom_client):
        calcom_client.cancel_booking.side_effect = CalComError("gone", 404)

        with pytest.raises(ProviderUnavailableException):
            winter_scheduling.cancel_event("555")

    def test_cancel_event_calls_client(self, winter_scheduling, calcom_client: Mock):
        winter_scheduling.cancel_event("555")

        calcom_client.cancel_booking.assert_called_once_with("555")
