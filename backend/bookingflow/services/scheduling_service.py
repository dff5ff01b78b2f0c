# backend/bookingflow/services/scheduling_service.py
"""
Scheduling adapter backed by Cal.com.

Turns busy intervals from the scheduling provider into a fixed weekday grid
of one-hour candidate slots, and creates or cancels calendar events for
confirmed bookings.

Availability favours staying usable over being exact: any provider problem
degrades to the unfiltered grid, tagged ``source="fallback"`` so callers can
warn that the data may be stale. Event creation and cancellation never fall
back; they raise ProviderUnavailableException.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import pytz

from ..core.config import Settings
from ..core.exceptions import ProviderConfigurationError, ProviderUnavailableException
from ..core.provider_registry import ProviderIdentifierRegistry
from ..integrations.calcom_client import CalComClient, CalComError
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

PROVIDER_NAME = "calcom"
SOURCE_PROVIDER = "provider"
SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True)
class TimeSlot:
    """Candidate appointment window. Produced per query, never persisted."""

    start: datetime
    end: datetime
    available: bool = True


@dataclass(frozen=True)
class AvailabilityResult:
    slots: List[TimeSlot]
    source: str

    @property
    def is_fallback(self) -> bool:
        return self.source == SOURCE_FALLBACK


@dataclass(frozen=True)
class CalendarEvent:
    event_id: str


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Half-open overlap test: touching endpoints do not overlap."""
    return start_a < end_b and start_b < end_a


def default_window(now: datetime, tz: pytz.BaseTzInfo, days: int) -> Tuple[datetime, datetime]:
    """Window starting at local midnight tomorrow and spanning ``days`` days."""
    tomorrow = now.astimezone(tz).date() + timedelta(days=1)
    start = tz.localize(datetime.combine(tomorrow, time.min))
    end = tz.localize(datetime.combine(tomorrow + timedelta(days=days), time.min))
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def _local_days(window_start: datetime, window_end: datetime, tz: pytz.BaseTzInfo) -> Iterable[date]:
    day = window_start.astimezone(tz).date()
    last = window_end.astimezone(tz).date()
    while day <= last:
        yield day
        day += timedelta(days=1)


def generate_candidate_slots(
    window_start: datetime,
    window_end: datetime,
    tz: pytz.BaseTzInfo,
    start_hours: Sequence[int],
    duration_minutes: int,
) -> List[TimeSlot]:
    """
    Build the weekday business-hours grid for a window.

    One slot per configured start hour on each Monday to Friday, expressed in
    ``tz`` and returned in UTC. Only slots starting inside
    ``[window_start, window_end)`` are included.
    """
    duration = timedelta(minutes=duration_minutes)
    slots: List[TimeSlot] = []
    for day in _local_days(window_start, window_end, tz):
        if day.weekday() >= 5:
            continue
        for hour in start_hours:
            start = tz.localize(datetime.combine(day, time(hour=hour))).astimezone(timezone.utc)
            if start < window_start or start >= window_end:
                continue
            slots.append(TimeSlot(start=start, end=start + duration, available=True))
    return slots


def _parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SchedulingService:
    """Availability and calendar events for practitioners."""

    def __init__(
        self,
        settings: Settings,
        registry: ProviderIdentifierRegistry,
        client: Optional[CalComClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tz = pytz.timezone(settings.business_timezone)
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def now(self) -> datetime:
        return self._clock()

    def list_availability(
        self,
        practitioner_id: str,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> AvailabilityResult:
        """
        Slots for a practitioner over a window, marked busy where the provider says so.

        Never raises for provider problems; see module docstring.
        """
        now = self.now()
        if window_start is None or window_end is None:
            window_start, window_end = default_window(
                now, self._tz, self.settings.availability_window_days
            )

        candidates = [
            slot
            for slot in generate_candidate_slots(
                window_start,
                window_end,
                self._tz,
                self.settings.slot_start_hours,
                self.settings.slot_duration_minutes,
            )
            if slot.start > now
        ]

        try:
            busy = self._fetch_busy(practitioner_id, window_start, window_end)
        except (CalComError, ProviderConfigurationError, ValueError, TypeError) as exc:
            self.logger.warning(
                "Availability for practitioner %s degraded to fallback grid: %s",
                practitioner_id,
                exc,
            )
            prometheus_metrics.inc_availability_source(SOURCE_FALLBACK)
            return AvailabilityResult(slots=candidates, source=SOURCE_FALLBACK)

        slots = [
            TimeSlot(
                start=slot.start,
                end=slot.end,
                available=not any(
                    intervals_overlap(slot.start, slot.end, busy_start, busy_end)
                    for busy_start, busy_end in busy
                ),
            )
            for slot in candidates
        ]
        prometheus_metrics.inc_availability_source(SOURCE_PROVIDER)
        return AvailabilityResult(slots=slots, source=SOURCE_PROVIDER)

    def create_event(
        self,
        practitioner_id: str,
        client_name: str,
        client_email: str,
        client_phone: Optional[str],
        start: datetime,
        end: datetime,
        title: str,
        description: Optional[str] = None,
    ) -> CalendarEvent:
        """
        Create a calendar event on the practitioner's event type.

        Raises:
            ProviderUnavailableException: Provider call failed or is not configured
        """
        if self.client is None:
            raise ProviderUnavailableException(
                PROVIDER_NAME, "Scheduling provider is not configured"
            )
        try:
            event_type_id = self.registry.event_type_for(practitioner_id)
            payload = self.client.create_booking(
                event_type_id=event_type_id,
                start=start,
                end=end,
                name=client_name,
                email=client_email,
                phone=client_phone,
                time_zone=self.settings.business_timezone,
                title=title,
                description=description,
            )
        except (CalComError, ProviderConfigurationError) as exc:
            self.logger.error(
                "Calendar event creation failed for practitioner %s: %s", practitioner_id, exc
            )
            raise ProviderUnavailableException(
                PROVIDER_NAME,
                "Failed to create calendar event",
                details={"practitioner_id": practitioner_id},
            ) from exc

        event_id = payload.get("id") or payload.get("uid")
        return CalendarEvent(event_id=str(event_id))

    def cancel_event(self, event_id: str) -> None:
        """
        Cancel a calendar event.

        Raises:
            ProviderUnavailableException: Provider call failed or is not configured
        """
        if self.client is None:
            raise ProviderUnavailableException(
                PROVIDER_NAME, "Scheduling provider is not configured"
            )
        try:
            self.client.cancel_booking(event_id)
        except CalComError as exc:
            self.logger.error("Calendar event %s cancellation failed: %s", event_id, exc)
            raise ProviderUnavailableException(
                PROVIDER_NAME, "Failed to cancel calendar event", details={"event_id": event_id}
            ) from exc

    def _fetch_busy(
        self, practitioner_id: str, window_start: datetime, window_end: datetime
    ) -> List[Tuple[datetime, datetime]]:
        if self.client is None:
            raise ProviderConfigurationError("Scheduling provider is not configured")
        event_type_id = self.registry.event_type_for(practitioner_id)
        intervals = self.client.get_busy_intervals(
            user_id=self.registry.account_id,
            event_type_id=event_type_id,
            date_from=window_start,
            date_to=window_end,
        )
        return [(_parse_instant(item["start"]), _parse_instant(item["end"])) for item in intervals]
