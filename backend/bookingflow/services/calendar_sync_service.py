# backend/bookingflow/services/calendar_sync_service.py
"""
Retry worker for calendar events that failed on the confirmation path.

Drains the calendar sync outbox with exponential backoff. After the
configured number of attempts a task is marked failed and left for manual
reconciliation.

Each task is handled in three steps: read the task and booking, call the
scheduling provider with no transaction open, then record the result.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import ProviderUnavailableException
from ..models.calendar_sync import CalendarSyncTask
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .scheduling_service import SchedulingService

logger = logging.getLogger(__name__)

BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]


def backoff_for_attempt(attempt: int) -> int:
    index = min(max(attempt - 1, 0), len(BACKOFF_SECONDS) - 1)
    return BACKOFF_SECONDS[index]


@dataclass(frozen=True)
class _PendingEvent:
    """What a due task needs from its booking to call the provider."""

    task_id: str
    booking_id: str
    attempt: int
    practitioner_id: str
    client_name: str
    client_email: str
    client_phone: Optional[str]
    start: datetime
    end: datetime
    title: str
    description: Optional[str]


class CalendarSyncService(BaseService):
    """Processes due calendar sync tasks."""

    def __init__(
        self,
        db: Session,
        scheduling: SchedulingService,
        settings: Optional[Settings] = None,
    ):
        super().__init__(db)
        self.scheduling = scheduling
        self.settings = settings or default_settings
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.calendar_sync_repository = RepositoryFactory.create_calendar_sync_repository(db)

    @BaseService.measure_operation("process_due_calendar_sync")
    def process_due(self, limit: int = 50) -> Dict[str, int]:
        """
        Attempt every due task once.

        Returns counts keyed by ``sent``, ``retried`` and ``failed``.
        """
        summary = {"sent": 0, "retried": 0, "failed": 0}
        with self.transaction():
            task_ids = [task.id for task in self.calendar_sync_repository.fetch_due(limit)]

        for task_id in task_ids:
            result = self._process_task(task_id)
            if result is not None:
                summary[result] += 1

        if task_ids:
            self.log_operation("calendar_sync_processed", **summary)
        return summary

    def _process_task(self, task_id: str) -> Optional[str]:
        with self.transaction():
            task = self.db.get(CalendarSyncTask, task_id, populate_existing=True)
            if task is None:
                return None
            pending, settled = self._prepare(task)
        if pending is None:
            return settled

        try:
            event = self.scheduling.create_event(
                practitioner_id=pending.practitioner_id,
                client_name=pending.client_name,
                client_email=pending.client_email,
                client_phone=pending.client_phone,
                start=pending.start,
                end=pending.end,
                title=pending.title,
                description=pending.description,
            )
        except ProviderUnavailableException as exc:
            return self._record_failure(pending, exc.message)
        except Exception as exc:
            self.logger.exception("Unexpected error syncing calendar for booking %s", pending.booking_id)
            return self._record_failure(pending, str(exc) or type(exc).__name__)

        with self.transaction():
            self.booking_repository.attach_calendar_event(pending.booking_id, event.event_id)
            self.calendar_sync_repository.mark_sent(pending.task_id, attempt_count=pending.attempt)
        prometheus_metrics.inc_calendar_sync("created")
        return "sent"

    def _prepare(self, task: CalendarSyncTask) -> tuple[Optional[_PendingEvent], Optional[str]]:
        """Settle tasks that need no provider call; otherwise snapshot the booking."""
        attempt = task.attempt_count + 1
        booking = self.booking_repository.reload_booking(task.booking_id)

        if booking is None or not booking.is_confirmed:
            self.calendar_sync_repository.mark_failed(
                task.id,
                attempt_count=attempt,
                backoff_seconds=0,
                error="Booking missing or not confirmed",
                terminal=True,
            )
            prometheus_metrics.inc_calendar_sync("failed")
            return None, "failed"

        if booking.calendar_event_ref:
            self.calendar_sync_repository.mark_sent(task.id, attempt_count=task.attempt_count)
            return None, "sent"

        payload: Dict[str, Any] = task.payload or {}
        return (
            _PendingEvent(
                task_id=task.id,
                booking_id=booking.id,
                attempt=attempt,
                practitioner_id=booking.practitioner_id,
                client_name=booking.client_name,
                client_email=booking.client_email,
                client_phone=booking.client_phone,
                start=booking.start_time,
                end=booking.end_time,
                title=payload.get("title") or "Booking",
                description=payload.get("description"),
            ),
            None,
        )

    def _record_failure(self, pending: _PendingEvent, error: str) -> str:
        terminal = pending.attempt >= self.settings.calendar_retry_max_attempts
        with self.transaction():
            self.calendar_sync_repository.mark_failed(
                pending.task_id,
                attempt_count=pending.attempt,
                backoff_seconds=backoff_for_attempt(pending.attempt),
                error=error,
                terminal=terminal,
            )
        if terminal:
            self.logger.error(
                "Calendar sync for booking %s failed after %d attempts; manual reconciliation required",
                pending.booking_id,
                pending.attempt,
            )
            prometheus_metrics.inc_calendar_sync("failed")
            return "failed"
        prometheus_metrics.inc_calendar_sync("retried")
        return "retried"
