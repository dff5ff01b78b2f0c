# backend/bookingflow/repositories/calendar_sync_repository.py
"""
Repository for the calendar sync outbox.

Implements idempotent enqueue, due-task fetch with row locking, and the
state updates used by the retry worker.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Optional, cast

from sqlalchemy import Select, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from ..core.ulid_helper import generate_ulid
from ..database.session_utils import get_dialect_name
from ..models.calendar_sync import CalendarSyncStatus, CalendarSyncTask
from ..models.types import utc_now

logger = logging.getLogger(__name__)


def calendar_sync_key(booking_id: str) -> str:
    return f"calendar_event:{booking_id}"


class CalendarSyncRepository:
    """Data access helpers for calendar sync outbox rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    # ------------------------------------------------------------------ enqueue
    def enqueue(
        self,
        booking_id: str,
        payload: Optional[dict[str, Any]] = None,
        next_attempt_at: Optional[datetime] = None,
    ) -> CalendarSyncTask:
        """
        Insert a task for a booking unless one already exists.

        One booking has at most one task. Returns the persisted row
        (existing or newly created).
        """
        key = calendar_sync_key(booking_id)
        task_id = generate_ulid()
        now = utc_now()
        values = {
            "id": task_id,
            "booking_id": booking_id,
            "idempotency_key": key,
            "payload": payload or {},
            "status": CalendarSyncStatus.PENDING.value,
            "attempt_count": 0,
            "next_attempt_at": next_attempt_at or now,
            "created_at": now,
            "updated_at": now,
        }

        inserted_id: Optional[str] = None
        if self._dialect == "postgresql":
            pg_stmt = (
                pg_insert(CalendarSyncTask)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
                .returning(CalendarSyncTask.id)
            )
            inserted_value = self.db.execute(pg_stmt).scalar_one_or_none()
            if inserted_value is not None:
                inserted_id = cast(str, inserted_value)
        else:
            stmt = insert(CalendarSyncTask).values(**values)
            if self._dialect == "sqlite":
                stmt = stmt.prefix_with("OR IGNORE")
            result = self.db.execute(stmt)
            if getattr(result, "rowcount", 0):
                inserted_id = task_id

        if inserted_id:
            self.db.flush()
            row = cast(Optional[CalendarSyncTask], self.db.get(CalendarSyncTask, inserted_id))
            if row is None:
                raise RuntimeError("Inserted calendar sync row could not be reloaded")
            logger.info("Queued calendar sync for booking %s", booking_id)
            return row

        existing = self.get_by_booking(booking_id)
        if existing is None:
            raise RuntimeError("Calendar sync row not found after enqueue conflict")
        return existing

    # ---------------------------------------------------------------- fetchers
    def fetch_due(self, limit: int = 50) -> list[CalendarSyncTask]:
        """Return pending tasks whose next attempt is due, oldest first."""
        stmt: Select[Any] = (
            select(CalendarSyncTask)
            .where(CalendarSyncTask.status == CalendarSyncStatus.PENDING.value)
            .where(CalendarSyncTask.next_attempt_at <= utc_now())
            .order_by(CalendarSyncTask.next_attempt_at.asc(), CalendarSyncTask.id.asc())
            .limit(limit)
        )
        if self._dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return cast(list[CalendarSyncTask], self.db.execute(stmt).scalars().all())

    def get_by_booking(self, booking_id: str) -> Optional[CalendarSyncTask]:
        result = self.db.execute(
            select(CalendarSyncTask).where(
                CalendarSyncTask.idempotency_key == calendar_sync_key(booking_id)
            )
        )
        return cast(Optional[CalendarSyncTask], result.scalar_one_or_none())

    # ------------------------------------------------------------- state updates
    def mark_sent(self, task_id: str, attempt_count: int) -> None:
        """Update row to SENT state."""
        now = utc_now()
        self.db.execute(
            update(CalendarSyncTask)
            .where(CalendarSyncTask.id == task_id)
            .values(
                status=CalendarSyncStatus.SENT.value,
                attempt_count=attempt_count,
                last_error=None,
                next_attempt_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()

    def mark_failed(
        self,
        task_id: str,
        *,
        attempt_count: int,
        backoff_seconds: int,
        error: str | None = None,
        terminal: bool = False,
    ) -> None:
        """Update row after a failed attempt."""
        now = utc_now()
        values: dict[str, Any] = {
            "attempt_count": attempt_count,
            "updated_at": now,
            "last_error": (error[:1000] if error else None),
        }
        if terminal:
            values["status"] = CalendarSyncStatus.FAILED.value
            values["next_attempt_at"] = None
        else:
            values["status"] = CalendarSyncStatus.PENDING.value
            values["next_attempt_at"] = now + timedelta(seconds=max(backoff_seconds, 1))

        self.db.execute(
            update(CalendarSyncTask)
            .where(CalendarSyncTask.id == task_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()
