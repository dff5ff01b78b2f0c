#!/usr/bin/env python
# backend/bookingflow/commands/maintenance.py
"""
Operator commands for booking housekeeping.

Usage:
    python -m bookingflow.commands.maintenance release-stale              # Cancel lapsed pending bookings
    python -m bookingflow.commands.maintenance release-stale --minutes 90 # Custom age threshold
    python -m bookingflow.commands.maintenance sync-calendar              # Retry due calendar events
"""

import argparse
from datetime import timedelta
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from ..api.dependencies import get_scheduling_service, get_stripe_service
from ..core.config import settings
from ..database import SessionLocal
from ..services.booking_service import BookingService
from ..services.calendar_sync_service import CalendarSyncService

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class MaintenanceCommand:
    """Maintenance command handler."""

    def __init__(self, session_factory: Any = SessionLocal) -> None:
        self.session_factory = session_factory

    def release_stale(self, minutes: Optional[int] = None) -> Dict[str, Any]:
        """
        Cancel pending bookings whose checkout has lapsed.

        Args:
            minutes: Age threshold; defaults to checkout expiry plus grace

        Returns:
            dict: Released booking ids
        """
        db = self.session_factory()
        try:
            service = BookingService(
                db, get_scheduling_service(), get_stripe_service(), settings
            )
            older_than = timedelta(minutes=minutes) if minutes is not None else None
            released = service.release_stale_pending_bookings(older_than)
        finally:
            db.close()

        logger.info(f"Released {len(released)} stale pending bookings")
        return {"released": len(released), "booking_ids": released}

    def sync_calendar(self, limit: int = 50) -> Dict[str, Any]:
        """Attempt every due calendar sync task once."""
        db = self.session_factory()
        try:
            service = CalendarSyncService(db, get_scheduling_service(), settings)
            summary = service.process_due(limit=limit)
        finally:
            db.close()

        logger.info(f"Calendar sync: {summary}")
        return dict(summary)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="BookingFlow maintenance commands")
    subparsers = parser.add_subparsers(dest="command", required=True)

    release = subparsers.add_parser("release-stale", help="Cancel lapsed pending bookings")
    release.add_argument(
        "--minutes", type=int, default=None, help="Only bookings older than this many minutes"
    )

    sync = subparsers.add_parser("sync-calendar", help="Retry failed calendar events")
    sync.add_argument("--limit", type=int, default=50, help="Maximum tasks to process")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    command = MaintenanceCommand()

    if args.command == "release-stale":
        result = command.release_stale(args.minutes)
    else:
        result = command.sync_calendar(args.limit)

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
