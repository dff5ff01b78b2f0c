# backend/bookingflow/core/provider_registry.py
"""
Explicit mapping from internal practitioner ids to scheduling-provider ids.

Every practitioner books against one shared Cal.com account and owns one
event type on it. The mapping is configuration: it is loaded once at startup
and looked up by exact key. There is no fallback lookup on derived forms of
the id.
"""

import logging
from typing import Dict, Iterable, Mapping

from .config import Settings
from .exceptions import ProviderConfigurationError

logger = logging.getLogger(__name__)


class ProviderIdentifierRegistry:
    """Read-only registry of scheduling-provider identifiers."""

    def __init__(self, account_id: str, event_types: Mapping[str, str]):
        self._account_id = account_id
        self._event_types: Dict[str, str] = {}
        for practitioner_id, event_type_id in event_types.items():
            key = str(practitioner_id).strip()
            value = str(event_type_id).strip()
            if not key or not value:
                raise ProviderConfigurationError(
                    f"Invalid event type mapping entry: {practitioner_id!r} -> {event_type_id!r}"
                )
            self._event_types[key] = value

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderIdentifierRegistry":
        return cls(settings.calcom_user_id, settings.calcom_event_types)

    @property
    def account_id(self) -> str:
        if not self._account_id:
            raise ProviderConfigurationError("Scheduling account id is not configured")
        return self._account_id

    def event_type_for(self, practitioner_id: str) -> str:
        """Return the event type id for a practitioner or raise."""
        event_type_id = self._event_types.get(practitioner_id)
        if event_type_id is None:
            raise ProviderConfigurationError(
                f"No scheduling event type configured for practitioner {practitioner_id}"
            )
        return event_type_id

    def validate(self, practitioner_ids: Iterable[str]) -> None:
        """
        Fail fast if any known practitioner lacks an event type mapping.

        Raises:
            ProviderConfigurationError: listing every unmapped practitioner
        """
        missing = sorted(pid for pid in practitioner_ids if pid not in self._event_types)
        if missing:
            raise ProviderConfigurationError(
                "Missing scheduling event type mapping for practitioners: " + ", ".join(missing)
            )
        if not self._account_id:
            raise ProviderConfigurationError("Scheduling account id is not configured")
        logger.info("Provider registry validated for %d event types", len(self._event_types))
