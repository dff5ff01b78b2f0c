"""Third-party API clients."""

from .calcom_client import CalComClient, CalComError

__all__ = ["CalComClient", "CalComError"]
