"""
Response schemas for health checks.
"""

from datetime import datetime
from typing import Dict

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    version: str
    timestamp: datetime
    checks: Dict[str, bool]
