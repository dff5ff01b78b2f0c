"""Minimal Cal.com v1 API client for availability and bookings."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, cast

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)


class CalComError(RuntimeError):
    """Raised when the Cal.com API responds with an error or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_body = error_body


def _isoformat(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


class CalComClient:
    """Thin client for the Cal.com REST API (v1)."""

    def __init__(
        self,
        *,
        api_key: str | SecretStr,
        base_url: str = "https://api.cal.com/v1",
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret_value = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        if not secret_value:
            raise ValueError("Cal.com API key must be provided")

        self._api_key = secret_value
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def get_busy_intervals(
        self,
        *,
        user_id: str,
        event_type_id: str,
        date_from: datetime,
        date_to: datetime,
    ) -> List[Dict[str, str]]:
        """Return the busy ``{start, end}`` intervals for an account over a window."""

        payload = self.request(
            "GET",
            "/availability",
            params={
                "userId": user_id,
                "eventTypeId": event_type_id,
                "dateFrom": _isoformat(date_from),
                "dateTo": _isoformat(date_to),
            },
        )
        busy = payload.get("busy")
        if not isinstance(busy, list):
            raise CalComError("Cal.com availability response is missing 'busy'", error_body=payload)
        intervals: List[Dict[str, str]] = []
        for entry in busy:
            if not isinstance(entry, dict) or "start" not in entry or "end" not in entry:
                raise CalComError("Malformed busy interval from Cal.com", error_body=entry)
            intervals.append({"start": str(entry["start"]), "end": str(entry["end"])})
        return intervals

    def create_booking(
        self,
        *,
        event_type_id: str,
        start: datetime,
        end: datetime,
        name: str,
        email: str,
        phone: str | None = None,
        time_zone: str = "Europe/London",
        title: str | None = None,
        description: str | None = None,
        metadata: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Create a booking (calendar event) against an event type."""

        responses: Dict[str, Any] = {"name": name, "email": email}
        if phone:
            responses["attendeePhoneNumber"] = phone
        if description:
            responses["notes"] = description
        body: Dict[str, Any] = {
            "eventTypeId": int(event_type_id) if str(event_type_id).isdigit() else event_type_id,
            "start": _isoformat(start),
            "end": _isoformat(end),
            "responses": responses,
            "timeZone": time_zone,
            "language": "en",
            "metadata": metadata or {},
        }
        if title:
            body["title"] = title
        payload = self.request("POST", "/bookings", json_body=body)
        if payload.get("id") is None and payload.get("uid") is None:
            raise CalComError("Cal.com booking response has no id", error_body=payload)
        return payload

    def cancel_booking(self, event_id: str) -> Dict[str, Any]:
        """Cancel a previously created booking."""

        if not event_id:
            raise ValueError("event_id must be provided")
        return self.request("DELETE", f"/bookings/{event_id}/cancel")

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw Cal.com API request and return the parsed JSON payload."""

        url = f"{self._base_url}{path}"
        # Cal.com v1 authenticates with an apiKey query parameter
        query: Dict[str, Any] = dict(params or {})
        query["apiKey"] = self._api_key
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        ) as client:
            request = client.build_request(method, url, json=json_body, params=query)
            logger.debug("Cal.com request %s %s", method, path)
            try:
                response = client.send(request)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                error_payload: Any | None = None
                try:
                    error_payload = exc.response.json()
                except ValueError:
                    error_payload = exc.response.text

                logger.error(
                    "Cal.com API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                raise CalComError(
                    message=f"Cal.com API responded with status {status}",
                    status_code=status,
                    error_body=error_payload,
                ) from exc
            except httpx.RequestError as exc:
                logger.error("Cal.com request failure for %s %s: %s", method, path, str(exc))
                raise CalComError("Failed to reach Cal.com API") from exc

        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            # undecodable bytes surface as UnicodeDecodeError, not JSONDecodeError
            logger.error("Invalid JSON from Cal.com for %s %s", method, path)
            raise CalComError("Received malformed JSON from Cal.com") from exc
        if not isinstance(payload, dict):
            raise CalComError("Unexpected Cal.com response shape", error_body=payload)
        return cast(Dict[str, Any], payload)
