"""Async HTTP client for the notification dispatcher."""

from __future__ import annotations

from typing import Any

import httpx

from engagement_service.core.exceptions import UpstreamError
from engagement_service.logging import get_logger


class NotificationClient:
    """
    Client that hands events to the external notification dispatcher.

    Delivery, retries, and transport (push, browser, e-mail) belong to the
    dispatcher. This client only submits the event.
    """

    def __init__(
        self,
        base_url: str,
        notify_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._notify_path = notify_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        """
        Submit a notification event for a user.

        Raises:
            UpstreamError: NOTIFICATION_SERVICE_UNAVAILABLE if the event was not accepted
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._notify_path,
                json={"user_id": user_id, "event_type": event_type, "payload": payload},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Notification service request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise UpstreamError(
                "NOTIFICATION_SERVICE_UNAVAILABLE",
                "Cannot reach notification service",
            ) from exc

        if response.status_code not in (200, 201, 202):
            raise UpstreamError(
                "NOTIFICATION_SERVICE_UNAVAILABLE",
                "Notification service returned unexpected status",
                {"status_code": response.status_code},
            )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
