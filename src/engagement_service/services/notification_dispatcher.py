"""Fire-and-forget notification dispatch."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from engagement_service.core.exceptions import ServiceError
from engagement_service.logging import get_logger

if TYPE_CHECKING:
    from engagement_service.clients.notification_client import NotificationClient


class NotificationDispatcher:
    """
    Hands events to the notification client after a transition has committed.

    Delivery failures are logged and swallowed. A notification never fails
    or rolls back the state change that triggered it.
    """

    def __init__(self, client: NotificationClient) -> None:
        self._client = client
        self._logger = get_logger(__name__)

    async def dispatch(
        self,
        user_id: str | None,
        event_type: str,
        payload: dict[str, Any],
    ) -> bool:
        """Send one event. Returns whether the dispatcher accepted it."""
        if not user_id:
            return False
        try:
            await self._client.notify(user_id, event_type, payload)
        except ServiceError as exc:
            self._logger.warning(
                "Notification delivery failed",
                extra={"user_id": user_id, "event_type": event_type, "error_code": exc.error},
            )
            return False
        return True

    async def dispatch_many(
        self,
        user_ids: list[str],
        event_type: str,
        payload: dict[str, Any],
    ) -> int:
        """Send the same event to several users. Returns the number delivered."""
        delivered = 0
        for user_id in user_ids:
            if await self.dispatch(user_id, event_type, payload):
                delivered += 1
        return delivered
