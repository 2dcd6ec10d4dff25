"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from engagement_service.clients.notification_client import NotificationClient
    from engagement_service.clients.payout_client import PayoutClient
    from engagement_service.clients.user_directory_client import UserDirectoryClient
    from engagement_service.services.engagement_manager import EngagementManager
    from engagement_service.services.escrow_manager import EscrowManager
    from engagement_service.services.provider_manager import ProviderManager
    from engagement_service.services.task_manager import TaskManager


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    task_manager: TaskManager | None = None
    provider_manager: ProviderManager | None = None
    engagement_manager: EngagementManager | None = None
    escrow_manager: EscrowManager | None = None
    user_directory_client: UserDirectoryClient | None = None
    notification_client: NotificationClient | None = None
    payout_client: PayoutClient | None = None

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
