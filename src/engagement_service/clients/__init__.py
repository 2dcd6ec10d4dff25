"""HTTP clients for external collaborators."""

from engagement_service.clients.notification_client import NotificationClient
from engagement_service.clients.payout_client import PayoutClient
from engagement_service.clients.user_directory_client import UserDirectoryClient

__all__ = ["NotificationClient", "PayoutClient", "UserDirectoryClient"]
