"""Service layer components."""

from engagement_service.services.actor_resolver import ActorResolver
from engagement_service.services.engagement_manager import EngagementManager
from engagement_service.services.engagement_store import EngagementStore
from engagement_service.services.escrow_manager import EscrowManager
from engagement_service.services.geo_matcher import GeoMatcher
from engagement_service.services.notification_dispatcher import NotificationDispatcher
from engagement_service.services.provider_manager import ProviderManager
from engagement_service.services.task_manager import TaskManager
from engagement_service.services.verification_gate import VerificationGate

__all__ = [
    "ActorResolver",
    "EngagementManager",
    "EngagementStore",
    "EscrowManager",
    "GeoMatcher",
    "NotificationDispatcher",
    "ProviderManager",
    "TaskManager",
    "VerificationGate",
]
