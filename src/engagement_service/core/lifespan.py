"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from engagement_service.clients.notification_client import NotificationClient
from engagement_service.clients.payout_client import PayoutClient
from engagement_service.clients.user_directory_client import UserDirectoryClient
from engagement_service.config import get_settings
from engagement_service.core.state import init_app_state
from engagement_service.logging import get_logger, setup_logging
from engagement_service.services.actor_resolver import ActorResolver
from engagement_service.services.engagement_manager import EngagementManager
from engagement_service.services.engagement_store import EngagementStore
from engagement_service.services.escrow_manager import EscrowManager
from engagement_service.services.geo_matcher import GeoMatcher
from engagement_service.services.notification_dispatcher import NotificationDispatcher
from engagement_service.services.provider_manager import ProviderManager
from engagement_service.services.task_manager import TaskManager
from engagement_service.services.verification_gate import VerificationGate

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    # HTTP clients for external collaborators
    user_directory_client = UserDirectoryClient(
        base_url=settings.user_directory.base_url,
        users_path=settings.user_directory.users_path,
        timeout_seconds=settings.user_directory.timeout_seconds,
    )
    state.user_directory_client = user_directory_client

    notification_client = NotificationClient(
        base_url=settings.notifications.base_url,
        notify_path=settings.notifications.notify_path,
        timeout_seconds=settings.notifications.timeout_seconds,
    )
    state.notification_client = notification_client

    payout_client = PayoutClient(
        base_url=settings.payouts.base_url,
        payout_path=settings.payouts.payout_path,
        timeout_seconds=settings.payouts.timeout_seconds,
    )
    state.payout_client = payout_client

    # Business logic, all sharing one store
    store = EngagementStore(db_path=settings.database.path)
    actors = ActorResolver(user_directory_client)
    notifier = NotificationDispatcher(notification_client)
    verification_gate = VerificationGate(store, settings.verification.required_groups)
    matcher = GeoMatcher(
        store,
        radius_steps_km=settings.matching.radius_steps_km,
        min_candidates=settings.matching.min_candidates,
    )
    escrow_manager = EscrowManager(
        store=store,
        actors=actors,
        payout_client=payout_client,
        notifier=notifier,
        platform_fee_pct=settings.payments.platform_fee_pct,
        tax_pct=settings.payments.tax_pct,
    )
    state.escrow_manager = escrow_manager
    state.task_manager = TaskManager(
        store=store, actors=actors, matcher=matcher, notifier=notifier
    )
    state.provider_manager = ProviderManager(
        store=store,
        actors=actors,
        verification_gate=verification_gate,
        notifier=notifier,
        matcher=matcher,
    )
    state.engagement_manager = EngagementManager(
        store=store,
        actors=actors,
        verification_gate=verification_gate,
        escrow_manager=escrow_manager,
        notifier=notifier,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "user_directory_base_url": settings.user_directory.base_url,
            "notifications_base_url": settings.notifications.base_url,
            "payouts_base_url": settings.payouts.base_url,
            "radius_steps_km": settings.matching.radius_steps_km,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    store.close()

    await user_directory_client.close()
    await notification_client.close()
    await payout_client.close()
