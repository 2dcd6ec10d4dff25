"""Router test fixtures with mocked user directory, notification and payout services."""

from __future__ import annotations

import os
import uuid
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from engagement_service.app import create_app
from engagement_service.config import clear_settings_cache
from engagement_service.core.lifespan import lifespan
from engagement_service.core.state import get_app_state, reset_app_state
from tests.helpers import (
    CLIENT_ID,
    TASK_LAT,
    TASK_LON,
    VERIFIER_ID,
    config_yaml,
    make_user_directory,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked external services."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_yaml(str(tmp_path / "test.db"), str(tmp_path / "logs")))

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Mock user directory: default users from tests.helpers
        mock_directory = make_user_directory()
        state.user_directory_client = mock_directory

        # Mock notification dispatcher: every event accepted
        mock_notifications = AsyncMock()
        mock_notifications.close = AsyncMock()
        state.notification_client = mock_notifications

        # Mock payout processor: disbursement succeeds
        mock_payouts = AsyncMock()
        mock_payouts.close = AsyncMock()
        mock_payouts.disburse = AsyncMock(
            side_effect=lambda payment_id, recipient_user_id, amount: {
                "payout_id": f"po-{uuid.uuid4()}",
                "status": "paid",
            }
        )
        state.payout_client = mock_payouts

        # Propagate mocks to the shared collaborators of the managers
        if state.task_manager is not None:
            state.task_manager._actors._user_directory = mock_directory
            state.task_manager._notifier._client = mock_notifications
        if state.escrow_manager is not None:
            state.escrow_manager._payout_client = mock_payouts

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def notifications(app: Any) -> AsyncMock:
    """The mocked notification client."""
    return get_app_state().notification_client


@pytest.fixture
def payouts(app: Any) -> AsyncMock:
    """The mocked payout client."""
    return get_app_state().payout_client


def sent_events(notifications: AsyncMock) -> list[tuple[str, str]]:
    """(user_id, event_type) for every notification submitted so far."""
    return [(call.args[0], call.args[1]) for call in notifications.notify.await_args_list]


# ---------------------------------------------------------------------------
# Lifecycle helper functions
# ---------------------------------------------------------------------------
async def register_provider(
    client: AsyncClient,
    user_id: str,
    *,
    latitude: float = TASK_LAT,
    longitude: float = TASK_LON,
    category_id: str = "plumbing",
) -> Any:
    """Register a provider profile via POST /providers."""
    return await client.post(
        "/providers",
        json={
            "actor_id": user_id,
            "category_id": category_id,
            "hourly_rate": 5000,
            "latitude": latitude,
            "longitude": longitude,
        },
    )


async def upload_document(
    client: AsyncClient,
    user_id: str,
    provider_id: str,
    document_type: str,
) -> Any:
    """Upload a document reference via POST /providers/{provider_id}/documents."""
    return await client.post(
        f"/providers/{provider_id}/documents",
        json={
            "actor_id": user_id,
            "document_type": document_type,
            "storage_ref": f"s3://docs/{provider_id}/{document_type}",
            "original_name": f"{document_type}.pdf",
        },
    )


async def review_document(
    client: AsyncClient,
    document_id: str,
    decision: str = "approve",
    *,
    actor_id: str = VERIFIER_ID,
) -> Any:
    """Record a verifier decision via POST /documents/{document_id}/review."""
    return await client.post(
        f"/documents/{document_id}/review",
        json={"actor_id": actor_id, "decision": decision},
    )


async def register_verified_provider(
    client: AsyncClient,
    user_id: str,
    *,
    latitude: float = TASK_LAT,
    longitude: float = TASK_LON,
) -> str:
    """Register a provider and have a verifier approve one document per group.

    Returns the provider_id.
    """
    response = await register_provider(client, user_id, latitude=latitude, longitude=longitude)
    provider_id: str = response.json()["provider_id"]
    for document_type in ("identity", "banking_details", "license"):
        uploaded = await upload_document(client, user_id, provider_id, document_type)
        await review_document(client, uploaded.json()["document_id"])
    return provider_id


async def create_task(
    client: AsyncClient,
    *,
    actor_id: str = CLIENT_ID,
    latitude: float | None = TASK_LAT,
    longitude: float | None = TASK_LON,
    budget: int | None = 10000,
    title: str = "Leaking sink",
) -> Any:
    """Post a task via POST /tasks and return the response."""
    return await client.post(
        "/tasks",
        json={
            "actor_id": actor_id,
            "title": title,
            "description": "Kitchen sink drips all night",
            "category_id": "plumbing",
            "latitude": latitude,
            "longitude": longitude,
            "address": "1 Private Lane",
            "budget": budget,
        },
    )


async def submit_interest(
    client: AsyncClient,
    user_id: str,
    task_id: str,
    **extra: Any,
) -> Any:
    """Express interest via POST /tasks/{task_id}/interest."""
    return await client.post(
        f"/tasks/{task_id}/interest",
        json={"actor_id": user_id, **extra},
    )


async def transition(
    client: AsyncClient,
    engagement_id: str,
    action: str,
    actor_id: str,
    **extra: Any,
) -> Any:
    """POST an engagement transition (accept, decline, decision, start, complete, cancel)."""
    return await client.post(
        f"/engagements/{engagement_id}/{action}",
        json={"actor_id": actor_id, **extra},
    )
