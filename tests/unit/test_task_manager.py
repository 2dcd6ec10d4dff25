"""Unit tests for TaskManager."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from engagement_service.core.exceptions import (
    AuthorizationError,
    GuardViolation,
    NotFoundError,
    ValidationError,
)
from engagement_service.services.actor_resolver import ActorResolver
from engagement_service.services.engagement_store import EngagementStore
from engagement_service.services.geo_matcher import GeoMatcher
from engagement_service.services.notification_dispatcher import NotificationDispatcher
from engagement_service.services.task_manager import TaskManager, validate_coordinates
from tests.helpers import (
    ADMIN_ID,
    AGENT_ID,
    CLIENT_ID,
    OTHER_CLIENT_ID,
    PROVIDER_A_USER,
    PROVIDER_B_USER,
    TASK_LAT,
    TASK_LON,
    engagement_row,
    lat_north_of,
    make_user_directory,
    provider_row,
    task_row,
)


@pytest.fixture
def store(tmp_path):
    engagement_store = EngagementStore(db_path=str(tmp_path / "tasks.db"))
    engagement_store.insert_provider(provider_row("p-a", PROVIDER_A_USER, latitude=lat_north_of(3.0)))
    engagement_store.insert_provider(
        provider_row(
            "p-b", PROVIDER_B_USER, latitude=lat_north_of(1.0), verification_status="pending"
        )
    )
    yield engagement_store
    engagement_store.close()


@pytest.fixture
def notification_client():
    return AsyncMock()


@pytest.fixture
def manager(store, notification_client):
    return TaskManager(
        store=store,
        actors=ActorResolver(make_user_directory()),
        matcher=GeoMatcher(store, radius_steps_km=[6.0, 10.0, 15.0], min_candidates=1),
        notifier=NotificationDispatcher(notification_client),
    )


def _task_body(**overrides) -> dict:
    body = {
        "title": "Leaking sink",
        "description": "Kitchen sink drips all night",
        "category_id": "plumbing",
        "latitude": TASK_LAT,
        "longitude": TASK_LON,
        "address": "1 Private Lane",
        "budget": 10000,
    }
    body.update(overrides)
    return body


@pytest.mark.unit
def test_validate_coordinates() -> None:
    assert validate_coordinates(None, None) == (None, None)
    assert validate_coordinates(10, 20.5) == (10.0, 20.5)
    for latitude, longitude in ((10.0, None), (91.0, 0.0), (0.0, -181.0), (True, 0.0), ("1", 2)):
        with pytest.raises(ValidationError):
            validate_coordinates(latitude, longitude)


@pytest.mark.unit
async def test_create_task_notifies_only_verified_matches(manager, notification_client) -> None:
    task = await manager.create_task(CLIENT_ID, _task_body())

    assert task["task_id"].startswith("t-")
    assert task["status"] == "open"
    assert task["matched_providers"] == 1
    assert task["match_radius_km"] == 6.0
    assert task["address"] == "1 Private Lane"

    notification_client.notify.assert_awaited_once()
    user_id, event_type, payload = notification_client.notify.await_args.args
    assert user_id == PROVIDER_A_USER
    assert event_type == "task_posted"
    assert payload["approximate_distance"] == "~3km away"
    assert "address" not in payload
    assert "latitude" not in payload


@pytest.mark.unit
async def test_create_task_validation(manager) -> None:
    with pytest.raises(ValidationError):
        await manager.create_task(CLIENT_ID, _task_body(title=""))
    with pytest.raises(ValidationError):
        await manager.create_task(CLIENT_ID, _task_body(budget=0))
    with pytest.raises(ValidationError):
        await manager.create_task(CLIENT_ID, _task_body(longitude=None))
    with pytest.raises(AuthorizationError):
        await manager.create_task(PROVIDER_A_USER, _task_body())


@pytest.mark.unit
async def test_task_without_location_matches_nobody(manager, notification_client) -> None:
    task = await manager.create_task(CLIENT_ID, _task_body(latitude=None, longitude=None))

    assert task["has_location"] is False
    assert task["matched_providers"] == 0
    notification_client.notify.assert_not_awaited()


@pytest.mark.unit
async def test_task_location_visibility(manager, store) -> None:
    store.insert_task(task_row("t-1"))

    assert (await manager.get_task("t-1", CLIENT_ID))["address"] == "1 Private Lane"
    assert (await manager.get_task("t-1", AGENT_ID))["latitude"] == TASK_LAT

    provider_view = await manager.get_task("t-1", PROVIDER_A_USER)
    assert "address" not in provider_view
    assert provider_view["has_location"] is True

    store.insert_engagement(engagement_row("eng-1", "t-1", "p-a", status="approved"))
    assert (await manager.get_task("t-1", PROVIDER_A_USER))["address"] == "1 Private Lane"

    with pytest.raises(NotFoundError):
        await manager.get_task("t-missing", CLIENT_ID)


@pytest.mark.unit
async def test_list_tasks(manager, store) -> None:
    store.insert_task(task_row("t-1"))
    store.insert_task(task_row("t-2", client_id=OTHER_CLIENT_ID))

    tasks = await manager.list_tasks(CLIENT_ID)
    by_id = {task["task_id"]: task for task in tasks}
    assert set(by_id) == {"t-1", "t-2"}
    assert "address" in by_id["t-1"]
    assert "address" not in by_id["t-2"]

    assert len(await manager.list_tasks(CLIENT_ID, client_id=OTHER_CLIENT_ID)) == 1
    assert await manager.list_tasks(CLIENT_ID, status="completed") == []
    with pytest.raises(ValidationError):
        await manager.list_tasks(CLIENT_ID, status="bogus")


@pytest.mark.unit
async def test_delete_task_cancels_open_engagements(manager, store, notification_client) -> None:
    store.insert_task(task_row("t-1"))
    store.insert_engagement(
        engagement_row("eng-1", "t-1", "p-a", status="accepted", call_center_id=AGENT_ID)
    )

    deleted = await manager.delete_task("t-1", CLIENT_ID)

    assert deleted["status"] == "cancelled"
    assert deleted["deleted_at"] is not None
    assert store.get_engagement("eng-1")["status"] == "cancelled"
    notified = {call.args[0] for call in notification_client.notify.await_args_list}
    assert notified == {PROVIDER_A_USER, AGENT_ID}
    assert await manager.list_tasks(CLIENT_ID) == []

    again = await manager.delete_task("t-1", CLIENT_ID)
    assert again["deleted_at"] == deleted["deleted_at"]


@pytest.mark.unit
async def test_delete_task_rules(manager, store) -> None:
    store.insert_task(task_row("t-1"))
    store.insert_task(task_row("t-2", status="in_progress"))

    with pytest.raises(AuthorizationError):
        await manager.delete_task("t-1", OTHER_CLIENT_ID)
    with pytest.raises(AuthorizationError):
        await manager.delete_task("t-1", AGENT_ID)
    with pytest.raises(GuardViolation) as exc_info:
        await manager.delete_task("t-2", CLIENT_ID)
    assert exc_info.value.error == "TASK_NOT_OPEN"

    deleted = await manager.delete_task("t-1", ADMIN_ID)
    assert deleted["status"] == "cancelled"


@pytest.mark.unit
async def test_list_matches(manager, store) -> None:
    store.insert_task(task_row("t-1"))

    matches = await manager.list_matches("t-1", CLIENT_ID)

    assert matches["radius_km"] == 6.0
    assert [candidate["provider_id"] for candidate in matches["candidates"]] == ["p-a"]
    assert (await manager.list_matches("t-1", AGENT_ID))["task_id"] == "t-1"
    with pytest.raises(AuthorizationError):
        await manager.list_matches("t-1", OTHER_CLIENT_ID)
    with pytest.raises(AuthorizationError):
        await manager.list_matches("t-1", PROVIDER_A_USER)


@pytest.mark.unit
def test_get_stats(manager, store) -> None:
    store.insert_task(task_row("t-1"))

    stats = manager.get_stats()

    assert stats["tasks"] == {"open": 1}
    assert stats["providers"] == {"verified": 1, "pending": 1}
    assert stats["engagements"] == {}
    assert stats["payments"] == {}
