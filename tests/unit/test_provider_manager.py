"""Unit tests for ProviderManager: registration and document review."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from engagement_service.core.exceptions import (
    AuthorizationError,
    ConflictError,
    GuardViolation,
    NotFoundError,
    ValidationError,
)
from engagement_service.services.actor_resolver import ActorResolver
from engagement_service.services.engagement_store import EngagementStore
from engagement_service.services.geo_matcher import GeoMatcher
from engagement_service.services.notification_dispatcher import NotificationDispatcher
from engagement_service.services.provider_manager import ProviderManager
from engagement_service.services.verification_gate import VerificationGate
from tests.helpers import (
    ADMIN_ID,
    CLIENT_ID,
    PROVIDER_A_USER,
    PROVIDER_B_USER,
    REQUIRED_GROUPS,
    TASK_LAT,
    TASK_LON,
    VERIFIER_ID,
    lat_north_of,
    make_user_directory,
    provider_row,
)


@pytest.fixture
def store(tmp_path):
    engagement_store = EngagementStore(db_path=str(tmp_path / "providers.db"))
    yield engagement_store
    engagement_store.close()


@pytest.fixture
def notification_client():
    return AsyncMock()


@pytest.fixture
def manager(store, notification_client):
    return ProviderManager(
        store=store,
        actors=ActorResolver(make_user_directory()),
        verification_gate=VerificationGate(store, REQUIRED_GROUPS),
        notifier=NotificationDispatcher(notification_client),
        matcher=GeoMatcher(store, radius_steps_km=[6.0, 10.0, 15.0], min_candidates=1),
    )


def _profile(**overrides) -> dict:
    body = {
        "category_id": "plumbing",
        "hourly_rate": 5000,
        "latitude": TASK_LAT,
        "longitude": TASK_LON,
        "bio": "Twenty years under sinks",
    }
    body.update(overrides)
    return body


def _document(document_type: str) -> dict:
    return {
        "document_type": document_type,
        "storage_ref": f"s3://docs/{document_type}",
        "original_name": f"{document_type}.pdf",
    }


async def _upload(manager, provider_id: str, document_type: str) -> dict:
    return await manager.upload_document(provider_id, PROVIDER_A_USER, _document(document_type))


@pytest.mark.unit
async def test_register_provider(manager) -> None:
    provider = await manager.register_provider(PROVIDER_A_USER, _profile())

    assert provider["provider_id"].startswith("p-")
    assert provider["user_id"] == PROVIDER_A_USER
    assert provider["verification_status"] == "unverified"
    assert provider["available"] is True
    assert provider["approved_document_types"] == []
    assert provider["latitude"] == TASK_LAT


@pytest.mark.unit
async def test_register_provider_rules(manager) -> None:
    with pytest.raises(ValidationError):
        await manager.register_provider(PROVIDER_A_USER, _profile(hourly_rate=12.5))
    with pytest.raises(ValidationError):
        await manager.register_provider(PROVIDER_A_USER, _profile(available="yes"))
    with pytest.raises(AuthorizationError):
        await manager.register_provider(CLIENT_ID, _profile())

    await manager.register_provider(PROVIDER_A_USER, _profile())
    with pytest.raises(ConflictError) as exc_info:
        await manager.register_provider(PROVIDER_A_USER, _profile())
    assert exc_info.value.error == "PROVIDER_EXISTS"


@pytest.mark.unit
async def test_provider_coordinates_visibility(manager) -> None:
    provider = await manager.register_provider(PROVIDER_A_USER, _profile())
    provider_id = provider["provider_id"]

    assert "latitude" in await manager.get_provider(provider_id, PROVIDER_A_USER)
    assert "latitude" in await manager.get_provider(provider_id, VERIFIER_ID)
    public = await manager.get_provider(provider_id, CLIENT_ID)
    assert "latitude" not in public
    assert public["category_id"] == "plumbing"

    with pytest.raises(NotFoundError):
        await manager.get_provider("p-missing", CLIENT_ID)


@pytest.mark.unit
async def test_document_review_drives_verification(manager, store, notification_client) -> None:
    provider = await manager.register_provider(PROVIDER_A_USER, _profile())
    provider_id = provider["provider_id"]

    uploaded = [
        await _upload(manager, provider_id, doc_type)
        for doc_type in ("passport", "banking_details", "certificate")
    ]
    assert uploaded[0]["verification_status"] == "pending"
    assert len(await manager.list_pending_documents(VERIFIER_ID)) == 3

    result = None
    for document in uploaded:
        result = await manager.review_document(
            document["document_id"], VERIFIER_ID, "approve", "ok"
        )
    assert result is not None
    assert result["verification_status"] == "verified"
    assert store.get_provider(provider_id)["verification_status"] == "verified"

    events = [call.args[1] for call in notification_client.notify.await_args_list]
    assert events.count("document_reviewed") == 3
    assert "verification_changed" in events

    listing = await manager.list_documents(provider_id, PROVIDER_A_USER)
    assert listing["approved_document_types"] == ["banking_details", "certificate", "passport"]
    assert listing["required_groups"] == REQUIRED_GROUPS


@pytest.mark.unit
async def test_review_is_idempotent_and_final(manager) -> None:
    provider = await manager.register_provider(PROVIDER_A_USER, _profile())
    document = await _upload(manager, provider["provider_id"], "identity")

    marked = await manager.review_document(document["document_id"], VERIFIER_ID, "under_review")
    assert marked["status"] == "under_review"

    await manager.review_document(document["document_id"], VERIFIER_ID, "reject", "blurry")
    again = await manager.review_document(document["document_id"], ADMIN_ID, "reject")
    assert again["status"] == "rejected"
    assert again["verifier_id"] == VERIFIER_ID

    with pytest.raises(GuardViolation):
        await manager.review_document(document["document_id"], VERIFIER_ID, "approve")


@pytest.mark.unit
async def test_superseded_document_cannot_be_reviewed(manager) -> None:
    provider = await manager.register_provider(PROVIDER_A_USER, _profile())
    old = await _upload(manager, provider["provider_id"], "identity")
    await _upload(manager, provider["provider_id"], "identity")

    with pytest.raises(GuardViolation) as exc_info:
        await manager.review_document(old["document_id"], VERIFIER_ID, "approve")
    assert exc_info.value.error == "DOCUMENT_SUPERSEDED"


@pytest.mark.unit
async def test_document_permissions(manager) -> None:
    provider = await manager.register_provider(PROVIDER_A_USER, _profile())
    provider_id = provider["provider_id"]
    document = await _upload(manager, provider_id, "identity")

    with pytest.raises(ValidationError):
        await manager.upload_document(provider_id, PROVIDER_A_USER, _document("selfie"))
    with pytest.raises(AuthorizationError):
        await manager.upload_document(provider_id, PROVIDER_B_USER, _document("identity"))
    with pytest.raises(AuthorizationError):
        await manager.review_document(document["document_id"], PROVIDER_A_USER, "approve")
    with pytest.raises(AuthorizationError):
        await manager.list_documents(provider_id, CLIENT_ID)
    with pytest.raises(AuthorizationError):
        await manager.list_pending_documents(CLIENT_ID)
    with pytest.raises(ValidationError):
        await manager.review_document(document["document_id"], VERIFIER_ID, "maybe")
    with pytest.raises(NotFoundError):
        await manager.review_document("doc-missing", VERIFIER_ID, "approve")


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _seed_directory_of_providers(store) -> None:
    store.insert_provider(provider_row("p-near", "u-near", latitude=lat_north_of(2), rating=4.0))
    store.insert_provider(provider_row("p-far", "u-far", latitude=lat_north_of(8), rating=5.0))
    store.insert_provider(
        provider_row(
            "p-pending", "u-pending", latitude=lat_north_of(1), verification_status="pending"
        )
    )
    store.insert_provider(provider_row("p-away", "u-away", latitude=lat_north_of(1), available=0))
    store.insert_provider(
        provider_row("p-elec", "u-elec", latitude=lat_north_of(1), category_id="electrical")
    )


@pytest.mark.unit
async def test_search_near_point_widens_from_smallest_radius(manager, store) -> None:
    _seed_directory_of_providers(store)

    result = await manager.search_providers(CLIENT_ID, "plumbing", TASK_LAT, TASK_LON)

    assert result["radius_km"] == 6.0
    assert [row["provider_id"] for row in result["providers"]] == ["p-near"]
    nearest = result["providers"][0]
    assert nearest["approximate_distance"] == "~2km away"
    assert "latitude" not in nearest
    assert "distance_km" not in nearest


@pytest.mark.unit
async def test_search_with_fixed_radius_ranks_by_distance(manager, store) -> None:
    _seed_directory_of_providers(store)

    result = await manager.search_providers(CLIENT_ID, "plumbing", TASK_LAT, TASK_LON, 10.0)

    assert result["radius_km"] == 10.0
    assert [row["provider_id"] for row in result["providers"]] == ["p-near", "p-far"]


@pytest.mark.unit
async def test_search_without_location_lists_verified_by_rating(manager, store) -> None:
    _seed_directory_of_providers(store)

    result = await manager.search_providers(CLIENT_ID, "plumbing")

    assert result["radius_km"] is None
    assert [row["provider_id"] for row in result["providers"]] == ["p-far", "p-near"]
    assert all("approximate_distance" not in row for row in result["providers"])


@pytest.mark.unit
async def test_search_validation(manager) -> None:
    with pytest.raises(ValidationError):
        await manager.search_providers(CLIENT_ID, None)
    with pytest.raises(ValidationError):
        await manager.search_providers(CLIENT_ID, "plumbing", TASK_LAT, None)
    with pytest.raises(ValidationError):
        await manager.search_providers(CLIENT_ID, "plumbing", radius_km=5.0)
    for radius in (0.0, 15.5):
        with pytest.raises(ValidationError):
            await manager.search_providers(CLIENT_ID, "plumbing", TASK_LAT, TASK_LON, radius)
    with pytest.raises(NotFoundError):
        await manager.search_providers("u-nobody", "plumbing")
