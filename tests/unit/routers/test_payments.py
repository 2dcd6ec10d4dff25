"""Escrow payment endpoint tests."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from engagement_service.core.exceptions import UpstreamError
from tests.helpers import (
    AGENT_ID,
    APPROVER_ID,
    CLIENT_ID,
    OTHER_CLIENT_ID,
    PROVIDER_A_USER,
)
from tests.unit.routers.conftest import (
    create_task,
    register_verified_provider,
    sent_events,
    submit_interest,
    transition,
)


async def _completed_payment(client) -> tuple[str, str]:
    """Drive one engagement to completion. Returns (engagement_id, payment_id)."""
    await register_verified_provider(client, PROVIDER_A_USER)
    task_id = (await create_task(client)).json()["task_id"]
    engagement_id = (await submit_interest(client, PROVIDER_A_USER, task_id)).json()[
        "engagement_id"
    ]
    await transition(client, engagement_id, "decision", AGENT_ID, decision="approve")
    await transition(client, engagement_id, "start", PROVIDER_A_USER)
    completed = await transition(client, engagement_id, "complete", CLIENT_ID)
    return engagement_id, completed.json()["payment"]["payment_id"]


async def _decide(client, payment_id: str, decision: str, actor_id: str = APPROVER_ID):
    return await client.post(
        f"/payments/{payment_id}/decision", json={"actor_id": actor_id, "decision": decision}
    )


async def _release(client, payment_id: str, actor_id: str = APPROVER_ID):
    return await client.post(f"/payments/{payment_id}/release", json={"actor_id": actor_id})


@pytest.mark.unit
async def test_completion_creates_exactly_one_pending_payment(client):
    engagement_id, payment_id = await _completed_payment(client)

    listed = await client.get("/payments", params={"actor_id": APPROVER_ID})
    payments = listed.json()["payments"]
    assert [payment["payment_id"] for payment in payments] == [payment_id]
    payment = payments[0]
    assert payment["engagement_id"] == engagement_id
    assert payment["status"] == "pending"
    assert payment["gross_amount"] == 10000
    assert payment["platform_fee"] == 1500
    assert payment["tax"] == 800
    assert payment["payout_amount"] == 7700


@pytest.mark.unit
async def test_approve_and_release(client, payouts, notifications):
    _engagement_id, payment_id = await _completed_payment(client)

    approved = await _decide(client, payment_id, "approve")
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    released = await _release(client, payment_id)
    assert released.status_code == 200
    body = released.json()
    assert body["status"] == "released"
    assert body["payout_reference"].startswith("po-")
    payouts.disburse.assert_awaited_once()
    assert payouts.disburse.await_args.kwargs["amount"] == 7700
    assert (PROVIDER_A_USER, "payment_released") in sent_events(notifications)

    again = await _release(client, payment_id)
    assert again.status_code == 200
    assert payouts.disburse.await_count == 1


@pytest.mark.unit
async def test_rejected_payment_cannot_be_released(client, payouts):
    engagement_id, payment_id = await _completed_payment(client)

    rejected = await _decide(client, payment_id, "reject")
    assert rejected.json()["status"] == "rejected"

    release = await _release(client, payment_id)
    assert release.status_code == 409
    assert release.json()["error"] == "INVALID_STATUS"
    payouts.disburse.assert_not_awaited()

    engagement = await client.get(f"/engagements/{engagement_id}", params={"actor_id": AGENT_ID})
    assert engagement.json()["status"] == "completed"


@pytest.mark.unit
async def test_non_string_notes_returns_400(client):
    _engagement_id, payment_id = await _completed_payment(client)

    response = await client.post(
        f"/payments/{payment_id}/decision",
        json={"actor_id": APPROVER_ID, "decision": "approve", "notes": {"why": "ok"}},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"
    payment = await client.get(f"/payments/{payment_id}", params={"actor_id": APPROVER_ID})
    assert payment.json()["status"] == "pending"


@pytest.mark.unit
async def test_release_requires_approval(client):
    _engagement_id, payment_id = await _completed_payment(client)

    response = await _release(client, payment_id)

    assert response.status_code == 409


@pytest.mark.unit
async def test_payout_failure_returns_502_and_keeps_payment_approved(client, payouts):
    _engagement_id, payment_id = await _completed_payment(client)
    await _decide(client, payment_id, "approve")
    payouts.disburse = AsyncMock(
        side_effect=UpstreamError("PAYOUT_SERVICE_UNAVAILABLE", "Payout service down")
    )

    response = await _release(client, payment_id)

    assert response.status_code == 502
    assert response.json()["error"] == "PAYOUT_SERVICE_UNAVAILABLE"
    payment = await client.get(f"/payments/{payment_id}", params={"actor_id": APPROVER_ID})
    assert payment.json()["status"] == "approved"


@pytest.mark.unit
async def test_payment_permissions(client):
    _engagement_id, payment_id = await _completed_payment(client)

    for actor_id in (CLIENT_ID, PROVIDER_A_USER, AGENT_ID):
        response = await _decide(client, payment_id, "approve", actor_id)
        assert response.status_code == 403

    own = await client.get(f"/payments/{payment_id}", params={"actor_id": CLIENT_ID})
    assert own.status_code == 200
    other = await client.get(f"/payments/{payment_id}", params={"actor_id": OTHER_CLIENT_ID})
    assert other.status_code == 403

    missing = await client.get("/payments/pay-missing", params={"actor_id": APPROVER_ID})
    assert missing.status_code == 404
    assert missing.json()["error"] == "PAYMENT_NOT_FOUND"


@pytest.mark.unit
async def test_cancel_refused_after_release(client):
    engagement_id, payment_id = await _completed_payment(client)
    await _decide(client, payment_id, "approve")
    await _release(client, payment_id)

    response = await transition(client, engagement_id, "cancel", CLIENT_ID)

    assert response.status_code == 409
    assert response.json()["error"] == "PAYMENT_RELEASED"
