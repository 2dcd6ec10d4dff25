"""Escrow payment endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from engagement_service.core.state import get_app_state
from engagement_service.routers.validation import (
    extract_actor_id,
    extract_decision,
    query_actor_id,
    read_json_body,
)

if TYPE_CHECKING:
    from engagement_service.services.escrow_manager import EscrowManager

router = APIRouter()


def _escrow_manager() -> EscrowManager:
    state = get_app_state()
    if state.escrow_manager is None:
        msg = "EscrowManager not initialized"
        raise RuntimeError(msg)
    return state.escrow_manager


@router.get("/payments")
async def list_payments(request: Request) -> dict[str, Any]:
    """List payments visible to the actor."""
    actor_id = query_actor_id(request)
    payments = await _escrow_manager().list_payments(
        actor_id, request.query_params.get("status")
    )
    return {"payments": payments}


@router.get("/payments/{payment_id}")
async def get_payment(payment_id: str, request: Request) -> dict[str, Any]:
    """Get a payment record."""
    actor_id = query_actor_id(request)
    return await _escrow_manager().get_payment(payment_id, actor_id)


@router.post("/payments/{payment_id}/decision")
async def decide_payment(payment_id: str, request: Request) -> JSONResponse:
    """Approve or reject a pending payment."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)
    decision = extract_decision(data)

    result = await _escrow_manager().decide(payment_id, decision, data.get("notes"), actor_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/payments/{payment_id}/release")
async def release_payment(payment_id: str, request: Request) -> JSONResponse:
    """Disburse an approved payment to the provider."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    result = await _escrow_manager().release(payment_id, actor_id)
    return JSONResponse(status_code=200, content=result)
