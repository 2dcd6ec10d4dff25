"""Engagement lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from engagement_service.core.exceptions import ServiceError, ValidationError
from engagement_service.core.state import get_app_state
from engagement_service.routers.validation import (
    extract_actor_id,
    extract_decision,
    query_actor_id,
    read_json_body,
)

if TYPE_CHECKING:
    from engagement_service.services.engagement_manager import EngagementManager

router = APIRouter()


def _engagement_manager() -> EngagementManager:
    state = get_app_state()
    if state.engagement_manager is None:
        msg = "EngagementManager not initialized"
        raise RuntimeError(msg)
    return state.engagement_manager


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/engagements")
async def list_engagements(request: Request) -> dict[str, Any]:
    """List engagements visible to the actor."""
    actor_id = query_actor_id(request)
    assigned = request.query_params.get("assigned")
    if assigned not in (None, "me"):
        raise ValidationError("Query parameter 'assigned' only accepts 'me'")
    engagements = await _engagement_manager().list_engagements(
        actor_id,
        task_id=request.query_params.get("task_id"),
        status=request.query_params.get("status"),
        assigned_to_me=assigned == "me",
    )
    return {"engagements": engagements}


@router.get("/engagements/{engagement_id}")
async def get_engagement(engagement_id: str, request: Request) -> dict[str, Any]:
    """Get an engagement with the counterparty view for the actor."""
    actor_id = query_actor_id(request)
    return await _engagement_manager().get_engagement(engagement_id, actor_id)


# ---------------------------------------------------------------------------
# Client transitions
# ---------------------------------------------------------------------------


@router.post("/engagements/{engagement_id}/accept")
async def accept_interest(engagement_id: str, request: Request) -> JSONResponse:
    """Client shortlists the interest."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    result = await _engagement_manager().accept_interest(engagement_id, actor_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/engagements/{engagement_id}/decline")
async def decline_interest(engagement_id: str, request: Request) -> JSONResponse:
    """Client declines the interest."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    result = await _engagement_manager().decline_interest(
        engagement_id, actor_id, data.get("notes")
    )
    return JSONResponse(status_code=200, content=result)


@router.post("/engagements/{engagement_id}/cancel")
async def cancel_engagement(engagement_id: str, request: Request) -> JSONResponse:
    """Client cancels a non-terminal engagement."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    result = await _engagement_manager().cancel(engagement_id, actor_id, data.get("reason"))
    return JSONResponse(status_code=200, content=result)


@router.post("/engagements/{engagement_id}/review", status_code=201)
async def submit_review(engagement_id: str, request: Request) -> JSONResponse:
    """Client reviews a completed engagement."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    result = await _engagement_manager().submit_review(
        engagement_id, actor_id, data.get("rating"), data.get("comment")
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# Call-center decision
# ---------------------------------------------------------------------------


@router.post("/engagements/{engagement_id}/decision")
async def decide_engagement(engagement_id: str, request: Request) -> JSONResponse:
    """Call center approves (unlocking contact details) or rejects."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)
    decision = extract_decision(data)

    result = await _engagement_manager().decide(
        engagement_id, decision, data.get("notes"), actor_id
    )
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@router.post("/engagements/{engagement_id}/start")
async def start_engagement(engagement_id: str, request: Request) -> JSONResponse:
    """Provider starts work."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    result = await _engagement_manager().start(engagement_id, actor_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/engagements/{engagement_id}/complete")
async def complete_engagement(engagement_id: str, request: Request) -> JSONResponse:
    """Client or provider marks work completed; opens the payment record."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    result = await _engagement_manager().complete(engagement_id, actor_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Method-not-allowed for transition endpoints
# ---------------------------------------------------------------------------


@router.api_route(
    "/engagements/{engagement_id}/{action}",
    methods=["GET", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def engagement_action_method_not_allowed(engagement_id: str, action: str) -> None:
    """Transitions are POST only."""
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405)
