"""Task endpoints: posting, lookup, withdrawal, matching, and interest."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from engagement_service.core.state import get_app_state
from engagement_service.routers.validation import (
    extract_actor_id,
    parse_int_query,
    query_actor_id,
    read_json_body,
)

if TYPE_CHECKING:
    from engagement_service.services.engagement_manager import EngagementManager
    from engagement_service.services.task_manager import TaskManager

router = APIRouter()


def _task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


def _engagement_manager() -> EngagementManager:
    state = get_app_state()
    if state.engagement_manager is None:
        msg = "EngagementManager not initialized"
        raise RuntimeError(msg)
    return state.engagement_manager


# ---------------------------------------------------------------------------
# POST /tasks: create task
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Post a task and notify matched providers."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    result = await _task_manager().create_task(actor_id, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks: list tasks
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List live tasks with optional filters."""
    actor_id = query_actor_id(request)
    tasks = await _task_manager().list_tasks(
        actor_id,
        status=request.query_params.get("status"),
        client_id=request.query_params.get("client_id"),
        limit=parse_int_query(request, "limit", 1),
        offset=parse_int_query(request, "offset", 0),
    )
    return {"tasks": tasks}


# ---------------------------------------------------------------------------
# Matching and interest
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}/matches")
async def list_matches(task_id: str, request: Request) -> dict[str, Any]:
    """List verified providers in range of the task."""
    actor_id = query_actor_id(request)
    return await _task_manager().list_matches(task_id, actor_id)


@router.post("/tasks/{task_id}/interest")
async def submit_interest(task_id: str, request: Request) -> JSONResponse:
    """Express a provider's interest; a retry returns the existing engagement."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    engagement, created = await _engagement_manager().submit_interest(
        task_id,
        actor_id,
        message=data.get("message"),
        offer_amount=data.get("offer_amount"),
    )
    return JSONResponse(status_code=201 if created else 200, content=engagement)


# ---------------------------------------------------------------------------
# GET / DELETE /tasks/{task_id}
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, request: Request) -> dict[str, Any]:
    """Get a task; location is withheld unless the actor may see it."""
    actor_id = query_actor_id(request)
    return await _task_manager().get_task(task_id, actor_id)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, request: Request) -> dict[str, Any]:
    """Withdraw an open task and cancel its pending engagements."""
    actor_id = query_actor_id(request)
    return await _task_manager().delete_task(task_id, actor_id)
