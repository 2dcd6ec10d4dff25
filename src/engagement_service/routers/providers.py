"""Provider profile and document endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from engagement_service.core.state import get_app_state
from engagement_service.routers.validation import (
    extract_actor_id,
    extract_decision,
    parse_float_query,
    query_actor_id,
    read_json_body,
)

if TYPE_CHECKING:
    from engagement_service.services.provider_manager import ProviderManager

router = APIRouter()


def _provider_manager() -> ProviderManager:
    state = get_app_state()
    if state.provider_manager is None:
        msg = "ProviderManager not initialized"
        raise RuntimeError(msg)
    return state.provider_manager


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


@router.post("/providers", status_code=201)
async def register_provider(request: Request) -> JSONResponse:
    """Register the acting user as a provider."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    result = await _provider_manager().register_provider(actor_id, data)
    return JSONResponse(status_code=201, content=result)


@router.get("/providers")
async def search_providers(request: Request) -> dict[str, Any]:
    """Discover verified providers of a category, optionally near a point."""
    actor_id = query_actor_id(request)
    return await _provider_manager().search_providers(
        actor_id,
        request.query_params.get("category_id"),
        latitude=parse_float_query(request, "lat"),
        longitude=parse_float_query(request, "lon"),
        radius_km=parse_float_query(request, "radius_km"),
    )


@router.get("/providers/{provider_id}")
async def get_provider(provider_id: str, request: Request) -> dict[str, Any]:
    """Get a provider profile."""
    actor_id = query_actor_id(request)
    return await _provider_manager().get_provider(provider_id, actor_id)


@router.get("/providers/{provider_id}/documents")
async def list_documents(provider_id: str, request: Request) -> dict[str, Any]:
    """List a provider's documents and approved types."""
    actor_id = query_actor_id(request)
    return await _provider_manager().list_documents(provider_id, actor_id)


@router.post("/providers/{provider_id}/documents", status_code=201)
async def upload_document(provider_id: str, request: Request) -> JSONResponse:
    """Record an uploaded verification document."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)

    result = await _provider_manager().upload_document(provider_id, actor_id, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# Document review (MUST register /documents/pending before /documents/{id})
# ---------------------------------------------------------------------------


@router.get("/documents/pending")
async def list_pending_documents(request: Request) -> dict[str, Any]:
    """List documents awaiting a verifier decision."""
    actor_id = query_actor_id(request)
    documents = await _provider_manager().list_pending_documents(actor_id)
    return {"documents": documents}


@router.post("/documents/{document_id}/review")
async def review_document(document_id: str, request: Request) -> JSONResponse:
    """Approve, reject, or mark a document under review."""
    data = await read_json_body(request)
    actor_id = extract_actor_id(data)
    decision = extract_decision(data)

    result = await _provider_manager().review_document(
        document_id, actor_id, decision, data.get("notes")
    )
    return JSONResponse(status_code=200, content=result)
