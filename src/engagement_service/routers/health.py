"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from engagement_service.core.state import get_app_state
from engagement_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return counts by entity and status."""
    state = get_app_state()
    stats: dict[str, dict[str, int]] = {}
    if state.task_manager is not None:
        stats = state.task_manager.get_stats()
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        tasks_by_status=stats.get("tasks", {}),
        providers_by_status=stats.get("providers", {}),
        engagements_by_status=stats.get("engagements", {}),
        payments_by_status=stats.get("payments", {}),
    )
