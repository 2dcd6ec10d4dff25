"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from engagement_service.config import get_settings
from engagement_service.core.exceptions import register_exception_handlers
from engagement_service.core.lifespan import lifespan
from engagement_service.core.middleware import RequestValidationMiddleware
from engagement_service.routers import engagements, health, payments, providers, tasks
from engagement_service.schemas import ErrorResponse

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status_code: {"model": ErrorResponse} for status_code in (400, 403, 404, 409, 502)
}


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
        responses=_ERROR_RESPONSES,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(tasks.router, tags=["Tasks"])
    app.include_router(providers.router, tags=["Providers"])
    app.include_router(engagements.router, tags=["Engagements"])
    app.include_router(payments.router, tags=["Payments"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
