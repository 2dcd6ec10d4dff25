"""API routers."""

from engagement_service.routers import engagements, health, payments, providers, tasks

__all__ = ["engagements", "health", "payments", "providers", "tasks"]
