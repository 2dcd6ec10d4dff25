"""Task posting, lookup, cancellation, and provider matching."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from engagement_service.core.exceptions import (
    AuthorizationError,
    GuardViolation,
    NotFoundError,
    ValidationError,
)
from engagement_service.logging import get_logger
from engagement_service.services.disclosure import DISCLOSED_STATUSES
from engagement_service.services.engagement_store import CommittedTaskError
from engagement_service.services.lifecycle import (
    STAFF_ROLES,
    Role,
    TaskStatus,
    new_id,
    now_iso,
)

if TYPE_CHECKING:
    from engagement_service.services.actor_resolver import ActorResolver
    from engagement_service.services.engagement_store import EngagementStore
    from engagement_service.services.geo_matcher import GeoMatcher
    from engagement_service.services.notification_dispatcher import NotificationDispatcher

_MAX_TITLE_LENGTH = 200
_MAX_DESCRIPTION_LENGTH = 10000
_MAX_ADDRESS_LENGTH = 500


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _require_text(data: dict[str, Any], field_name: str, max_length: int) -> str:
    value = data.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Field '{field_name}' must be a non-empty string")
    if len(value) > max_length:
        raise ValidationError(f"Field '{field_name}' must be at most {max_length} characters")
    return value


def validate_coordinates(
    latitude: object,
    longitude: object,
) -> tuple[float | None, float | None]:
    """Both coordinates or neither; degrees within range."""
    if latitude is None and longitude is None:
        return None, None
    if latitude is None or longitude is None:
        raise ValidationError("latitude and longitude must be given together")
    if not _is_number(latitude) or not -90 <= cast("float", latitude) <= 90:
        raise ValidationError("latitude must be a number between -90 and 90")
    if not _is_number(longitude) or not -180 <= cast("float", longitude) <= 180:
        raise ValidationError("longitude must be a number between -180 and 180")
    return float(cast("float", latitude)), float(cast("float", longitude))


class TaskManager:
    """
    Manages tasks posted by clients.

    Posting a task triggers matching and notifies the matched providers
    with an approximate distance only. The task's exact location and
    address are withheld from providers until an engagement is approved.
    """

    def __init__(
        self,
        store: EngagementStore,
        actors: ActorResolver,
        matcher: GeoMatcher,
        notifier: NotificationDispatcher,
    ) -> None:
        self._store = store
        self._actors = actors
        self._matcher = matcher
        self._notifier = notifier
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _get_or_404(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("TASK_NOT_FOUND", f"Task '{task_id}' not found")
        return task

    @staticmethod
    def _task_to_response(row: dict[str, Any], *, include_location: bool) -> dict[str, Any]:
        response = {
            "task_id": row["task_id"],
            "client_id": row["client_id"],
            "category_id": row["category_id"],
            "title": row["title"],
            "description": row["description"],
            "budget": row["budget"],
            "status": row["status"],
            "has_location": row["latitude"] is not None,
            "created_at": row["created_at"],
            "completed_at": row["completed_at"],
            "deleted_at": row["deleted_at"],
        }
        if include_location:
            response["latitude"] = row["latitude"]
            response["longitude"] = row["longitude"]
            response["address"] = row["address"]
        return response

    def _can_see_location(self, task: dict[str, Any], actor: dict[str, Any]) -> bool:
        role = actor.get("role")
        if role in STAFF_ROLES or task["client_id"] == actor.get("user_id"):
            return True
        if role != Role.SERVICE_PROVIDER:
            return False
        provider = self._store.get_provider_by_user(str(actor.get("user_id")))
        if provider is None:
            return False
        return any(
            engagement["status"] in DISCLOSED_STATUSES
            for engagement in self._store.list_engagements(
                task_id=task["task_id"], provider_id=provider["provider_id"]
            )
        )

    # ------------------------------------------------------------------
    # Public methods, called by routers
    # ------------------------------------------------------------------

    async def create_task(self, actor_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Post a task and notify the providers matched around it."""
        title = _require_text(data, "title", _MAX_TITLE_LENGTH)
        description = _require_text(data, "description", _MAX_DESCRIPTION_LENGTH)
        category_id = _require_text(data, "category_id", _MAX_TITLE_LENGTH)
        latitude, longitude = validate_coordinates(data.get("latitude"), data.get("longitude"))

        address = data.get("address")
        if address is not None and (
            not isinstance(address, str) or len(address) > _MAX_ADDRESS_LENGTH
        ):
            raise ValidationError(
                f"Field 'address' must be a string of at most {_MAX_ADDRESS_LENGTH} characters"
            )
        budget = data.get("budget")
        if budget is not None and not _is_positive_int(budget):
            raise ValidationError("Field 'budget' must be a positive integer")

        await self._actors.require(actor_id, Role.CLIENT)

        task: dict[str, Any] = {
            "task_id": new_id("t"),
            "client_id": actor_id,
            "category_id": category_id,
            "title": title,
            "description": description,
            "latitude": latitude,
            "longitude": longitude,
            "address": address,
            "budget": budget,
            "status": TaskStatus.OPEN.value,
            "created_at": now_iso(),
            "completed_at": None,
            "deleted_at": None,
        }
        self._store.insert_task(task)
        self._logger.info(
            "Task created",
            extra={"task_id": task["task_id"], "client_id": actor_id, "category_id": category_id},
        )

        candidates, radius = self._matcher.find_candidates(task)
        for candidate in candidates:
            await self._notifier.dispatch(
                candidate.user_id,
                "task_posted",
                {
                    "task_id": task["task_id"],
                    "title": title,
                    "category_id": category_id,
                    "budget": budget,
                    "approximate_distance": candidate.to_dict()["approximate_distance"],
                    "has_address": False,
                },
            )

        return {
            **self._task_to_response(task, include_location=True),
            "matched_providers": len(candidates),
            "match_radius_km": radius,
        }

    async def get_task(self, task_id: str, actor_id: str) -> dict[str, Any]:
        """Fetch a task; location only for the owner, staff, or an approved provider."""
        actor = await self._actors.resolve(actor_id)
        task = self._get_or_404(task_id)
        return self._task_to_response(
            task, include_location=self._can_see_location(task, actor)
        )

    async def list_tasks(
        self,
        actor_id: str,
        *,
        status: str | None = None,
        client_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """List live tasks. Locations appear only on the actor's own tasks or for staff."""
        if status is not None and status not in set(TaskStatus):
            raise ValidationError(f"Unknown task status '{status}'")
        actor = await self._actors.resolve(actor_id)
        is_staff = actor.get("role") in STAFF_ROLES
        rows = self._store.list_tasks(status, client_id, limit, offset)
        return [
            self._task_to_response(
                row, include_location=is_staff or row["client_id"] == actor_id
            )
            for row in rows
        ]

    async def delete_task(self, task_id: str, actor_id: str) -> dict[str, Any]:
        """
        Withdraw an open task.

        Soft-deletes the task and cancels its pending and accepted
        engagements. A task already committed to a provider cannot be
        withdrawn; the client cancels the engagement instead.
        """
        actor = await self._actors.require(actor_id, Role.CLIENT, Role.ADMIN)
        task = self._get_or_404(task_id)
        if actor["role"] == Role.CLIENT and task["client_id"] != actor_id:
            raise AuthorizationError("Only the task's client may withdraw it")
        if task["deleted_at"] is not None:
            return self._task_to_response(task, include_location=True)

        try:
            cancelled = self._store.cancel_task(task_id, now_iso())
        except CommittedTaskError as exc:
            raise GuardViolation(
                f"Task is '{task['status']}', only open tasks can be withdrawn",
                error="TASK_NOT_OPEN",
            ) from exc

        self._logger.info(
            "Task withdrawn",
            extra={"task_id": task_id, "cancelled_engagements": len(cancelled)},
        )
        for engagement in cancelled:
            provider = self._store.get_provider(engagement["provider_id"])
            payload = {
                "engagement_id": engagement["engagement_id"],
                "task_id": task_id,
                "status": "cancelled",
            }
            if provider is not None:
                await self._notifier.dispatch(
                    provider["user_id"], "engagement_cancelled", payload
                )
            await self._notifier.dispatch(
                engagement["call_center_id"], "engagement_cancelled", payload
            )
        return self._task_to_response(self._get_or_404(task_id), include_location=True)

    async def list_matches(self, task_id: str, actor_id: str) -> dict[str, Any]:
        """Current provider matches for a task (owner, call center, admin)."""
        actor = await self._actors.require(actor_id, Role.CLIENT, *STAFF_ROLES)
        task = self._get_or_404(task_id)
        if actor["role"] == Role.CLIENT and task["client_id"] != actor_id:
            raise AuthorizationError("Only the task's client may view its matches")

        candidates, radius = self._matcher.find_candidates(task)
        return {
            "task_id": task_id,
            "radius_km": radius,
            "candidates": [candidate.to_dict() for candidate in candidates],
        }

    def get_stats(self) -> dict[str, dict[str, int]]:
        """Entity counts grouped by status (for the health endpoint)."""
        return {
            "tasks": self._store.count_tasks_by_status(),
            "providers": self._store.count_providers_by_status(),
            "engagements": self._store.count_engagements_by_status(),
            "payments": self._store.count_payments_by_status(),
        }
