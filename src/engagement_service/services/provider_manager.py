"""Provider profiles and verification documents."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from engagement_service.core.exceptions import (
    AuthorizationError,
    ConflictError,
    GuardViolation,
    NotFoundError,
    ValidationError,
)
from engagement_service.logging import get_logger
from engagement_service.services.engagement_store import DuplicateProviderError
from engagement_service.services.geo_matcher import approximate_distance
from engagement_service.services.lifecycle import (
    DocumentStatus,
    DocumentType,
    Role,
    VerificationStatus,
    new_id,
    now_iso,
)
from engagement_service.services.task_manager import validate_coordinates

if TYPE_CHECKING:
    from engagement_service.services.actor_resolver import ActorResolver
    from engagement_service.services.engagement_store import EngagementStore
    from engagement_service.services.geo_matcher import GeoMatcher
    from engagement_service.services.notification_dispatcher import NotificationDispatcher
    from engagement_service.services.verification_gate import VerificationGate

_VERIFIER_ROLES = (Role.SERVICE_VERIFIER, Role.ADMIN)

_REVIEW_TARGETS = {
    "approve": DocumentStatus.APPROVED,
    "reject": DocumentStatus.REJECTED,
    "under_review": DocumentStatus.UNDER_REVIEW,
}

# Approved and rejected are final for a document; resubmission is a new upload.
_DOCUMENT_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset(
        {DocumentStatus.UNDER_REVIEW, DocumentStatus.APPROVED, DocumentStatus.REJECTED}
    ),
    DocumentStatus.UNDER_REVIEW: frozenset({DocumentStatus.APPROVED, DocumentStatus.REJECTED}),
    DocumentStatus.APPROVED: frozenset(),
    DocumentStatus.REJECTED: frozenset(),
}

_MAX_TEXT_LENGTH = 500
_MAX_BIO_LENGTH = 2000


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _require_text(data: dict[str, Any], field_name: str) -> str:
    value = data.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Field '{field_name}' must be a non-empty string")
    if len(value) > _MAX_TEXT_LENGTH:
        raise ValidationError(
            f"Field '{field_name}' must be at most {_MAX_TEXT_LENGTH} characters"
        )
    return value


class ProviderManager:
    """
    Manages provider registration and the document verification workflow.

    Every document mutation is followed by a verification recompute, so the
    stored verification status is always current for matching and for the
    engagement guards.
    """

    def __init__(
        self,
        store: EngagementStore,
        actors: ActorResolver,
        verification_gate: VerificationGate,
        notifier: NotificationDispatcher,
        matcher: GeoMatcher,
    ) -> None:
        self._store = store
        self._actors = actors
        self._verification_gate = verification_gate
        self._matcher = matcher
        self._notifier = notifier
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _get_or_404(self, provider_id: str) -> dict[str, Any]:
        provider = self._store.get_provider(provider_id)
        if provider is None:
            raise NotFoundError("PROVIDER_NOT_FOUND", f"Provider '{provider_id}' not found")
        return provider

    def _provider_to_response(
        self,
        row: dict[str, Any],
        *,
        include_location: bool,
    ) -> dict[str, Any]:
        response = {
            "provider_id": row["provider_id"],
            "user_id": row["user_id"],
            "category_id": row["category_id"],
            "hourly_rate": row["hourly_rate"],
            "available": bool(row["available"]),
            "bio": row["bio"],
            "verification_status": row["verification_status"],
            "verified_at": row["verified_at"],
            "rating": row["rating"],
            "review_count": row["review_count"],
            "completed_jobs": row["completed_jobs"],
            "approved_document_types": self._verification_gate.get_approved_documents(
                row["provider_id"]
            ),
            "created_at": row["created_at"],
        }
        if include_location:
            response["latitude"] = row["latitude"]
            response["longitude"] = row["longitude"]
        return response

    async def _recompute(self, provider: dict[str, Any]) -> VerificationStatus:
        status, changed = self._verification_gate.recompute(provider["provider_id"], now_iso())
        if changed:
            await self._notifier.dispatch(
                provider["user_id"],
                "verification_changed",
                {"provider_id": provider["provider_id"], "verification_status": status.value},
            )
        return status

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def register_provider(self, actor_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create the provider profile for the acting service_provider user."""
        category_id = _require_text(data, "category_id")
        hourly_rate = data.get("hourly_rate")
        if not _is_positive_int(hourly_rate):
            raise ValidationError("Field 'hourly_rate' must be a positive integer")
        latitude, longitude = validate_coordinates(data.get("latitude"), data.get("longitude"))
        bio = data.get("bio")
        if bio is not None and (not isinstance(bio, str) or len(bio) > _MAX_BIO_LENGTH):
            raise ValidationError(
                f"Field 'bio' must be a string of at most {_MAX_BIO_LENGTH} characters"
            )
        available = data.get("available", True)
        if not isinstance(available, bool):
            raise ValidationError("Field 'available' must be a boolean")

        await self._actors.require(actor_id, Role.SERVICE_PROVIDER)

        provider: dict[str, Any] = {
            "provider_id": new_id("p"),
            "user_id": actor_id,
            "category_id": category_id,
            "hourly_rate": hourly_rate,
            "latitude": latitude,
            "longitude": longitude,
            "available": int(available),
            "bio": bio,
            "verification_status": VerificationStatus.UNVERIFIED.value,
            "verified_at": None,
            "rating": None,
            "review_count": 0,
            "completed_jobs": 0,
            "created_at": now_iso(),
        }
        try:
            self._store.insert_provider(provider)
        except DuplicateProviderError as exc:
            raise ConflictError(
                "User already has a provider profile", "PROVIDER_EXISTS"
            ) from exc

        self._logger.info(
            "Provider registered",
            extra={"provider_id": provider["provider_id"], "user_id": actor_id},
        )
        return self._provider_to_response(provider, include_location=True)

    async def get_provider(self, provider_id: str, actor_id: str) -> dict[str, Any]:
        """Public profile; coordinates only for the provider itself and staff."""
        actor = await self._actors.resolve(actor_id)
        provider = self._get_or_404(provider_id)
        include_location = provider["user_id"] == actor_id or actor.get("role") in (
            Role.ADMIN,
            Role.SERVICE_VERIFIER,
        )
        return self._provider_to_response(provider, include_location=include_location)

    async def search_providers(
        self,
        actor_id: str,
        category_id: object,
        latitude: float | None = None,
        longitude: float | None = None,
        radius_km: float | None = None,
    ) -> dict[str, Any]:
        """
        Discover verified, available providers of a category.

        With coordinates the results are ranked by distance from that point
        and carry only an approximate distance. Without coordinates they are
        ranked by rating. Provider coordinates are never included.
        """
        if not isinstance(category_id, str) or not category_id.strip():
            raise ValidationError("Query parameter 'category_id' is required")
        latitude, longitude = validate_coordinates(latitude, longitude)
        if radius_km is not None:
            if latitude is None:
                raise ValidationError("radius_km requires lat and lon")
            if not 0 < radius_km <= self._matcher.max_radius_km:
                raise ValidationError(
                    f"radius_km must be greater than 0 and at most {self._matcher.max_radius_km}"
                )

        await self._actors.resolve(actor_id)

        if latitude is None or longitude is None:
            rows = self._store.list_verified_providers(category_id)
            return {
                "category_id": category_id,
                "radius_km": None,
                "providers": [
                    self._provider_to_response(row, include_location=False) for row in rows
                ],
            }

        candidates, radius = self._matcher.search(category_id, latitude, longitude, radius_km)
        providers = []
        for candidate in candidates:
            row = self._get_or_404(candidate.provider_id)
            response = self._provider_to_response(row, include_location=False)
            response["approximate_distance"] = approximate_distance(candidate.distance_km)
            providers.append(response)
        return {"category_id": category_id, "radius_km": radius, "providers": providers}

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def upload_document(
        self,
        provider_id: str,
        actor_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Record a document reference uploaded by the owning provider.

        The file itself lives in external storage; only its reference is
        kept. An upload supersedes earlier documents of the same type.
        """
        document_type = data.get("document_type")
        if document_type not in set(DocumentType):
            raise ValidationError(
                "Field 'document_type' is not a known document type",
                details={"allowed": sorted(str(item) for item in DocumentType)},
            )
        storage_ref = _require_text(data, "storage_ref")
        original_name = _require_text(data, "original_name")

        await self._actors.require(actor_id, Role.SERVICE_PROVIDER)
        provider = self._get_or_404(provider_id)
        if provider["user_id"] != actor_id:
            raise AuthorizationError("Only the provider may upload its own documents")

        document: dict[str, Any] = {
            "document_id": new_id("doc"),
            "provider_id": provider_id,
            "document_type": document_type,
            "storage_ref": storage_ref,
            "original_name": original_name,
            "status": DocumentStatus.PENDING.value,
            "verifier_id": None,
            "verified_at": None,
            "notes": None,
            "uploaded_at": now_iso(),
            "superseded_by": None,
        }
        self._store.insert_document(document)
        self._logger.info(
            "Document uploaded",
            extra={
                "document_id": document["document_id"],
                "provider_id": provider_id,
                "document_type": document_type,
            },
        )
        status = await self._recompute(provider)
        return {**document, "verification_status": status.value}

    async def list_documents(self, provider_id: str, actor_id: str) -> dict[str, Any]:
        """All documents of a provider plus the approved types currently in force."""
        actor = await self._actors.resolve(actor_id)
        provider = self._get_or_404(provider_id)
        if provider["user_id"] != actor_id and actor.get("role") not in _VERIFIER_ROLES:
            raise AuthorizationError("Only the provider or a verifier may list its documents")

        return {
            "provider_id": provider_id,
            "verification_status": provider["verification_status"],
            "approved_document_types": self._verification_gate.get_approved_documents(
                provider_id
            ),
            "required_groups": self._verification_gate.required_groups,
            "documents": self._store.list_documents(provider_id),
        }

    async def list_pending_documents(self, actor_id: str) -> list[dict[str, Any]]:
        """Current documents awaiting a verifier decision."""
        await self._actors.require(actor_id, *_VERIFIER_ROLES)
        return self._store.list_pending_documents()

    async def review_document(
        self,
        document_id: str,
        actor_id: str,
        decision: str,
        notes: object = None,
    ) -> dict[str, Any]:
        """
        Record a verifier decision on a document and recompute verification.

        A decision equal to the document's current status is a no-op.
        """
        target = _REVIEW_TARGETS.get(decision)
        if target is None:
            raise ValidationError(
                "decision must be 'approve', 'reject' or 'under_review'",
                details={"decision": decision},
            )
        if notes is not None and (not isinstance(notes, str) or len(notes) > _MAX_BIO_LENGTH):
            raise ValidationError(
                f"Field 'notes' must be a string of at most {_MAX_BIO_LENGTH} characters"
            )

        await self._actors.require(actor_id, *_VERIFIER_ROLES)
        document = self._store.get_document(document_id)
        if document is None:
            raise NotFoundError("DOCUMENT_NOT_FOUND", f"Document '{document_id}' not found")

        current = DocumentStatus(document["status"])
        if current == target:
            return document
        if document["superseded_by"] is not None:
            raise GuardViolation(
                "Document has been superseded by a newer upload",
                error="DOCUMENT_SUPERSEDED",
                details={"superseded_by": document["superseded_by"]},
            )
        if target not in _DOCUMENT_TRANSITIONS[current]:
            raise GuardViolation(
                f"Document is '{current}', cannot move to '{target}'",
                details={"status": current.value},
            )

        changed = self._store.update_document(
            document_id,
            {
                "status": target.value,
                "verifier_id": actor_id,
                "verified_at": now_iso(),
                "notes": notes,
            },
            expected_statuses=(current.value,),
        )
        updated = self._store.get_document(document_id)
        if updated is None:
            msg = f"Document {document_id} vanished during review"
            raise RuntimeError(msg)
        if changed == 0:
            if updated["status"] == target:
                return updated
            raise GuardViolation(
                f"Document moved to '{updated['status']}' concurrently",
                details={"status": updated["status"]},
            )

        self._logger.info(
            "Document reviewed",
            extra={"document_id": document_id, "status": target.value, "verifier_id": actor_id},
        )
        provider = self._get_or_404(document["provider_id"])
        await self._notifier.dispatch(
            provider["user_id"],
            "document_reviewed",
            {
                "document_id": document_id,
                "document_type": document["document_type"],
                "status": target.value,
            },
        )
        status = await self._recompute(provider)
        return {**updated, "verification_status": status.value}
