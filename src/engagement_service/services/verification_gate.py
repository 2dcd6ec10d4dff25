"""Provider verification derived from document decisions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from engagement_service.logging import get_logger
from engagement_service.services.lifecycle import DocumentStatus, VerificationStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from engagement_service.services.engagement_store import EngagementStore

_RESOLVED = frozenset({DocumentStatus.APPROVED, DocumentStatus.REJECTED})
_IN_REVIEW = frozenset({DocumentStatus.PENDING, DocumentStatus.UNDER_REVIEW})


def is_fully_verified(
    approved_types: Iterable[str],
    required_groups: Mapping[str, Iterable[str]],
) -> bool:
    """True iff every required group has at least one approved document type."""
    approved = set(approved_types)
    return all(approved.intersection(group) for group in required_groups.values())


def approved_document_types(documents: Iterable[dict[str, Any]]) -> set[str]:
    """
    Document types whose latest resolved decision is an approval.

    Documents must be ordered oldest first. A pending resubmission leaves
    the previous decision in force; a rejected resubmission revokes it.
    """
    latest: dict[str, str] = {}
    for document in documents:
        if document["status"] in _RESOLVED:
            latest[document["document_type"]] = document["status"]
    return {doc_type for doc_type, status in latest.items() if status == DocumentStatus.APPROVED}


def derive_status(
    documents: list[dict[str, Any]],
    required_groups: Mapping[str, Iterable[str]],
) -> VerificationStatus:
    """Derive a provider's verification status from its documents."""
    if is_fully_verified(approved_document_types(documents), required_groups):
        return VerificationStatus.VERIFIED

    current = [document for document in documents if document["superseded_by"] is None]
    if any(document["status"] in _IN_REVIEW for document in current):
        return VerificationStatus.PENDING
    if any(document["status"] == DocumentStatus.REJECTED for document in current):
        return VerificationStatus.REJECTED
    return VerificationStatus.UNVERIFIED


class VerificationGate:
    """
    Recomputes and persists provider verification status.

    Called after every document mutation so that matching and notification
    targeting can filter on the stored status without re-deriving it.
    """

    def __init__(
        self,
        store: EngagementStore,
        required_groups: Mapping[str, Iterable[str]],
    ) -> None:
        self._store = store
        self._required_groups = {name: list(types) for name, types in required_groups.items()}
        self._logger = get_logger(__name__)

    @property
    def required_groups(self) -> dict[str, list[str]]:
        return self._required_groups

    def get_approved_documents(self, provider_id: str) -> list[str]:
        """Approved document types currently in force for a provider."""
        return sorted(approved_document_types(self._store.list_documents(provider_id)))

    def is_verified(self, provider_id: str) -> bool:
        """Derive verification directly from the documents (used at approval time)."""
        documents = self._store.list_documents(provider_id)
        return is_fully_verified(approved_document_types(documents), self._required_groups)

    def recompute(self, provider_id: str, now: str) -> tuple[VerificationStatus, bool]:
        """
        Recompute and store the provider's verification status.

        Returns the new status and whether it changed.
        """
        provider = self._store.get_provider(provider_id)
        if provider is None:
            msg = f"Provider {provider_id} not found during verification recompute"
            raise RuntimeError(msg)

        documents = self._store.list_documents(provider_id)
        new_status = derive_status(documents, self._required_groups)
        old_status = provider["verification_status"]
        if new_status == old_status:
            return new_status, False

        updates: dict[str, Any] = {"verification_status": new_status.value}
        if new_status == VerificationStatus.VERIFIED:
            updates["verified_at"] = now
        elif old_status == VerificationStatus.VERIFIED:
            updates["verified_at"] = None
        self._store.update_provider(provider_id, updates)

        log = self._logger.warning if old_status == VerificationStatus.VERIFIED else self._logger.info
        log(
            "Provider verification status changed",
            extra={"provider_id": provider_id, "from": old_status, "to": new_status.value},
        )
        return new_status, True
