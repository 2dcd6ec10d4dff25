"""Closed status enums and transition tables for every stateful entity."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum


class Role(StrEnum):
    """Actor roles resolved from the user directory."""

    ADMIN = "admin"
    SERVICE_VERIFIER = "service_verifier"
    CALL_CENTER = "call_center"
    SERVICE_PROVIDER = "service_provider"
    CLIENT = "client"
    PAYMENT_APPROVER = "payment_approver"


class TaskStatus(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class VerificationStatus(StrEnum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class DocumentStatus(StrEnum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentType(StrEnum):
    IDENTITY = "identity"
    GOVERNMENT_ID = "government_id"
    DRIVERS_LICENSE = "drivers_license"
    PASSPORT = "passport"
    LICENSE = "license"
    CERTIFICATE = "certificate"
    BANKING_DETAILS = "banking_details"
    OTHER = "other"


class EngagementStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RELEASED = "released"


ENGAGEMENT_TRANSITIONS: dict[EngagementStatus, frozenset[EngagementStatus]] = {
    EngagementStatus.PENDING: frozenset(
        {
            EngagementStatus.ACCEPTED,
            EngagementStatus.APPROVED,
            EngagementStatus.REJECTED,
            EngagementStatus.CANCELLED,
        }
    ),
    EngagementStatus.ACCEPTED: frozenset(
        {EngagementStatus.APPROVED, EngagementStatus.REJECTED, EngagementStatus.CANCELLED}
    ),
    EngagementStatus.APPROVED: frozenset(
        {EngagementStatus.IN_PROGRESS, EngagementStatus.CANCELLED}
    ),
    EngagementStatus.IN_PROGRESS: frozenset(
        {EngagementStatus.COMPLETED, EngagementStatus.CANCELLED}
    ),
    EngagementStatus.COMPLETED: frozenset(),
    EngagementStatus.REJECTED: frozenset(),
    EngagementStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.APPROVED, PaymentStatus.REJECTED}),
    PaymentStatus.APPROVED: frozenset({PaymentStatus.RELEASED}),
    PaymentStatus.REJECTED: frozenset(),
    PaymentStatus.RELEASED: frozenset(),
}

# Statuses that keep a (task, provider) pair occupied.
ACTIVE_ENGAGEMENT_STATUSES: frozenset[EngagementStatus] = frozenset(
    status
    for status, targets in ENGAGEMENT_TRANSITIONS.items()
    if targets
)

# Statuses that commit a task to a single provider.
COMMITTED_ENGAGEMENT_STATUSES: frozenset[EngagementStatus] = frozenset(
    {EngagementStatus.APPROVED, EngagementStatus.IN_PROGRESS, EngagementStatus.COMPLETED}
)

STAFF_ROLES: frozenset[Role] = frozenset({Role.CALL_CENTER, Role.ADMIN})


def sources_for(target: EngagementStatus) -> frozenset[EngagementStatus]:
    """Return every engagement status from which target is reachable."""
    return frozenset(
        source for source, targets in ENGAGEMENT_TRANSITIONS.items() if target in targets
    )


def payment_sources_for(target: PaymentStatus) -> frozenset[PaymentStatus]:
    """Return every payment status from which target is reachable."""
    return frozenset(
        source for source, targets in PAYMENT_TRANSITIONS.items() if target in targets
    )


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def new_id(prefix: str) -> str:
    """Generate an opaque prefixed identifier (``<prefix>-<uuid4>``)."""
    return f"{prefix}-{uuid.uuid4()}"
