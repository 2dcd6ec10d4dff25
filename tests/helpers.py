"""Shared test helpers: row builders and a mocked user directory."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

from engagement_service.core.exceptions import NotFoundError

# ---------------------------------------------------------------------------
# Fixed user IDs
# ---------------------------------------------------------------------------
CLIENT_ID = "u-client"
OTHER_CLIENT_ID = "u-client-other"
PROVIDER_A_USER = "u-provider-a"
PROVIDER_B_USER = "u-provider-b"
PROVIDER_C_USER = "u-provider-c"
AGENT_ID = "u-agent"
VERIFIER_ID = "u-verifier"
APPROVER_ID = "u-approver"
ADMIN_ID = "u-admin"

# Task location and provider offsets (1 degree of latitude ~ 111.195 km)
TASK_LAT = 40.7128
TASK_LON = -74.0060
KM_PER_DEGREE_LAT = 111.195

REQUIRED_GROUPS: dict[str, list[str]] = {
    "identity": ["identity", "government_id", "drivers_license", "passport"],
    "banking": ["banking_details"],
    "professional": ["license", "certificate"],
}


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def lat_north_of(km: float, lat: float = TASK_LAT) -> float:
    """Latitude km kilometres due north of lat."""
    return lat + km / KM_PER_DEGREE_LAT


# ---------------------------------------------------------------------------
# User directory
# ---------------------------------------------------------------------------
def make_user(user_id: str, role: str, first_name: str, last_name: str) -> dict[str, Any]:
    """Directory record with contact data."""
    return {
        "user_id": user_id,
        "role": role,
        "first_name": first_name,
        "last_name": last_name,
        "email": f"{user_id}@example.com",
        "phone": f"+1-555-01{len(user_id):02d}",
        "address": f"{len(user_id)} Main Street",
    }


def default_users() -> dict[str, dict[str, Any]]:
    return {
        CLIENT_ID: make_user(CLIENT_ID, "client", "Carla", "Client"),
        OTHER_CLIENT_ID: make_user(OTHER_CLIENT_ID, "client", "Otto", "Other"),
        PROVIDER_A_USER: make_user(PROVIDER_A_USER, "service_provider", "Ana", "Plumber"),
        PROVIDER_B_USER: make_user(PROVIDER_B_USER, "service_provider", "Ben", "Plumber"),
        PROVIDER_C_USER: make_user(PROVIDER_C_USER, "service_provider", "Cy", "Plumber"),
        AGENT_ID: make_user(AGENT_ID, "call_center", "Gina", "Agent"),
        VERIFIER_ID: make_user(VERIFIER_ID, "service_verifier", "Vic", "Verifier"),
        APPROVER_ID: make_user(APPROVER_ID, "payment_approver", "Pat", "Approver"),
        ADMIN_ID: make_user(ADMIN_ID, "admin", "Ada", "Admin"),
    }


def make_user_directory(users: dict[str, dict[str, Any]] | None = None) -> AsyncMock:
    """AsyncMock user directory backed by a dict of users."""
    records = default_users() if users is None else users

    def get_user(user_id: str) -> dict[str, Any]:
        if user_id not in records:
            raise NotFoundError("USER_NOT_FOUND", f"User '{user_id}' not found")
        return records[user_id]

    def list_users(role: str) -> list[dict[str, Any]]:
        return [user for user in records.values() if user["role"] == role]

    directory = AsyncMock()
    directory.get_user = AsyncMock(side_effect=get_user)
    directory.list_users = AsyncMock(side_effect=list_users)
    directory.close = AsyncMock()
    return directory


# ---------------------------------------------------------------------------
# Store row builders
# ---------------------------------------------------------------------------
def task_row(task_id: str, **overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "task_id": task_id,
        "client_id": CLIENT_ID,
        "category_id": "plumbing",
        "title": f"Task {task_id}",
        "description": "Fix the kitchen sink",
        "latitude": TASK_LAT,
        "longitude": TASK_LON,
        "address": "1 Private Lane",
        "budget": 10000,
        "status": "open",
        "created_at": now_iso(),
        "completed_at": None,
        "deleted_at": None,
    }
    row.update(overrides)
    return row


def provider_row(provider_id: str, user_id: str, **overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "provider_id": provider_id,
        "user_id": user_id,
        "category_id": "plumbing",
        "hourly_rate": 5000,
        "latitude": TASK_LAT,
        "longitude": TASK_LON,
        "available": 1,
        "bio": None,
        "verification_status": "verified",
        "verified_at": None,
        "rating": None,
        "review_count": 0,
        "completed_jobs": 0,
        "created_at": now_iso(),
    }
    row.update(overrides)
    return row


def document_row(
    document_id: str,
    provider_id: str,
    document_type: str,
    status: str = "pending",
    **overrides: Any,
) -> dict[str, Any]:
    row: dict[str, Any] = {
        "document_id": document_id,
        "provider_id": provider_id,
        "document_type": document_type,
        "storage_ref": f"s3://docs/{document_id}",
        "original_name": f"{document_type}.pdf",
        "status": status,
        "verifier_id": None,
        "verified_at": None,
        "notes": None,
        "uploaded_at": now_iso(),
        "superseded_by": None,
    }
    row.update(overrides)
    return row


def engagement_row(
    engagement_id: str,
    task_id: str,
    provider_id: str,
    status: str = "pending",
    **overrides: Any,
) -> dict[str, Any]:
    row: dict[str, Any] = {
        "engagement_id": engagement_id,
        "task_id": task_id,
        "provider_id": provider_id,
        "client_id": CLIENT_ID,
        "status": status,
        "message": None,
        "agreed_price": 10000,
        "call_center_id": None,
        "assigned_at": None,
        "accepted_at": None,
        "approver_id": None,
        "approved_at": None,
        "decision_notes": None,
        "rejected_at": None,
        "started_at": None,
        "completed_at": None,
        "cancelled_at": None,
        "created_at": now_iso(),
    }
    row.update(overrides)
    return row


def payment_row(payment_id: str, engagement_id: str, provider_id: str) -> dict[str, Any]:
    return {
        "payment_id": payment_id,
        "engagement_id": engagement_id,
        "client_id": CLIENT_ID,
        "provider_id": provider_id,
        "gross_amount": 10000,
        "platform_fee": 1500,
        "tax": 800,
        "payout_amount": 7700,
        "status": "pending",
        "approver_id": None,
        "approved_at": None,
        "rejected_at": None,
        "released_at": None,
        "payout_reference": None,
        "decision_notes": None,
        "created_at": now_iso(),
    }


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
def config_yaml(db_path: str, log_directory: str) -> str:
    """A complete service configuration for tests."""
    return f"""\
service:
  name: "engagement-service"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_directory}"
database:
  path: "{db_path}"
user_directory:
  base_url: "http://localhost:8001"
  users_path: "/users"
  timeout_seconds: 10
notifications:
  base_url: "http://localhost:8005"
  notify_path: "/notifications"
  timeout_seconds: 5
payouts:
  base_url: "http://localhost:8002"
  payout_path: "/payouts"
  timeout_seconds: 10
matching:
  radius_steps_km: [6.0, 10.0, 15.0]
  min_candidates: 1
verification:
  required_groups:
    identity: ["identity", "government_id", "drivers_license", "passport"]
    banking: ["banking_details"]
    professional: ["license", "certificate"]
payments:
  platform_fee_pct: 15
  tax_pct: 8
request:
  max_body_size: 1048576
"""
