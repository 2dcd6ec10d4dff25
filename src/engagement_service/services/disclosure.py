"""Field-level visibility of counterparty data for an engagement."""

from __future__ import annotations

from typing import Any

from engagement_service.services.lifecycle import EngagementStatus, Role

CLIENT_NAME = "client.name"
CLIENT_EMAIL = "client.email"
CLIENT_PHONE = "client.phone"
CLIENT_ADDRESS = "client.address"
TASK_LOCATION = "task.location"
PROVIDER_NAME = "provider.name"
PROVIDER_CATEGORY = "provider.category"
PROVIDER_RATE = "provider.rate"
PROVIDER_RATING = "provider.rating"
PROVIDER_EMAIL = "provider.email"
PROVIDER_PHONE = "provider.phone"

CLIENT_PRIVATE_FIELDS = frozenset({CLIENT_EMAIL, CLIENT_PHONE, CLIENT_ADDRESS, TASK_LOCATION})
PROVIDER_PUBLIC_FIELDS = frozenset(
    {PROVIDER_NAME, PROVIDER_CATEGORY, PROVIDER_RATE, PROVIDER_RATING}
)
PROVIDER_CONTACT_FIELDS = frozenset({PROVIDER_EMAIL, PROVIDER_PHONE})

DISCLOSED_STATUSES = frozenset(
    {EngagementStatus.APPROVED, EngagementStatus.IN_PROGRESS, EngagementStatus.COMPLETED}
)

_STAFF_UNDISCLOSED = PROVIDER_PUBLIC_FIELDS | PROVIDER_CONTACT_FIELDS | {CLIENT_NAME}
_STAFF_DISCLOSED = _STAFF_UNDISCLOSED | CLIENT_PRIVATE_FIELDS

_UNDISCLOSED_MASKS: dict[str, frozenset[str]] = {
    Role.SERVICE_PROVIDER: frozenset(),
    Role.CLIENT: PROVIDER_PUBLIC_FIELDS,
    Role.CALL_CENTER: _STAFF_UNDISCLOSED,
    Role.ADMIN: _STAFF_UNDISCLOSED,
}

_DISCLOSED_MASKS: dict[str, frozenset[str]] = {
    Role.SERVICE_PROVIDER: CLIENT_PRIVATE_FIELDS | {CLIENT_NAME},
    Role.CLIENT: PROVIDER_PUBLIC_FIELDS | PROVIDER_CONTACT_FIELDS,
    Role.CALL_CENTER: _STAFF_DISCLOSED,
    Role.ADMIN: _STAFF_DISCLOSED,
}


def visible_fields(status: str, viewer_role: str) -> frozenset[str]:
    """
    Fields of the counterparty a viewer may see for an engagement in status.

    Contact and address fields open only while the engagement is approved,
    in progress, or completed. Rejected and cancelled engagements show the
    undisclosed view. Unknown roles see nothing.
    """
    masks = _DISCLOSED_MASKS if status in DISCLOSED_STATUSES else _UNDISCLOSED_MASKS
    return masks.get(viewer_role, frozenset())


def _full_name(user: dict[str, Any]) -> str:
    return f"{user.get('first_name', '')} {user.get('last_name', '')}".strip()


def render_view(
    engagement: dict[str, Any],
    task: dict[str, Any],
    client: dict[str, Any],
    provider_user: dict[str, Any],
    provider: dict[str, Any],
    viewer_role: str,
) -> dict[str, Any]:
    """Build the counterparty sections of an engagement response for a viewer."""
    mask = visible_fields(engagement["status"], viewer_role)

    client_values = {
        CLIENT_NAME: ("name", _full_name(client)),
        CLIENT_EMAIL: ("email", client.get("email")),
        CLIENT_PHONE: ("phone", client.get("phone")),
        CLIENT_ADDRESS: ("address", client.get("address")),
    }
    provider_values = {
        PROVIDER_NAME: ("name", _full_name(provider_user)),
        PROVIDER_CATEGORY: ("category_id", provider["category_id"]),
        PROVIDER_RATE: ("hourly_rate", provider["hourly_rate"]),
        PROVIDER_RATING: ("rating", provider["rating"]),
        PROVIDER_EMAIL: ("email", provider_user.get("email")),
        PROVIDER_PHONE: ("phone", provider_user.get("phone")),
    }

    task_view: dict[str, Any] = {
        "task_id": task["task_id"],
        "title": task["title"],
        "description": task["description"],
        "category_id": task["category_id"],
        "budget": task["budget"],
        "status": task["status"],
    }
    if TASK_LOCATION in mask:
        task_view["latitude"] = task["latitude"]
        task_view["longitude"] = task["longitude"]
        task_view["address"] = task["address"]

    return {
        "task": task_view,
        "client": {key: value for field, (key, value) in client_values.items() if field in mask},
        "provider": {
            key: value for field, (key, value) in provider_values.items() if field in mask
        },
        "contact_disclosed": engagement["status"] in DISCLOSED_STATUSES,
    }
