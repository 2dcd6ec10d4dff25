"""Shared request validation helpers for the routers."""

from __future__ import annotations

import json
import math
from typing import TYPE_CHECKING, Any

from engagement_service.core.exceptions import ValidationError

if TYPE_CHECKING:
    from fastapi import Request


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ValidationError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body is not valid JSON", "INVALID_JSON") from exc

    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", "INVALID_JSON")

    return data


async def read_json_body(request: Request) -> dict[str, Any]:
    """Read and parse the request body; an empty body is an empty object."""
    body = await request.body()
    return {} if body == b"" else parse_json_body(body)


def extract_actor_id(data: dict[str, Any]) -> str:
    """Extract and validate the actor_id field from a parsed JSON body."""
    value = data.get("actor_id")
    if value is None:
        raise ValidationError("Missing required field: actor_id", "INVALID_ACTOR")
    if not isinstance(value, str) or not value:
        raise ValidationError("Field 'actor_id' must be a non-empty string", "INVALID_ACTOR")
    return value


def query_actor_id(request: Request) -> str:
    """Extract the actor_id query parameter of a read request."""
    value = request.query_params.get("actor_id")
    if not value:
        raise ValidationError("Missing required query parameter: actor_id", "INVALID_ACTOR")
    return value


def extract_decision(data: dict[str, Any]) -> str:
    """Extract the decision field from a parsed JSON body."""
    value = data.get("decision")
    if not isinstance(value, str) or not value:
        raise ValidationError("Field 'decision' must be a non-empty string")
    return value


def parse_int_query(request: Request, name: str, minimum: int) -> int | None:
    """Parse an optional integer query parameter with a lower bound."""
    raw = request.query_params.get(name)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer") from exc
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    return value


def parse_float_query(request: Request, name: str) -> float | None:
    """Parse an optional finite float query parameter."""
    raw = request.query_params.get(name)
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number") from exc
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number")
    return value
