"""Async HTTP client for the user directory service."""

from __future__ import annotations

from typing import Any

import httpx

from engagement_service.core.exceptions import NotFoundError, UpstreamError
from engagement_service.logging import get_logger


class UserDirectoryClient:
    """
    Client for the user directory that owns accounts, roles, and contact data.

    The engine never stores names, phone numbers, or addresses of users. It
    resolves them per request so that roles are checked on every call and
    contact data only leaves the directory through the disclosure rules.
    """

    def __init__(
        self,
        base_url: str,
        users_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._users_path = users_path.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def _get(self, path: str, params: dict[str, str] | None = None) -> httpx.Response:
        logger = get_logger(__name__)
        try:
            return await self._client.get(path, params=params)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "User directory connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise UpstreamError(
                "USER_DIRECTORY_UNAVAILABLE",
                "Cannot connect to user directory",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "User directory HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise UpstreamError(
                "USER_DIRECTORY_UNAVAILABLE",
                "User directory request failed",
            ) from exc

    async def get_user(self, user_id: str) -> dict[str, Any]:
        """
        Fetch a user record.

        Returns:
            dict with keys: user_id, role, first_name, last_name, email, phone, address

        Raises:
            NotFoundError: USER_NOT_FOUND if the directory has no such user
            UpstreamError: USER_DIRECTORY_UNAVAILABLE on connection/timeout/unexpected errors
        """
        response = await self._get(f"{self._users_path}/{user_id}")

        if response.status_code == 404:
            raise NotFoundError("USER_NOT_FOUND", f"User '{user_id}' not found")

        if response.status_code != 200:
            get_logger(__name__).warning(
                "User directory unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise UpstreamError(
                "USER_DIRECTORY_UNAVAILABLE",
                "User directory returned unexpected status",
            )

        result: dict[str, Any] = response.json()
        return result

    async def list_users(self, role: str) -> list[dict[str, Any]]:
        """List active users holding a role."""
        response = await self._get(self._users_path, params={"role": role})

        if response.status_code != 200:
            raise UpstreamError(
                "USER_DIRECTORY_UNAVAILABLE",
                "User directory returned unexpected status",
            )

        body: dict[str, Any] = response.json()
        users: list[dict[str, Any]] = body.get("users", [])
        return users

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
