"""Actor role resolution against the user directory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from engagement_service.core.exceptions import AuthorizationError, ValidationError

if TYPE_CHECKING:
    from engagement_service.clients.user_directory_client import UserDirectoryClient
    from engagement_service.services.lifecycle import Role


class ActorResolver:
    """
    Resolves an explicit actor_id into a directory user and checks its role.

    There is no ambient session: every operation names its actor and the
    role is looked up on each call, so a role change in the directory takes
    effect immediately.
    """

    def __init__(self, user_directory: UserDirectoryClient) -> None:
        self._user_directory = user_directory

    async def resolve(self, actor_id: str) -> dict[str, Any]:
        """Fetch the actor's directory record."""
        if not actor_id:
            raise ValidationError("actor_id is required", "INVALID_ACTOR")
        return await self._user_directory.get_user(actor_id)

    async def require(self, actor_id: str, *roles: Role) -> dict[str, Any]:
        """
        Fetch the actor and check that it holds one of roles.

        Raises:
            ValidationError: INVALID_ACTOR if actor_id is empty
            NotFoundError: USER_NOT_FOUND if the directory has no such user
            AuthorizationError: FORBIDDEN if the role is not allowed
        """
        actor = await self.resolve(actor_id)
        if actor.get("role") not in roles:
            raise AuthorizationError(
                f"Role '{actor.get('role')}' may not perform this operation",
                details={"allowed_roles": sorted(str(role) for role in roles)},
            )
        return actor

    async def get_user(self, user_id: str) -> dict[str, Any]:
        """Fetch any directory user (counterparties, not the caller)."""
        return await self._user_directory.get_user(user_id)

    async def list_users(self, role: Role) -> list[dict[str, Any]]:
        """List directory users holding a role."""
        return await self._user_directory.list_users(str(role))
