"""Request-level authorization gateway in front of the permission engine."""

import logging

from wallet.core.exceptions import ForbiddenError
from wallet.services.permissions import PermissionService

logger = logging.getLogger(__name__)


class AuthorizationGateway:
    """Admits or denies resource access for an authenticated caller."""

    def __init__(self, permissions: PermissionService):
        self.permissions = permissions

    async def require(
        self, caller_id: str, owner_id: str, resource_type: str, permission_type: str
    ) -> None:
        """
        Ensure the caller may access owner_id's resource.

        Raises:
            ForbiddenError: If the permission engine denies the access
        """
        allowed = await self.permissions.check(caller_id, owner_id, resource_type, permission_type)
        if not allowed:
            logger.warning(
                "Access denied",
                extra={
                    "user_id": caller_id,
                    "owner_id": owner_id,
                    "resource": resource_type,
                    "permission": permission_type,
                },
            )
            raise ForbiddenError(
                f"{permission_type} access to {resource_type} of {owner_id} denied",
                details={"owner_id": owner_id, "resource": resource_type},
            )

    async def owner_filter(
        self,
        caller_id: str,
        resource_type: str,
        permission_type: str,
        requested_owner: str | None = None,
    ) -> set[str]:
        """
        Resolve the owner ids a list query may cover.

        With requested_owner the result is that single owner (after a check);
        otherwise it is every owner the caller can reach.
        """
        if requested_owner is not None:
            await self.require(caller_id, requested_owner, resource_type, permission_type)
            return {requested_owner}
        return await self.permissions.accessible_owners(caller_id, resource_type, permission_type)
