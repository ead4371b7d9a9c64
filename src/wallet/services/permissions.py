"""Permission engine: role hierarchy, grants and access decisions.

Every decision is computed from the users and permissions tables at call
time. Nothing is cached between calls and nothing here performs network I/O.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.core.constants import (
    GRANTABLE_PERMISSIONS,
    ROLE_LEVELS,
    PermissionType,
    ResourceType,
    Role,
    UserStatus,
)
from wallet.core.exceptions import ForbiddenError, NotFoundError, StoreError, ValidationError
from wallet.models.base import utcnow
from wallet.models.permission import Permission
from wallet.repositories.permission import PermissionRepository
from wallet.repositories.user import UserRepository

logger = logging.getLogger(__name__)

RESOURCE_TYPES = frozenset(r.value for r in ResourceType)
PERMISSION_TYPES = frozenset(p.value for p in PermissionType)
USER_STATUSES = frozenset(s.value for s in UserStatus)


def is_role_at_least(role: str | None, floor: str) -> bool:
    """Compare roles on the hierarchy; unknown roles only match themselves."""
    if role not in ROLE_LEVELS or floor not in ROLE_LEVELS:
        return role == floor
    return ROLE_LEVELS[role] >= ROLE_LEVELS[floor]


def normalize_role(role: str | None) -> str:
    return role or Role.USER.value


class PermissionService:
    """Decides whether a user may act on data owned by another user."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        """
        Initialize the permission engine.

        Args:
            db: Database session used for every lookup and write
            clock: Source of "now" for grant expiry
        """
        self.db = db
        self.clock = clock
        self.users = UserRepository(db)
        self.grants = PermissionRepository(db)

    async def get_role(self, user_id: str) -> str:
        """
        Get a user's role.

        Returns:
            The stored role, or "user" when the column is null or empty

        Raises:
            NotFoundError: If the user does not exist
        """
        exists, role = await self.users.get_role(user_id)
        if not exists:
            raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
        return normalize_role(role)

    async def effective_role(self, user_id: str) -> str:
        """Role that counts for decisions; unapproved users act as plain users."""
        role = await self.get_role(user_id)
        if not await self._is_approved(user_id):
            return Role.USER.value
        return role

    async def is_admin(self, user_id: str) -> bool:
        try:
            role = await self.effective_role(user_id)
        except NotFoundError:
            return False
        return is_role_at_least(role, Role.ADMIN.value)

    async def set_role(self, actor_id: str, target_id: str, new_role: str) -> None:
        """
        Change a user's role.

        Rules:
        1. Plain users may only set their own role to "user".
        2. Only superadmins may create superadmins.
        3. Nobody may lower their own level.
        4. Admins may not modify other admins or superadmins.

        An actor who is not approved is held to the plain-user rules.

        Raises:
            ValidationError: If new_role is not a known role
            ForbiddenError: If any rule is violated
            NotFoundError: If actor or target does not exist
        """
        if new_role not in ROLE_LEVELS:
            raise ValidationError(f"Invalid role: {new_role}")

        stored_role = await self.get_role(actor_id)
        actor_role = await self.effective_role(actor_id)
        target_role = await self.get_role(target_id)

        if actor_role == Role.USER.value and (
            actor_id != target_id or new_role != Role.USER.value
        ):
            raise ForbiddenError("Insufficient permissions to change roles")

        if new_role == Role.SUPERADMIN.value and actor_role != Role.SUPERADMIN.value:
            raise ForbiddenError("Only superadmins can create other superadmins")

        if actor_id == target_id and ROLE_LEVELS[new_role] < ROLE_LEVELS.get(stored_role, 0):
            raise ForbiddenError("Cannot demote yourself")

        if actor_role == Role.ADMIN.value and actor_id != target_id and target_role in (
            Role.ADMIN.value,
            Role.SUPERADMIN.value,
        ):
            raise ForbiddenError("Admins cannot change roles of other admins or superadmins")

        try:
            await self.users.set_role(target_id, new_role)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"Failed to update user role: {exc}") from exc

        logger.info(f"User {actor_id} set role of {target_id} to {new_role}")

    async def set_status(self, actor_id: str, target_id: str, status: str) -> None:
        """Approve or reject a user; admins only."""
        if status not in USER_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        if not await self.is_admin(actor_id):
            raise ForbiddenError("Only admins can change user status")
        await self.get_role(target_id)

        try:
            await self.users.set_status(target_id, status)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"Failed to update user status: {exc}") from exc

        logger.info(f"User {actor_id} set status of {target_id} to {status}")

    async def grant(
        self,
        granter_id: str,
        grantee_id: str,
        resource_type: str,
        permission_type: str,
        expires_at: datetime | None = None,
        owner_id: str | None = None,
    ) -> Permission:
        """
        Grant access to the owner's resources.

        The owner is the granter unless an admin names another owner.
        Re-granting the same 4-tuple only replaces ``expires_at``.

        Raises:
            ValidationError: For unknown resource kinds or non-grantable permissions
            ForbiddenError: If the granter is neither an admin nor the grantee
        """
        if permission_type not in GRANTABLE_PERMISSIONS:
            raise ValidationError(f"Invalid permission type: {permission_type}")
        if resource_type not in RESOURCE_TYPES:
            raise ValidationError(f"Invalid resource type: {resource_type}")

        granter_is_admin = await self.is_admin(granter_id)
        if not granter_is_admin and granter_id != grantee_id:
            raise ForbiddenError("Insufficient permissions to grant access")

        owner = owner_id or granter_id
        if owner != granter_id and not granter_is_admin:
            raise ForbiddenError("Only admins can grant access to another user's data")

        await self.get_role(grantee_id)
        await self.get_role(owner)

        try:
            grant = await self.grants.upsert(
                grantee_id, owner, resource_type, permission_type, expires_at, self.clock()
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"Failed to grant permission: {exc}") from exc

        logger.info(
            f"User {granter_id} granted {permission_type} on {owner}/{resource_type} to {grantee_id}"
        )
        return grant

    async def revoke(
        self,
        actor_id: str,
        grantee_id: str,
        owner_id: str,
        resource_type: str,
        permission_type: str,
    ) -> None:
        """Revoke a grant; a missing row is not an error."""
        if not await self.is_admin(actor_id) and actor_id != owner_id:
            raise ForbiddenError("Insufficient permissions to revoke access")

        try:
            removed = await self.grants.remove(grantee_id, owner_id, resource_type, permission_type)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"Failed to revoke permission: {exc}") from exc

        if removed:
            logger.info(
                f"User {actor_id} revoked {permission_type} on {owner_id}/{resource_type} "
                f"from {grantee_id}"
            )

    async def list_permissions(self, actor_id: str, user_id: str | None = None) -> list[Permission]:
        """List grants held by a user; only admins may look at someone else's."""
        target = user_id or actor_id
        if target != actor_id and not await self.is_admin(actor_id):
            raise ForbiddenError("Only admins can view other users' permissions")
        return await self.grants.list_for_grantee(target)

    async def list_access_to(
        self, actor_id: str, owner_id: str | None = None, resource_type: str | None = None
    ) -> list[Permission]:
        """List who currently holds grants on an owner's data.

        Owners see grants on their own data; admins may look at any owner.
        """
        owner = owner_id or actor_id
        if owner != actor_id and not await self.is_admin(actor_id):
            raise ForbiddenError("Only admins can view access to other users' data")
        if resource_type is not None and resource_type not in RESOURCE_TYPES:
            raise ValidationError(f"Invalid resource type: {resource_type}")
        return await self.grants.list_for_owner(owner, self.clock(), resource_type)

    async def _is_approved(self, user_id: str) -> bool:
        status = await self.users.get_status(user_id)
        return status == UserStatus.APPROVED.value

    async def check(
        self, user_id: str, owner_id: str, resource_type: str, permission_type: str
    ) -> bool:
        """
        Decide whether user_id may apply permission_type to owner_id's resource.

        Owners always reach their own data. Pending, rejected and unknown users
        get nothing beyond that.
        """
        if user_id == owner_id:
            return True

        exists, role = await self.users.get_role(user_id)
        if not exists or not await self._is_approved(user_id):
            return False

        if is_role_at_least(normalize_role(role), Role.ADMIN.value):
            return True

        return await self.grants.has_active_grant(
            user_id, owner_id, resource_type, permission_type, self.clock()
        )

    async def accessible_owners(
        self, user_id: str, resource_type: str, permission_type: str
    ) -> set[str]:
        """Owner ids whose resources of this kind the user may access."""
        exists, role = await self.users.get_role(user_id)
        if not exists or not await self._is_approved(user_id):
            return {user_id}

        if is_role_at_least(normalize_role(role), Role.ADMIN.value):
            return set(await self.users.list_ids()) | {user_id}

        owners = await self.grants.owners_granting(
            user_id, resource_type, permission_type, self.clock()
        )
        owners.add(user_id)
        return owners
