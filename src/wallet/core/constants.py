"""Roles, resource kinds, permission kinds and secret markers shared across the app."""

from enum import Enum


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class UserStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ResourceType(str, Enum):
    TRANSACTIONS = "transactions"
    CATEGORIES = "categories"
    REPORTS = "reports"
    USERS = "users"
    ALL = "all"


class PermissionType(str, Enum):
    READ = "read"
    WRITE = "write"
    ALL = "all"


class SecretKind(str, Enum):
    """Kinds of per-user secrets; the value doubles as the env variable stem."""

    YNAB_TOKEN = "ynab_token"
    YNAB_BUDGET_ID = "ynab_budget_id"
    YNAB_ACCOUNT_ID = "ynab_account_id"


# Higher numbers carry more privileges
ROLE_LEVELS: dict[str, int] = {
    Role.USER.value: 1,
    Role.ADMIN.value: 2,
    Role.SUPERADMIN.value: 3,
}

ADMIN_ROLES = frozenset({Role.ADMIN.value, Role.SUPERADMIN.value})

# Grants may only be issued for these permission kinds
GRANTABLE_PERMISSIONS = frozenset({PermissionType.READ.value, PermissionType.WRITE.value})

ENCRYPTED_PREFIX = "enc:"
ENVIRONMENT_MARKER = "[stored in environment variables]"

SYNCED_CATEGORY_DESCRIPTION = "Synced from YNAB"
INTERNAL_GROUP_PREFIX = "internal:"

CATEGORY_COLORS = (
    "#FF6B6B",
    "#4ECDC4",
    "#45B7D1",
    "#96CEB4",
    "#FFEEAD",
    "#D4A5A5",
    "#9B59B6",
    "#3498DB",
    "#1ABC9C",
    "#F1C40F",
)

DEFAULT_SYNC_FREQUENCY_MINUTES = 60
MASKED_TOKEN = "********"
