"""Database models."""
from wallet.models.base import Base
from wallet.models.category import Category
from wallet.models.permission import Permission
from wallet.models.user import User
from wallet.models.ynab import UserYnabSettings, YnabCategory, YnabCategoryGroup, YnabConfig

__all__ = [
    "Base",
    "Category",
    "Permission",
    "User",
    "UserYnabSettings",
    "YnabCategory",
    "YnabCategoryGroup",
    "YnabConfig",
]
