"""User model for identity-linked accounts, roles and approval state."""
from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wallet.core.constants import Role, UserStatus
from wallet.models.base import Base, TimestampMixin


class User(TimestampMixin, Base):
    """A user as linked from the identity provider.

    ``is_admin`` mirrors ``role`` for older readers; both are always written
    together.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[str | None] = mapped_column(String(20), nullable=True, default=Role.USER.value)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserStatus.APPROVED.value
    )
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Rely on DB-level ON DELETE CASCADE for grants in both directions.
    granted_permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        foreign_keys="Permission.granted_user_id",
        back_populates="granted_user",
        passive_deletes="all",
    )
    owned_permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        foreign_keys="Permission.owner_user_id",
        back_populates="owner_user",
        passive_deletes="all",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"
