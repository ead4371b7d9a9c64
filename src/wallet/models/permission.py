"""Permission grant linking a granted user to an owner's resource kind."""
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wallet.models.base import Base, utcnow


class Permission(Base):
    """An explicit grant, optionally expiring.

    Expired rows stay in storage; queries filter them out.
    """

    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint(
            "granted_user_id",
            "owner_user_id",
            "resource_type",
            "permission_type",
            name="uq_permissions_grant",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    granted_user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    owner_user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    permission_type: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    granted_user: Mapped["User"] = relationship(
        "User", foreign_keys=[granted_user_id], back_populates="granted_permissions"
    )
    owner_user: Mapped["User"] = relationship(
        "User", foreign_keys=[owner_user_id], back_populates="owned_permissions"
    )

    def __repr__(self) -> str:
        return (
            f"<Permission(granted={self.granted_user_id}, owner={self.owner_user_id}, "
            f"{self.resource_type}:{self.permission_type})>"
        )
