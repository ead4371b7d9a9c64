"""YNAB credentials and the per-user mirror of the YNAB category taxonomy."""
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from wallet.core.constants import DEFAULT_SYNC_FREQUENCY_MINUTES
from wallet.models.base import Base, TimestampMixin, utcnow


class YnabConfig(TimestampMixin, Base):
    """Per-user YNAB configuration with AES-GCM wrapped credentials."""

    __tablename__ = "ynab_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    encrypted_api_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    encrypted_budget_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    encrypted_account_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_frequency: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_SYNC_FREQUENCY_MINUTES, nullable=False
    )
    # Cleared when YNAB rejects the token
    has_credentials: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<YnabConfig(user_id={self.user_id}, has_credentials={self.has_credentials})>"


class UserYnabSettings(Base):
    """Legacy flat YNAB settings; still the primary source while ynab_config is empty."""

    __tablename__ = "user_ynab_settings"

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    token: Mapped[str | None] = mapped_column(Text, nullable=True)
    budget_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_synced: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class YnabCategoryGroup(Base):
    __tablename__ = "ynab_category_groups"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class YnabCategory(Base):
    __tablename__ = "ynab_categories"
    __table_args__ = (
        ForeignKeyConstraint(
            ["group_id", "user_id"],
            ["ynab_category_groups.id", "ynab_category_groups.user_id"],
            ondelete="CASCADE",
        ),
    )

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    group_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
