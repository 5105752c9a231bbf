"""Asset and version history models."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base
from backend.models.user import new_id

if TYPE_CHECKING:
    from backend.models.machine import MachineSyncState
    from backend.models.user import User


class StorageType(StrEnum):
    """How an asset's content is stored. Only INLINE assets take part in sync."""

    INLINE = "INLINE"
    BUNDLE = "BUNDLE"


class AssetType(StrEnum):
    SKILL = "SKILL"
    COMMAND = "COMMAND"
    AGENT = "AGENT"


class InstallScope(StrEnum):
    USER = "USER"
    PROJECT = "PROJECT"


class Platform(StrEnum):
    CLAUDE_CODE = "CLAUDE_CODE"
    GEMINI_CLI = "GEMINI_CLI"
    CHATGPT = "CHATGPT"
    CURSOR = "CURSOR"
    WINDSURF = "WINDSURF"
    AIDER = "AIDER"
    OTHER = "OTHER"


class Asset(Base):
    """Authoritative server-side state of one asset."""

    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    slug: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    author_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_type: Mapped[str] = mapped_column(String, nullable=False, default=AssetType.SKILL)
    primary_platform: Mapped[str] = mapped_column(
        String, nullable=False, default=Platform.CLAUDE_CODE
    )
    primary_file_name: Mapped[str] = mapped_column(String, nullable=False)
    install_scope: Mapped[str] = mapped_column(
        String, nullable=False, default=InstallScope.PROJECT
    )
    storage_type: Mapped[str] = mapped_column(String, nullable=False, default=StorageType.INLINE)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    bundle_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    current_version: Mapped[str] = mapped_column(String, nullable=False, default="1.0.0")
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)
    deleted_at: Mapped[str | None] = mapped_column(Text, nullable=True)

    author: Mapped[User] = relationship(back_populates="assets")
    versions: Mapped[list[AssetVersion]] = relationship(
        back_populates="asset",
        cascade="all, delete-orphan",
        order_by="AssetVersion.id",
    )
    sync_states: Mapped[list[MachineSyncState]] = relationship(
        back_populates="asset", cascade="all, delete-orphan"
    )


class AssetVersion(Base):
    """Immutable snapshot of an asset's content at a past version."""

    __tablename__ = "asset_versions"
    __table_args__ = (UniqueConstraint("asset_id", "version", name="uq_asset_version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[str] = mapped_column(
        String, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    bundle_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    changelog: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[str] = mapped_column(Text, nullable=False)

    asset: Mapped[Asset] = relationship(back_populates="versions")
