"""Machine registration and per-machine sync ledger models."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base
from backend.models.user import new_id

if TYPE_CHECKING:
    from backend.models.asset import Asset
    from backend.models.user import User


class UserMachine(Base):
    """A client machine registered by a user."""

    __tablename__ = "user_machines"
    __table_args__ = (
        UniqueConstraint("user_id", "machine_identifier", name="uq_machine_identifier"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    machine_identifier: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    last_sync_at: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped[User] = relationship(back_populates="machines")
    sync_states: Mapped[list[MachineSyncState]] = relationship(
        back_populates="machine", cascade="all, delete-orphan"
    )


class MachineSyncState(Base):
    """What one machine last reconciled for one asset, as seen by the server."""

    __tablename__ = "machine_sync_states"
    __table_args__ = (UniqueConstraint("machine_id", "asset_id", name="uq_machine_asset"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    machine_id: Mapped[str] = mapped_column(
        String, ForeignKey("user_machines.id", ondelete="CASCADE"), nullable=False
    )
    asset_id: Mapped[str] = mapped_column(
        String, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    synced_version: Mapped[str] = mapped_column(String, nullable=False)
    local_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    install_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_push_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_pull_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    synced_at: Mapped[str] = mapped_column(Text, nullable=False)

    machine: Mapped[UserMachine] = relationship(back_populates="sync_states")
    asset: Mapped[Asset] = relationship(back_populates="sync_states")
