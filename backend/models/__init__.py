"""SQLAlchemy ORM models for AssetVault."""

from backend.models.asset import Asset, AssetVersion
from backend.models.base import Base
from backend.models.machine import MachineSyncState, UserMachine
from backend.models.user import ApiKey, User

__all__ = [
    "ApiKey",
    "Asset",
    "AssetVersion",
    "Base",
    "MachineSyncState",
    "User",
    "UserMachine",
]
