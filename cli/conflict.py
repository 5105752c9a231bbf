"""Sync action decision for a single linked asset."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum


class SyncAction(StrEnum):
    UP_TO_DATE = "up-to-date"
    PUSH = "push"
    PULL = "pull"
    CONFLICT_PUSH = "conflict-push"
    CONFLICT_PULL = "conflict-pull"


def decide_sync_action(
    local_changed: bool,
    server_changed: bool,
    local_mtime: datetime,
    server_mtime: datetime,
) -> SyncAction:
    """Map change flags and modification times to a sync action.

    When both sides changed, the newer side wins; an exact tie goes to the
    server, whose timestamp only moves on committed writes.
    """
    if not local_changed and not server_changed:
        return SyncAction.UP_TO_DATE
    if local_changed and not server_changed:
        return SyncAction.PUSH
    if not local_changed and server_changed:
        return SyncAction.PULL
    if local_mtime > server_mtime:
        return SyncAction.CONFLICT_PUSH
    return SyncAction.CONFLICT_PULL


def local_hash_changed(last_hash: str, current_hash: str) -> bool:
    """True when the file differs from the last synced hash.

    An empty ``last_hash`` means no baseline exists, so nothing counts as changed.
    """
    return last_hash != "" and current_hash != last_hash


def never_synced(last_synced_version: str) -> bool:
    return last_synced_version == ""


def server_version_changed(last_synced_version: str, current_version: str) -> bool:
    """True when the server moved past the last version this link saw."""
    return not never_synced(last_synced_version) and current_version != last_synced_version
