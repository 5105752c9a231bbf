"""Semantic version helpers for asset content."""

from __future__ import annotations

import re

from backend.exceptions import InvalidVersionError

_SEMVER_RE = re.compile(r"([0-9]+)\.([0-9]+)\.([0-9]+)")

INITIAL_VERSION = "1.0.0"


def bump_patch_version(version: str) -> str:
    """Return ``version`` with its patch component incremented by one.

    Only strict three-part versions are accepted (``1.2.3``); anything else
    raises ``InvalidVersionError`` so no mutation happens on corrupt data.
    """
    match = _SEMVER_RE.fullmatch(version)
    if match is None:
        raise InvalidVersionError(f"Invalid semver: {version}")
    major, minor, patch = match.groups()
    return f"{major}.{minor}.{int(patch) + 1}"
