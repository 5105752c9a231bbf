"""Tests for patch version bumping."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from backend.exceptions import InvalidVersionError
from backend.services.version_service import INITIAL_VERSION, bump_patch_version


class TestBumpPatchVersion:
    @pytest.mark.parametrize(
        ("version", "expected"),
        [
            ("1.0.0", "1.0.1"),
            ("2.3.9", "2.3.10"),
            ("0.0.0", "0.0.1"),
            ("10.20.99", "10.20.100"),
        ],
    )
    def test_increments_patch(self, version: str, expected: str) -> None:
        assert bump_patch_version(version) == expected

    @pytest.mark.parametrize(
        "version",
        [
            "",
            "1.0",
            "1",
            "1.0.0.0",
            "v1.0.0",
            "1.0.0-beta",
            "a.b.c",
            " 1.0.0",
            "1.0.0 ",
            "1.0.0\n",
            "1.0.\u0663",
        ],
    )
    def test_rejects_malformed_versions(self, version: str) -> None:
        with pytest.raises(InvalidVersionError, match="Invalid semver"):
            bump_patch_version(version)

    def test_invalid_version_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            bump_patch_version("latest")

    def test_initial_version_is_bumpable(self) -> None:
        assert bump_patch_version(INITIAL_VERSION) == "1.0.1"


@given(
    major=st.integers(min_value=0, max_value=10_000),
    minor=st.integers(min_value=0, max_value=10_000),
    patch=st.integers(min_value=0, max_value=10_000),
)
def test_bump_only_touches_patch(major: int, minor: int, patch: int) -> None:
    bumped = bump_patch_version(f"{major}.{minor}.{patch}")
    assert bumped == f"{major}.{minor}.{patch + 1}"


@given(patch=st.integers(min_value=0, max_value=500), steps=st.integers(min_value=1, max_value=20))
def test_repeated_bumps_strictly_increase(patch: int, steps: int) -> None:
    version = f"1.2.{patch}"
    seen = [patch]
    for _ in range(steps):
        version = bump_patch_version(version)
        seen.append(int(version.rsplit(".", 1)[1]))
    assert seen == sorted(set(seen))
    assert seen[-1] == patch + steps
