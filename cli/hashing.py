"""Content fingerprints used to detect local edits."""

from __future__ import annotations

import hashlib
from pathlib import Path


def hash_content(content: str) -> str:
    """Compute the SHA-256 hex digest of text content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def read_text(path: Path) -> str:
    """Read UTF-8 text without newline translation."""
    with path.open(encoding="utf-8", newline="") as fh:
        return fh.read()


def write_text(path: Path, content: str) -> None:
    """Write UTF-8 text without newline translation."""
    with path.open("w", encoding="utf-8", newline="") as fh:
        fh.write(content)


def hash_file(path: Path) -> str:
    """Read a file as UTF-8 text and hash it."""
    return hash_content(read_text(path))
