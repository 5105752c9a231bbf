"""Default install locations per platform and asset type."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

INSTALL_PATHS: dict[str, dict[str, str]] = {
    "CLAUDE_CODE": {
        "SKILL": ".claude/skills",
        "COMMAND": ".claude/commands",
        "AGENT": ".claude/agents",
    },
    "CURSOR": {"*": ".cursor/rules"},
    "WINDSURF": {"*": ".windsurf/rules"},
    "AIDER": {"*": ".aider"},
    "GEMINI_CLI": {"*": "."},
    "CHATGPT": {"*": "."},
    "OTHER": {"*": "."},
}

# Reverse mapping used when discovering files on disk
DIR_TO_TYPE: dict[str, tuple[str, str]] = {
    ".claude/skills": ("CLAUDE_CODE", "SKILL"),
    ".claude/commands": ("CLAUDE_CODE", "COMMAND"),
    ".claude/agents": ("CLAUDE_CODE", "AGENT"),
    ".cursor/rules": ("CURSOR", "SKILL"),
    ".windsurf/rules": ("WINDSURF", "SKILL"),
    ".aider": ("AIDER", "SKILL"),
}


def get_default_install_subdir(platform: str, asset_type: str) -> str:
    platform_map = INSTALL_PATHS.get(platform)
    if platform_map is None:
        return "."
    return platform_map.get(asset_type) or platform_map.get("*") or "."


def _normalize(dir_path: str | Path) -> str:
    return str(dir_path).replace("\\", "/")


def infer_type_from_path(dir_path: str | Path) -> tuple[str, str] | None:
    """Infer ``(platform, asset_type)`` from a directory such as ``x/.claude/skills``."""
    normalized = _normalize(dir_path)
    for suffix, info in DIR_TO_TYPE.items():
        if normalized.endswith(suffix) or f"{suffix}/" in normalized:
            return info
    return None


def find_project_root(dir_path: str | Path) -> Path | None:
    """Return the directory that contains the platform directory, if any."""
    normalized = _normalize(dir_path)
    for suffix in DIR_TO_TYPE:
        idx = normalized.find(suffix)
        if idx > 0:
            return Path(normalized[: idx - 1] or "/")
    return None


def infer_project_name(dir_path: str | Path) -> str | None:
    root = find_project_root(dir_path)
    if root is None:
        return None
    return PurePosixPath(root.as_posix()).name or None


def get_default_local_path(
    platform: str,
    asset_type: str,
    primary_file_name: str,
    base_dir: Path | None = None,
) -> Path:
    """Where a linked asset lands when no explicit path is given."""
    subdir = get_default_install_subdir(platform, asset_type)
    base = base_dir if base_dir is not None else Path.cwd()
    return (base / subdir / primary_file_name).resolve()
