"""Filesystem helpers used across :mod:`lockstep`."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from plumbum import local


def normalise_workspace_root(value: Path | str | None) -> Path:
    """Return an absolute workspace path with ``~`` expanded."""
    if value is None:
        return Path.cwd().resolve()
    candidate = local.path(str(value))
    expanded = Path(str(candidate)).expanduser()
    return expanded.resolve(strict=False)


def legible_path(directory: Path | str) -> str:
    """Return the last two segments of ``directory`` for error messages."""
    parts = Path(directory).parts[-2:]
    return "/".join(parts)


def is_within(path: str, prefix: PurePosixPath) -> bool:
    """Return ``True`` when the repository-relative ``path`` lies under ``prefix``."""
    candidate = PurePosixPath(path)
    return candidate == prefix or prefix in candidate.parents
