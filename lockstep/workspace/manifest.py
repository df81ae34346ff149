"""Read, validate and write ``package.json`` manifests."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import typing as typ
from collections import abc as cabc
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from pathlib import Path

from lockstep.utils import legible_path, normalise_workspace_root
from lockstep.versioning import is_valid_version

from .models import MANIFEST_FILENAME, PackageManifest, PackageMetadata, WorkspaceSnapshot

LOGGER = logging.getLogger(__name__)

ManifestField = typ.Literal["name", "version"]

DEFAULT_REQUIRED_FIELDS: typ.Final[tuple[ManifestField, ...]] = ("name", "version")
ROOT_REQUIRED_FIELDS: typ.Final[tuple[ManifestField, ...]] = ("version",)
JSON_INDENT: typ.Final[int] = 2


class ManifestError(RuntimeError):
    """Raised when a manifest cannot be loaded or stored."""


class MissingManifestError(ManifestError):
    """Raised when a package directory has no manifest file."""

    def __init__(self, manifest_path: Path) -> None:
        """Record the absent ``manifest_path``."""
        self.path = manifest_path
        super().__init__(f"Manifest not found: {manifest_path}")


class InvalidManifestError(ManifestError):
    """Raised when a manifest file does not contain a JSON object."""

    @classmethod
    def invalid_json(cls, manifest_path: Path, detail: str) -> InvalidManifestError:
        """The file could not be decoded as JSON."""
        return cls(f"Failed to parse manifest {manifest_path}: {detail}")

    @classmethod
    def non_object(cls, manifest_path: Path) -> InvalidManifestError:
        """The file decoded to something other than a JSON object."""
        return cls(f"Manifest {manifest_path} must contain a JSON object.")


class ManifestValidationError(ManifestError):
    """Raised when a manifest field is missing or malformed."""

    def __init__(self, path: str, field: str, detail: str) -> None:
        """Store the legible ``path`` and offending ``field``."""
        self.path = path
        self.field = field
        super().__init__(f'Manifest in "{path}" {detail}')


class MissingPackagesDirectoryError(ManifestError):
    """Raised when the configured packages directory does not exist."""

    def __init__(self, packages_path: Path) -> None:
        """Record the absent ``packages_path``."""
        self.path = packages_path
        super().__init__(f"Packages directory not found: {packages_path}")


class DuplicatePackageNameError(ManifestError):
    """Raised when two package directories declare the same name."""

    def __init__(self, name: str, first: Path, second: Path) -> None:
        """Describe both directories claiming ``name``."""
        self.name = name
        super().__init__(
            f'Package name "{name}" is declared by both "{first}" and "{second}".'
        )


def _load_document(manifest_path: Path) -> dict[str, typ.Any]:
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise MissingManifestError(manifest_path) from exc
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidManifestError.invalid_json(manifest_path, str(exc)) from exc
    if not isinstance(document, dict):
        raise InvalidManifestError.non_object(manifest_path)
    return document


def _validate_manifest(
    document: cabc.Mapping[str, typ.Any],
    path: str,
    required_fields: cabc.Collection[ManifestField],
) -> None:
    """Validate ``name`` and then ``version`` when they are required."""
    name = document.get("name")
    if "name" in required_fields and not (isinstance(name, str) and name):
        raise ManifestValidationError(
            path, "name", 'does not have a valid "name" field.'
        )
    if "version" in required_fields and not is_valid_version(document.get("version")):
        raise ManifestValidationError(
            path,
            "version",
            f'has an invalid "version" field: {document.get("version")!r} '
            "is not a valid semantic version.",
        )


def read_manifest(
    directory: Path | str,
    required_fields: cabc.Collection[ManifestField] = DEFAULT_REQUIRED_FIELDS,
) -> PackageManifest:
    """Read and validate the manifest stored in ``directory``."""
    directory_path = Path(directory)
    document = _load_document(directory_path / MANIFEST_FILENAME)
    _validate_manifest(document, legible_path(directory_path), required_fields)
    return PackageManifest.from_document(document)


def read_monorepo_root_manifest(directory: Path | str) -> PackageManifest:
    """Read the workspace root manifest.

    Only ``version`` is required. ``private`` must be ``true`` when present,
    and ``workspaces`` must be a non-empty list of strings on a private root.
    A root without ``workspaces`` is a polyrepo.
    """
    directory_path = Path(directory)
    document = _load_document(directory_path / MANIFEST_FILENAME)
    path = legible_path(directory_path)
    _validate_manifest(document, path, ROOT_REQUIRED_FIELDS)
    if "private" in document and document["private"] is not True:
        raise ManifestValidationError(
            path, "private", 'has a "private" field that is not exactly true.'
        )
    if "workspaces" in document:
        _validate_workspaces(document, path)
    return PackageManifest.from_document(document)


def _validate_workspaces(document: cabc.Mapping[str, typ.Any], path: str) -> None:
    workspaces = document["workspaces"]
    if (
        not isinstance(workspaces, list)
        or not workspaces
        or not all(isinstance(entry, str) and entry for entry in workspaces)
    ):
        raise ManifestValidationError(
            path,
            "workspaces",
            'has a "workspaces" field that is not a non-empty list of strings.',
        )
    if document.get("private") is not True:
        raise ManifestValidationError(
            path,
            "private",
            'declares "workspaces" but is not marked "private": true.',
        )


def _read_member(package_path: Path) -> PackageMetadata:
    manifest = read_manifest(package_path)
    return PackageMetadata(
        dir_name=package_path.name,
        path=package_path,
        manifest=manifest,
        name=typ.cast("str", manifest.name),
    )


def discover_packages(
    workspace_root: Path | str,
    packages_dir: str = "packages",
) -> WorkspaceSnapshot:
    """Return every package beneath ``workspace_root/packages_dir``."""
    root = normalise_workspace_root(workspace_root)
    packages_path = root / packages_dir
    if not packages_path.is_dir():
        raise MissingPackagesDirectoryError(packages_path)
    candidates = sorted(entry for entry in packages_path.iterdir() if entry.is_dir())
    with ThreadPoolExecutor() as executor:
        members = list(executor.map(_read_member, candidates))

    seen: dict[str, PackageMetadata] = {}
    for member in members:
        previous = seen.get(member.name)
        if previous is not None:
            raise DuplicatePackageNameError(member.name, previous.path, member.path)
        seen[member.name] = member
    LOGGER.debug("Discovered %d package(s) in %s", len(members), packages_path)
    return WorkspaceSnapshot(
        root=root, packages_dir=packages_dir, packages=tuple(members)
    )


def serialise_manifest(document: cabc.Mapping[str, typ.Any]) -> str:
    """Return the canonical text for ``document``."""
    return json.dumps(document, indent=JSON_INDENT, ensure_ascii=False) + "\n"


def write_manifest(directory: Path | str, document: cabc.Mapping[str, typ.Any]) -> Path:
    """Overwrite the manifest in ``directory`` with ``document``."""
    manifest_path = Path(directory) / MANIFEST_FILENAME
    write_atomic_text(manifest_path, serialise_manifest(document))
    return manifest_path


def write_atomic_text(path: Path, content: str) -> None:
    """Persist ``content`` to ``path`` atomically using UTF-8 encoding."""
    existing_mode: int | None = None
    with suppress(FileNotFoundError):
        existing_mode = path.stat().st_mode
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.", text=True)
    try:
        if existing_mode is not None:
            with suppress(AttributeError):
                os.fchmod(fd, existing_mode)  # not available on Windows
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        Path(tmp_path).replace(path)
    finally:
        with suppress(FileNotFoundError):
            Path(tmp_path).unlink()
