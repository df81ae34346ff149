"""Workspace models for :mod:`lockstep`."""

from __future__ import annotations

import enum
import typing as typ
from collections import abc as cabc
from pathlib import Path

import msgspec

MANIFEST_FILENAME: typ.Final[str] = "package.json"


class DependencyField(enum.StrEnum):
    """Manifest dependency groups whose entries may point at siblings."""

    PRODUCTION = "dependencies"
    DEVELOPMENT = "devDependencies"
    PEER = "peerDependencies"
    OPTIONAL = "optionalDependencies"


class PackageManifest(msgspec.Struct, frozen=True, kw_only=True):
    """Immutable snapshot of a ``package.json`` document.

    ``document`` holds the parsed JSON object in file order. Updates build a
    new manifest through :meth:`with_document`; the snapshot is never edited.
    """

    name: str | None
    version: str | None
    document: dict[str, typ.Any]
    private: bool | None = None
    workspaces: tuple[str, ...] | None = None

    @classmethod
    def from_document(cls, document: cabc.Mapping[str, typ.Any]) -> PackageManifest:
        """Create a snapshot from an already validated JSON object."""
        name = document.get("name")
        version = document.get("version")
        workspaces = document.get("workspaces")
        private = document.get("private")
        return cls(
            name=name if isinstance(name, str) else None,
            version=version if isinstance(version, str) else None,
            private=private if isinstance(private, bool) else None,
            workspaces=tuple(workspaces) if isinstance(workspaces, list) else None,
            document=dict(document),
        )

    def dependency_group(
        self, field: DependencyField
    ) -> cabc.Mapping[str, str] | None:
        """Return the dependency mapping for ``field`` when present."""
        value = self.document.get(field.value)
        if isinstance(value, cabc.Mapping):
            return value
        return None

    def with_document(self, document: cabc.Mapping[str, typ.Any]) -> PackageManifest:
        """Return a new snapshot built from ``document``."""
        return PackageManifest.from_document(document)


class PackageMetadata(msgspec.Struct, frozen=True, kw_only=True):
    """A workspace member discovered beneath the packages directory."""

    dir_name: str
    path: Path
    manifest: PackageManifest
    name: str

    @property
    def manifest_path(self) -> Path:
        """Return the path of this package's manifest file."""
        return self.path / MANIFEST_FILENAME


class WorkspaceSnapshot(msgspec.Struct, frozen=True, kw_only=True):
    """Every package discovered in a workspace, keyed by package name."""

    root: Path
    packages_dir: str
    packages: tuple[PackageMetadata, ...]

    @property
    def packages_by_name(self) -> dict[str, PackageMetadata]:
        """Return a name-indexed mapping of workspace packages."""
        return {package.name: package for package in self.packages}

    @property
    def names(self) -> frozenset[str]:
        """Return the names of every package in the workspace."""
        return frozenset(package.name for package in self.packages)

    def __getitem__(self, name: str) -> PackageMetadata:
        """Return the package called ``name``."""
        return self.packages_by_name[name]

    def __len__(self) -> int:
        """Return the number of discovered packages."""
        return len(self.packages)
