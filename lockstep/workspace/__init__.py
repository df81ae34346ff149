"""Workspace discovery and manifest handling for :mod:`lockstep`."""

from __future__ import annotations

from .manifest import (
    DuplicatePackageNameError,
    InvalidManifestError,
    ManifestError,
    ManifestValidationError,
    MissingManifestError,
    MissingPackagesDirectoryError,
    discover_packages,
    read_manifest,
    read_monorepo_root_manifest,
    serialise_manifest,
    write_manifest,
)
from .models import (
    MANIFEST_FILENAME,
    DependencyField,
    PackageManifest,
    PackageMetadata,
    WorkspaceSnapshot,
)

__all__ = [
    "MANIFEST_FILENAME",
    "DependencyField",
    "DuplicatePackageNameError",
    "InvalidManifestError",
    "ManifestError",
    "ManifestValidationError",
    "MissingManifestError",
    "MissingPackagesDirectoryError",
    "PackageManifest",
    "PackageMetadata",
    "WorkspaceSnapshot",
    "discover_packages",
    "read_manifest",
    "read_monorepo_root_manifest",
    "serialise_manifest",
    "write_manifest",
]
