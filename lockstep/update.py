"""Plan and apply manifest updates for a release."""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as typ
from concurrent.futures import ThreadPoolExecutor

from lockstep.workspace import MANIFEST_FILENAME, DependencyField, serialise_manifest
from lockstep.workspace.manifest import write_atomic_text

if typ.TYPE_CHECKING:
    from collections import abc as cabc
    from pathlib import Path

    from lockstep.changelog import ChangelogOptions
    from lockstep.workspace import PackageManifest, PackageMetadata, WorkspaceSnapshot

LOGGER = logging.getLogger(__name__)


class UpdateError(RuntimeError):
    """Raised when a release update cannot be planned or applied."""


class NoPackagesToUpdateError(UpdateError):
    """Raised when no package qualifies for the release."""

    def __init__(self) -> None:
        """Initialise the error with a descriptive message."""
        super().__init__(
            "There are no packages to update; no package changed since its "
            "last release."
        )


class ChangelogReadError(UpdateError):
    """Raised when an existing changelog cannot be read."""

    def __init__(self, path: Path) -> None:
        """Record the unreadable changelog ``path``."""
        self.path = path
        super().__init__(f"Failed to read changelog {path}")


@dc.dataclass(frozen=True, slots=True)
class UpdateSpecification:
    """Everything the apply phase needs to rewrite manifests."""

    new_version: str
    packages_to_update: frozenset[str]
    synchronize_versions: bool
    root_manifest: PackageManifest | None = None


@dc.dataclass(frozen=True, slots=True)
class _StagedWrite:
    path: Path
    content: str


def get_packages_to_update(
    workspace: WorkspaceSnapshot,
    synchronize_versions: bool,  # noqa: FBT001
    detector: cabc.Callable[[PackageMetadata], bool],
) -> frozenset[str]:
    """Return the names of the packages that take part in the release.

    Synchronizing releases include every package without consulting
    ``detector``; other releases include only changed packages.
    """
    if synchronize_versions:
        return workspace.names
    with ThreadPoolExecutor() as executor:
        changed = list(executor.map(detector, workspace.packages))
    selected = frozenset(
        package.name
        for package, did_change in zip(workspace.packages, changed, strict=True)
        if did_change
    )
    if not selected:
        raise NoPackagesToUpdateError
    return selected


def _updated_dependency_group(
    group: cabc.Mapping[str, str],
    packages_to_update: cabc.Collection[str],
    version_range: str,
) -> dict[str, str]:
    return {
        name: version_range if name in packages_to_update else current
        for name, current in group.items()
    }


def plan_manifest_update(
    manifest: PackageManifest, spec: UpdateSpecification
) -> PackageManifest:
    """Return ``manifest`` rewritten for ``spec`` without touching disk."""
    document = dict(manifest.document)
    document["version"] = spec.new_version
    if spec.synchronize_versions:
        version_range = f"^{spec.new_version}"
        for field in DependencyField:
            group = manifest.dependency_group(field)
            if group is None:
                continue
            document[field.value] = _updated_dependency_group(
                group, spec.packages_to_update, version_range
            )
    return manifest.with_document(document)


def _stage_changelog(
    directory: Path,
    spec: UpdateSpecification,
    options: ChangelogOptions,
) -> _StagedWrite:
    path = directory / options.filename
    try:
        existing = path.read_text(encoding="utf-8")
    except OSError as exc:
        LOGGER.exception("Failed to read changelog %s", path)
        raise ChangelogReadError(path) from exc
    updated = options.formatter(
        existing,
        spec.new_version,
        options.is_release_candidate,
        directory,
        options.repository_url,
        tag_prefix=options.tag_prefix,
    )
    return _StagedWrite(path=path, content=updated)


def _write_staged(staged: _StagedWrite) -> Path:
    write_atomic_text(staged.path, staged.content)
    LOGGER.debug("Wrote %s", staged.path)
    return staged.path


def _package_targets(
    workspace: WorkspaceSnapshot | None, spec: UpdateSpecification
) -> list[tuple[Path, PackageManifest]]:
    if workspace is None:
        return []
    packages = workspace.packages_by_name
    return [
        (packages[name].path, packages[name].manifest)
        for name in sorted(spec.packages_to_update)
    ]


def apply_updates(
    workspace: WorkspaceSnapshot | None,
    spec: UpdateSpecification,
    *,
    workspace_root: Path,
    changelog: ChangelogOptions | None = None,
) -> list[Path]:
    """Write every manifest (and changelog) selected by ``spec``.

    ``workspace`` is ``None`` for a polyrepo, where ``spec.root_manifest`` is
    the only package. All new content is computed before the first write, so
    a planning or changelog failure leaves the workspace untouched. Returns
    the manifest paths that were written, root first.
    """
    package_targets = _package_targets(workspace, spec)
    targets = list(package_targets)
    if spec.root_manifest is not None:
        targets.insert(0, (workspace_root, spec.root_manifest))

    manifest_writes = [
        _StagedWrite(
            path=directory / MANIFEST_FILENAME,
            content=serialise_manifest(plan_manifest_update(manifest, spec).document),
        )
        for directory, manifest in targets
    ]
    changelog_writes: list[_StagedWrite] = []
    if changelog is not None:
        directories = (
            [workspace_root]
            if workspace is None
            else [directory for directory, _manifest in package_targets]
        )
        changelog_writes = [
            _stage_changelog(directory, spec, changelog) for directory in directories
        ]

    with ThreadPoolExecutor() as executor:
        written = list(executor.map(_write_staged, manifest_writes))
        list(executor.map(_write_staged, changelog_writes))
    LOGGER.info("Updated %d manifest(s) to version %s", len(written), spec.new_version)
    return written
