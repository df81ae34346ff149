"""Release version bump command implementation."""

from __future__ import annotations

import logging
import typing as typ
from dataclasses import dataclass  # noqa: ICN003
from pathlib import Path

from lockstep import config as config_module
from lockstep.changes import ChangeDetector
from lockstep.history import GitHistory
from lockstep.update import UpdateSpecification, apply_updates, get_packages_to_update
from lockstep.utils import normalise_workspace_root
from lockstep.versioning import (
    classify_transition,
    compute_new_version,
    is_synchronizing_transition,
)
from lockstep.workspace import discover_packages, read_monorepo_root_manifest

if typ.TYPE_CHECKING:
    from lockstep.changelog import ChangelogOptions
    from lockstep.config import LockstepConfig
    from lockstep.versioning import BumpSpec

LOGGER = logging.getLogger(__name__)

NEW_VERSION_OUTPUT: typ.Final[str] = "NEW_VERSION"


@dataclass(frozen=True)
class BumpOptions:
    """Collaborators and settings for a bump run."""

    configuration: LockstepConfig | None = None
    changelog: ChangelogOptions | None = None
    history: GitHistory | None = None


@dataclass(frozen=True)
class BumpResult:
    """Outcome of a bump run."""

    workspace_root: Path
    previous_version: str
    new_version: str
    synchronized: bool
    packages: frozenset[str]
    manifests: tuple[Path, ...]


def run(
    workspace_root: Path | str,
    bump_spec: BumpSpec,
    options: BumpOptions | None = None,
) -> BumpResult:
    """Bump the workspace at ``workspace_root`` according to ``bump_spec``."""
    options = BumpOptions() if options is None else options
    root_path = normalise_workspace_root(workspace_root)
    configuration = options.configuration
    if configuration is None:
        configuration = config_module.current_configuration()

    root_manifest = read_monorepo_root_manifest(root_path)
    current_version = typ.cast("str", root_manifest.version)
    new_version = compute_new_version(current_version, bump_spec)
    category = classify_transition(current_version, new_version)
    synchronize_versions = is_synchronizing_transition(category)
    LOGGER.info(
        "Bumping %s -> %s (%s transition%s)",
        current_version,
        new_version,
        category or "no",
        ", synchronizing" if synchronize_versions else "",
    )

    workspace = None
    if root_manifest.workspaces is None:
        packages = frozenset(filter(None, [root_manifest.name]))
    else:
        workspace = discover_packages(root_path, configuration.workspace.packages_dir)
        detector = ChangeDetector(
            history=options.history
            or GitHistory(root_path, tag_prefix=configuration.history.tag_prefix),
            packages_dir=configuration.workspace.packages_dir,
            tag_prefix=configuration.history.tag_prefix,
            allow_untagged=configuration.history.allow_untagged,
        )
        packages = get_packages_to_update(workspace, synchronize_versions, detector)

    spec = UpdateSpecification(
        new_version=new_version,
        packages_to_update=packages,
        synchronize_versions=synchronize_versions,
        root_manifest=root_manifest,
    )
    manifests = apply_updates(
        workspace, spec, workspace_root=root_path, changelog=options.changelog
    )
    return BumpResult(
        workspace_root=root_path,
        previous_version=current_version,
        new_version=new_version,
        synchronized=synchronize_versions,
        packages=packages,
        manifests=tuple(manifests),
    )


def format_result(result: BumpResult) -> str:
    """Summarise the bump outcome for CLI presentation."""
    count = len(result.manifests)
    header = f"Updated version to {result.new_version} in {count} manifest(s):"
    formatted_paths = [
        f"- {_format_manifest_path(manifest_path, result.workspace_root)}"
        for manifest_path in result.manifests
    ]
    return "\n".join(
        [header, *formatted_paths, f"{NEW_VERSION_OUTPUT}={result.new_version}"]
    )


def _format_manifest_path(manifest_path: Path, workspace_root: Path) -> str:
    """Return ``manifest_path`` relative to ``workspace_root`` when possible."""
    try:
        relative = manifest_path.relative_to(workspace_root)
    except ValueError:
        return str(manifest_path)
    return str(relative)
