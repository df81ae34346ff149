"""Decide whether a workspace package changed since its last release."""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as typ
from pathlib import PurePosixPath

from lockstep.utils import is_within

if typ.TYPE_CHECKING:
    from lockstep.history import GitHistory, TagSet
    from lockstep.workspace import PackageMetadata

LOGGER = logging.getLogger(__name__)

DEFAULT_TAG_PREFIX: typ.Final[str] = "v"


class NoCorrespondingTagError(RuntimeError):
    """Raised when a package version was never tagged."""

    def __init__(self, package_name: str, version: str, tag: str) -> None:
        """Describe the missing ``tag`` for ``package_name``."""
        self.package_name = package_name
        self.tag = tag
        super().__init__(
            f'Package "{package_name}" has version "{version}" in its manifest, '
            f'but no corresponding tag "{tag}" exists.'
        )


def version_to_tag(version: str, prefix: str = DEFAULT_TAG_PREFIX) -> str:
    """Return the release tag name for ``version``."""
    return f"{prefix}{version}"


def did_package_change(
    tag_set: TagSet,
    package: PackageMetadata,
    history: GitHistory,
    *,
    packages_dir: str = "packages",
    tag_prefix: str = DEFAULT_TAG_PREFIX,
) -> bool:
    """Return ``True`` when ``package`` has changes since its release tag.

    An untagged repository has nothing to compare against, so every package
    counts as changed.
    """
    if not tag_set:
        return True
    version = typ.cast("str", package.manifest.version)
    tag = version_to_tag(version, tag_prefix)
    if tag not in tag_set:
        raise NoCorrespondingTagError(package.name, version, tag)
    changed_paths = history.diff_since(tag, packages_dir)
    prefix = PurePosixPath(packages_dir) / package.dir_name
    changed = any(is_within(path, prefix) for path in changed_paths)
    LOGGER.debug(
        "%s %s since %s", package.name, "changed" if changed else "unchanged", tag
    )
    return changed


@dc.dataclass(frozen=True, slots=True)
class ChangeDetector:
    """:func:`did_package_change` bound to one run's history and settings."""

    history: GitHistory
    packages_dir: str = "packages"
    tag_prefix: str = DEFAULT_TAG_PREFIX
    allow_untagged: bool = False

    def tag_set(self) -> TagSet:
        """Return the run's tags, loading them on first use."""
        return self.history.list_tags(allow_empty=self.allow_untagged)

    def __call__(self, package: PackageMetadata) -> bool:
        """Return whether ``package`` changed since its release tag."""
        return did_package_change(
            self.tag_set(),
            package,
            self.history,
            packages_dir=self.packages_dir,
            tag_prefix=self.tag_prefix,
        )
