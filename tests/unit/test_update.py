"""Tests for :mod:`lockstep.update`."""

from __future__ import annotations

import typing as typ

import pytest

from lockstep.changelog import ChangelogOptions
from lockstep.update import (
    ChangelogReadError,
    NoPackagesToUpdateError,
    UpdateSpecification,
    apply_updates,
    get_packages_to_update,
    plan_manifest_update,
)
from lockstep.workspace import PackageManifest, PackageMetadata, discover_packages
from tests.helpers.workspace_helpers import (
    build_monorepo,
    read_package_json,
    write_package_json,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from lockstep.workspace import WorkspaceSnapshot

REPOSITORY_URL = "https://example.com/org/repo"


def _three_package_workspace(tmp_path: Path) -> WorkspaceSnapshot:
    build_monorepo(
        tmp_path,
        {
            name: {"name": name, "version": "1.1.0"}
            for name in ("a", "b", "c")
        },
    )
    return discover_packages(tmp_path, "packages")


def _manifest(**document: typ.Any) -> PackageManifest:
    return PackageManifest.from_document(document)


def test_synchronizing_returns_all_packages_without_detection(
    tmp_path: Path,
) -> None:
    """Major releases move every package and never consult the detector."""
    workspace = _three_package_workspace(tmp_path)

    def _detector(package: PackageMetadata) -> bool:
        message = f"detector called for {package.name}"
        raise AssertionError(message)

    assert get_packages_to_update(workspace, True, _detector) == {"a", "b", "c"}


def test_non_synchronizing_returns_changed_packages(tmp_path: Path) -> None:
    """Only packages the detector reports as changed are selected."""
    workspace = _three_package_workspace(tmp_path)
    reported = {"a": False, "b": True, "c": False}

    selected = get_packages_to_update(
        workspace, False, lambda package: reported[package.name]
    )

    assert selected == {"b"}


def test_no_changed_packages_is_an_error(tmp_path: Path) -> None:
    """A release without changes requires operator attention."""
    workspace = _three_package_workspace(tmp_path)

    with pytest.raises(NoPackagesToUpdateError):
        get_packages_to_update(workspace, False, lambda _package: False)


def test_plan_sets_version_and_keeps_dependencies_without_sync() -> None:
    """Non-synchronizing plans only touch the version field."""
    manifest = _manifest(
        name="a",
        version="1.1.0",
        dependencies={"b": "^1.1.0"},
    )
    spec = UpdateSpecification(
        new_version="1.2.0",
        packages_to_update=frozenset({"a", "b"}),
        synchronize_versions=False,
    )

    planned = plan_manifest_update(manifest, spec)

    assert planned.document == {
        "name": "a",
        "version": "1.2.0",
        "dependencies": {"b": "^1.1.0"},
    }
    assert manifest.version == "1.1.0"


def test_plan_synchronizes_sibling_dependency_ranges() -> None:
    """Synchronizing plans rewrite sibling ranges in every dependency group."""
    manifest = _manifest(
        name="a",
        version="1.1.0",
        description="kept",
        dependencies={"b": "^1.1.0", "lodash": "^4.17.0"},
        devDependencies={"c": "~1.0.0", "d": "^1.0.0"},
        peerDependencies={"b": ">=1.0.0"},
        optionalDependencies={"c": "1.1.0"},
        scripts={"b": "echo not a dependency"},
    )
    spec = UpdateSpecification(
        new_version="2.0.0",
        packages_to_update=frozenset({"a", "b", "c"}),
        synchronize_versions=True,
    )

    planned = plan_manifest_update(manifest, spec)

    assert planned.document == {
        "name": "a",
        "version": "2.0.0",
        "description": "kept",
        "dependencies": {"b": "^2.0.0", "lodash": "^4.17.0"},
        "devDependencies": {"c": "^2.0.0", "d": "^1.0.0"},
        "peerDependencies": {"b": "^2.0.0"},
        "optionalDependencies": {"c": "^2.0.0"},
        "scripts": {"b": "echo not a dependency"},
    }
    assert list(planned.document) == list(manifest.document)


def test_plan_is_idempotent() -> None:
    """Planning an already planned manifest changes nothing further."""
    manifest = _manifest(
        name="a", version="1.1.0", dependencies={"b": "^1.1.0", "x": "1.0.0"}
    )
    spec = UpdateSpecification(
        new_version="2.0.0",
        packages_to_update=frozenset({"b"}),
        synchronize_versions=True,
    )

    once = plan_manifest_update(manifest, spec)
    twice = plan_manifest_update(once, spec)

    assert twice.document == once.document


def test_apply_updates_writes_selected_packages_and_root(tmp_path: Path) -> None:
    """Selected members and the root are written; others are left alone."""
    build_monorepo(
        tmp_path,
        {
            "a": {"name": "a", "version": "1.1.0"},
            "b": {"name": "b", "version": "1.1.0", "dependencies": {"a": "^1.1.0"}},
        },
    )
    workspace = discover_packages(tmp_path, "packages")
    untouched = (tmp_path / "packages" / "a" / "package.json").read_bytes()
    root_manifest = PackageManifest.from_document(read_package_json(tmp_path))
    spec = UpdateSpecification(
        new_version="1.1.1",
        packages_to_update=frozenset({"b"}),
        synchronize_versions=False,
        root_manifest=root_manifest,
    )

    written = apply_updates(workspace, spec, workspace_root=tmp_path)

    assert written == [
        tmp_path / "package.json",
        tmp_path.resolve() / "packages" / "b" / "package.json",
    ]
    assert read_package_json(tmp_path)["version"] == "1.1.1"
    assert read_package_json(tmp_path / "packages" / "b") == {
        "name": "b",
        "version": "1.1.1",
        "dependencies": {"a": "^1.1.0"},
    }
    assert (tmp_path / "packages" / "a" / "package.json").read_bytes() == untouched


def test_apply_updates_polyrepo(tmp_path: Path) -> None:
    """A polyrepo root is updated as the single package."""
    write_package_json(tmp_path, {"name": "A", "version": "1.1.0"})
    root_manifest = PackageManifest.from_document(read_package_json(tmp_path))
    spec = UpdateSpecification(
        new_version="2.0.0",
        packages_to_update=frozenset({"A"}),
        synchronize_versions=True,
        root_manifest=root_manifest,
    )

    apply_updates(None, spec, workspace_root=tmp_path)

    assert read_package_json(tmp_path) == {"name": "A", "version": "2.0.0"}


def test_apply_updates_passes_changelog_arguments(tmp_path: Path) -> None:
    """The changelog formatter receives the documented arguments."""
    workspace = _three_package_workspace(tmp_path)
    for name in ("a", "b"):
        (tmp_path / "packages" / name / "CHANGELOG.md").write_text(
            f"old {name}\n", encoding="utf-8"
        )
    calls: list[tuple[str, str, bool, Path, str | None, str]] = []

    def _formatter(
        changelog: str,
        new_version: str,
        is_release_candidate: bool,  # noqa: FBT001
        package_dir: Path,
        repository_url: str | None,
        *,
        tag_prefix: str = "v",
    ) -> str:
        calls.append(
            (
                changelog,
                new_version,
                is_release_candidate,
                package_dir,
                repository_url,
                tag_prefix,
            )
        )
        return f"{changelog}new {new_version}\n"

    spec = UpdateSpecification(
        new_version="1.2.0",
        packages_to_update=frozenset({"a", "b"}),
        synchronize_versions=False,
    )
    options = ChangelogOptions(
        repository_url=REPOSITORY_URL,
        tag_prefix="release-",
        formatter=_formatter,
    )

    apply_updates(workspace, spec, workspace_root=tmp_path, changelog=options)

    packages = tmp_path.resolve() / "packages"
    assert sorted(calls) == [
        ("old a\n", "1.2.0", True, packages / "a", REPOSITORY_URL, "release-"),
        ("old b\n", "1.2.0", True, packages / "b", REPOSITORY_URL, "release-"),
    ]
    assert (packages / "a" / "CHANGELOG.md").read_text(encoding="utf-8") == (
        "old a\nnew 1.2.0\n"
    )
    assert not (packages / "c" / "CHANGELOG.md").exists()


def test_apply_updates_missing_changelog_aborts_before_writing(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Unreadable changelogs are logged and re-raised before any write."""
    workspace = _three_package_workspace(tmp_path)
    before = (tmp_path / "packages" / "a" / "package.json").read_bytes()
    spec = UpdateSpecification(
        new_version="1.2.0",
        packages_to_update=frozenset({"a"}),
        synchronize_versions=False,
    )

    with pytest.raises(ChangelogReadError):
        apply_updates(
            workspace, spec, workspace_root=tmp_path, changelog=ChangelogOptions()
        )

    assert "Failed to read changelog" in caplog.text
    assert (tmp_path / "packages" / "a" / "package.json").read_bytes() == before
