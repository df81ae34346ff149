"""Command-line interface for the :mod:`lockstep` toolkit."""

from __future__ import annotations

import logging
import os
import sys
import typing as typ
from contextlib import contextmanager
from pathlib import Path

from cyclopts import App, Parameter

from . import commands, config
from .changelog import ChangelogOptions
from .utils import normalise_workspace_root
from .versioning import parse_bump_spec

WORKSPACE_ROOT_ENV_VAR = "LOCKSTEP_WORKSPACE_ROOT"
LOG_LEVEL_ENV_VAR = "LOCKSTEP_LOG_LEVEL"
GITHUB_OUTPUT_ENV_VAR = "GITHUB_OUTPUT"
WORKSPACE_ROOT_REQUIRED_MESSAGE = "--workspace-root requires a value"
_WORKSPACE_PARAMETER = Parameter(
    name="workspace-root",
    env_var=WORKSPACE_ROOT_ENV_VAR,
    help="Path to the workspace root.",
)
WorkspaceRootOption = typ.Annotated[Path, _WORKSPACE_PARAMETER]

app = App(help="Bump release versions across JavaScript workspaces.")


def _validate_workspace_value(value: str) -> str:
    """Ensure ``value`` is usable as a workspace path."""
    if not value or value.startswith("-"):
        raise SystemExit(WORKSPACE_ROOT_REQUIRED_MESSAGE)
    return value


def _parse_workspace_flag(tokens: typ.Sequence[str], index: int) -> tuple[str, int]:
    """Parse ``--workspace-root <path>`` form starting at ``index``."""
    try:
        candidate = tokens[index + 1]
    except IndexError as err:
        raise SystemExit(WORKSPACE_ROOT_REQUIRED_MESSAGE) from err
    workspace = _validate_workspace_value(candidate)
    return workspace, index + 2


def _parse_workspace_equals(argument: str, index: int) -> tuple[str, int]:
    """Parse ``--workspace-root=<path>`` form for ``argument``."""
    candidate = argument.partition("=")[2]
    workspace = _validate_workspace_value(candidate)
    return workspace, index + 1


def _extract_workspace_override(
    tokens: typ.Sequence[str],
) -> tuple[str | None, list[str]]:
    """Split ``--workspace-root`` from CLI tokens.

    The flag can appear in either ``--workspace-root <path>`` or
    ``--workspace-root=<path>`` form. The last occurrence wins. The returned
    token list can be passed directly to :func:`cyclopts.App.__call__`.
    """
    workspace: str | None = None
    remainder: list[str] = []
    index = 0
    while index < len(tokens):
        current_argument = tokens[index]
        if current_argument == "--workspace-root":
            workspace, index = _parse_workspace_flag(tokens, index)
            continue
        if current_argument.startswith("--workspace-root="):
            workspace, index = _parse_workspace_equals(current_argument, index)
            continue
        remainder.append(current_argument)
        index += 1
    return workspace, remainder


@contextmanager
def _workspace_env(value: Path) -> typ.Iterator[None]:
    """Temporarily set :data:`WORKSPACE_ROOT_ENV_VAR` to ``value``."""
    previous = os.environ.get(WORKSPACE_ROOT_ENV_VAR)
    os.environ[WORKSPACE_ROOT_ENV_VAR] = str(value)
    try:
        yield
    finally:
        if previous is None:
            os.environ.pop(WORKSPACE_ROOT_ENV_VAR, None)
        else:
            os.environ[WORKSPACE_ROOT_ENV_VAR] = previous


def _configure_logging() -> None:
    """Send log records to stderr at the level named by the environment."""
    level_name = os.environ.get(LOG_LEVEL_ENV_VAR, "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _dispatch_and_print(tokens: typ.Sequence[str]) -> int:
    """Execute the Cyclopts app and print command results."""
    try:
        result = app(tokens)
    except SystemExit as err:
        code = err.code
        if code is None:
            return 0
        if isinstance(code, int):
            return code
        print(code, file=sys.stderr)
        return 1
    if isinstance(result, int):
        return result
    if result is not None:
        print(result)
    return 0


def main(argv: typ.Sequence[str] | None = None) -> int:
    """Entry point for ``python -m lockstep.cli``."""
    _configure_logging()
    try:
        if argv is None:
            argv = sys.argv[1:]
        workspace_override, remaining = _extract_workspace_override(list(argv))
        workspace_root = normalise_workspace_root(workspace_override)
        if not remaining:
            _dispatch_and_print(remaining)  # Print usage message
            return 2  # Standard exit code for missing subcommand
        previous_config = app.config
        config_loader = config.build_loader(workspace_root)
        try:
            configuration = config.load_from_loader(config_loader)
        except config.ConfigurationError as exc:
            print(f"Configuration error: {exc}", file=sys.stderr)
            return 1
        app.config = (config_loader,)
        try:
            with (
                _workspace_env(workspace_root),
                config.use_configuration(configuration),
            ):
                return _dispatch_and_print(remaining)
        finally:
            app.config = previous_config
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.", file=sys.stderr)
        return 130
    except Exception as exc:  # noqa: BLE001 - fallback guard for CLI entry point
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def _run_with_configuration(
    workspace_root: Path,
    runner: typ.Callable[[Path, config.LockstepConfig], str],
) -> str:
    """Execute ``runner`` with a configuration, loading it on demand."""
    try:
        configuration = config.current_configuration()
    except config.ConfigurationNotLoadedError:
        configuration = config.load_configuration(workspace_root)
        with config.use_configuration(configuration):
            return runner(workspace_root, configuration)
    return runner(workspace_root, configuration)


def _report_output(name: str, value: str) -> None:
    """Append ``name=value`` to the CI output file when one is configured."""
    output_path = os.environ.get(GITHUB_OUTPUT_ENV_VAR)
    if not output_path:
        return
    with Path(output_path).open("a", encoding="utf-8") as handle:
        handle.write(f"{name}={value}\n")


@app.command
def bump(
    *,
    release_type: str | None = None,
    release_version: str | None = None,
    repository_url: str | None = None,
    update_changelog: bool = False,
    release_candidate: bool = True,
    workspace_root: WorkspaceRootOption | None = None,
) -> str:
    """Bump workspace versions by release type or to an explicit version.

    Parameters
    ----------
    release_type
        One of major, minor, patch, premajor, preminor, prepatch or prerelease.
    release_version
        Explicit target version such as 2.0.0.
    repository_url
        Repository URL used for changelog link references.
    update_changelog
        Also update each released package's changelog.
    release_candidate
        Whether the changelog update is for a release candidate.
    """
    bump_spec = parse_bump_spec(release_type, release_version)
    resolved = normalise_workspace_root(workspace_root)

    def _runner(root: Path, configuration: config.LockstepConfig) -> str:
        changelog = None
        if update_changelog:
            changelog = ChangelogOptions(
                repository_url=repository_url or configuration.changelog.repository_url,
                is_release_candidate=release_candidate,
                filename=configuration.changelog.filename,
                tag_prefix=configuration.history.tag_prefix,
            )
        result = commands.bump.run(
            root,
            bump_spec,
            commands.bump.BumpOptions(
                configuration=configuration, changelog=changelog
            ),
        )
        _report_output(commands.bump.NEW_VERSION_OUTPUT, result.new_version)
        return commands.bump.format_result(result)

    return _run_with_configuration(resolved, _runner)


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    raise SystemExit(main())
