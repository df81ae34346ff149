"""Interfaces for querying git tags and diffs.

:class:`GitHistory` is created once per run by the bump command and handed to
the change detector. It owns the tag list and the per-tag diff cache, so
nothing outlives the run.
"""

from __future__ import annotations

import logging
import threading
import typing as typ
from concurrent.futures import Future

import msgspec
from plumbum import local
from plumbum.commands.processes import CommandNotFound

from lockstep.utils import normalise_workspace_root
from lockstep.versioning import is_valid_version

if typ.TYPE_CHECKING:
    from pathlib import Path

    from plumbum.commands.base import BoundCommand

LOGGER = logging.getLogger(__name__)


class HistoryError(RuntimeError):
    """Raised when git history cannot be queried or is unusable."""


class GitExecutableNotFoundError(HistoryError):
    """Raised when the ``git`` executable is missing from ``PATH``."""

    def __init__(self) -> None:
        """Initialise the error with a descriptive message."""
        super().__init__("The 'git' executable could not be located.")


class GitCommandError(HistoryError):
    """Raised when a git invocation exits with a failure code."""

    def __init__(
        self, args: typ.Sequence[str], exit_code: int, stdout: str, stderr: str
    ) -> None:
        """Summarise the failing invocation for the caller."""
        joined = " ".join(args)
        message = (
            stderr.strip()
            or stdout.strip()
            or f"git {joined} exited with status {exit_code}"
        )
        super().__init__(message)


class NoTagsFoundError(HistoryError):
    """Raised when the repository has no tags and tags are required."""

    def __init__(self) -> None:
        """Initialise the error with a descriptive message."""
        super().__init__(
            "The repository has no tags. Create a release tag or allow untagged "
            "repositories."
        )


class ShallowHistoryError(HistoryError):
    """Raised when no tags are visible because the clone is shallow."""

    def __init__(self) -> None:
        """Initialise the error with a descriptive message."""
        super().__init__(
            "The repository has no tags and a shallow history; fetch the full "
            "history (e.g. 'fetch-depth: 0') so changes can be detected."
        )


class InvalidTagError(HistoryError):
    """Raised when the most recent tag is not a semantic version."""

    def __init__(self, tag: str) -> None:
        """Record the rejected ``tag``."""
        self.tag = tag
        super().__init__(
            f"Invalid latest tag. Expected a valid semantic version. Received: {tag!r}"
        )


class TagSet(msgspec.Struct, frozen=True, kw_only=True):
    """Release tags visible at the start of a run."""

    tags: tuple[str, ...] = ()
    latest: str | None = None

    def __contains__(self, tag: object) -> bool:
        """Return ``True`` when ``tag`` exists."""
        return tag in self.tags

    def __bool__(self) -> bool:
        """Return ``True`` when at least one tag exists."""
        return bool(self.tags)


def _ensure_command() -> BoundCommand:
    """Return the ``git`` command object."""
    try:
        return local["git"]
    except CommandNotFound as exc:  # pragma: no cover - defensive guard
        raise GitExecutableNotFoundError from exc


def _coerce_text(value: str | bytes) -> str:
    """Normalise process output to text."""
    return value.decode("utf-8") if isinstance(value, bytes) else value


def diff_arguments(tag: str, scope: str) -> tuple[str, ...]:
    """Return the git arguments listing paths under ``scope`` changed since ``tag``.

    ``-z`` keeps paths unquoted and NUL separated. ``--relative`` reports them
    relative to the working directory, so a workspace nested inside a larger
    repository still sees ``packages/<dir>/...``.
    """
    return ("diff", "--name-only", "--relative", "-z", tag, "--", scope)


def strip_tag_prefix(tag: str, prefix: str = "v") -> str:
    """Drop ``prefix`` from the start of ``tag`` when present."""
    return tag[len(prefix) :] if prefix and tag.startswith(prefix) else tag


class GitHistory:
    """Read-only view of the repository history for a single run."""

    def __init__(
        self, workspace_root: Path | str | None = None, *, tag_prefix: str = "v"
    ) -> None:
        """Bind the history to the repository at ``workspace_root``."""
        self.workspace_root = normalise_workspace_root(workspace_root)
        self.tag_prefix = tag_prefix
        self._tag_set: TagSet | None = None
        self._diffs: dict[tuple[str, str], Future[tuple[str, ...]]] = {}
        self._lock = threading.Lock()
        self._tags_lock = threading.Lock()

    def _git(self, *args: str) -> str:
        command = _ensure_command()
        exit_code, stdout, stderr = command[args].run(
            retcode=None, cwd=str(self.workspace_root)
        )
        stdout_text = _coerce_text(stdout)
        if exit_code != 0:
            raise GitCommandError(args, exit_code, stdout_text, _coerce_text(stderr))
        return stdout_text

    def is_shallow(self) -> bool:
        """Return ``True`` when the checkout has incomplete history."""
        return self._git("rev-parse", "--is-shallow-repository").strip() == "true"

    def list_tags(self, *, allow_empty: bool = False) -> TagSet:
        """Return every tag, oldest first, with the newest as ``latest``."""
        with self._tags_lock:
            if self._tag_set is None:
                self._tag_set = self._load_tags(allow_empty=allow_empty)
            return self._tag_set

    def _load_tags(self, *, allow_empty: bool) -> TagSet:
        output = self._git("tag", "--list", "--sort=creatordate")
        tags = tuple(line.strip() for line in output.splitlines() if line.strip())
        if not tags:
            if self.is_shallow():
                raise ShallowHistoryError
            if not allow_empty:
                raise NoTagsFoundError
            LOGGER.info("No tags found; every package will be treated as changed.")
            return TagSet()
        latest = tags[-1]
        if not is_valid_version(strip_tag_prefix(latest, self.tag_prefix)):
            raise InvalidTagError(latest)
        LOGGER.debug("Found %d tag(s); latest is %s", len(tags), latest)
        return TagSet(tags=tags, latest=latest)

    def diff_since(self, tag: str, scope: str) -> tuple[str, ...]:
        """Return paths under ``scope`` that differ between ``tag`` and the tree.

        Each ``(tag, scope)`` pair is queried at most once; concurrent callers
        wait on the first invocation.
        """
        key = (tag, scope)
        with self._lock:
            future = self._diffs.get(key)
            owner = future is None
            if future is None:
                future = Future()
                self._diffs[key] = future
        if not owner:
            return future.result()
        try:
            output = self._git(*diff_arguments(tag, scope))
        except BaseException as exc:
            future.set_exception(exc)
            raise
        paths = tuple(entry for entry in output.split("\0") if entry)
        LOGGER.debug("%d path(s) changed under %s since %s", len(paths), scope, tag)
        future.set_result(paths)
        return paths
