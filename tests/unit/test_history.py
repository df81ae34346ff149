"""Tests for the git history gateway."""

from __future__ import annotations

import threading
import typing as typ

import pytest

from lockstep.history import (
    GitCommandError,
    GitHistory,
    InvalidTagError,
    NoTagsFoundError,
    ShallowHistoryError,
    TagSet,
)
from tests.helpers.workspace_helpers import (
    SHALLOW_ARGS,
    TAG_LIST_ARGS,
    diff_args,
    expect_diff,
    expect_shallow,
    expect_tags,
    install_git_stub,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from cmd_mox import CmdMox


def test_list_tags_returns_latest_last(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Tags keep git's order and the last one is the latest."""
    install_git_stub(cmd_mox, monkeypatch)
    expect_tags(cmd_mox, ["v1.0.0", "v1.1.0"])

    tag_set = GitHistory(tmp_path).list_tags()

    assert tag_set == TagSet(tags=("v1.0.0", "v1.1.0"), latest="v1.1.0")
    assert "v1.0.0" in tag_set
    assert "v2.0.0" not in tag_set


def test_list_tags_is_cached_per_history(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Tags are listed once per run."""
    stub = install_git_stub(cmd_mox, monkeypatch)
    expect_tags(cmd_mox, ["v1.0.0"])
    history = GitHistory(tmp_path)

    history.list_tags()
    history.list_tags()

    assert stub.count(*TAG_LIST_ARGS) == 1


def test_list_tags_without_tags_fails_by_default(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """An untagged repository is an error unless explicitly allowed."""
    install_git_stub(cmd_mox, monkeypatch)
    expect_tags(cmd_mox, [])
    expect_shallow(cmd_mox, shallow=False)

    with pytest.raises(NoTagsFoundError):
        GitHistory(tmp_path).list_tags()


def test_list_tags_allows_empty_full_history(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Allowed untagged repositories yield an empty tag set."""
    install_git_stub(cmd_mox, monkeypatch)
    expect_tags(cmd_mox, [])
    expect_shallow(cmd_mox, shallow=False)

    tag_set = GitHistory(tmp_path).list_tags(allow_empty=True)

    assert not tag_set
    assert tag_set.latest is None


def test_list_tags_rejects_shallow_untagged_history(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Shallow clones without tags cannot be used for change detection."""
    stub = install_git_stub(cmd_mox, monkeypatch)
    expect_tags(cmd_mox, [])
    expect_shallow(cmd_mox, shallow=True)

    with pytest.raises(ShallowHistoryError):
        GitHistory(tmp_path).list_tags(allow_empty=True)

    assert stub.count(*SHALLOW_ARGS) == 1


@pytest.mark.parametrize("latest", ["release-1", "v1.0", "vv1.0.0"])
def test_list_tags_rejects_invalid_latest_tag(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path, latest: str
) -> None:
    """The latest tag must be a semantic version, optionally ``v``-prefixed."""
    install_git_stub(cmd_mox, monkeypatch)
    expect_tags(cmd_mox, ["v1.0.0", latest])

    with pytest.raises(InvalidTagError) as excinfo:
        GitHistory(tmp_path).list_tags()

    assert excinfo.value.tag == latest


def test_list_tags_accepts_unprefixed_latest_tag(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Tags without the ``v`` prefix are valid too."""
    install_git_stub(cmd_mox, monkeypatch)
    expect_tags(cmd_mox, ["1.0.0"])

    assert GitHistory(tmp_path).list_tags().latest == "1.0.0"


def test_list_tags_strips_configured_prefix(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """A custom tag prefix is removed before validating the latest tag."""
    install_git_stub(cmd_mox, monkeypatch)
    expect_tags(cmd_mox, ["release-1.0.0", "release-1.1.0"])

    history = GitHistory(tmp_path, tag_prefix="release-")

    assert history.list_tags().latest == "release-1.1.0"


def test_git_failures_raise_command_error(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Non-zero exits surface git's error output."""
    install_git_stub(cmd_mox, monkeypatch)
    cmd_mox.mock("git").with_args(*TAG_LIST_ARGS).returns(
        exit_code=128,
        stdout="",
        stderr="fatal: not a git repository\n",
    )

    with pytest.raises(GitCommandError) as excinfo:
        GitHistory(tmp_path).list_tags()

    assert "not a git repository" in str(excinfo.value)


def test_diff_since_parses_paths(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Diff output is split into workspace-relative paths."""
    install_git_stub(cmd_mox, monkeypatch)
    expect_diff(cmd_mox, "v1.0.0", ["packages/a/index.js", "packages/b/README.md"])

    paths = GitHistory(tmp_path).diff_since("v1.0.0", "packages")

    assert paths == ("packages/a/index.js", "packages/b/README.md")


def test_diff_since_keeps_paths_git_would_quote(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Non-ASCII, tab and quote characters survive unescaped."""
    install_git_stub(cmd_mox, monkeypatch)
    changed = ["packages/a/café.js", "packages/a/tab\tx.js", 'packages/b/say "hi".md']
    expect_diff(cmd_mox, "v1.0.0", changed)

    paths = GitHistory(tmp_path).diff_since("v1.0.0", "packages")

    assert paths == tuple(changed)


def test_diff_since_is_memoized_per_tag(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Repeated requests for a tag reuse the first result."""
    stub = install_git_stub(cmd_mox, monkeypatch)
    expect_diff(cmd_mox, "v1.0.0", ["a"])
    expect_diff(cmd_mox, "v1.1.0", ["b"])
    history = GitHistory(tmp_path)

    assert history.diff_since("v1.0.0", "packages") == ("a",)
    assert history.diff_since("v1.0.0", "packages") == ("a",)
    assert history.diff_since("v1.1.0", "packages") == ("b",)

    assert stub.count(*diff_args("v1.0.0")) == 1
    assert stub.count(*diff_args("v1.1.0")) == 1


def test_diff_since_runs_git_once_for_concurrent_callers(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Concurrent callers for one tag share a single git invocation."""
    stub = install_git_stub(cmd_mox, monkeypatch)
    expect_diff(cmd_mox, "v1.0.0", ["packages/a/x"])
    history = GitHistory(tmp_path)
    barrier = threading.Barrier(8)
    results: list[tuple[str, ...]] = []

    def _worker() -> None:
        barrier.wait()
        results.append(history.diff_since("v1.0.0", "packages"))

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == [("packages/a/x",)] * 8
    assert stub.count(*diff_args("v1.0.0")) == 1


def test_diff_since_failure_is_shared(
    cmd_mox: CmdMox, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """A failed diff is reported again without re-running git."""
    stub = install_git_stub(cmd_mox, monkeypatch)
    cmd_mox.mock("git").with_args(*diff_args("v9.9.9")).returns(
        exit_code=128,
        stdout="",
        stderr="fatal: bad revision\n",
    )
    history = GitHistory(tmp_path)

    for _ in range(2):
        with pytest.raises(GitCommandError):
            history.diff_since("v9.9.9", "packages")

    assert stub.count(*diff_args("v9.9.9")) == 1
