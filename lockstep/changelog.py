"""Changelog collaborator used when ``bump`` updates release notes.

The bump command owns reading and writing ``CHANGELOG.md``; turning the old
text into the new text is delegated to a :class:`ChangelogFormatter`. The
default formatter, :func:`promote_unreleased`, follows the Keep a Changelog
layout.
"""

from __future__ import annotations

import dataclasses as dc
import re
import typing as typ

from lockstep.changes import DEFAULT_TAG_PREFIX, version_to_tag

if typ.TYPE_CHECKING:
    from pathlib import Path

DEFAULT_CHANGELOG_FILENAME: typ.Final[str] = "CHANGELOG.md"
UNRELEASED: typ.Final[str] = "Unreleased"

_HEADING: typ.Final[re.Pattern[str]] = re.compile(r"^## \[(?P<label>[^\]]+)\]")
_LINK_REFERENCE: typ.Final[re.Pattern[str]] = re.compile(
    r"^\[(?P<label>[^\]]+)\]:\s*\S+"
)


class ChangelogFormatError(RuntimeError):
    """Raised when a changelog does not follow the expected layout."""


class ChangelogFormatter(typ.Protocol):
    """Callable producing updated changelog text for a release."""

    def __call__(
        self,
        changelog: str,
        new_version: str,
        is_release_candidate: bool,  # noqa: FBT001
        package_dir: Path,
        repository_url: str | None,
        *,
        tag_prefix: str = DEFAULT_TAG_PREFIX,
    ) -> str:
        """Return the replacement changelog text."""
        ...


@dc.dataclass(frozen=True, slots=True)
class ChangelogOptions:
    """How changelogs are updated during a bump."""

    repository_url: str | None = None
    is_release_candidate: bool = True
    tag_prefix: str = DEFAULT_TAG_PREFIX
    filename: str = DEFAULT_CHANGELOG_FILENAME
    formatter: ChangelogFormatter = dc.field(
        default_factory=lambda: promote_unreleased
    )


@dc.dataclass(slots=True)
class _Sections:
    preamble: list[str]
    sections: list[tuple[str, list[str]]]
    links: list[str]

    def index_of(self, label: str) -> int | None:
        for index, (name, _body) in enumerate(self.sections):
            if name.lower() == label.lower():
                return index
        return None

    def render(self) -> str:
        lines = list(self.preamble)
        for name, body in self.sections:
            lines.append(f"## [{name}]")
            entries = _trim(body)
            if entries:
                lines.extend(["", *entries])
            lines.append("")
        if self.links:
            lines.extend(self.links)
        else:
            while lines and not lines[-1]:
                lines.pop()
        return "\n".join(lines) + "\n"


def _trim(lines: list[str]) -> list[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def _split(text: str) -> _Sections:
    lines = text.splitlines()
    links_start = len(lines)
    while links_start > 0 and (
        _LINK_REFERENCE.match(lines[links_start - 1])
        or not lines[links_start - 1].strip()
    ):
        links_start -= 1
    links = [line for line in lines[links_start:] if line.strip()]
    preamble: list[str] = []
    sections: list[tuple[str, list[str]]] = []
    for line in lines[:links_start]:
        match = _HEADING.match(line)
        if match:
            sections.append((match.group("label"), []))
        elif sections:
            sections[-1][1].append(line)
        else:
            preamble.append(line)
    return _Sections(preamble=preamble, sections=sections, links=links)


def _release_links(
    parsed: _Sections, new_version: str, repository_url: str, tag_prefix: str
) -> list[str]:
    base = repository_url.rstrip("/")
    tag = version_to_tag(new_version, tag_prefix)
    labels = [name for name, _body in parsed.sections]
    position = labels.index(new_version)
    previous = next(
        (name for name in labels[position + 1 :] if name.lower() != UNRELEASED.lower()),
        None,
    )
    if previous is None:
        release_link = f"[{new_version}]: {base}/releases/tag/{tag}"
    else:
        previous_tag = version_to_tag(previous, tag_prefix)
        release_link = f"[{new_version}]: {base}/compare/{previous_tag}...{tag}"
    retained = [
        line
        for line in parsed.links
        if (match := _LINK_REFERENCE.match(line))
        and match.group("label").lower() not in {UNRELEASED.lower(), new_version}
    ]
    return [f"[{UNRELEASED}]: {base}/compare/{tag}...HEAD", release_link, *retained]


def promote_unreleased(
    changelog: str,
    new_version: str,
    is_release_candidate: bool,  # noqa: FBT001
    package_dir: Path,
    repository_url: str | None,
    *,
    tag_prefix: str = DEFAULT_TAG_PREFIX,
) -> str:
    """Move the ``Unreleased`` entries of ``changelog`` into ``new_version``.

    A release that already has a section is left alone, except that release
    candidates absorb any entries added to ``Unreleased`` since the section
    was created. Link references are refreshed when ``repository_url`` is
    given; release tags are named ``tag_prefix`` plus the version.
    """
    parsed = _split(changelog)
    unreleased_index = parsed.index_of(UNRELEASED)
    if unreleased_index is None:
        message = f"Changelog in {package_dir} has no '## [{UNRELEASED}]' section."
        raise ChangelogFormatError(message)
    pending = _trim(parsed.sections[unreleased_index][1])
    existing_index = parsed.index_of(new_version)
    if existing_index is not None:
        if not is_release_candidate or not pending:
            return changelog
        _name, body = parsed.sections[existing_index]
        parsed.sections[existing_index] = (new_version, [*pending, "", *_trim(body)])
    else:
        parsed.sections.insert(unreleased_index + 1, (new_version, pending))
    parsed.sections[unreleased_index] = (UNRELEASED, [])
    if repository_url:
        parsed.links = _release_links(
            parsed, new_version, repository_url, tag_prefix
        )
    return parsed.render()
