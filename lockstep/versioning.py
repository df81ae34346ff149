"""Release version policy for :mod:`lockstep`.

Translate a requested bump (a release type token or an explicit version) and
the current workspace version into the new version, and classify the
resulting transition. Only a major transition synchronizes intra-workspace
dependency ranges.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

import semver

PRERELEASE_IDENTIFIER: typ.Final[str] = "rc"


class VersionPolicyError(RuntimeError):
    """Raised when a new release version cannot be determined."""


class InvalidVersionError(VersionPolicyError):
    """Raised when a value is not a strict, unprefixed semantic version."""

    def __init__(self, value: object, *, label: str = "version") -> None:
        """Record the rejected ``value`` for the caller."""
        self.value = value
        super().__init__(
            f"Invalid {label} {value!r}; expected a plain semantic version "
            "such as '1.2.3'."
        )


class AmbiguousBumpError(VersionPolicyError):
    """Raised when the requested bump is missing, duplicated or unknown."""

    @classmethod
    def missing(cls) -> AmbiguousBumpError:
        """Neither a release type nor a release version was supplied."""
        return cls("Must specify either a release type or a release version.")

    @classmethod
    def conflicting(cls) -> AmbiguousBumpError:
        """Both a release type and a release version were supplied."""
        return cls("Must specify either a release type or a release version, not both.")

    @classmethod
    def unknown_release_type(cls, token: str) -> AmbiguousBumpError:
        """``token`` does not name a :class:`ReleaseType`."""
        choices = ", ".join(member.value for member in ReleaseType)
        return cls(f"Unrecognised release type {token!r}. Must be one of: {choices}.")


class ReleaseType(enum.StrEnum):
    """Release type tokens accepted on the command line."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    PREMAJOR = "premajor"
    PREMINOR = "preminor"
    PREPATCH = "prepatch"
    PRERELEASE = "prerelease"


class TransitionCategory(enum.StrEnum):
    """Structural category of a change between two versions."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    PRERELEASE = "prerelease"


@dc.dataclass(frozen=True, slots=True)
class BumpSpec:
    """Exactly one of a release type or an explicit target version."""

    release_type: ReleaseType | None = None
    release_version: str | None = None

    def __post_init__(self) -> None:
        """Reject specifications that name zero or two bump requests."""
        if self.release_type is None and self.release_version is None:
            raise AmbiguousBumpError.missing()
        if self.release_type is not None and self.release_version is not None:
            raise AmbiguousBumpError.conflicting()


def is_valid_version(value: object) -> bool:
    """Return ``True`` when ``value`` is a strict, unprefixed semver string."""
    if not isinstance(value, str):
        return False
    try:
        parsed = semver.Version.parse(value)
    except ValueError:
        return False
    return str(parsed) == value


def parse_version(value: object, *, label: str = "version") -> semver.Version:
    """Parse ``value`` or raise :class:`InvalidVersionError`."""
    if not is_valid_version(value):
        raise InvalidVersionError(value, label=label)
    return semver.Version.parse(typ.cast("str", value))


def parse_bump_spec(
    release_type: str | None,
    release_version: str | None,
) -> BumpSpec:
    """Build a :class:`BumpSpec` from raw user input.

    Empty strings count as absent, matching how CI inputs are delivered.
    """
    release_type = release_type or None
    release_version = release_version or None
    if release_type is None and release_version is None:
        raise AmbiguousBumpError.missing()
    if release_type is not None and release_version is not None:
        raise AmbiguousBumpError.conflicting()
    if release_type is not None:
        try:
            token = ReleaseType(release_type.strip().lower())
        except ValueError as exc:
            raise AmbiguousBumpError.unknown_release_type(release_type) from exc
        return BumpSpec(release_type=token)
    parse_version(release_version, label="release version")
    return BumpSpec(release_version=release_version)


def compute_new_version(current_version: str, bump_spec: BumpSpec) -> str:
    """Return the version that follows ``current_version`` under ``bump_spec``."""
    current = parse_version(current_version, label="current version")
    if bump_spec.release_version is not None:
        parse_version(bump_spec.release_version, label="release version")
        return bump_spec.release_version
    release_type = typ.cast("ReleaseType", bump_spec.release_type)
    return str(_increment(current, release_type))


def _start_prerelease(version: semver.Version) -> semver.Version:
    return version.replace(prerelease=f"{PRERELEASE_IDENTIFIER}.0")


def _increment(current: semver.Version, release_type: ReleaseType) -> semver.Version:
    """Apply ``release_type`` to ``current`` using semver precedence rules."""
    match release_type:
        case ReleaseType.MAJOR:
            # 2.0.0-rc.3 -> 2.0.0 finalises the pending major release.
            if current.prerelease and current.minor == 0 and current.patch == 0:
                return current.finalize_version()
            return current.bump_major()
        case ReleaseType.MINOR:
            if current.prerelease and current.patch == 0:
                return current.finalize_version()
            return current.bump_minor()
        case ReleaseType.PATCH:
            if current.prerelease:
                return current.finalize_version()
            return current.bump_patch()
        case ReleaseType.PREMAJOR:
            return _start_prerelease(current.bump_major())
        case ReleaseType.PREMINOR:
            return _start_prerelease(current.bump_minor())
        case ReleaseType.PREPATCH:
            return _start_prerelease(current.bump_patch())
        case ReleaseType.PRERELEASE:
            if current.prerelease:
                return current.bump_prerelease(token=PRERELEASE_IDENTIFIER)
            return _start_prerelease(current.bump_patch())
    raise AmbiguousBumpError.unknown_release_type(str(release_type))  # pragma: no cover


def classify_transition(
    current_version: str, new_version: str
) -> TransitionCategory | None:
    """Return the category of the change from ``current_version``.

    Components are compared from most to least significant; ``None`` means
    the two versions are identical.
    """
    current = parse_version(current_version, label="current version")
    new = parse_version(new_version, label="new version")
    if current.major != new.major:
        return TransitionCategory.MAJOR
    if current.minor != new.minor:
        return TransitionCategory.MINOR
    if current.patch != new.patch:
        return TransitionCategory.PATCH
    if current.prerelease != new.prerelease:
        return TransitionCategory.PRERELEASE
    return None


def is_synchronizing_transition(category: TransitionCategory | None) -> bool:
    """Return ``True`` when ``category`` forces every package to move together."""
    return category is TransitionCategory.MAJOR
