"""
Version resolution for source-repository dependencies.

Pure computation over tag and branch names: no repository access happens
here, so every rule can be exercised without git or network. Constraints use
semantic-versioning range syntax (``^1.0``, ``~=2.1``, ``>=1.2,<2``); anything
that does not parse as a range is treated as a branch name.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple

from semantic_version import SimpleSpec, Version

from .error_handling import (
    InvalidConstraintError,
    NoMatchingVersionError,
    UnresolvableConstraintError,
)

REMOTE_PREFIX = "origin/"
PRERELEASE_CLAUSE = re.compile(r"(\d+)\.(\d+)\.(\d+)-[0-9A-Za-z.-]+")


class RefKind(Enum):
    """What a resolved reference points at."""

    TAG = "tag"
    BRANCH = "branch"
    REMOTE_BRANCH = "remote_branch"
    REVISION = "revision"  # tag name or commit hash pinned by the record
    HEAD = "head"  # whatever the clone checked out


@dataclass(frozen=True)
class ResolvedRef:
    kind: RefKind
    name: Optional[str] = None

    @property
    def needs_checkout(self) -> bool:
        return self.kind is not RefKind.HEAD


HEAD_REF = ResolvedRef(RefKind.HEAD)


def normalize_constraint(constraint: Optional[str]) -> Optional[str]:
    """Blank constraints mean "no constraint"."""
    if constraint is None:
        return None
    constraint = constraint.strip()
    return constraint or None


def parse_range(constraint: str) -> Optional[SimpleSpec]:
    """Parse a semantic-version range, or return None if it is not one."""
    try:
        return SimpleSpec(constraint)
    except ValueError:
        return None


def validate_constraint(constraint: str) -> SimpleSpec:
    """
    Validate that a constraint is a semantic-version range.

    Raises:
        InvalidConstraintError: If the expression does not parse
    """
    spec = parse_range(constraint.strip()) if constraint else None
    if spec is None:
        raise InvalidConstraintError(
            f"Invalid version constraint: {constraint!r}",
            suggestions=["Use a range such as '^1.2', '~=2.1' or '>=1.0,<2.0'"],
        )
    return spec


def parse_tag_version(tag: str) -> Optional[Version]:
    """Parse a tag as a semantic version, ignoring one leading ``v``."""
    version_str = tag[1:] if tag.startswith("v") else tag
    try:
        return Version(version_str)
    except ValueError:
        return None


def _versioned_tags(tags: Iterable[str]) -> List[Tuple[Version, str]]:
    """Tags that parse as versions, highest version first."""
    versioned = []
    for tag in tags:
        version = parse_tag_version(tag)
        if version is not None:
            versioned.append((version, tag))
    versioned.sort(key=lambda item: (item[0].precedence_key, item[1]), reverse=True)
    return versioned


def _prerelease_bases(spec: SimpleSpec) -> Set[Tuple[int, int, int]]:
    """Release triples that the range names with a pre-release suffix."""
    return {
        (int(major), int(minor), int(patch))
        for major, minor, patch in PRERELEASE_CLAUSE.findall(spec.expression)
    }


def matching_tags(spec: SimpleSpec, tags: Iterable[str]) -> List[str]:
    """
    All tags satisfying ``spec``, sorted by descending version.

    Pre-release tags only qualify when the range itself names a pre-release
    of the same major.minor.patch, so ``^1.0`` never picks ``v1.3.0-rc.1``.
    """
    allowed = _prerelease_bases(spec)
    return [
        tag
        for version, tag in _versioned_tags(tags)
        if spec.match(version)
        and (not version.prerelease or (version.major, version.minor, version.patch) in allowed)
    ]


def latest_tag(tags: Iterable[str], constraint: Optional[str] = None) -> Optional[str]:
    """
    Highest version tag, optionally restricted to a range constraint.

    Returns None when no tag qualifies.
    """
    constraint = normalize_constraint(constraint)
    if constraint is None:
        versioned = _versioned_tags(tags)
        return versioned[0][1] if versioned else None

    spec = validate_constraint(constraint)
    candidates = matching_tags(spec, tags)
    return candidates[0] if candidates else None


def resolve(
    constraint: Optional[str],
    tags: Iterable[str],
    local_branches: Iterable[str] = (),
    remote_branches: Iterable[str] = (),
) -> ResolvedRef:
    """
    Choose the reference to check out for a constraint.

    Args:
        constraint: Range expression, branch name, or None
        tags: Tag names available in the repository
        local_branches: Local branch names
        remote_branches: Remote-tracking branch names (``origin/<name>``)

    Returns:
        ResolvedRef: The tag or branch to check out, or HEAD_REF when no
        constraint is given

    Raises:
        NoMatchingVersionError: Valid range but no tag satisfies it
        UnresolvableConstraintError: Not a range and no such branch
    """
    constraint = normalize_constraint(constraint)
    if constraint is None:
        return HEAD_REF

    spec = parse_range(constraint)
    if spec is not None:
        candidates = matching_tags(spec, tags)
        if not candidates:
            raise NoMatchingVersionError(
                f"No version matching constraint '{constraint}' found"
            )
        return ResolvedRef(RefKind.TAG, candidates[0])

    if constraint in set(local_branches):
        return ResolvedRef(RefKind.BRANCH, constraint)

    remote_name = f"{REMOTE_PREFIX}{constraint}"
    if remote_name in set(remote_branches):
        return ResolvedRef(RefKind.REMOTE_BRANCH, remote_name)

    raise UnresolvableConstraintError(
        f"Could not resolve constraint '{constraint}'. No matching version, branch, or tag found."
    )
