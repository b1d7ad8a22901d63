"""
Version-control access for dependency checkouts.

Thin wrapper over GitPython that reports every failure as a
SourceControlError carrying the repository location and the underlying
cause.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union

import git

from .error_handling import SourceControlError
from .version_resolver import RefKind, ResolvedRef

_REF_NAMESPACES = {
    RefKind.TAG: "refs/tags/",
    RefKind.BRANCH: "refs/heads/",
    RefKind.REMOTE_BRANCH: "refs/remotes/",
}


class GitRepository:
    """A working tree of one dependency."""

    def __init__(self, repo: git.Repo, location: Union[str, Path]):
        self._repo = repo
        self.location = str(location)

    @classmethod
    def clone(cls, url: str, dest: Path) -> "GitRepository":
        """Clone ``url`` into ``dest`` (which must not exist yet)."""
        try:
            repo = git.Repo.clone_from(url, str(dest))
        except git.GitCommandError as e:
            raise SourceControlError(
                f"Failed to clone '{url}' into '{dest}'", path=dest, cause=e
            ) from e
        return cls(repo, dest)

    @classmethod
    def open(cls, path: Path) -> "GitRepository":
        try:
            repo = git.Repo(str(path))
        except (git.InvalidGitRepositoryError, git.NoSuchPathError) as e:
            raise SourceControlError(
                f"'{path}' is not a git working tree", path=path, cause=e
            ) from e
        return cls(repo, path)

    def close(self) -> None:
        """Release the repository handle and any git subprocesses it keeps."""
        self._repo.close()

    def __enter__(self) -> "GitRepository":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def tag_commits(self) -> Dict[str, str]:
        """Map each tag name to the hex SHA of the commit it points at."""
        commits = {}
        try:
            for tag in self._repo.tags:
                try:
                    commits[tag.name] = tag.commit.hexsha
                except ValueError:
                    # Tags pointing at trees or blobs have no commit
                    continue
        except git.GitCommandError as e:
            raise SourceControlError(
                "Failed to enumerate tags", path=self.location, cause=e
            ) from e
        return commits

    def tag_names(self) -> List[str]:
        return sorted(self.tag_commits())

    def local_branches(self) -> List[str]:
        return [head.name for head in self._repo.heads]

    def remote_branches(self) -> List[str]:
        return [
            ref.name for ref in self._repo.refs if isinstance(ref, git.RemoteReference)
        ]

    def head_commit(self) -> str:
        try:
            return self._repo.head.commit.hexsha
        except ValueError as e:
            raise SourceControlError(
                "Repository has no commit checked out", path=self.location, cause=e
            ) from e

    def has_revision(self, rev: str) -> bool:
        return self._rev_to_commit(rev) is not None

    def _rev_to_commit(self, rev: str) -> Optional[str]:
        try:
            return self._repo.commit(rev).hexsha
        except (git.exc.BadName, git.GitCommandError, ValueError):
            return None

    def checkout_detached(self, rev: str) -> str:
        """Detach HEAD at ``rev`` and update the working tree; returns the commit."""
        commit = self._rev_to_commit(rev)
        if commit is None:
            raise SourceControlError(
                f"Revision '{rev}' not found", path=self.location
            )
        try:
            self._repo.git.checkout("--detach", commit)
        except git.GitCommandError as e:
            raise SourceControlError(
                f"Failed to check out '{rev}'", path=self.location, cause=e
            ) from e
        return commit

    def checkout(self, ref: ResolvedRef) -> Optional[str]:
        """Apply a resolved reference; HEAD references leave the tree alone."""
        if not ref.needs_checkout:
            return None
        return self.checkout_detached(f"{_REF_NAMESPACES.get(ref.kind, '')}{ref.name}")

    def detect_version(self, short_hash_length: int = 7) -> str:
        """
        Name the checked-out revision.

        A tag pointing at HEAD wins (first by name when several do); otherwise
        the abbreviated commit hash serves as a stable pseudo-version.
        """
        head = self.head_commit()
        for name, commit in sorted(self.tag_commits().items()):
            if commit == head:
                return name
        return head[:short_hash_length]
