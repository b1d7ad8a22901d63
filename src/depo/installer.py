"""
Dependency installation engine.

Turns a Dependency into a working tree at ``deps/<name>@<version>``:

    UNINSTALLED -> STAGED (clone into deps/<name>@temp)
                -> RESOLVED (constraint checked out, version detected)
                -> FINALIZED (staging directory moved to its versioned path)

Installing something whose versioned directory already exists only re-reads
the version from the working tree. Any failure leaves at most the staging
directory behind, and the next attempt removes it before cloning again.
"""

import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .cli_config import InstallConfig, get_config
from .dependency import Dependency
from .error_handling import (
    DepoError,
    FilesystemError,
    SourceControlError,
    get_error_handler,
)
from .repository import GitRepository
from .structured_logging import (
    get_install_logger,
    log_install_finished,
    log_install_started,
)
from .version_resolver import (
    HEAD_REF,
    RefKind,
    ResolvedRef,
    latest_tag,
    normalize_constraint,
    resolve,
)


class InstallState(Enum):
    UNINSTALLED = "uninstalled"
    STAGED = "staged"
    RESOLVED = "resolved"
    FINALIZED = "finalized"


_TRANSITIONS = {
    InstallState.UNINSTALLED: {InstallState.STAGED, InstallState.FINALIZED},
    InstallState.STAGED: {InstallState.RESOLVED, InstallState.UNINSTALLED},
    InstallState.RESOLVED: {InstallState.FINALIZED, InstallState.UNINSTALLED},
    InstallState.FINALIZED: set(),
}


@dataclass
class InstallAttempt:
    """State trace of a single install call."""

    name: str
    state: InstallState = InstallState.UNINSTALLED
    history: List[InstallState] = field(
        default_factory=lambda: [InstallState.UNINSTALLED]
    )

    def advance(self, new_state: InstallState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid install transition for {self.name}: "
                f"{self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)
        get_install_logger().debug(
            "install_state", dependency=self.name, state=new_state.value
        )


@dataclass
class InstallResult:
    name: str
    version: str
    path: Path
    reused: bool
    history: List[InstallState]


def move_tree(src: Path, dst: Path) -> None:
    """
    Move a directory tree into place.

    A plain rename is tried first. When it fails (cross-device move, handle
    still open) the tree is copied and the source deleted instead. If the
    copy fails, the partial destination is removed before the error is
    raised.
    """
    if not src.exists():
        raise FilesystemError(f"Temp path '{src}' not found", path=src)

    try:
        os.rename(src, dst)
        return
    except OSError as rename_error:
        get_install_logger().warning(
            "finalize_fallback_copy",
            source=str(src),
            destination=str(dst),
            reason=str(rename_error),
        )

    try:
        shutil.copytree(src, dst, symlinks=True)
    except (OSError, shutil.Error) as e:
        shutil.rmtree(dst, ignore_errors=True)
        raise FilesystemError(
            f"Failed to copy '{src}' to '{dst}'", path=dst, cause=e
        ) from e

    try:
        shutil.rmtree(src)
    except OSError as e:
        raise FilesystemError(
            f"Failed to remove staging directory '{src}'", path=src, cause=e
        ) from e


def remove_tree(path: Path) -> bool:
    """Delete a directory tree; returns False when there was nothing to delete."""
    if not path.exists():
        return False
    try:
        shutil.rmtree(path)
    except OSError as e:
        raise FilesystemError(f"Failed to remove '{path}'", path=path, cause=e) from e
    return True


class DependencyInstaller:
    """
    Materializes dependencies under ``<root>/<deps_dir>``.

    One installer serves one project root. Installs run strictly one at a
    time; nothing here guards against concurrent processes.
    """

    def __init__(
        self,
        root: Path,
        config: Optional[InstallConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.root = Path(root)
        self.config = config or get_config().install
        self._sleep = sleep
        self.error_handler = get_error_handler()

    @property
    def deps_dir(self) -> Path:
        return self.root / self.config.deps_dir

    def installed_path(self, dep: Dependency) -> Optional[Path]:
        """Versioned directory of an installed dependency, if present on disk."""
        if not dep.resolved_version:
            return None
        path = dep.final_path(self.deps_dir)
        return path if path.is_dir() else None

    def install(self, dep: Dependency, pin: Optional[str] = None) -> InstallResult:
        """
        Install ``dep`` and record the version actually checked out.

        Args:
            dep: Dependency to install; ``resolved_version`` is updated in place
            pin: Revision (tag name or commit hash) to check out instead of
                resolving the constraint

        Returns:
            InstallResult: Final version and location

        Raises:
            SourceControlError: Clone, checkout or tag enumeration failed
            ResolutionError: The constraint matches no tag or branch
            FilesystemError: Staging or finalization failed
        """
        try:
            return self._install(dep, pin)
        except DepoError as e:
            if e.dependency is None:
                e.dependency = dep.name
            self.error_handler.report(e, "installer", "install")
            raise

    def _install(self, dep: Dependency, pin: Optional[str]) -> InstallResult:
        attempt = InstallAttempt(dep.name)
        log_install_started(dep.name, dep.source_url, dep.version_constraint)

        try:
            self.deps_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"Failed to create '{self.deps_dir}'", path=self.deps_dir, cause=e
            ) from e

        existing = self.installed_path(dep)
        if existing is not None and pin in (None, dep.resolved_version):
            return self._revalidate(dep, existing, attempt)

        staging = dep.staging_path(self.deps_dir)
        remove_tree(staging)

        repo = GitRepository.clone(dep.source_url, staging)
        try:
            attempt.advance(InstallState.STAGED)
            repo.checkout(self._select_ref(repo, dep, pin))
            version = repo.detect_version(self.config.short_hash_length)
            attempt.advance(InstallState.RESOLVED)
        except DepoError:
            attempt.advance(InstallState.UNINSTALLED)
            raise
        finally:
            repo.close()

        # Let the git processes release their handles on the staging tree
        self._sleep(self.config.release_delay_seconds)

        final_path = self.deps_dir / dep.directory_name(version)
        reused = final_path.exists()
        try:
            if reused:
                remove_tree(staging)
            else:
                move_tree(staging, final_path)
        except DepoError:
            attempt.advance(InstallState.UNINSTALLED)
            raise

        attempt.advance(InstallState.FINALIZED)
        dep.resolved_version = version
        log_install_finished(dep.name, version, str(final_path), reused)
        return InstallResult(dep.name, version, final_path, reused, attempt.history)

    def _revalidate(
        self, dep: Dependency, path: Path, attempt: InstallAttempt
    ) -> InstallResult:
        """Accept an existing tree, keeping the recorded version even if HEAD has drifted."""
        with GitRepository.open(path) as repo:
            detected = repo.detect_version(self.config.short_hash_length)

        if detected != dep.resolved_version:
            # The directory name is what the record points at
            get_install_logger().warning(
                "install_version_drift",
                dependency=dep.name,
                recorded=dep.resolved_version,
                detected=detected,
            )

        attempt.advance(InstallState.FINALIZED)
        log_install_finished(dep.name, dep.resolved_version, str(path), True)
        return InstallResult(dep.name, dep.resolved_version, path, True, attempt.history)

    def _select_ref(
        self, repo: GitRepository, dep: Dependency, pin: Optional[str]
    ) -> ResolvedRef:
        if pin is not None:
            if not repo.has_revision(pin):
                raise SourceControlError(
                    f"Revision '{pin}' not found in {dep.source_url}",
                    dependency=dep.name,
                )
            return ResolvedRef(RefKind.REVISION, pin)

        if dep.resolved_version:
            if repo.has_revision(dep.resolved_version):
                return ResolvedRef(RefKind.REVISION, dep.resolved_version)
            get_install_logger().warning(
                "recorded_version_missing",
                dependency=dep.name,
                version=dep.resolved_version,
            )

        return resolve(
            dep.version_constraint,
            repo.tag_names(),
            repo.local_branches(),
            repo.remote_branches(),
        )

    def probe_latest(self, dep: Dependency) -> str:
        """
        Version a fresh install of ``dep`` would get right now.

        Clones into a throwaway directory, applies the constraint (or picks
        the highest version tag when there is none), and returns the detected
        version name.
        """
        try:
            with tempfile.TemporaryDirectory(
                prefix=f"depo-{dep.name}-", ignore_cleanup_errors=True
            ) as tmp:
                with GitRepository.clone(dep.source_url, Path(tmp) / "repo") as repo:
                    tags = repo.tag_names()
                    if normalize_constraint(dep.version_constraint) is None:
                        newest = latest_tag(tags)
                        ref = ResolvedRef(RefKind.TAG, newest) if newest else HEAD_REF
                    else:
                        ref = resolve(
                            dep.version_constraint,
                            tags,
                            repo.local_branches(),
                            repo.remote_branches(),
                        )
                    repo.checkout(ref)
                    return repo.detect_version(self.config.short_hash_length)
        except DepoError as e:
            if e.dependency is None:
                e.dependency = dep.name
            self.error_handler.report(e, "installer", "probe_latest")
            raise
        except OSError as e:
            error = FilesystemError(
                "Failed to create temporary clone directory",
                dependency=dep.name,
                cause=e,
            )
            self.error_handler.report(error, "installer", "probe_latest")
            raise error from e

    def uninstall(self, dep: Dependency) -> List[Path]:
        """
        Remove the versioned directory and any leftover staging directory.

        Missing directories are not an error. Returns the paths deleted.
        """
        removed = []
        candidates = [dep.staging_path(self.deps_dir)]
        if dep.resolved_version:
            candidates.insert(0, dep.final_path(self.deps_dir))

        for path in candidates:
            try:
                if remove_tree(path):
                    removed.append(path)
            except FilesystemError as e:
                e.dependency = dep.name
                self.error_handler.report(e, "installer", "uninstall")
                raise
        return removed

    def remove_version(self, dep: Dependency, version: str) -> bool:
        """Delete ``deps/<name>@<version>`` if it exists."""
        path = self.deps_dir / dep.directory_name(version)
        try:
            return remove_tree(path)
        except FilesystemError as e:
            e.dependency = dep.name
            self.error_handler.report(e, "installer", "remove_version")
            raise
