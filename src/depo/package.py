"""
The package: a project root, its dependency list and the operations that
mutate them.

Every mutating operation follows the same order: validate, touch the
``deps`` tree, regenerate the build bridge, then persist the record. A
failure before the last step leaves the record on disk untouched.
"""

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .build_systems import BuildBackend, get_build_backend
from .credentials import Credentials
from .dependency import Dependency
from .error_handling import (
    AlreadyExistsError,
    DepoError,
    NotFoundError,
    get_error_handler,
)
from .installer import DependencyInstaller, InstallResult
from .persistence import load_package_record, package_file_path, save_package_record
from .registry_clients import get_search_client
from .structured_logging import get_package_logger, log_dependency_change
from .version_resolver import normalize_constraint, validate_constraint


@dataclass
class OperationOutcome:
    """Result for one dependency within a batch command."""

    name: str
    success: bool
    version: str = ""
    error: Optional[DepoError] = None


@dataclass
class UpdateResult:
    name: str
    changed: bool
    previous_version: str
    version: str


class Package:
    """A project root and the dependencies recorded for it."""

    def __init__(
        self,
        root: Path,
        dependencies: Optional[List[Dependency]] = None,
        installer: Optional[DependencyInstaller] = None,
        backend: Optional[BuildBackend] = None,
    ):
        self.root = Path(root)
        self.dependencies: List[Dependency] = list(dependencies or [])
        self.installer = installer or DependencyInstaller(self.root)
        self.backend = backend or get_build_backend()
        self.error_handler = get_error_handler()

    @classmethod
    def init(cls, root: Path, **kwargs) -> "Package":
        """
        Create an empty package record at ``root``.

        Raises:
            AlreadyExistsError: A record already exists
        """
        path = package_file_path(root)
        if path.exists():
            raise AlreadyExistsError(f"Package file already exists at {path}", path=path)
        package = cls(root, [], **kwargs)
        package.save()
        get_package_logger().info("package_initialized", path=str(path))
        return package

    @classmethod
    def load(cls, root: Path, **kwargs) -> "Package":
        return cls(root, load_package_record(root), **kwargs)

    def save(self) -> Path:
        return save_package_record(self.root, self.dependencies)

    def _index(self, name: str) -> int:
        for index, dep in enumerate(self.dependencies):
            if dep.name == name:
                return index
        raise NotFoundError(f"Dependency '{name}' not found", dependency=name)

    def get(self, name: str) -> Dependency:
        """
        Raises:
            NotFoundError: No dependency with that name
        """
        return self.dependencies[self._index(name)]

    def has(self, name: str) -> bool:
        return any(dep.name == name for dep in self.dependencies)

    def generate_bridge(self) -> List[Path]:
        return self.backend.generate_bridge(self.dependencies, self.root)

    def _commit(self) -> None:
        self.generate_bridge()
        self.save()

    def add(self, dep: Dependency) -> InstallResult:
        """
        Install ``dep`` and append it to the package.

        Raises:
            AlreadyExistsError: A dependency with the same name is recorded
        """
        if self.has(dep.name):
            raise AlreadyExistsError(
                f"Dependency '{dep.name}' already exists", dependency=dep.name
            )
        dep.version_constraint = normalize_constraint(dep.version_constraint)

        result = self.installer.install(dep)
        self.dependencies.append(dep)
        self._commit()
        log_dependency_change(
            "added", dep.name, version=dep.resolved_version, source_url=dep.source_url
        )
        return result

    def remove(self, name: str) -> Dependency:
        """
        Delete the dependency's directories and drop it from the record.

        Missing directories are tolerated.
        """
        index = self._index(name)
        dep = self.dependencies[index]

        self.installer.uninstall(dep)
        del self.dependencies[index]
        self._commit()
        log_dependency_change("removed", name, version=dep.resolved_version)
        return dep

    def update(self, name: str) -> UpdateResult:
        """
        Move a dependency to the newest version its constraint allows.

        The new version is installed before the old directory is deleted, so
        a failed install leaves both the record and the old tree in place.

        The target is the newest matching tag, not the newest commit: an
        unconstrained dependency sitting on an untagged tip moves back to the
        highest version tag.
        """
        dep = self.get(name)
        previous = dep.resolved_version
        target = self.installer.probe_latest(dep)

        if target == previous and self.installer.installed_path(dep) is not None:
            get_package_logger().info(
                "dependency_up_to_date", dependency=name, version=previous
            )
            return UpdateResult(name, False, previous, previous)

        candidate = copy.copy(dep)
        candidate.resolved_version = ""
        self.installer.install(candidate, pin=target)

        if previous and previous != candidate.resolved_version:
            self.installer.remove_version(dep, previous)

        dep.resolved_version = candidate.resolved_version
        self._commit()
        log_dependency_change(
            "updated", name, previous_version=previous, version=dep.resolved_version
        )
        return UpdateResult(name, dep.resolved_version != previous, previous, dep.resolved_version)

    def set_constraint(self, name: str, expr: str) -> Dependency:
        """
        Replace the stored constraint; nothing is reinstalled.

        Raises:
            NotFoundError: No dependency with that name
            InvalidConstraintError: ``expr`` is not a version range
        """
        dep = self.get(name)
        validate_constraint(expr)
        dep.version_constraint = expr.strip()
        self.save()
        log_dependency_change("constraint_set", name, constraint=dep.version_constraint)
        return dep

    def clear_constraint(self, name: str) -> Dependency:
        dep = self.get(name)
        dep.version_constraint = None
        self.save()
        log_dependency_change("constraint_cleared", name)
        return dep

    async def discover(
        self,
        name: str,
        credentials: Optional[Credentials] = None,
        limit: Optional[int] = None,
    ) -> List[Dependency]:
        """Search for candidates to add; they come back unresolved."""
        async with get_search_client(credentials) as client:
            return await client.search(name, limit)

    def install_all(self) -> List[OperationOutcome]:
        """
        Install every dependency in list order.

        A failure is recorded in its outcome and processing moves on. The
        bridge and record are written once at the end.
        """
        outcomes = []
        for dep in self.dependencies:
            try:
                result = self.installer.install(dep)
            except DepoError as e:
                outcomes.append(OperationOutcome(dep.name, False, dep.resolved_version, e))
                continue
            outcomes.append(OperationOutcome(dep.name, True, result.version))

        self._commit()
        return outcomes

    def build_all(self) -> List[OperationOutcome]:
        """Build every installed dependency, then regenerate the bridge."""
        outcomes = []
        for dep in self.dependencies:
            try:
                self.backend.build(dep, self.root)
            except DepoError as e:
                if e.dependency is None:
                    e.dependency = dep.name
                self.error_handler.report(e, "package", "build_all")
                outcomes.append(OperationOutcome(dep.name, False, dep.resolved_version, e))
                continue
            outcomes.append(OperationOutcome(dep.name, True, dep.resolved_version))

        self.generate_bridge()
        return outcomes
