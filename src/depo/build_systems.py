"""
Build system integration.

A backend knows how to compile one installed dependency and how to emit the
bridge files a consuming project includes to pick up every dependency.
Only CMake is supported today.
"""

import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence

from .cli_config import BuildConfig, InstallConfig, get_config
from .dependency import Dependency
from .error_handling import BuildError, FilesystemError
from .structured_logging import get_build_logger, log_bridge_generated


class BuildBackend(ABC):
    """Interface every supported build system implements."""

    @abstractmethod
    def build(self, dep: Dependency, root: Path) -> None:
        """Configure and compile an installed dependency."""

    @abstractmethod
    def generate_bridge(self, dependencies: Sequence[Dependency], root: Path) -> List[Path]:
        """(Re)write the integration files for the given dependency set."""

    @abstractmethod
    def get_backend_name(self) -> str:
        pass


class CMakeBackend(BuildBackend):
    """
    CMake integration.

    The bridge consists of two files under the deps directory. The first
    (``CMakeIncludes.cmake``) adds each dependency as a subdirectory and puts
    its ``include`` folder on the search path. The second
    (``CMakeLinks.cmake``) links the consuming target against each dependency
    target.
    """

    def __init__(
        self,
        build_config: Optional[BuildConfig] = None,
        install_config: Optional[InstallConfig] = None,
    ):
        config = get_config()
        self.build_config = build_config or config.build
        self.install_config = install_config or config.install

    def get_backend_name(self) -> str:
        return "cmake"

    def _deps_dir(self, root: Path) -> Path:
        return Path(root) / self.install_config.deps_dir

    def build(self, dep: Dependency, root: Path) -> None:
        if not dep.resolved_version:
            raise BuildError(f"{dep.name} is not installed", dependency=dep.name)

        dep_path = dep.final_path(self._deps_dir(root))
        cmake_file = dep_path / "CMakeLists.txt"
        if not cmake_file.exists():
            raise BuildError(
                f"Build file not found for {dep.name}", dependency=dep.name, path=cmake_file
            )

        build_dir = dep_path / "build"
        try:
            build_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"Failed to create build directory for {dep.name}",
                dependency=dep.name,
                path=build_dir,
                cause=e,
            ) from e

        cmake = self.build_config.cmake_executable
        self._run([cmake, ".."], build_dir, dep, "configure")
        self._run([cmake, "--build", "."], build_dir, dep, "build")

    def _run(self, command: List[str], cwd: Path, dep: Dependency, step: str) -> None:
        get_build_logger().info(
            "build_step", dependency=dep.name, step=step, command=" ".join(command)
        )
        try:
            result = subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.build_config.build_timeout_seconds,
            )
        except FileNotFoundError as e:
            raise BuildError(
                f"Failed to run CMake for {dep.name}", dependency=dep.name, cause=e
            ) from e
        except subprocess.TimeoutExpired as e:
            raise BuildError(
                f"CMake {step} timed out for {dep.name}", dependency=dep.name, cause=e
            ) from e

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            raise BuildError(
                f"CMake {step} failed for {dep.name} (exit {result.returncode})",
                dependency=dep.name,
                path=cwd,
                suggestions=[output[-500:]] if output else [],
            )

    def generate_bridge(self, dependencies: Sequence[Dependency], root: Path) -> List[Path]:
        deps_dir = self._deps_dir(root)
        include_lines = []
        link_lines = []

        for dep in dependencies:
            if not dep.resolved_version:
                get_build_logger().warning("bridge_skipped_uninstalled", dependency=dep.name)
                continue
            dep_path = dep.final_path(deps_dir).as_posix()
            include_lines.append(f"add_subdirectory({dep_path})")
            include_lines.append(f"include_directories({dep_path}/include)")
            link_lines.append(
                f"target_link_libraries({self.build_config.link_target} PRIVATE {dep.name})"
            )

        include_path = deps_dir / self.build_config.includes_file
        links_path = deps_dir / self.build_config.links_file
        try:
            deps_dir.mkdir(parents=True, exist_ok=True)
            _write_lines(include_path, include_lines)
            _write_lines(links_path, link_lines)
        except OSError as e:
            raise FilesystemError(
                "Failed to write build bridge files", path=deps_dir, cause=e
            ) from e

        files = [include_path, links_path]
        log_bridge_generated(self.get_backend_name(), len(link_lines), files)
        return files


def _write_lines(path: Path, lines: List[str]) -> None:
    content = "".join(f"{line}\n" for line in lines)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(content)


def get_build_backend(name: Optional[str] = None) -> BuildBackend:
    """
    Factory function to get the configured build backend.

    Raises:
        ValueError: If the backend is not supported
    """
    name = name or get_config().build.backend
    if name == "cmake":
        return CMakeBackend()
    raise ValueError(f"Unsupported build backend: {name}")
