from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

TEMP_SUFFIX = "temp"
PATH_SEPARATORS = ("/", "\\")


@dataclass
class Dependency:
    """One managed external library, pinned to a source repository revision."""

    name: str
    full_name: str
    source_url: str
    version_constraint: Optional[str] = None
    resolved_version: str = ""

    @property
    def is_resolved(self) -> bool:
        return bool(self.resolved_version)

    def directory_name(self, version: Optional[str] = None) -> str:
        """
        Directory stem ``<name>@<version>`` used under the deps directory.

        Path separators in the version (tags like ``release/3.0``) become
        ``_`` so every version maps to a single directory level.
        """
        version = version if version is not None else self.resolved_version
        for separator in PATH_SEPARATORS:
            version = version.replace(separator, "_")
        return f"{self.name}@{version}"

    def staging_path(self, deps_dir: Path) -> Path:
        return deps_dir / self.directory_name(TEMP_SUFFIX)

    def final_path(self, deps_dir: Path) -> Path:
        """Location for the currently known version, or the staging slot if unresolved."""
        if not self.resolved_version:
            return self.staging_path(deps_dir)
        return deps_dir / self.directory_name()

    def to_record(self) -> Dict[str, Any]:
        """Mapping in the persisted package record layout."""
        return {
            "name": self.name,
            "full_name": self.full_name,
            "url": self.source_url,
            "version_constraint": self.version_constraint,
            "version": self.resolved_version,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Dependency":
        constraint = record.get("version_constraint")
        return cls(
            name=str(record["name"]),
            full_name=str(record.get("full_name") or ""),
            source_url=str(record["url"]),
            version_constraint=str(constraint) if constraint is not None else None,
            resolved_version=str(record.get("version") or ""),
        )
