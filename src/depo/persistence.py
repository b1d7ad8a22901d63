"""
Load and save the package record (``package.yaml``).

The record is a mapping with a single ``dependencies`` list; each entry has
``name``, ``full_name``, ``url``, ``version_constraint`` and ``version``.
List order is preserved across load and save.
"""

from pathlib import Path
from typing import List, Optional

import yaml

from .cli_config import get_config
from .dependency import Dependency
from .error_handling import PackageRecordNotFoundError, PersistenceError

REQUIRED_KEYS = ("name", "url")


def package_file_path(root: Path, file_name: Optional[str] = None) -> Path:
    return Path(root) / (file_name or get_config().install.package_file)


def package_exists(root: Path) -> bool:
    return package_file_path(root).is_file()


def load_package_record(root: Path) -> List[Dependency]:
    """
    Read the dependency list from the record at ``root``.

    Raises:
        PackageRecordNotFoundError: No record exists
        PersistenceError: The file is unreadable or malformed
    """
    path = package_file_path(root)
    if not path.is_file():
        raise PackageRecordNotFoundError(path)

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise PersistenceError(f"Failed to read {path}", path=path, cause=e) from e

    if data is None:
        return []
    if not isinstance(data, dict):
        raise PersistenceError(f"{path} must contain a mapping", path=path)

    entries = data.get("dependencies") or []
    if not isinstance(entries, list):
        raise PersistenceError(f"'dependencies' in {path} must be a list", path=path)

    dependencies = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise PersistenceError(f"Dependency #{index + 1} in {path} is not a mapping", path=path)
        missing = [key for key in REQUIRED_KEYS if not entry.get(key)]
        if missing:
            raise PersistenceError(
                f"Dependency #{index + 1} in {path} is missing {', '.join(missing)}",
                path=path,
            )
        dependencies.append(Dependency.from_record(entry))

    return dependencies


def save_package_record(root: Path, dependencies: List[Dependency]) -> Path:
    """Write the dependency list to the record at ``root``, replacing it."""
    path = package_file_path(root)
    data = {"dependencies": [dep.to_record() for dep in dependencies]}

    try:
        content = yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
        tmp_path.replace(path)
    except (OSError, yaml.YAMLError) as e:
        raise PersistenceError(f"Failed to write {path}", path=path, cause=e) from e

    return path
