"""
Shared fixtures for depo tests.

Git-backed fixtures build real repositories in ``tmp_path`` so no test needs
network access.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

import git
import pytest

from depo.cli_config import DepoConfig, reset_config, set_config
from depo.dependency import Dependency
from depo.error_handling import setup_error_handling

AUTHOR = git.Actor("Depo Tests", "tests@example.com")


@dataclass
class SourceRepo:
    """A local upstream repository with a known tag layout."""

    path: Path
    commits: Dict[str, str] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return str(self.path)

    def dependency(self, constraint=None, name="fmt") -> Dependency:
        return Dependency(
            name=name,
            full_name=f"example/{name}",
            source_url=self.url,
            version_constraint=constraint,
        )


def _commit(repo: git.Repo, root: Path, message: str, files: Dict[str, str]) -> str:
    for relative, content in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    repo.index.add([str(root / relative) for relative in files])
    return repo.index.commit(message, author=AUTHOR, committer=AUTHOR).hexsha


@pytest.fixture(autouse=True)
def test_config(monkeypatch):
    """Fast, isolated configuration for every test."""
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    config = DepoConfig()
    config.install.release_delay_seconds = 0
    set_config(config)
    setup_error_handling()
    yield config
    reset_config()


@pytest.fixture
def source_repo(tmp_path) -> SourceRepo:
    """
    Upstream repository ``fmt``:

        main:    c1 (v1.0.0) - c2 (v1.2.0) - c3 (v2.0.0) - c4 (untagged tip)
        develop: c4 - c5
    """
    path = tmp_path / "upstream" / "fmt"
    path.mkdir(parents=True)
    repo = git.Repo.init(path, initial_branch="main")
    source = SourceRepo(path)

    source.commits["c1"] = _commit(
        repo,
        path,
        "Initial import",
        {
            "CMakeLists.txt": "cmake_minimum_required(VERSION 3.10)\nproject(fmt)\n",
            "include/fmt.h": "#define FMT_VERSION 10000\n",
        },
    )
    repo.create_tag("v1.0.0")
    source.commits["c2"] = _commit(repo, path, "Add format", {"include/fmt.h": "#define FMT_VERSION 10200\n"})
    repo.create_tag("v1.2.0")
    source.commits["c3"] = _commit(repo, path, "Break API", {"include/fmt.h": "#define FMT_VERSION 20000\n"})
    repo.create_tag("v2.0.0")
    source.commits["c4"] = _commit(repo, path, "Work in progress", {"NEWS": "unreleased\n"})

    develop = repo.create_head("develop")
    develop.checkout()
    source.commits["c5"] = _commit(repo, path, "Experimental", {"NEWS": "experimental\n"})
    repo.heads.main.checkout()
    repo.close()

    return source


@pytest.fixture
def project_root(tmp_path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root
