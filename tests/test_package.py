"""
Package model tests.
Covers record lifecycle, mutations, updates and batch operations.
"""

from unittest.mock import MagicMock, patch

import git
import httpx
import pytest

from depo.build_systems import BuildBackend
from depo.dependency import Dependency
from depo.error_handling import (
    AlreadyExistsError,
    BuildError,
    InvalidConstraintError,
    NotFoundError,
    PackageRecordNotFoundError,
    SourceControlError,
)
from depo.package import Package
from depo.persistence import load_package_record, package_file_path
from depo.registry_clients import GitHubSearchClient


@pytest.fixture
def package(project_root):
    return Package.init(project_root)


class TestLifecycle:
    """Test package creation and loading."""

    def test_init_creates_empty_record(self, project_root):
        Package.init(project_root)

        assert package_file_path(project_root).is_file()
        assert load_package_record(project_root) == []

    def test_init_twice_fails(self, package, project_root):
        with pytest.raises(AlreadyExistsError):
            Package.init(project_root)

    def test_load_without_record(self, project_root):
        with pytest.raises(PackageRecordNotFoundError):
            Package.load(project_root)

    def test_get_unknown(self, package):
        with pytest.raises(NotFoundError):
            package.get("fmt")


class TestAddRemove:
    """Test adding and removing dependencies."""

    def test_add_installs_persists_and_bridges(self, package, project_root, source_repo):
        result = package.add(source_repo.dependency("^1.0"))

        assert result.version == "v1.2.0"
        [stored] = Package.load(project_root).dependencies
        assert stored.name == "fmt"
        assert stored.resolved_version == "v1.2.0"
        assert stored.version_constraint == "^1.0"

        includes = (project_root / "deps" / "CMakeIncludes.cmake").read_text()
        links = (project_root / "deps" / "CMakeLinks.cmake").read_text()
        assert "fmt@v1.2.0" in includes
        assert links == "target_link_libraries(main PRIVATE fmt)\n"

    def test_add_blank_constraint_is_stored_as_none(self, package, project_root, source_repo):
        package.add(source_repo.dependency("  "))

        assert Package.load(project_root).get("fmt").version_constraint is None

    def test_add_duplicate_name(self, package, project_root, source_repo):
        package.add(source_repo.dependency("^1.0"))
        before = package_file_path(project_root).read_bytes()

        with pytest.raises(AlreadyExistsError):
            package.add(source_repo.dependency("^2.0"))

        assert package_file_path(project_root).read_bytes() == before
        assert len(package.dependencies) == 1

    def test_failed_add_leaves_record_untouched(self, package, project_root, source_repo):
        with pytest.raises(SourceControlError):
            package.add(Dependency("ghost", "nobody/ghost", str(project_root / "missing")))

        assert Package.load(project_root).dependencies == []

    def test_remove(self, package, project_root, source_repo):
        package.add(source_repo.dependency("^1.0"))

        package.remove("fmt")

        assert not (project_root / "deps" / "fmt@v1.2.0").exists()
        assert Package.load(project_root).dependencies == []
        assert (project_root / "deps" / "CMakeLinks.cmake").read_text() == ""

    def test_remove_slash_tag_leaves_no_orphan(self, package, project_root, source_repo):
        with git.Repo(source_repo.path) as upstream:
            upstream.create_tag("release/3.0", ref=source_repo.commits["c4"])
        package.add(source_repo.dependency())
        assert package.get("fmt").resolved_version == "release/3.0"

        package.remove("fmt")

        assert sorted(p.name for p in (project_root / "deps").iterdir()) == [
            "CMakeIncludes.cmake",
            "CMakeLinks.cmake",
        ]

    def test_remove_with_missing_directory(self, package, project_root, source_repo):
        package.add(source_repo.dependency("^1.0"))
        package.installer.uninstall(package.get("fmt"))

        package.remove("fmt")

        assert Package.load(project_root).dependencies == []

    def test_remove_unknown_leaves_record_unchanged(self, package, project_root, source_repo):
        package.add(source_repo.dependency("^1.0"))
        before = package_file_path(project_root).read_bytes()

        with pytest.raises(NotFoundError):
            package.remove("spdlog")

        assert package_file_path(project_root).read_bytes() == before


class TestConstraints:
    def test_set_constraint_persists_without_reinstalling(self, package, project_root, source_repo):
        package.add(source_repo.dependency("^1.0"))

        package.set_constraint("fmt", "^2.0")

        stored = Package.load(project_root).get("fmt")
        assert stored.version_constraint == "^2.0"
        assert stored.resolved_version == "v1.2.0"
        assert (project_root / "deps" / "fmt@v1.2.0").is_dir()

    def test_set_invalid_constraint(self, package, project_root, source_repo):
        package.add(source_repo.dependency("^1.0"))

        with pytest.raises(InvalidConstraintError):
            package.set_constraint("fmt", "definitely not a range")

        assert Package.load(project_root).get("fmt").version_constraint == "^1.0"

    def test_set_constraint_unknown(self, package):
        with pytest.raises(NotFoundError):
            package.set_constraint("fmt", "^1.0")

    def test_clear_constraint(self, package, project_root, source_repo):
        package.add(source_repo.dependency("^1.0"))

        package.clear_constraint("fmt")

        assert Package.load(project_root).get("fmt").version_constraint is None


class TestUpdate:
    """Test re-resolution against the current upstream tags."""

    def test_update_without_newer_version_is_noop(self, package, project_root, source_repo):
        package.add(source_repo.dependency("^1.0"))
        before = package_file_path(project_root).read_bytes()

        result = package.update("fmt")

        assert not result.changed
        assert result.version == "v1.2.0"
        assert package_file_path(project_root).read_bytes() == before

    def test_update_moves_to_new_version(self, package, project_root, source_repo):
        package.add(source_repo.dependency("^1.0"))
        package.set_constraint("fmt", "^2.0")

        result = package.update("fmt")

        assert result.changed
        assert (result.previous_version, result.version) == ("v1.2.0", "v2.0.0")
        assert not (project_root / "deps" / "fmt@v1.2.0").exists()
        assert (project_root / "deps" / "fmt@v2.0.0").is_dir()
        assert Package.load(project_root).get("fmt").resolved_version == "v2.0.0"
        assert "fmt@v2.0.0" in (project_root / "deps" / "CMakeIncludes.cmake").read_text()

    def test_unconstrained_update_picks_highest_tag(self, package, project_root, source_repo):
        package.add(source_repo.dependency())

        result = package.update("fmt")

        assert result.previous_version == source_repo.commits["c4"][:7]
        assert result.version == "v2.0.0"

    def test_failed_install_keeps_old_version(self, package, project_root, source_repo):
        package.add(source_repo.dependency("^1.0"))
        package.set_constraint("fmt", "^2.0")

        with patch.object(
            package.installer, "install", side_effect=SourceControlError("clone failed")
        ):
            with pytest.raises(SourceControlError):
                package.update("fmt")

        assert (project_root / "deps" / "fmt@v1.2.0").is_dir()
        assert Package.load(project_root).get("fmt").resolved_version == "v1.2.0"

    def test_update_unknown(self, package):
        with pytest.raises(NotFoundError):
            package.update("fmt")


class TestBatchOperations:
    def test_install_all_continues_after_failure(self, project_root, source_repo):
        deps = [
            Dependency("ghost", "nobody/ghost", str(project_root / "missing")),
            source_repo.dependency("^1.0"),
        ]
        package = Package(project_root, deps)

        outcomes = package.install_all()

        assert [(o.name, o.success) for o in outcomes] == [("ghost", False), ("fmt", True)]
        assert isinstance(outcomes[0].error, SourceControlError)
        assert outcomes[1].version == "v1.2.0"
        stored = {d.name: d.resolved_version for d in Package.load(project_root).dependencies}
        assert stored == {"ghost": "", "fmt": "v1.2.0"}

    def test_build_all_isolates_failures(self, project_root):
        backend = MagicMock(spec=BuildBackend)
        backend.build.side_effect = [BuildError("cmake failed"), None]
        deps = [
            Dependency("fmt", "fmtlib/fmt", "https://example.com/fmt.git", resolved_version="v1.0.0"),
            Dependency("spdlog", "gabime/spdlog", "https://example.com/spdlog.git", resolved_version="v1.12.0"),
        ]
        package = Package(project_root, deps, backend=backend)

        outcomes = package.build_all()

        assert [o.success for o in outcomes] == [False, True]
        assert outcomes[0].error.dependency == "fmt"
        backend.generate_bridge.assert_called_once_with(deps, project_root)


class TestDiscover:
    @pytest.mark.asyncio
    async def test_discover_returns_unresolved_candidates(self, package):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "items": [
                        {"name": "fmt", "full_name": "fmtlib/fmt", "clone_url": "https://github.com/fmtlib/fmt.git"}
                    ]
                },
            )

        def client_factory(credentials):
            return GitHubSearchClient(credentials, transport=httpx.MockTransport(handler))

        with patch("depo.package.get_search_client", side_effect=client_factory):
            candidates = await package.discover("fmt")

        assert [c.full_name for c in candidates] == ["fmtlib/fmt"]
        assert candidates[0].resolved_version == ""
