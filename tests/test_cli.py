"""
CLI interface tests for depo.
Tests the command-line interface against real local repositories.
"""

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from depo.dependency import Dependency
from depo.error_handling import RateLimitedError
from depo.main import cli
from depo.package import Package
from depo.persistence import save_package_record


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, project_root):
    def _invoke(*args, **kwargs):
        return runner.invoke(cli, ["--project-dir", str(project_root), *args], **kwargs)

    return _invoke


@pytest.fixture
def initialized(project_root):
    Package.init(project_root)
    return project_root


def _discover_returns(*candidates):
    return patch.object(Package, "discover", new_callable=AsyncMock, return_value=list(candidates))


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_help(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "depo" in result.output.lower()
        for command in ["init", "add", "delete", "install", "update", "build", "list", "constraint", "token"]:
            assert command in result.output

    def test_cli_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_missing_package_record(self, invoke):
        result = invoke("list")

        assert result.exit_code == 1
        assert "depo init" in result.output


class TestInit:
    def test_init(self, invoke, project_root):
        result = invoke("init")

        assert result.exit_code == 0
        assert (project_root / "package.yaml").is_file()

    def test_init_twice(self, invoke, initialized):
        result = invoke("init")

        assert result.exit_code == 1
        assert "already exists" in result.output


class TestAdd:
    """Test the add command with discovery mocked out."""

    def test_add_with_select(self, invoke, initialized, source_repo):
        with _discover_returns(source_repo.dependency()):
            result = invoke("add", "fmt", "--version", "^1.0", "--select", "1")

        assert result.exit_code == 0, result.output
        assert "fmt@v1.2.0" in result.output
        [dep] = Package.load(initialized).dependencies
        assert dep.version_constraint == "^1.0"
        assert (initialized / "deps" / "fmt@v1.2.0").is_dir()

    def test_add_interactive_selection(self, invoke, initialized, source_repo):
        candidates = [
            Dependency("fmt-extras", "someone/fmt-extras", "https://example.invalid/none.git"),
            source_repo.dependency(),
        ]
        with _discover_returns(*candidates):
            result = invoke("add", "fmt", "--version", "^2.0", input="2\n")

        assert result.exit_code == 0, result.output
        assert "someone/fmt-extras" in result.output
        assert Package.load(initialized).get("fmt").resolved_version == "v2.0.0"

    def test_add_without_results(self, invoke, initialized):
        with _discover_returns():
            result = invoke("add", "nothing-like-this")

        assert result.exit_code == 0
        assert "No dependencies found" in result.output

    def test_add_select_out_of_range(self, invoke, initialized, source_repo):
        with _discover_returns(source_repo.dependency()):
            result = invoke("add", "fmt", "--select", "3")

        assert result.exit_code == 2

    def test_add_rate_limited(self, invoke, initialized):
        with patch.object(Package, "discover", new_callable=AsyncMock, side_effect=RateLimitedError()):
            result = invoke("add", "fmt")

        assert result.exit_code == 1
        assert "rate limit" in result.output
        assert "depo token set" in result.output

    def test_add_duplicate(self, invoke, initialized, source_repo):
        with _discover_returns(source_repo.dependency()):
            invoke("add", "fmt", "--select", "1")
        with _discover_returns(source_repo.dependency()):
            result = invoke("add", "fmt", "--select", "1")

        assert result.exit_code == 1
        assert "already exists" in result.output


class TestPackageCommands:
    """Test commands operating on an existing package."""

    @pytest.fixture
    def with_fmt(self, initialized, source_repo):
        Package.load(initialized).add(source_repo.dependency("^1.0"))
        return initialized

    def test_list(self, invoke, with_fmt):
        result = invoke("list")

        assert result.exit_code == 0
        assert "fmt" in result.output
        assert "v1.2.0" in result.output

    def test_list_empty(self, invoke, initialized):
        result = invoke("list")

        assert result.exit_code == 0
        assert "No dependencies found" in result.output

    def test_delete(self, invoke, with_fmt):
        result = invoke("delete", "fmt")

        assert result.exit_code == 0
        assert Package.load(with_fmt).dependencies == []

    def test_delete_unknown(self, invoke, with_fmt):
        result = invoke("delete", "spdlog")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_install_reports_each_dependency(self, invoke, initialized, source_repo):
        save_package_record(
            initialized,
            [
                Dependency("ghost", "nobody/ghost", str(initialized / "missing")),
                source_repo.dependency("^1.0"),
            ],
        )

        result = invoke("install")

        assert result.exit_code == 1
        assert "ghost" in result.output
        assert "1 of 2 dependencies failed" in result.output
        assert (initialized / "deps" / "fmt@v1.2.0").is_dir()

    def test_install_all_succeed(self, invoke, with_fmt):
        result = invoke("install")

        assert result.exit_code == 0

    def test_update_up_to_date(self, invoke, with_fmt):
        result = invoke("update", "fmt")

        assert result.exit_code == 0
        assert "up to date" in result.output

    def test_update_to_new_version(self, invoke, with_fmt):
        invoke("constraint", "fmt", "--new", "^2.0")

        result = invoke("update", "fmt")

        assert result.exit_code == 0, result.output
        assert Package.load(with_fmt).get("fmt").resolved_version == "v2.0.0"

    def test_constraint_requires_one_option(self, invoke, with_fmt):
        assert invoke("constraint", "fmt").exit_code == 2
        assert invoke("constraint", "fmt", "--new", "^2.0", "--remove").exit_code == 2

    def test_constraint_invalid(self, invoke, with_fmt):
        result = invoke("constraint", "fmt", "--new", "whatever")

        assert result.exit_code == 1
        assert Package.load(with_fmt).get("fmt").version_constraint == "^1.0"

    def test_constraint_remove(self, invoke, with_fmt):
        result = invoke("constraint", "fmt", "--remove")

        assert result.exit_code == 0
        assert Package.load(with_fmt).get("fmt").version_constraint is None

    def test_build_failure_exit_code(self, invoke, with_fmt):
        with patch("depo.build_systems.subprocess.run", side_effect=FileNotFoundError("cmake")):
            result = invoke("build")

        assert result.exit_code == 1
        assert "Failed" in result.output


class TestTokenCommands:
    TOKEN = "ghp_0123456789abcdefXYZ"

    def test_token_lifecycle(self, invoke, project_root):
        assert invoke("token", "set", self.TOKEN).exit_code == 0

        result = invoke("token", "check")
        assert "configured" in result.output
        assert "bcdefXYZ" in result.output
        assert self.TOKEN not in result.output

        assert invoke("token", "remove").exit_code == 0
        assert "No GitHub token found" in invoke("token", "check").output

    def test_token_set_prompts(self, invoke, project_root):
        result = invoke("token", "set", input=f"{self.TOKEN}\n")

        assert result.exit_code == 0
        assert (project_root / ".depo.env").is_file()

    def test_invalid_token(self, invoke):
        result = invoke("token", "set", "short")

        assert result.exit_code == 1

    def test_remove_missing_token(self, invoke):
        assert invoke("token", "remove").exit_code == 1


class TestConfigCommands:
    def test_config_init(self, runner, tmp_path):
        path = tmp_path / "depo.json"

        result = runner.invoke(cli, ["config", "init", "--path", str(path)])

        assert result.exit_code == 0
        assert path.is_file()

    def test_config_init_refuses_overwrite(self, runner, tmp_path):
        path = tmp_path / "depo.json"
        path.write_text("{}")

        result = runner.invoke(cli, ["config", "init", "--path", str(path)])

        assert "already exists" in result.output
        assert path.read_text() == "{}"

    def test_config_show(self, runner):
        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        assert "Link Target" in result.output
