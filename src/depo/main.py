import asyncio
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from .cli_config import create_sample_config, get_config, load_config
from .credentials import load_credentials, remove_token, save_token
from .error_handling import DepoError, PackageRecordNotFoundError, setup_error_handling
from .package import OperationOutcome, Package
from .reporting import PackageReporter, create_progress_spinner
from .structured_logging import (
    clear_command_context,
    configure_logging,
    set_command_context,
)

__version__ = "1.0.0"

console = Console()

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@contextmanager
def depo_errors():
    """Turn core failures into click errors with their suggestions attached."""
    try:
        yield
    except PackageRecordNotFoundError:
        console.print(
            "Package file not found. Use `depo init` to create one.", style="yellow"
        )
        sys.exit(1)
    except DepoError as e:
        message = str(e)
        if e.suggestions:
            message += "".join(f"\n  → {s}" for s in e.suggestions)
        raise click.ClickException(message) from e


def _project_root(ctx: click.Context) -> Path:
    return ctx.obj["root"]


def _load_package(ctx: click.Context) -> Package:
    with depo_errors():
        return Package.load(_project_root(ctx))


def _exit_on_failures(outcomes: List[OperationOutcome]) -> None:
    if any(not outcome.success for outcome in outcomes):
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.option(
    "--project-dir",
    "-C",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Project root holding package.yaml",
    show_default=True,
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Log level for diagnostic output on stderr",
)
@click.option("--verbose", "-v", is_flag=True, help="Shortcut for --log-level DEBUG")
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, project_dir: Path, log_level: Optional[str], verbose: bool, version: bool):
    """
    📦 depo: dependency manager for C/C++ projects

    Finds libraries on GitHub, installs them under deps/ pinned to a tag or
    commit, and generates CMake files that wire them into your build.
    """
    if version:
        console.print(f"depo version {__version__}", style="bold blue")
        ctx.exit()

    config = load_config()
    level = "DEBUG" if verbose else (log_level or config.logging.log_level).upper()
    configure_logging(level)
    setup_error_handling(
        log_level=getattr(logging, level, logging.WARNING),
        mask_sensitive_data=config.logging.enable_sensitive_data_masking,
    )

    ctx.ensure_object(dict)
    ctx.obj["root"] = project_dir.resolve()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
    else:
        set_command_context(str(ctx.obj["root"]), ctx.invoked_subcommand)
        ctx.call_on_close(clear_command_context)


@cli.command()
@click.pass_context
def init(ctx):
    """Create an empty package in the project directory."""
    root = _project_root(ctx)
    with depo_errors():
        Package.init(root)
    console.print(f"✅ Initialized new package in {escape(str(root))}", style="green")


@cli.command()
@click.argument("name")
@click.option(
    "--version",
    "version_constraint",
    default=None,
    help="Version range (e.g. '^1.2', '>=1.0,<2') or branch name",
)
@click.option(
    "--select",
    "selection",
    type=click.IntRange(min=1),
    default=None,
    help="Pick the Nth search result instead of prompting",
)
@click.option(
    "--limit",
    type=click.IntRange(1, 100),
    default=None,
    help="Maximum number of search results",
)
@click.pass_context
def add(ctx, name: str, version_constraint: Optional[str], selection: Optional[int], limit: Optional[int]):
    """Search GitHub for NAME and install the chosen repository."""
    root = _project_root(ctx)
    package = _load_package(ctx)
    credentials = load_credentials(root)

    with depo_errors():
        candidates = asyncio.run(package.discover(name, credentials, limit))

    if not candidates:
        console.print(f"No dependencies found for '{name}'", style="yellow")
        return

    if selection is None:
        PackageReporter(console).print_candidates(name, candidates)
        selection = click.prompt(
            "Select a dependency",
            type=click.IntRange(1, len(candidates)),
            default=1,
        )
    elif selection > len(candidates):
        raise click.BadParameter(
            f"only {len(candidates)} result(s) found", param_hint="'--select'"
        )

    chosen = candidates[selection - 1]
    if version_constraint:
        chosen.version_constraint = version_constraint

    with depo_errors(), create_progress_spinner(f"Installing {chosen.full_name}..."):
        result = package.add(chosen)
    console.print(f"✅ Added dependency: {chosen.name}@{result.version}", style="green")


@cli.command()
@click.argument("name")
@click.pass_context
def delete(ctx, name: str):
    """Remove NAME from the package and delete its files."""
    package = _load_package(ctx)
    with depo_errors():
        package.remove(name)
    console.print(f"🗑️  Deleted dependency: {name}", style="green")


@cli.command()
@click.pass_context
def install(ctx):
    """Install every recorded dependency."""
    package = _load_package(ctx)
    with depo_errors():
        outcomes = package.install_all()
    PackageReporter(console).print_outcomes("Installed", outcomes)
    _exit_on_failures(outcomes)


@cli.command()
@click.argument("name")
@click.pass_context
def update(ctx, name: str):
    """Move NAME to the newest version its constraint allows."""
    package = _load_package(ctx)
    with depo_errors(), create_progress_spinner(f"Checking {name} for updates..."):
        result = package.update(name)

    if result.changed:
        console.print(
            f"⬆️  Updated {name}: {result.previous_version or '-'} → {result.version}",
            style="green",
        )
    else:
        console.print(f"✅ {name} is already up to date ({result.version})", style="green")


@cli.command()
@click.pass_context
def build(ctx):
    """Build every installed dependency with CMake."""
    package = _load_package(ctx)
    with depo_errors():
        outcomes = package.build_all()
    PackageReporter(console).print_outcomes("Built", outcomes)
    _exit_on_failures(outcomes)


@cli.command("list")
@click.pass_context
def list_dependencies(ctx):
    """Show recorded dependencies."""
    package = _load_package(ctx)
    PackageReporter(console).print_dependencies(
        package.dependencies, package.installer.deps_dir
    )


@cli.command()
@click.argument("name")
@click.option("--new", "new_constraint", default=None, help="New version range")
@click.option("--remove", is_flag=True, help="Drop the version constraint")
@click.pass_context
def constraint(ctx, name: str, new_constraint: Optional[str], remove: bool):
    """Change or remove the version constraint of NAME."""
    if bool(new_constraint) == remove:
        raise click.UsageError("Provide either --new <constraint> or --remove")

    package = _load_package(ctx)
    with depo_errors():
        if remove:
            package.clear_constraint(name)
        else:
            package.set_constraint(name, new_constraint)

    if remove:
        console.print(f"✅ Removed constraint for dependency '{name}'", style="green")
    else:
        console.print(
            f"✅ Dependency '{name}' constraint updated to '{new_constraint}'", style="green"
        )


@cli.group()
def token():
    """GitHub token management commands."""
    pass


@token.command("set")
@click.argument("value", metavar="TOKEN", required=False)
@click.pass_context
def token_set(ctx, value: Optional[str]):
    """Store a GitHub token for searches (prompts when TOKEN is omitted)."""
    if value is None:
        value = click.prompt("GitHub token", hide_input=True)
    with depo_errors():
        path = save_token(_project_root(ctx), value)
    console.print(f"✅ GitHub token saved to {escape(str(path))}", style="green")


@token.command("check")
@click.pass_context
def token_check(ctx):
    """Show whether a GitHub token is configured."""
    credentials = load_credentials(_project_root(ctx))
    if credentials.has_token:
        console.print("🔑 GitHub token is configured", style="green")
        console.print(f"  Token: {credentials.masked_token()}")
        console.print(f"  Source: {credentials.source}", style="dim")
    else:
        console.print("No GitHub token found", style="yellow")
        console.print("Use 'depo token set <your_token>' to add one", style="dim")


@token.command("remove")
@click.pass_context
def token_remove(ctx):
    """Delete the stored GitHub token."""
    with depo_errors():
        remove_token(_project_root(ctx))
    console.print("✅ GitHub token removed", style="green")


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=".depo.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: Path, force: bool):
    """Create a sample configuration file."""
    if path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {escape(str(path))}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        path.write_text(create_sample_config(), encoding="utf-8")
    except OSError as e:
        raise click.ClickException(f"Failed to create config file: {e}") from e

    console.print(f"✅ Created configuration file at {escape(str(path))}", style="green")
    console.print("Edit this file to customize your settings", style="dim")


@config.command("show")
def config_show():
    """Show the effective configuration."""
    console.print(Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue"))

    for section, values in get_config().to_dict().items():
        console.print(f"\n[bold cyan]{section.title()} Settings:[/bold cyan]")
        for key, value in values.items():
            console.print(f"  {key.replace('_', ' ').title()}: {value}")


if __name__ == "__main__":
    cli()
