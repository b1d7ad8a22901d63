"""
Console output for package commands.

Renders dependency lists, search candidates and batch outcomes with Rich.
"""

from pathlib import Path
from typing import List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .dependency import Dependency
from .package import OperationOutcome


class PackageReporter:
    """Formats and displays package state and command results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_dependencies(self, dependencies: Sequence[Dependency], deps_dir: Path) -> None:
        """Print the recorded dependencies with their on-disk status."""
        if not dependencies:
            self.console.print("No dependencies found.", style="yellow")
            return

        table = Table(title="📦 Dependencies", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Name", style="bold")
        table.add_column("Version")
        table.add_column("Constraint")
        table.add_column("Source", style="dim")
        table.add_column("Installed", justify="center")

        for dep in dependencies:
            installed = dep.is_resolved and dep.final_path(deps_dir).is_dir()
            table.add_row(
                dep.name,
                dep.resolved_version or "[dim]-[/dim]",
                dep.version_constraint or "[dim]any[/dim]",
                dep.full_name or dep.source_url,
                "[green]✓[/green]" if installed else "[red]✗[/red]",
            )

        self.console.print(table)

    def print_candidates(self, query: str, candidates: Sequence[Dependency]) -> None:
        table = Table(
            title=f"🔍 Results for '{query}'", box=box.SIMPLE, title_style="bold"
        )
        table.add_column("#", justify="right", style="cyan")
        table.add_column("Repository", style="bold", no_wrap=True)
        table.add_column("Clone URL", style="dim", overflow="fold")

        for number, candidate in enumerate(candidates, start=1):
            table.add_row(str(number), candidate.full_name, candidate.source_url)

        self.console.print(table)

    def print_outcomes(self, action: str, outcomes: List[OperationOutcome]) -> None:
        """
        Print one line per dependency of a batch command, then a summary.

        Args:
            action: Past-tense verb for successes ("Installed", "Built")
            outcomes: Per-dependency results in processing order
        """
        for outcome in outcomes:
            if outcome.success:
                version = f"@{outcome.version}" if outcome.version else ""
                self.console.print(f"✅ {action} [bold]{outcome.name}[/bold]{version}")
            else:
                self.console.print(
                    f"❌ Failed: [bold]{outcome.name}[/bold]: {escape(str(outcome.error))}", style="red"
                )

        failed = [o for o in outcomes if not o.success]
        if not outcomes:
            self.console.print("No dependencies to process.", style="yellow")
        elif failed:
            self.console.print(
                f"\n[bold red]{len(failed)} of {len(outcomes)} dependencies failed[/bold red]"
            )
        else:
            self.console.print(f"\n[bold green]All {len(outcomes)} dependencies done[/bold green]")


def create_progress_spinner(description: str, console: Optional[Console] = None) -> Progress:
    """Create a spinner for long-running operations such as clones."""
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console or Console(stderr=True),
        transient=True,
    )
    progress.add_task(description, total=None)
    return progress
