"""
Console output for discovery runs.

Provides color-coded console output using Rich library.
"""

from typing import List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .forge_client import RepositoryRef
from .graph import DependencyGraph, NodeCategory, OutdatedEdge
from .graph_builder import DiscoveryResult, DiscoveryStatus, ProgressSnapshot
from .versioning import VersionChange

CATEGORY_STYLES = {
    NodeCategory.PROJECT: ("📦 Project", "blue"),
    NodeCategory.MONOREPO_SERVICE: ("🧩 Monorepo service", "magenta"),
    NodeCategory.DEPENDENCY: ("🔗 Dependency", "green"),
    NodeCategory.INACTIVE: ("💤 Inactive", "dim"),
}

CHANGE_STYLES = {
    VersionChange.MAJOR: "bold red",
    VersionChange.MINOR: "yellow",
    VersionChange.PATCH: "cyan",
}


class GraphReporter:
    """Formats and displays discovery results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_progress(self, snapshot: ProgressSnapshot) -> None:
        """Print one line per processed repository."""
        prefix = f"[dim][{snapshot.index}/{snapshot.total}][/dim]"
        if not snapshot.has_manifests:
            self.console.print(f"{prefix} {snapshot.repository}: [dim]no composer.json[/dim]")
            return

        if snapshot.dependencies:
            found = ", ".join(snapshot.dependencies)
            self.console.print(f"{prefix} {snapshot.repository}: [green]{found}[/green]")
        else:
            self.console.print(f"{prefix} {snapshot.repository}: [dim]no internal dependencies[/dim]")

    def print_result(self, result: DiscoveryResult, organization: str) -> None:
        """
        Print a finished run: header, warnings, summary, tables and outdated edges.

        Args:
            result: Result of the discovery run
            organization: Organization that was analysed
        """
        self.console.print()
        self._print_header(organization)

        if result.warnings:
            self._print_warnings(result.warnings)

        if result.status is DiscoveryStatus.ERROR:
            self.console.print(f"❌ {result.message}", style="bold red")
            return

        if result.status is DiscoveryStatus.EMPTY:
            self.console.print(f"ℹ️  {result.message}", style="yellow")
            return

        graph = result.graph
        self._print_summary(graph)
        self._print_nodes(graph)
        self._print_edges(graph)
        self._print_outdated(graph.outdated_edges())
        self._print_footer(graph)

    def print_repositories(self, repositories: List[RepositoryRef], window_days: int) -> None:
        """Print an organization's repositories with their activity state."""
        table = Table(title="📚 Repositories", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Repository", style="bold")
        table.add_column("Default branch")
        table.add_column("Last push")
        table.add_column("State", justify="center")

        for repo in repositories:
            if repo.archived:
                state = "[dim]archived[/dim]"
            elif repo.is_active(window_days):
                state = "[green]active[/green]"
            else:
                state = "[yellow]stale[/yellow]"
            pushed = repo.last_pushed_at.strftime("%Y-%m-%d") if repo.last_pushed_at else "-"
            table.add_row(repo.name, repo.default_branch, pushed, state)

        self.console.print(table)

    def _print_header(self, organization: str) -> None:
        self.console.print(
            Panel(
                f"🕸️  Internal dependencies of {organization}",
                title="[bold blue]Composer Dependency Graph[/bold blue]",
                border_style="blue",
            )
        )

    def _print_summary(self, graph: DependencyGraph) -> None:
        """Print node counts by category."""
        table = Table(title="📊 Summary", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Category", style="bold")
        table.add_column("Nodes", justify="center")

        for category, nodes in graph.nodes_by_category().items():
            if not nodes:
                continue
            label, color = CATEGORY_STYLES[category]
            table.add_row(f"[{color}]{label}[/{color}]", str(len(nodes)))
        table.add_row("[bold]Edges[/bold]", str(len(graph.edges)))

        self.console.print(table)
        self.console.print()

    def _print_nodes(self, graph: DependencyGraph) -> None:
        table = Table(title="📋 Packages", box=box.SIMPLE, title_style="bold")
        table.add_column("Package", style="bold")
        table.add_column("Version")
        table.add_column("Category")
        table.add_column("Repository")
        table.add_column("Depends on", justify="center")
        table.add_column("Used by", justify="center")

        for node in graph.nodes.values():
            label, color = CATEGORY_STYLES[node.category]
            table.add_row(
                node.display_name,
                node.version,
                f"[{color}]{label}[/{color}]",
                node.repository or "-",
                str(len(graph.dependencies_of(node.id))),
                str(len(graph.dependents_of(node.id))),
            )

        self.console.print(table)

    def _print_edges(self, graph: DependencyGraph) -> None:
        if not graph.edges:
            return

        table = Table(title="➡️  Dependencies", box=box.SIMPLE, title_style="bold")
        table.add_column("From", style="bold")
        table.add_column("To")
        table.add_column("Version")

        for edge in graph.edges:
            table.add_row(
                graph.nodes[edge.source].display_name,
                graph.nodes[edge.target].display_name,
                edge.version_constraint,
            )

        self.console.print(table)

    def _print_outdated(self, outdated: List[OutdatedEdge]) -> None:
        if not outdated:
            return

        lines = []
        for item in outdated:
            change = item.difference.type
            style = CHANGE_STYLES.get(change, "white")
            lines.append(
                f"• {item.edge.source} → {item.edge.target}: "
                f"{item.edge.version_constraint} → {item.latest_version} "
                f"[{style}]({change.value})[/{style}]"
            )

        self.console.print(
            Panel(
                "\n".join(lines),
                title="[bold yellow]⚠️  Outdated dependencies[/bold yellow]",
                border_style="yellow",
            )
        )

    def _print_warnings(self, warnings: List[str]) -> None:
        warning_text = "\n".join(f"• {escape(warning)}" for warning in warnings)
        self.console.print(
            Panel(
                warning_text,
                title="[bold yellow]⚠️  Warnings[/bold yellow]",
                border_style="yellow",
            )
        )
        self.console.print()

    def _print_footer(self, graph: DependencyGraph) -> None:
        self.console.print(
            f"\n[dim]Found {len(graph.nodes)} packages and "
            f"{len(graph.edges)} internal dependencies[/dim]"
        )
