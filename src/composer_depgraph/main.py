import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from . import __version__
from .cli_config import create_sample_config, get_config, load_config
from .error_handling import setup_error_handling
from .forge_client import (
    ForgeClient,
    ForgeError,
    RepositoryRef,
    filter_active_repositories,
    get_forge_client,
)
from .graph_builder import (
    CONNECTION_FAILURE_MESSAGE,
    DiscoveryResult,
    DiscoveryStatus,
    GraphBuilder,
)
from .reporting import GraphReporter
from .structured_logging import configure_logging

EXIT_ERROR = 1
EXIT_EMPTY = 2

console = Console()


def output_json_results(
    result: DiscoveryResult, organization: str, output_file: Optional[str] = None
) -> None:
    """Export a discovery result as JSON."""
    results = {
        "organization": organization,
        "status": result.status.value,
        "message": result.message,
        "summary": {
            category.value: len(nodes)
            for category, nodes in result.graph.nodes_by_category().items()
        },
        "graph": result.graph.to_dict(),
        "outdated": [
            {
                "source": item.edge.source,
                "target": item.edge.target,
                "version": item.edge.version_constraint,
                "latest_version": item.latest_version,
                "change": item.difference.type.value,
            }
            for item in result.graph.outdated_edges()
        ],
        "warnings": list(result.warnings),
    }

    json_output = json.dumps(results, indent=2, ensure_ascii=False)

    if output_file:
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(json_output)
        Console(stderr=True).print(f"✅ Results saved to {output_file}", style="green")
    else:
        print(json_output)


async def select_repositories(
    client: ForgeClient, organization: str, include_all: bool
) -> List[RepositoryRef]:
    """List the organization's repositories, keeping only active ones unless asked not to."""
    repositories = await client.list_repositories(organization)
    if include_all:
        return repositories
    return filter_active_repositories(repositories)


async def async_discover(
    organization: str,
    repo_names: Sequence[str],
    include_all: bool,
    token: Optional[str],
    reporter: Optional[GraphReporter],
    verbose: bool,
) -> DiscoveryResult:
    """Run discovery against GitHub."""
    async with get_forge_client("github", token=token) as client:
        if repo_names:
            repositories: List[RepositoryRef] = [RepositoryRef(name=name) for name in repo_names]
        else:
            repositories = await select_repositories(client, organization, include_all)
            if verbose:
                console.print(
                    f"📚 Selected {len(repositories)} repositories of {organization}",
                    style="dim",
                )

        progress = reporter.print_progress if reporter is not None else None
        builder = GraphBuilder(client, organization, progress_callback=progress)
        return await builder.run(repositories)


def _resolve_organization(organization: Optional[str]) -> str:
    organization = organization or get_config().discovery.organization
    if not organization:
        raise click.UsageError(
            "An organization is required (argument or discovery.organization in the config)"
        )
    return organization


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    🕸️  composer-depgraph: internal Composer dependency graphs

    Discovers which packages of a GitHub organization depend on each other
    by reading the composer.json files of its repositories.
    """
    if version:
        console.print(f"composer-depgraph version {__version__}", style="bold blue")
        ctx.exit()

    config = load_config()
    configure_logging(config.logging.log_level, config.logging.enable_json)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@click.argument("organization", required=False)
@click.option(
    "--repo",
    "repo_names",
    multiple=True,
    help="Repository to analyse (repeatable; default: the organization's active repositories)",
)
@click.option(
    "--all",
    "include_all",
    is_flag=True,
    help="Analyse every repository of the organization, not only active ones",
)
@click.option("--token", help="GitHub token (default: GITHUB_TOKEN or config)")
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default="console",
    help="Output format for results",
    show_default=True,
)
@click.option(
    "--output-file",
    "-o",
    type=click.Path(),
    help="Save results to file (JSON format only)",
)
@click.option(
    "--fail-on-empty",
    is_flag=True,
    help="Exit with code 2 if no internal dependencies are found",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-critical output")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output with additional details",
)
def discover(
    organization: Optional[str],
    repo_names: Sequence[str],
    include_all: bool,
    token: Optional[str],
    output_format: str,
    output_file: Optional[str],
    fail_on_empty: bool,
    quiet: bool,
    verbose: bool,
) -> None:
    """
    Build the internal dependency graph of an organization.

    Examples:

      composer-depgraph discover my-org

      composer-depgraph discover my-org --repo billing --repo shared-kernel

      composer-depgraph discover my-org --all --output-format json -o graph.json
    """
    organization = _resolve_organization(organization)
    config = get_config()
    final_fail_on_empty = fail_on_empty or config.discovery.fail_on_empty

    if output_file and output_format != "json":
        raise click.ClickException("Output file can only be used with JSON format")
    if repo_names and include_all:
        raise click.ClickException("--all cannot be combined with --repo")

    if verbose:
        configure_logging("INFO", config.logging.enable_json)
        setup_error_handling(logging.INFO)

    reporter = GraphReporter(console)
    show_progress = output_format == "console" and not quiet

    if show_progress:
        console.print(
            Panel(
                f"🕸️  [bold blue]composer-depgraph[/bold blue] v{__version__}",
                border_style="blue",
            )
        )

    try:
        result = asyncio.run(
            async_discover(
                organization,
                repo_names,
                include_all,
                token,
                reporter if show_progress else None,
                verbose,
            )
        )
    except KeyboardInterrupt:
        Console(stderr=True).print("\n⚠️  Discovery interrupted by user", style="yellow")
        sys.exit(130)
    except ForgeError as e:
        Console(stderr=True).print(f"❌ {CONNECTION_FAILURE_MESSAGE}", style="red")
        if verbose:
            Console(stderr=True).print(f"   {escape(str(e))}", style="dim red")
        sys.exit(EXIT_ERROR)
    except Exception as e:
        if not quiet:
            Console(stderr=True).print(f"❌ Error: {escape(str(e))}", style="red")
        sys.exit(EXIT_ERROR)

    if output_format == "json":
        output_json_results(result, organization, output_file)
    elif not quiet:
        reporter.print_result(result, organization)
    elif result.status is not DiscoveryStatus.SUCCESS:
        Console(stderr=True).print(f"❌ {result.message}", style="red")

    if result.status is DiscoveryStatus.ERROR:
        sys.exit(EXIT_ERROR)
    if result.status is DiscoveryStatus.EMPTY and final_fail_on_empty:
        sys.exit(EXIT_EMPTY)


@cli.command()
@click.argument("organization", required=False)
@click.option(
    "--all",
    "include_all",
    is_flag=True,
    help="List every repository, including archived and stale ones",
)
@click.option("--token", help="GitHub token (default: GITHUB_TOKEN or config)")
def repos(organization: Optional[str], include_all: bool, token: Optional[str]) -> None:
    """List the repositories that discovery would select."""
    organization = _resolve_organization(organization)

    async def fetch() -> List[RepositoryRef]:
        async with get_forge_client("github", token=token) as client:
            return await select_repositories(client, organization, include_all)

    try:
        repositories = asyncio.run(fetch())
    except ForgeError as e:
        raise click.ClickException(f"Could not list repositories of {organization}: {e}")

    if not repositories:
        console.print("ℹ️  No repositories selected.", style="yellow")
        return

    GraphReporter(console).print_repositories(
        repositories, get_config().discovery.active_window_days
    )


@cli.command()
def info():
    """Show how packages are classified and how to configure the tool."""
    info_text = """
[bold blue]📋 What is read:[/bold blue]

• [green]composer.json[/green] - every manifest in the default branch, at any depth
• [green]composer.lock[/green] - next to a manifest, for resolved versions
• [green]git tags[/green] - for the latest released version of a repository

[bold blue]🔗 Internal dependencies:[/bold blue]

• Packages whose vendor prefix is the organization ([cyan]my-org/billing[/cyan])
• Packages pulled from a [cyan]github.com/my-org/...[/cyan] repository entry

[bold blue]🎨 Node categories:[/bold blue]

• [blue]Project[/blue] - a package declared by a selected repository
• [magenta]MonorepoService[/magenta] - a package of a repository with several manifests
• [green]Dependency[/green] - an internal package required by a project
• [dim]Inactive[/dim] - a package of an archived repository

[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]GITHUB_TOKEN[/cyan] / [cyan]COMPOSER_DEPGRAPH_TOKEN[/cyan] - API token
• [cyan]COMPOSER_DEPGRAPH_ORGANIZATION[/cyan] - Default organization
• [cyan]COMPOSER_DEPGRAPH_API_URL[/cyan] - GitHub API base URL
• [cyan]COMPOSER_DEPGRAPH_TIMEOUT[/cyan] - Request timeout in seconds
• [cyan]COMPOSER_DEPGRAPH_ACTIVE_WINDOW_DAYS[/cyan] - Activity window
• [cyan]COMPOSER_DEPGRAPH_FAIL_ON_EMPTY[/cyan] - Exit with code 2 on empty graphs

[bold blue]📄 Configuration Files:[/bold blue]

• [green].composer-depgraph.json[/green] / [green].yaml[/green] - Project-level config
• [green]~/.config/composer-depgraph/config.json[/green] - User-level config

[bold blue]💡 Usage Examples:[/bold blue]

  # Active repositories of an organization
  composer-depgraph discover my-org

  # Specific repositories, JSON output
  composer-depgraph discover my-org --repo api --repo shared --output-format json
"""
    console.print(info_text)


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".composer-depgraph.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())
    except OSError as e:
        raise click.ClickException(f"Failed to create config file: {e}")

    console.print(f"✅ Created configuration file at {config_path}", style="green")
    console.print("Edit this file to customize your settings", style="dim")


@config.command("show")
def config_show():
    """Show the effective configuration (the token is redacted)."""
    current_config = get_config()

    console.print(
        Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue")
    )

    for section_name, values in current_config.to_dict(redact=True).items():
        console.print(f"\n[bold cyan]{section_name.title()}:[/bold cyan]")
        for key, value in values.items():
            label = key.replace("_", " ").title()
            console.print(f"  {label}: {escape(str(value)) if value is not None else '-'}")


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
