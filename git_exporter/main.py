"""
CLI entry point for git_exporter.

Provides a command-line interface to write a transformed tree to a destination
repository and to inspect what was already exported there.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import GIT_ORIGIN_REV_ID, ExporterConfig, create_default_config
from .destination import GitDestination, VisitResult
from .exceptions import ChangeRejectedException, GitExporterError
from .output import ProcessPushStructuredOutput, StructuredOutput
from .revision import Author, GitRevision, TransformResult

console = Console()


def setup_logging(verbose: bool) -> None:
    """Send log records through rich, DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )


def load_config(config_path: Path) -> ExporterConfig:
    try:
        return ExporterConfig.from_yaml(config_path)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config_path}[/red]")
        console.print("Run 'git-exporter init' to create a configuration file.")
        raise SystemExit(1)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise SystemExit(1)


config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=Path("git_exporter.yaml"),
    help="Path to the exporter configuration file",
)


@click.group()
@click.version_option(package_name="git-exporter")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Git Exporter - write transformed trees to a destination git repository."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("--url", "-u", required=True, help="Destination repository URL or path")
@click.option("--fetch", default="main", show_default=True, help="Ref to fetch")
@click.option("--push", default=None, help="Ref to push to (defaults to --fetch)")
@click.option(
    "--local-repo-path",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Fixed directory for the local clone (a temporary one is used otherwise)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("git_exporter.yaml"),
    help="Output config file path",
)
def init(url: str, fetch: str, push: str | None, local_repo_path: Path | None, output: Path):
    """Initialize a new exporter configuration file."""
    config = create_default_config(
        url=url, fetch=fetch, push=push, local_repo_path=local_repo_path
    )
    config.to_yaml(output)
    console.print(f"[green]Created configuration file: {output}[/green]")
    console.print(f"  Destination: {url}")
    console.print(f"  Fetch: {config.destination.fetch}  Push: {config.destination.push}")


@cli.command()
@config_option
@click.option(
    "--tree",
    "-t",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    required=True,
    help="Directory with the transformed files to export",
)
@click.option("--summary", "-m", required=True, help="Commit message of the exported change")
@click.option("--author", "-a", required=True, help="Author, as 'Name <email>'")
@click.option(
    "--date",
    type=click.DateTime(formats=["%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"]),
    default=None,
    help="Author date (defaults to now)",
)
@click.option("--revision", "-r", required=True, help="Origin revision being exported")
@click.option(
    "--label",
    default=GIT_ORIGIN_REV_ID,
    show_default=True,
    help="Label used to record the origin revision",
)
@click.option("--baseline", default=None, help="Destination revision to build the change on")
@click.option("--ask-confirmation", is_flag=True, help="Show the change and ask before pushing")
@click.option("--force", is_flag=True, help="Allow exporting to a missing destination ref")
@click.option("--dry-run", is_flag=True, help="Commit locally but do not push")
def export(
    config_path: Path,
    tree: Path,
    summary: str,
    author: str,
    date: datetime | None,
    revision: str,
    label: str,
    baseline: str | None,
    ask_confirmation: bool,
    force: bool,
    dry_run: bool,
):
    """Export a transformed tree as a new change in the destination."""
    config = load_config(config_path)
    if force:
        config.general.force = True
    if dry_run:
        config.general.dry_run = True

    try:
        parsed_author = Author.parse(author)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--author")

    structured_output = StructuredOutput()
    destination = GitDestination.from_config(
        config, push_output=ProcessPushStructuredOutput(structured_output)
    )
    click.get_current_context().call_on_close(destination.close)
    writer = destination.new_writer(
        config.destination.destination_files.to_glob(),
        dry_run=config.general.dry_run,
        console=console,
    )
    transform_result = TransformResult(
        path=tree,
        summary=summary,
        author=parsed_author,
        timestamp=date or datetime.now(timezone.utc),
        current_revision=GitRevision(revision, label_name=label),
        baseline=baseline,
        ask_for_confirmation=ask_confirmation,
    )

    try:
        writer.write(transform_result, console)
    except ChangeRejectedException as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise SystemExit(1)
    except GitExporterError as e:
        console.print(f"[red]Export failed: {e}[/red]")
        raise SystemExit(1)

    if writer.skip_push:
        console.print(
            f"[green]✓ Committed locally on {writer.state.local_branch} (push skipped)[/green]"
        )
    for line in structured_output.summary_lines:
        console.print(f"[green]✓ {line.summary}[/green]")


@cli.command()
@config_option
@click.option(
    "--label",
    default=GIT_ORIGIN_REV_ID,
    show_default=True,
    help="Label that records the origin revision",
)
def status(config_path: Path, label: str):
    """Show the last origin revision exported to the destination."""
    config = load_config(config_path)
    destination = GitDestination.from_config(config)
    click.get_current_context().call_on_close(destination.close)
    writer = destination.new_writer(
        config.destination.destination_files.to_glob(), dry_run=True, console=console
    )
    try:
        destination_status = writer.get_destination_status(label)
    except GitExporterError as e:
        console.print(f"[red]Error reading destination: {e}[/red]")
        raise SystemExit(1)

    console.print("\n[bold]Destination Status[/bold]\n")
    console.print(f"  Destination: {config.destination.url} ({config.destination.fetch})")
    if destination_status is None:
        console.print(f"  Last exported {label}: Never")
    else:
        console.print(f"  Last exported {label}: [cyan]{destination_status.baseline}[/cyan]")


@cli.command()
@config_option
@click.option("--start", default=None, help="Revision to start from (defaults to the branch tip)")
@click.option("--limit", "-n", type=int, default=20, show_default=True, help="Commits to show")
def log(config_path: Path, start: str | None, limit: int):
    """Show destination history, following first parents."""
    config = load_config(config_path)
    destination = GitDestination.from_config(config)
    click.get_current_context().call_on_close(destination.close)
    writer = destination.new_writer(
        config.destination.destination_files.to_glob(), dry_run=True, console=console
    )

    table = Table(title=f"{config.destination.url} ({config.destination.fetch})")
    table.add_column("Hash", style="cyan", width=10)
    table.add_column("Date", style="green", width=20)
    table.add_column("Author", style="yellow", width=25)
    table.add_column("Message", style="white")

    def visitor(change):
        message = change.message.split("\n")[0][:60]
        table.add_row(
            change.short_sha,
            change.date.strftime("%Y-%m-%d %H:%M"),
            change.author.name,
            message,
        )
        return VisitResult.TERMINATE if table.row_count >= limit else VisitResult.CONTINUE

    try:
        writer.visit_changes(start, visitor)
    except GitExporterError as e:
        console.print(f"[red]Error reading destination: {e}[/red]")
        raise SystemExit(1)
    console.print(table)


if __name__ == "__main__":
    cli()
