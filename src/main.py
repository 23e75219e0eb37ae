"""Main entry point for PipelineWatch."""

import argparse
import asyncio
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import PipelineConfig, load_config
from .engine.aggregator import StreamingAggregator
from .runs.errors import SourceListUnavailable
from .runs.models import AggregateResult, Snapshot, WorkflowRun

console = Console()
# Log records go to stderr so stdout stays parseable with --json.
log_console = Console(stderr=True)

DEFAULT_CONFIG_PATH = "config/config.yaml"

OUTCOME_STYLES = {
    "in_progress": "yellow",
    "queued": "dim",
    "success": "green",
    "failure": "red",
    "cancelled": "dim",
    "skipped": "dim",
}


def make_log_handler() -> logging.Handler:
    """A rich handler writing to stderr."""
    return RichHandler(console=log_console, show_path=False)


def setup_logging(verbose: bool = False) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[make_log_handler()],
    )


def build_config(args: argparse.Namespace) -> PipelineConfig:
    """Load the config file and apply command-line overrides."""
    config_path = Path(args.config)
    if config_path.exists():
        try:
            raw = load_config(config_path)
        except (yaml.YAMLError, ValueError) as e:
            console.print(f"[red]Error:[/red] Could not read config file {config_path}:\n{e}")
            raise SystemExit(1)
    elif args.config != DEFAULT_CONFIG_PATH:
        console.print(f"[red]Error:[/red] Config file not found: {config_path}")
        raise SystemExit(1)
    else:
        raw = {}

    section = raw.get("pipeline") or {}
    if not isinstance(section, dict):
        console.print(f"[red]Error:[/red] 'pipeline' in {config_path} must be a mapping")
        raise SystemExit(1)
    section = dict(section)
    if args.exclude:
        section["exclude_owners"] = set(section.get("exclude_owners") or []) | set(args.exclude)
    if args.concurrency is not None:
        section["concurrency"] = args.concurrency
    if args.max_recent is not None:
        section["max_recent"] = args.max_recent

    try:
        return PipelineConfig.model_validate(section)
    except ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid configuration in {config_path}:\n{e}")
        raise SystemExit(1)


def _runs_table(title: str, runs: tuple[WorkflowRun, ...]) -> Table:
    table = Table(title=title, title_justify="left")
    table.add_column("", width=2)
    table.add_column("Workflow")
    table.add_column("Repository")
    table.add_column("Branch")
    table.add_column("Started")
    table.add_column("Duration", justify="right")

    for run in runs:
        style = OUTCOME_STYLES.get(run.outcome, "")
        table.add_row(
            f"[{style}]{run.status_symbol}[/{style}]" if style else run.status_symbol,
            run.display_name,
            run.repository,
            run.branch_info,
            run.created_at,
            run.duration_string,
        )
    return table


def print_result(result: AggregateResult, error: str | None) -> None:
    """Print the final tables."""
    if result.active:
        console.print(_runs_table(f"Active runs ({len(result.active)})", result.active))
    else:
        console.print("[dim]No active workflow runs[/dim]")

    if result.recent:
        console.print(_runs_table(f"Recent runs ({len(result.recent)})", result.recent))
    else:
        console.print("[dim]No recent workflow runs[/dim]")

    if error:
        console.print(f"\n[yellow]Some repositories could not be queried:[/yellow] {error}")


async def run_sources(config: PipelineConfig) -> int:
    """List the repositories that would be queried."""
    aggregator = StreamingAggregator(config)
    try:
        repos = await aggregator.list_sources()
    except SourceListUnavailable as e:
        console.print(f"[red]✗[/red] Failed to fetch repositories: {e}")
        return 1

    console.print(f"[bold]Found {len(repos)} repositories[/bold]")
    for repo in repos:
        flags = " [dim](archived)[/dim]" if repo.archived else ""
        console.print(f"  {repo.full_name}  [dim]{repo.last_activity}[/dim]{flags}")
    return 0


async def run_aggregate(config: PipelineConfig, as_json: bool = False) -> int:
    """Collect runs across repositories and print them."""
    aggregator = StreamingAggregator(config)

    if as_json:
        result, error = await aggregator.aggregate()
        payload = {"result": result.to_dict() if result else None, "error": error}
        console.print_json(data=payload)
        return 1 if result is None else 0

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Fetching repositories...", total=None)

        def on_progress(snapshot: Snapshot) -> None:
            progress.update(
                task,
                description=(
                    f"Loading workflow runs... {len(snapshot.active)} active, "
                    f"{len(snapshot.recent)} recent"
                ),
            )

        result, error = await aggregator.aggregate(on_progress=on_progress)

    if result is None:
        console.print(f"[red]Pipeline error:[/red] {error}")
        return 1

    print_result(result, error)
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="PipelineWatch - GitHub Actions runs across your repositories"
    )
    parser.add_argument(
        "--config", "-c",
        default=DEFAULT_CONFIG_PATH,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--sources",
        action="store_true",
        help="Only list the repositories that would be queried",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        metavar="OWNER",
        help="Skip repositories owned by OWNER (repeatable)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Maximum gh invocations in flight per category",
    )
    parser.add_argument(
        "--max-recent",
        type=int,
        help="Number of recent runs to keep",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the final result as JSON",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)
    config = build_config(args)

    if args.sources:
        code = asyncio.run(run_sources(config))
    else:
        code = asyncio.run(run_aggregate(config, as_json=args.json))

    raise SystemExit(code)


if __name__ == "__main__":
    main()
