"""Command-line interface for the sales indexer."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from salesindex import __version__
from salesindex.config import Config, load_config
from salesindex.container import DependencyContainer
from salesindex.dataset.sources import load_floor_price, load_launcher_map
from salesindex.dataset.validator import ValidationReport
from salesindex.observability import configure_logging
from salesindex.pipeline import CrawlReport, ExtractionCheck, validate_extraction
from salesindex.protocols import CrawlState, FatalPreconditionError, RunMode

console = Console()
logger = structlog.get_logger(__name__)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Configuration file path")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level (overrides the configuration file)",
)
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Also write a JSON build log here")
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: Optional[str], log_file: Optional[str]) -> None:
    """salesindex - Build the collection sales index from marketplace trade history."""
    ctx.ensure_object(dict)
    settings = load_config(Path(config) if config else None)
    if log_level:
        settings.monitoring.log_level = log_level
    if log_file:
        settings.monitoring.log_file = log_file
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    configure_logging(settings.monitoring)
    ctx.obj["config"] = settings

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.option("--fresh", is_flag=True, help="Ignore any checkpoint and start over")
@click.option("--resume", is_flag=True, help="Resume from the checkpoint (the default when one exists)")
@click.option("--validate", "validate_only", is_flag=True, help="Check extraction on known sales; write nothing")
@click.option("--retry-failed", is_flag=True, help="On resume, re-attempt entities that failed before")
@click.pass_context
def run(
    ctx: click.Context,
    fresh: bool = False,
    resume: bool = False,
    validate_only: bool = False,
    retry_failed: bool = False,
) -> None:
    """Crawl every launcher and write the sales index."""
    config: Config = ctx.obj["config"]
    if fresh and resume:
        raise click.UsageError("--fresh and --resume are mutually exclusive")
    if retry_failed:
        config.crawler.retry_failed = True

    if validate_only:
        checks = asyncio.run(_validate(config))
        _print_extraction_checks(checks)
        sys.exit(0 if all(check.passed for check in checks) else 1)

    mode = RunMode.FRESH if fresh else RunMode.RESUME if resume else RunMode.AUTO
    try:
        report = asyncio.run(_run(config, mode))
    except FatalPreconditionError as e:
        console.print(f"[red]Fatal: {e}[/red]")
        sys.exit(1)
    except OSError as e:
        console.print(f"[red]Failed to write the sales index: {e}[/red]")
        sys.exit(1)

    _print_report(report)


@cli.command()
@click.argument("path", type=click.Path(dir_okay=False), required=False)
@click.pass_context
def verify(ctx: click.Context, path: Optional[str]) -> None:
    """Check a built sales index for integrity problems."""
    config: Config = ctx.obj["config"]
    container = DependencyContainer(config=config)
    report = container.create_index_validator().validate_file(Path(path) if path else config.paths.output)
    _print_validation(report)
    sys.exit(0 if report.passed else 1)


async def _run(config: Config, mode: RunMode) -> CrawlReport:
    entities = load_launcher_map(config.paths.launcher_map)
    floor_xch = load_floor_price(config.paths.offers_index)
    container = DependencyContainer(config=config)
    async with container.lifecycle():
        orchestrator = await container.create_orchestrator()
        return await orchestrator.run(entities, floor_xch=floor_xch, mode=mode)


async def _validate(config: Config) -> List[ExtractionCheck]:
    container = DependencyContainer(config=config)
    async with container.lifecycle():
        return await validate_extraction(
            config,
            await container.get_http_client(),
            container.create_extractor(),
            load_floor_price(config.paths.offers_index),
        )


def _print_report(report: CrawlReport) -> None:
    table = Table(show_header=False, box=None)
    table.add_row("Processed", f"{report.processed}/{report.total}")
    table.add_row("Successful", str(report.success_count))
    table.add_row("Errors", str(report.error_count))
    table.add_row("Trades found", str(report.trades_found))
    table.add_row("Duration", f"{report.duration:.1f}s")

    if report.state is CrawlState.COMPLETED:
        if report.index is not None:
            table.add_row("Events", str(report.index.count_events))
            table.add_row("Mapped", str(report.index.count_mapped))
        table.add_row("Output", str(report.output_path))
        console.print(Panel(table, title="[green]Sales index built[/green]"))
    else:
        console.print(Panel(table, title="[yellow]Interrupted, checkpoint saved[/yellow]"))
        console.print("Run again (or with --resume) to continue.")


def _print_extraction_checks(checks: List[ExtractionCheck]) -> None:
    table = Table(title="Extraction validation")
    table.add_column("ID")
    table.add_column("Events", justify="right")
    table.add_column("Trades", justify="right")
    table.add_column("Prices (XCH)")
    table.add_column("Expected")
    table.add_column("Status")
    for check in checks:
        expected = "-" if check.expected_price is None else f"{check.expected_price} ({'found' if check.expected_price_found else 'missing'})"
        status = "[green]ok[/green]" if check.passed else f"[red]{check.error or 'no trades'}[/red]"
        table.add_row(
            check.internal_id,
            str(check.events),
            str(len(check.trades)),
            ", ".join(f"{t.price_xch:g}" for t in check.trades if t.price_xch is not None),
            expected,
            status,
        )
    console.print(table)


def _print_validation(report: ValidationReport) -> None:
    console.print(f"[bold]Validating[/bold] {report.path}")
    console.print(
        f"Events: {report.total_events}  Mapped: {report.count_mapped}  Valid prices: {report.count_valid_prices}"
    )
    if report.price_stats:
        stats = report.price_stats
        console.print(
            f"Prices (XCH): min {stats.min:.2f}  q25 {stats.q25:.2f}  median {stats.median:.2f}  "
            f"q75 {stats.q75:.2f}  max {stats.max:.2f}"
        )
    for known in report.known_sales:
        marker = "[green]✓[/green]" if known.price_found else "[yellow]⚠[/yellow]"
        console.print(f"{marker} NFT #{known.internal_id}: {known.events_found} event(s)")

    for title, items, style in (
        ("Issues", report.issues, "red"),
        ("Event issues", report.event_issues, "red"),
        ("Duplicates", report.duplicate_keys, "red"),
        ("Warnings", report.warnings, "yellow"),
    ):
        if items:
            console.print(f"[{style}]{title} ({len(items)}):[/{style}]")
            for item in items[:10]:
                console.print(f"  - {item}")
            if len(items) > 10:
                console.print(f"  ... and {len(items) - 10} more")

    if report.passed:
        console.print("[green]Validation passed[/green]")
    else:
        console.print("[red]Validation failed[/red]")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
