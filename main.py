#!/usr/bin/env python3
"""
datascout - Data surface discovery for unknown web properties

Main entry point for the discovery CLI.

Usage:
    python main.py scan --target https://example.com
    python main.py scan --target https://example.com --mode both --output report.json
    python main.py follow report.json --mode http --output followed.json
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import structlog
import yaml
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

# Add src to path for imports when running from a checkout
sys.path.insert(0, str(Path(__file__).parent / "src"))

from datascout import __version__
from datascout.core.pipeline import (
    FOLLOW_MAX_DEPTH,
    FOLLOW_MAX_PAGES,
    DiscoveryPipeline,
    DiscoveryRequest,
)
from datascout.errors import ConfigError, describe_error
from datascout.report import DiscoveryReport


console = Console()


def configure_logging(verbose: bool = False):
    """Route structlog output to stderr at INFO (or DEBUG when verbose)"""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if verbose else logging.INFO),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """
    Load request defaults from a YAML file.

    Raises:
        ConfigError: If the file cannot be read or is not a mapping
    """
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"config {path} must be a mapping")
    return config


def load_json(path: str, what: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"cannot read {what} {path}: {e}") from e


def merge_options(config: Dict[str, Any], **flags) -> Dict[str, Any]:
    """Explicit CLI flags override config file values"""
    values = dict(config)
    for name, value in flags.items():
        if value is None or value == ():
            continue
        values[name] = list(value) if isinstance(value, tuple) else value
    return values


def fail(error: BaseException):
    console.print("\n[bold red]Discovery failed:[/bold red]")
    console.print_json(json.dumps(describe_error(error)))
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="datascout")
def cli():
    """
    datascout - Data surface discovery

    Crawls a site, captures its runtime API traffic and profiles its JSON.
    """
    pass


@cli.command()
@click.option('--target', help='Seed URL to discover from')
@click.option('--mode', type=click.Choice(['http', 'browser', 'both']), help='Discovery passes to run (default: http)')
@click.option('--max-depth', type=int, help='Link hops followed by the crawl (default: 1)')
@click.option('--max-pages', type=int, help='Crawl page budget (default: 20)')
@click.option('--timeout-ms', type=int, help='Per-request timeout in milliseconds (default: 15000)')
@click.option('--same-origin/--any-origin', default=None, help='Stay on the seed origin (default: same origin)')
@click.option('--headless/--no-headless', default=None, help='Run the browser headless')
@click.option('--auto-scroll/--no-auto-scroll', default=None, help='Scroll captured pages to load lazy content')
@click.option('--fast', 'fast_mode', is_flag=True, default=None, help='Fast capture: commit-only navigation, DOM only')
@click.option('--allow', 'nav_allow_patterns', multiple=True, help='Keep only deep links containing this substring')
@click.option('--storage', type=click.Path(exists=True, dir_okay=False), help='JSON file seeded into localStorage')
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False), help='YAML file with default options')
@click.option('--output', type=click.Path(), help='Save the report to a JSON file')
@click.option('--verbose', is_flag=True, help='Debug logging')
def scan(
    target: Optional[str],
    mode: Optional[str],
    max_depth: Optional[int],
    max_pages: Optional[int],
    timeout_ms: Optional[int],
    same_origin: Optional[bool],
    headless: Optional[bool],
    auto_scroll: Optional[bool],
    fast_mode: Optional[bool],
    nav_allow_patterns: tuple,
    storage: Optional[str],
    config_path: Optional[str],
    output: Optional[str],
    verbose: bool,
):
    """
    Discover the data surface of a site.

    Example:
        python main.py scan --target https://example.com
        python main.py scan --target https://example.com --mode both --allow /product/
    """
    configure_logging(verbose)

    try:
        values = merge_options(
            load_config(config_path),
            seed_url=target,
            mode=mode,
            max_depth=max_depth,
            max_pages=max_pages,
            timeout_ms=timeout_ms,
            same_origin=same_origin,
            headless=headless,
            auto_scroll=auto_scroll,
            fast_mode=fast_mode or None,
            nav_allow_patterns=nav_allow_patterns,
            storage_seed=load_json(storage, "storage seed") if storage else None,
        )
        request = DiscoveryRequest.build(**values)
    except ConfigError as e:
        fail(e)

    console.print("\n" + "=" * 80)
    console.print("datascout - Data Surface Discovery")
    console.print("=" * 80 + "\n")
    console.print(f"[green]Target:[/green] {request.seed_url}")
    console.print(f"[green]Mode:[/green] {request.mode}")
    console.print(f"[green]Max Depth:[/green] {request.max_depth}")
    console.print(f"[green]Max Pages:[/green] {request.max_pages}")
    console.print(f"[green]Same Origin:[/green] {request.same_origin}")
    console.print()

    asyncio.run(run_discovery(request, output))


async def run_discovery(request: DiscoveryRequest, output: Optional[str]):
    """
    Run the pipeline with progress display and print the results.

    Args:
        request: Validated discovery request
        output: Optional path for the report JSON
    """
    try:
        pipeline = DiscoveryPipeline(request)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task(f"[cyan]Discovering ({request.mode})...", total=None)
            report = await pipeline.run()
            progress.update(task, description="[green]Discovery complete!")

        show_report(report)
        save_report(report, output)

    except KeyboardInterrupt:
        console.print("\n\n[yellow]Discovery interrupted by user[/yellow]")
        sys.exit(1)

    except Exception as e:
        fail(e)


@cli.command()
@click.argument('report_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--link', 'links', multiple=True, help='Link to follow (default: the report deep links)')
@click.option('--mode', type=click.Choice(['http', 'browser', 'both']), default='both', help='Passes run per link')
@click.option('--max-depth', type=int, default=FOLLOW_MAX_DEPTH, help=f'Crawl depth per link (default: {FOLLOW_MAX_DEPTH})')
@click.option('--max-pages', type=int, default=FOLLOW_MAX_PAGES, help=f'Crawl budget per link (default: {FOLLOW_MAX_PAGES})')
@click.option('--timeout-ms', type=int, default=15000, help='Per-request timeout in milliseconds')
@click.option('--same-origin/--any-origin', default=True, help='Stay on each link origin')
@click.option('--allow', 'nav_allow_patterns', multiple=True, help='Keep only deep links containing this substring')
@click.option('--storage', type=click.Path(exists=True, dir_okay=False), help='JSON file seeded into localStorage')
@click.option('--output', type=click.Path(), help='Save the merged report to a JSON file')
@click.option('--verbose', is_flag=True, help='Debug logging')
def follow(
    report_path: str,
    links: tuple,
    mode: str,
    max_depth: int,
    max_pages: int,
    timeout_ms: int,
    same_origin: bool,
    nav_allow_patterns: tuple,
    storage: Optional[str],
    output: Optional[str],
    verbose: bool,
):
    """
    Scan deep links of an earlier report and merge them into it.

    Example:
        python main.py follow report.json --output followed.json
        python main.py follow report.json --link https://example.com/a --mode http
    """
    configure_logging(verbose)

    try:
        base = DiscoveryReport.from_dict(load_json(report_path, "report"))
        targets = list(links) or (base.browser.deep_links if base.browser else [])
        if not targets:
            raise ConfigError("no links to follow: pass --link or use a report with browser deep links")
        request = DiscoveryRequest.build(
            seed_url=base.seed_url or (targets[0] if isinstance(targets[0], str) else targets[0].href),
            mode=mode,
            max_depth=max_depth,
            max_pages=max_pages,
            timeout_ms=timeout_ms,
            same_origin=same_origin,
            nav_allow_patterns=list(nav_allow_patterns),
            storage_seed=load_json(storage, "storage seed") if storage else None,
        )
    except (ConfigError, KeyError, TypeError) as e:
        fail(e)

    console.print(f"\n[cyan]Following {min(len(targets), 25)} link(s) from {report_path}...[/cyan]\n")
    asyncio.run(run_follow(request, base, targets, output))


async def run_follow(request: DiscoveryRequest, base: DiscoveryReport, targets: list, output: Optional[str]):
    try:
        report = await DiscoveryPipeline(request).follow_links(base, targets)
        show_report(report)

        if report.nav_trail:
            trail = Table(title="Navigation Trail")
            trail.add_column("From", style="cyan")
            trail.add_column("To", style="green")
            trail.add_column("Title", style="yellow")
            for edge in report.nav_trail:
                trail.add_row(edge.from_url, edge.to_url, edge.page_title)
            console.print(trail)

        save_report(report, output)

    except KeyboardInterrupt:
        console.print("\n\n[yellow]Follow interrupted by user[/yellow]")
        sys.exit(1)

    except Exception as e:
        fail(e)


def show_report(report: DiscoveryReport):
    summary = report.summary

    table = Table(title=f"Discovery Report: {summary.seed_url}")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    table.add_row("Pages scanned", str(summary.pages_scanned))
    table.add_row("Endpoints", str(len(report.endpoints)))
    table.add_row("Images", str(len(report.images)))
    table.add_row("Self-describing documents", str(len(report.self_describing)))
    table.add_row("JSON arrays", str(len(report.arrays)))
    if report.browser is not None:
        table.add_row("API candidates", str(len(report.browser.api_candidates)))
        table.add_row("Captured arrays", str(len(report.browser.array_summaries)))
        table.add_row("Deep links", str(len(report.browser.deep_links)))
        table.add_row("Requests observed", str(report.browser.total_requests))
        if report.browser.dropped_events:
            table.add_row("Dropped events", f"[yellow]{report.browser.dropped_events}[/yellow]")

    console.print()
    console.print(table)

    if report.by_host:
        hosts = Table(title="Endpoints by Host")
        hosts.add_column("Host", style="cyan")
        hosts.add_column("Count", style="green", justify="right")
        for host, count in sorted(report.by_host.items(), key=lambda item: item[1], reverse=True)[:15]:
            hosts.add_row(host, str(count))
        console.print(hosts)

    if report.browser is not None and report.browser.api_candidates:
        apis = Table(title="API Candidates")
        apis.add_column("Method", style="cyan", no_wrap=True)
        apis.add_column("Status", style="yellow")
        apis.add_column("URL", style="green")
        for candidate in report.browser.api_candidates[:20]:
            apis.add_row(candidate.method, str(candidate.status or ""), candidate.url)
        console.print(apis)


def save_report(report: DiscoveryReport, output: Optional[str]):
    if not output:
        return
    output_path = Path(output)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(report.to_dict(), f, indent=2, default=str)

    console.print(f"\n[green]Report saved to:[/green] {output_path}")


@cli.command()
def version():
    """Show version information and capabilities"""
    console.print(f"\n[bold cyan]datascout v{__version__}[/bold cyan]")
    console.print("[cyan]Data surface discovery[/cyan]\n")

    table = Table(title="Module Status")
    table.add_column("Module", style="cyan", no_wrap=True)
    table.add_column("Status", style="green")
    table.add_column("Notes", style="yellow")

    table.add_row("HTTP Crawler", "[green]✓ Complete[/green]", "Batched concurrent crawl, HTML/JSON/XML")
    table.add_row("Browser Capture", "[green]✓ Complete[/green]", "Playwright network capture, fallback ladder")
    table.add_row("Array Summarizer", "[green]✓ Complete[/green]", "Schema-less field profiling")
    table.add_row("Format Detector", "[green]✓ Complete[/green]", "JSON Schema, Iglu, OpenAPI, JSON-LD, HAL")
    table.add_row("Report Merge", "[green]✓ Complete[/green]", "Keyed dedup, navigation trail")
    table.add_row("Provider Adapters", "[green]✓ Complete[/green]", "Generic fallback adapter")

    console.print(table)
    console.print()


if __name__ == '__main__':
    cli()
