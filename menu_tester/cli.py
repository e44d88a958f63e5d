"""CLI entry point for the menu tester."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from menu_tester.cache.route_cache import RouteCacheStore
from menu_tester.errors import ConfigError, SessionCorrupt
from menu_tester.models.config import MenuTesterConfig
from menu_tester.orchestrator import Orchestrator
from menu_tester.session.state_machine import cleanup_old_sessions, list_sessions

console = Console()

DEFAULT_CONFIG = "menu-tester.json"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config(path: str) -> MenuTesterConfig:
    try:
        return MenuTesterConfig.load(path)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {path}[/red]")
        console.print("Run 'menu-tester init --url URL' to create one.")
        sys.exit(1)
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Invalid config {path}:[/red] {e}")
        sys.exit(1)


def _route_store(cfg: MenuTesterConfig) -> RouteCacheStore:
    store = RouteCacheStore(cfg.output_path / "menu-cache", cfg.url, cfg.cache)
    store.load()
    return store


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Regression tester for web application menus and routes."""
    setup_logging(verbose)


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option("--mode", type=click.Choice(["route", "menu", "hybrid"]), help="Override the run mode")
@click.option("--resume", "resume_id", default=None, help="Resume an unfinished session by id")
@click.option("--update-baseline", is_flag=True, help="Overwrite screenshot baselines")
@click.option("--fresh", is_flag=True, help="Ignore the route cache")
def run(config: str, mode: str | None, resume_id: str | None, update_baseline: bool, fresh: bool) -> None:
    """Test every configured menu or cached route."""
    cfg = _load_config(config)
    if mode:
        cfg.mode = mode
    if update_baseline:
        cfg.screenshots.update_baseline = True
    if fresh:
        cfg.cache.force_fresh = True

    orchestrator = Orchestrator(cfg)
    try:
        results = orchestrator.run(resume_session_id=resume_id)
    except (ConfigError, SessionCorrupt) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted. Resume with --resume and the session id.[/yellow]")
        sys.exit(130)

    table = Table(title=f"Session {results['session_id']}")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Mode", results["mode"])
    table.add_row("Total", str(results["total"]))
    table.add_row("Passed", f"[green]{results['completed']}[/green]")
    table.add_row("Failed", f"[red]{results['failed']}[/red]")
    table.add_row("Skipped", f"[yellow]{results['skipped']}[/yellow]")
    table.add_row("Success rate", f"{results['success_rate']}%")
    table.add_row("Left the system", str(results["cross_domain_departures"]))
    table.add_row("Failed returns", str(results["failed_returns"]))
    table.add_row("Visual mismatches", str(results["visual_mismatches"]))
    table.add_row("Duration", f"{results['duration_seconds']}s")
    console.print(table)

    if results["failed"]:
        sys.exit(1)


@cli.command()
@click.option("--url", "-u", prompt="Target URL", help="Application URL to test")
@click.option("--output", "-o", default=DEFAULT_CONFIG, help="Config file to write")
def init(url: str, output: str) -> None:
    """Create a default configuration file."""
    config_path = Path(output)
    if config_path.exists() and not click.confirm(f"{config_path} already exists. Overwrite?"):
        return
    try:
        cfg = MenuTesterConfig(url=url)
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("List menus under \"menus\" or leave it empty to discover them, then run:")
    console.print(f"  [blue]menu-tester run -c {config_path}[/blue]")


# ----------------------------------------------------------------------
# Sessions
# ----------------------------------------------------------------------


@cli.group()
def sessions() -> None:
    """Inspect and clean up saved test sessions."""


@sessions.command("list")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def sessions_list(config: str) -> None:
    """List unfinished sessions that can be resumed."""
    cfg = _load_config(config)
    found = list_sessions(cfg.output_path)
    if not found:
        console.print("[yellow]No unfinished sessions[/yellow]")
        return
    table = Table(title="Resumable sessions")
    table.add_column("Session")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Progress")
    for info in found:
        table.add_row(info.session_id, info.status, info.started,
                      f"{info.completed_menus}/{info.total_menus}")
    console.print(table)


@sessions.command("clean")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option("--keep-days", type=int, default=None, help="Keep sessions finished within N days")
def sessions_clean(config: str, keep_days: int | None) -> None:
    """Delete completed sessions older than the retention period."""
    cfg = _load_config(config)
    days = cfg.keep_session_days if keep_days is None else keep_days
    removed = cleanup_old_sessions(cfg.output_path, keep_days=days)
    console.print(f"[green]Removed {removed} session file(s)[/green]")


# ----------------------------------------------------------------------
# Routes
# ----------------------------------------------------------------------


@cli.group()
def routes() -> None:
    """Manage the route cache."""


@routes.command("list")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def routes_list(config: str) -> None:
    """Show cached routes."""
    store = _route_store(_load_config(config))
    entries = store.all_routes()
    if not entries:
        console.print("[yellow]Route cache is empty[/yellow]")
        return
    table = Table(title=f"Routes for {store.site_url}")
    table.add_column("Menu")
    table.add_column("Level")
    table.add_column("URL")
    for entry in entries:
        table.add_row(entry.menu_text, str(entry.level), entry.original_url or entry.normalized_url)
    console.print(table)
    info = store.info()
    console.print(f"Cache file: {info['path']} (valid: {info['valid']})")


@routes.command("export")
@click.argument("output")
@click.option("--format", "fmt", type=click.Choice(["json", "csv"]), default="json")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def routes_export(output: str, fmt: str, config: str) -> None:
    """Write cached routes to OUTPUT."""
    store = _route_store(_load_config(config))
    if not store.all_routes():
        console.print("[yellow]No routes to export[/yellow]")
        return
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(store.export_routes(fmt), encoding="utf-8")
    console.print(f"[green]Exported {len(store.all_routes())} routes to {path}[/green]")


@routes.command("import")
@click.argument("source")
@click.option("--mode", type=click.Choice(["merge", "replace"]), default="merge")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def routes_import(source: str, mode: str, config: str) -> None:
    """Import routes from a JSON or CSV file."""
    store = _route_store(_load_config(config))
    try:
        count = store.import_file(source, mode)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Imported {count} routes ({mode})[/green]")


@routes.command("validate")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def routes_validate(config: str) -> None:
    """Check cached route URLs are well formed."""
    store = _route_store(_load_config(config))
    report = store.validate_routes()
    console.print(f"Total: {report.total}  Valid: [green]{report.valid}[/green]  "
                  f"Invalid: [red]{len(report.invalid)}[/red]")
    for item in report.invalid:
        console.print(f"  [red]✗[/red] {item['menu_text']}: {item['url']}")
    if report.invalid:
        sys.exit(1)


@routes.command("clear")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.confirmation_option(prompt="Delete all cached routes?")
def routes_clear(config: str) -> None:
    """Remove every cached route."""
    store = _route_store(_load_config(config))
    store.clear()
    console.print("[green]Route cache cleared[/green]")


@routes.command("template")
@click.argument("output", default="routes-template.json")
@click.option("--url", "-u", default="https://example.com", help="Site URL used in the examples")
def routes_template(output: str, url: str) -> None:
    """Write an example route import file."""
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(RouteCacheStore.template(url), indent=2), encoding="utf-8")
    console.print(f"[green]Template written to {path}[/green]")


if __name__ == "__main__":
    cli()
