#!/usr/bin/env python3
"""
Command line tools for Rolotabs.

Usage:
    rolo match URL_A URL_B          - Compare two URLs the way tabs are matched
    rolo show SCENARIO.yaml         - Run a scenario and print the panel
    rolo pins list --store PATH     - Show the persisted pinned order
    rolo pins clear --store PATH    - Forget the pinned order
    rolo config init PATH           - Write a default configuration
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import click
import yaml
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from rolotabs.daemon.config import Config
from rolotabs.daemon.error_handling import RolotabsError
from rolotabs.daemon.main import run_scenario, setup_logging
from rolotabs.daemon.models import ManagedBookmark, PanelState
from rolotabs.daemon.store import SettingsStore
from rolotabs.daemon.urls import normalize_url, urls_match

console = Console()


@click.group()
@click.option("--log-level", default=None, help="Log level for stderr (default WARNING)")
@click.pass_context
def cli(ctx, log_level: Optional[str]):
    """Rolotabs - bookmarks that act as tabs."""
    ctx.obj = {'log_level': log_level}
    setup_logging((log_level or "WARNING").upper())


@cli.command()
@click.argument("url_a")
@click.argument("url_b")
def match(url_a: str, url_b: str):
    """Show normalized forms of two URLs and whether they match."""
    console.print(f"[cyan]{normalize_url(url_a)}[/cyan]")
    console.print(f"[cyan]{normalize_url(url_b)}[/cyan]")
    if urls_match(url_a, url_b):
        console.print("[green]✓ Match[/green]")
    else:
        console.print("[yellow]✗ No match[/yellow]")


@cli.command()
@click.argument("scenario_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Config file path")
@click.option("--store", "-s", "store_path", type=click.Path(dir_okay=False), help="Settings file to use")
@click.option("--json", "as_json", is_flag=True, help="Print the panel state as JSON")
@click.pass_context
def show(ctx, scenario_path: str, config_path: Optional[str], store_path: Optional[str], as_json: bool):
    """Run a scenario against an in-memory browser and print the panel."""
    try:
        config = Config.load(Path(config_path)) if config_path else Config.default()
        if config_path:
            # An explicit --log-level wins over the config file
            level = ctx.obj.get('log_level') or config.log_level
            setup_logging(level.upper(), config.log_file)
        with open(scenario_path, 'r') as f:
            scenario = yaml.safe_load(f) or {}
        store = SettingsStore(Path(store_path)) if store_path else SettingsStore()
        state = asyncio.run(run_scenario(config, scenario, store))
    except (RolotabsError, yaml.YAMLError, KeyError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(state.to_dict(), indent=2))
    else:
        display_state(state)


def display_state(state: PanelState):
    """Display the three panel zones."""
    if state.pinned:
        table = Table(title="Pinned")
        table.add_column("ID", style="dim")
        table.add_column("Title", style="cyan")
        table.add_column("Status")
        for bm in state.pinned:
            table.add_row(bm.id, bm.title, _status(bm))
        console.print(table)

    for root in state.bookmarks:
        tree = Tree(f"[bold]{root.title}[/bold]")
        _add_children(tree, root.children or [])
        console.print(tree)

    if state.open_tabs:
        table = Table(title="Open Tabs")
        table.add_column("Tab", style="dim", justify="right")
        table.add_column("Title", style="cyan")
        table.add_column("URL", no_wrap=False)
        for tab in state.open_tabs:
            title = f"[bold]{tab.title}[/bold]" if tab.is_active else (tab.title or "")
            table.add_row(str(tab.tab_id), title, tab.url or "")
        console.print(table)
    else:
        console.print("[dim]No open tabs without a bookmark[/dim]")


def _add_children(tree: Tree, children: List[ManagedBookmark]):
    for child in children:
        if child.is_folder:
            branch = tree.add(f"📁 {child.title}")
            _add_children(branch, child.children or [])
        else:
            tree.add(f"{child.title} {_status(child)}")


def _status(bm: ManagedBookmark) -> str:
    if not bm.is_loaded:
        return "[dim]○[/dim]"
    label = "[green]●[/green]"
    if bm.is_active:
        label += " [bold]active[/bold]"
    if bm.tab_url and not urls_match(bm.tab_url, bm.url):
        label += f" [yellow]→ {bm.tab_url}[/yellow]"
    return label


@cli.group()
def pins():
    """Inspect the persisted pinned order."""
    pass


@pins.command(name="list")
@click.option("--store", "-s", "store_path", type=click.Path(dir_okay=False), help="Settings file")
def list_pins(store_path: Optional[str]):
    """List pinned bookmark ids in order."""
    store = SettingsStore(_store_path(store_path))
    asyncio.run(store.load())
    pinned = store.pinned_ids()
    if not pinned:
        console.print("[yellow]No pinned bookmarks[/yellow]")
        return
    for i, bookmark_id in enumerate(pinned, 1):
        console.print(f"  {i}. {bookmark_id}")


@pins.command(name="clear")
@click.option("--store", "-s", "store_path", type=click.Path(dir_okay=False), help="Settings file")
def clear_pins(store_path: Optional[str]):
    """Forget the pinned order."""
    asyncio.run(_clear_pins(SettingsStore(_store_path(store_path))))
    console.print("[green]✓ Pinned order cleared[/green]")


async def _clear_pins(store: SettingsStore):
    await store.load()
    await store.set_pinned_ids([])


def _store_path(store_path: Optional[str]) -> Path:
    if store_path:
        return Path(store_path)
    return Config.default().store_path


@cli.group(name="config")
def config_group():
    """Manage configuration files."""
    pass


@config_group.command(name="init")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(path: str, force: bool):
    """Write a default configuration file."""
    target = Path(path)
    if target.exists() and not force:
        console.print(f"[red]Error:[/red] config already exists at {target} (use --force)")
        raise SystemExit(1)
    Config.default().save(target)
    console.print(f"[green]✓ Wrote default config to {target}[/green]")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
