"""CLI for tanker."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .comms import Comms
from .config import TankerConfig, load_config
from .constants import TANKER_VERSION
from .context import background, cancel_on_signals
from .errors import ConfigError, ProtocolError, TankerError
from .logs import setup_logging
from .transfer import build_store, run_transfer
from .utils import humanize_size


app = typer.Typer(help="""\
git-lfs custom transfer agent that stores large files in Google Cloud
Storage, OpenStack Swift, FTP or a local directory.""")

# stdout belongs to git-lfs during a transfer
console = Console(stderr=True)


def _load(config_path: Optional[Path], base_url: Optional[str], data_dir: Optional[str]) -> TankerConfig:
    """Load config and apply command-line overrides."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    overrides = {}
    if base_url:
        overrides["base_url"] = base_url
    if data_dir:
        overrides["data_dir"] = data_dir
    return config.model_copy(update=overrides)


ConfigOption = typer.Option(None, "--config", "-c", help="Config file (default: .tanker/config.yaml)")
BaseUrlOption = typer.Option(None, "--base-url", help="Remote storage URL objects are stored under")


@app.command()
def transfer(
    config_path: Optional[Path] = ConfigOption,
    base_url: Optional[str] = BaseUrlOption,
    data_dir: Optional[str] = typer.Option(None, "--data-dir", help="Local directory for downloads"),
):
    """Run the transfer agent over stdin/stdout (invoked by git-lfs)."""
    config = _load(config_path, base_url, data_dir)
    setup_logging(config.logging.path, config.logging.level)

    # SIGINT/SIGTERM abort the in-flight transfer, which git-lfs sees as an error.
    with cancel_on_signals(background()) as ctx:
        try:
            run_transfer(config, Comms.stdio(), ctx=ctx)
        except ProtocolError as e:
            console.print(f"[red]✗[/red] Protocol error: {e}")
            raise typer.Exit(1)
        except TankerError as e:
            console.print(f"[red]✗[/red] {e}")
            raise typer.Exit(1)

    if ctx.cancelled:
        console.print("[yellow]Transfer interrupted[/yellow]")
        raise typer.Exit(130)


@app.command("ls")
def list_objects(
    url: Optional[str] = typer.Argument(None, help="URL to list (default: base URL)"),
    config_path: Optional[Path] = ConfigOption,
    base_url: Optional[str] = BaseUrlOption,
):
    """List the objects stored at or under a URL."""
    config = _load(config_path, base_url, None)
    setup_logging(config.logging.path, config.logging.level)
    target = url or config.base_url

    try:
        if url:
            config = config.model_copy(update={"base_url": url})
        store = build_store(config)
        objects = store.list(background(), target)
    except TankerError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    if not objects:
        console.print(f"[dim]No objects under {target}[/dim]")
        return

    table = Table(title=target)
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    table.add_column("ETag", style="dim")
    for obj in objects:
        modified = obj.last_modified.strftime("%Y-%m-%d %H:%M:%S") if obj.last_modified else "-"
        table.add_row(obj.name, humanize_size(obj.size), modified, obj.etag or "-")
    console.print(table)
    console.print(f"[dim]{len(objects)} object(s), {humanize_size(sum(o.size for o in objects))}[/dim]")


@app.command()
def stat(
    oid: str = typer.Argument(..., help="Object ID (path relative to the base URL)"),
    config_path: Optional[Path] = ConfigOption,
    base_url: Optional[str] = BaseUrlOption,
):
    """Show metadata for one stored object."""
    config = _load(config_path, base_url, None)
    setup_logging(config.logging.path, config.logging.level)

    try:
        store = build_store(config)
        obj = store.stat(background(), store.join(config.base_url, oid))
    except TankerError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold]{obj.url}[/bold]")
    console.print(f"  Name:     {obj.name}")
    console.print(f"  Size:     {humanize_size(obj.size)} ({obj.size} bytes)")
    if obj.last_modified:
        console.print(f"  Modified: {obj.last_modified.isoformat()}")
    if obj.etag:
        console.print(f"  ETag:     {obj.etag}")


@app.command()
def version():
    """Show the agent version."""
    console.print(f"tanker {TANKER_VERSION}")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
