"""
registry-express CLI — build, check and serve an MCP server registry.

Usage:
    registry-express build --source local --servers-dir ./servers --output-dir ./dist
    registry-express validate servers/
    registry-express list --servers-dir ./servers
    registry-express serve --port 3443
    registry-express serve --static ./dist
"""

import asyncio
import logging
import os
import sys

import click
from rich.console import Console
from rich.table import Table

from registry_express.config import SOURCES, RegistryConfig
from registry_express.errors import ConfigError

console = Console()


def _configure_logging(verbose: bool, level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_config(**overrides) -> RegistryConfig:
    """Environment configuration with command-line values taking precedence."""
    env = dict(os.environ)
    for key, value in overrides.items():
        if value is not None:
            env[key] = str(value)
    try:
        return RegistryConfig.from_env(env)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def _print_report(report) -> None:
    """Errors and warnings of an ingestion pass as rich tables."""
    if report.errors:
        table = Table(title="Errors", show_header=True, header_style="bold red")
        table.add_column("kind", no_wrap=True)
        table.add_column("file", style="cyan")
        table.add_column("server")
        table.add_column("reason")
        for error in report.errors:
            table.add_row(error.kind, error.path, error.name or "-", error.reason)
        console.print(table)

    if report.warnings:
        console.print(f"\n[yellow]{len(report.warnings)} warning(s):[/yellow]")
        for warning in report.warnings:
            console.print(f"  [yellow]•[/yellow] {warning}")


def _read_local(servers_dir: str):
    from pathlib import Path

    from registry_express.core.ingest import ingest
    from registry_express.sources import LocalDirectorySource, collect_raw_files

    source = LocalDirectorySource(Path(servers_dir))
    return ingest(asyncio.run(collect_raw_files(source, "")))


@click.group()
@click.version_option(package_name="registry-express")
def cli():
    """registry-express — MCP server registry aggregation and sync engine."""
    pass


@cli.command()
@click.option("--source", "-s", type=click.Choice(SOURCES), default=None, help="Source to build from.")
@click.option("--servers-dir", type=click.Path(), default=None, help="Local servers directory.")
@click.option("--output-dir", "-o", type=click.Path(), default=None, help="Static tree output directory.")
@click.option("--force", is_flag=True, help="Rebuild even if the checkpoint matches.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def build(source, servers_dir, output_dir, force, verbose):
    """Ingest the source once and write the static registry tree."""
    from registry_express.core.checkpoint import CheckpointStore
    from registry_express.core.sync import SyncCoordinator, SyncOutcome
    from registry_express.exporters import StaticTreeExporter

    _configure_logging(verbose)
    config = _load_config(MCP_SOURCE=source, MCP_SERVERS_DIR=servers_dir, MCP_OUTPUT_DIR=output_dir)

    coordinator = SyncCoordinator(
        config.make_source(),
        branch=config.branch,
        exporter=StaticTreeExporter(config.output_dir),
        checkpoints=CheckpointStore(config.checkpoint_file),
        poll_interval=0,
        fetch_timeout=float(config.fetch_timeout),
    )

    async def run():
        try:
            if force:
                return await coordinator.refresh("cli", force=True)
            return await coordinator.start()
        finally:
            await coordinator.stop()

    outcome = asyncio.run(run())
    session = coordinator.session

    summary = Table(show_header=False, box=None)
    summary.add_row("[cyan]Source[/cyan]", session.source)
    summary.add_row("[cyan]Commit[/cyan]", session.commit or "-")
    summary.add_row("[cyan]Servers[/cyan]", str(session.views.entry_count))
    summary.add_row("[cyan]Output[/cyan]", str(config.output_dir))
    summary.add_row("[cyan]Outcome[/cyan]", outcome.value)
    console.print(summary)

    if coordinator.last_report is not None:
        _print_report(coordinator.last_report)

    if outcome is SyncOutcome.FAILED:
        console.print(f"\n[bold red][FAILED][/bold red] {session.last_error}")
        sys.exit(1)
    if outcome is SyncOutcome.NO_CHANGE:
        console.print("\n[green]Up to date[/green] (use --force to rebuild)")
    else:
        console.print("\n[bold green][DONE] Build complete[/bold green]")


@cli.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def validate(paths, verbose):
    """Normalize entry files and report every problem found."""
    from pathlib import Path

    from registry_express.core.ingest import ingest
    from registry_express.models.entry import RawFile

    _configure_logging(verbose, logging.CRITICAL)

    files = []
    for path in map(Path, paths):
        candidates = sorted(path.rglob("*.json")) if path.is_dir() else [path]
        files.extend(RawFile(path=p.as_posix(), content=p.read_bytes()) for p in candidates if p.is_file())

    report = ingest(files)
    _print_report(report)
    console.print(f"\n{report.summary()}")

    if not report.ok:
        sys.exit(1)
    console.print("[bold green]All entries valid[/bold green]")


@cli.command(name="list")
@click.option("--servers-dir", "-d", type=click.Path(), default="./servers", help="Local servers directory.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def list_entries(servers_dir, verbose):
    """Show the entries of a local servers directory."""
    _configure_logging(verbose, logging.CRITICAL)
    report = _read_local(servers_dir)

    table = Table(show_header=True, header_style="bold")
    table.add_column("name", style="cyan", no_wrap=True)
    table.add_column("latest", no_wrap=True)
    table.add_column("versions", justify="right")
    table.add_column("description")
    for entry in report.entries:
        table.add_row(entry.name, entry.latest.version, str(len(entry.versions)), entry.description)
    console.print(table)
    console.print(f"\n{report.summary()}")


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address (default: MCP_HOST or 127.0.0.1).")
@click.option("--port", "-p", type=int, default=None, help="Port (default: MCP_PORT or 3443).")
@click.option(
    "--static",
    "static_dir",
    type=click.Path(),
    default=None,
    help="Serve a pre-generated tree instead of syncing.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def serve(host, port, static_dir, verbose):
    """Run the HTTP registry server."""
    from pathlib import Path

    import uvicorn

    from registry_express.core.checkpoint import CheckpointStore
    from registry_express.core.sync import SyncCoordinator
    from registry_express.exporters import DiskViewStore, StaticTreeExporter
    from registry_express.server.app import create_app

    _configure_logging(verbose)
    config = _load_config(MCP_HOST=host, MCP_PORT=port)

    if static_dir:
        store = DiskViewStore(Path(static_dir))
        if not store.exists():
            raise click.ClickException(f"{static_dir} does not contain a built registry (no registry.json)")
        app = create_app(store=store)
        console.print(f"[cyan]Serving static tree[/cyan] {static_dir} ({store.entry_count} servers)")
    else:
        coordinator = SyncCoordinator(
            config.make_source(),
            branch=config.branch,
            exporter=StaticTreeExporter(config.output_dir),
            checkpoints=CheckpointStore(config.checkpoint_file),
            poll_interval=float(config.poll_interval),
            fetch_timeout=float(config.fetch_timeout),
            webhook_secret=config.webhook_secret,
        )
        app = create_app(coordinator=coordinator)
        console.print(f"[cyan]Serving[/cyan] {coordinator.session.source}@{config.branch}")

    console.print(f"[bold green]Listening on http://{config.host}:{config.port}[/bold green]")
    uvicorn.run(app, host=config.host, port=config.port, log_level="debug" if verbose else "info")


if __name__ == "__main__":
    cli()
