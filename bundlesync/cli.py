"""bundlesync CLI: a thin wrapper over the sync engine and resolver."""

from contextlib import contextmanager

import click
from rich.console import Console
from rich.table import Table

from bundlesync import __version__
from bundlesync.config import load_settings
from bundlesync.errors import BundleSyncError
from bundlesync.log import setup_logging

console = Console()


@contextmanager
def _engine(ctx: click.Context, need_catalog: bool = True):
    """Build the engine lazily so --help never touches storage or the network.

    The catalog client is closed when the block exits. Commands that only
    touch local state get an engine without one.
    """
    from bundlesync.catalog.client import FileCatalogClient, HttpCatalogClient
    from bundlesync.store import IndexStore, PayloadStore
    from bundlesync.sync.engine import SyncEngine

    settings = ctx.obj["settings"]
    catalog_file = ctx.obj["catalog_file"]
    client = None
    if need_catalog:
        if catalog_file:
            client = FileCatalogClient(catalog_file)
        elif settings.endpoint:
            client = HttpCatalogClient.from_settings(settings)
        else:
            raise click.UsageError("No catalog configured: set an endpoint or pass --catalog-file")

    engine = SyncEngine(
        client=client,
        index_store=IndexStore(settings.index_path),
        payload_store=PayloadStore(settings.payload_dir),
        settings=settings,
    )
    with engine:
        yield engine


def _fail(error: BundleSyncError) -> None:
    console.print(f"[red]Error:[/] {error.message}")
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=None, help="YAML settings file")
@click.option("--catalog-file", default=None, help="Read the catalog from a local JSON/YAML file")
@click.option("--storage-dir", default=None, help="Override the local storage directory")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, catalog_file: str | None, storage_dir: str | None):
    """Keep local bundles in step with a remote catalog."""
    try:
        settings = load_settings(config_path)
    except BundleSyncError as e:
        _fail(e)
    if storage_dir:
        settings.storage_dir = storage_dir
    setup_logging(settings.log_level, settings.log_file or None)
    ctx.obj = {"settings": settings, "catalog_file": catalog_file}


# ── Fetch / Sync ─────────────────────────────────────────────────────


@main.command()
@click.pass_context
def fetch(ctx: click.Context):
    """Compare the local index with the remote catalog."""
    with _engine(ctx) as engine:
        try:
            report = engine.fetch()
        except BundleSyncError as e:
            _fail(e)

    table = Table(title="Comparison")
    table.add_column("State", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Bundles")
    for label, ids in (
        ("up to date", report.up_to_date),
        ("stale", report.stale),
        ("remote only", report.remote_only),
        ("orphaned", report.orphaned),
    ):
        table.add_row(label, str(len(ids)), ", ".join(sorted(ids))[:60])
    console.print(table)


@main.command()
@click.option("--evict-orphans", is_flag=True, help="Also evict bundles no longer offered remotely")
@click.pass_context
def sync(ctx: click.Context, evict_orphans: bool):
    """Fetch, then download every stale and new bundle."""
    with _engine(ctx) as engine:
        try:
            report = engine.fetch()
        except BundleSyncError as e:
            _fail(e)
        summary = engine.sync_all(report)
        evicted = engine.evict_orphans(report) if evict_orphans else []

    table = Table(title=f"Sync ({len(summary.outcomes)} bundles)")
    table.add_column("Bundle", style="cyan")
    table.add_column("Outcome")
    table.add_column("Reason")
    colors = {"success": "green", "failed": "red", "skipped": "yellow"}
    for outcome in summary.outcomes.values():
        status = outcome.status.value
        table.add_row(outcome.bundle_id, f"[{colors[status]}]{status}[/]", outcome.reason)
    console.print(table)

    for bundle_id in evicted:
        console.print(f"  Evicted orphan: {bundle_id}")

    if summary.checkpoint_error:
        console.print(f"[red]Index checkpoint failed:[/] {summary.checkpoint_error}")
    if not summary.ok:
        raise SystemExit(1)


# ── Local state ──────────────────────────────────────────────────────


@main.command(name="list")
@click.pass_context
def list_bundles(ctx: click.Context):
    """List bundles in the local index."""
    from bundlesync.store.index_store import IndexStore

    index = IndexStore(ctx.obj["settings"].index_path).load()
    if not len(index):
        console.print("[yellow]No local bundles.[/]")
        return

    table = Table(title=f"Local bundles ({len(index)})")
    table.add_column("Id", style="cyan")
    table.add_column("Version", justify="right")
    table.add_column("Hash")
    table.add_column("Dependencies")
    table.add_column("Updated")
    for entry in index.entries.values():
        table.add_row(
            entry.id,
            str(entry.version),
            entry.content_hash[:16],
            ", ".join(entry.dependencies),
            entry.updated_at,
        )
    console.print(table)


@main.command()
@click.argument("bundle_ids", nargs=-1)
@click.pass_context
def status(ctx: click.Context, bundle_ids: tuple):
    """Show the sync state of bundles (all known bundles by default)."""
    with _engine(ctx) as engine:
        try:
            engine.fetch()
        except BundleSyncError as e:
            _fail(e)

        ids = list(bundle_ids) or sorted(
            {e.id for e in engine.local_entries()} | {d.id for d in engine.catalog}
        )
        for bundle_id in ids:
            console.print(f"  [cyan]{bundle_id}[/] {engine.state(bundle_id).value}")


@main.command()
@click.argument("bundle_id")
@click.pass_context
def evict(ctx: click.Context, bundle_id: str):
    """Remove a bundle from the local index and delete its files."""
    with _engine(ctx, need_catalog=False) as engine:
        evicted = engine.evict(bundle_id)
    if evicted:
        console.print(f"  Evicted: {bundle_id}")
    else:
        console.print(f"[yellow]{bundle_id} is not in the local index.[/]")


@main.command()
@click.confirmation_option(prompt="Delete every local bundle?")
@click.pass_context
def clear(ctx: click.Context):
    """Delete every local bundle and empty the index."""
    with _engine(ctx, need_catalog=False) as engine:
        engine.clear()
    console.print("  Local bundles cleared.")


@main.command()
@click.argument("bundle_id")
@click.pass_context
def closure(ctx: click.Context, bundle_id: str):
    """Print the load order for a local bundle, dependencies first."""
    from bundlesync.graph.resolver import build_graph, transitive_closure
    from bundlesync.store.index_store import IndexStore

    index = IndexStore(ctx.obj["settings"].index_path).load()
    try:
        graph = build_graph(index.entries.values())
        order = transitive_closure(graph, bundle_id)
    except BundleSyncError as e:
        _fail(e)

    for position, item in enumerate(order, start=1):
        console.print(f"  {position}. {item}")
    for anomaly in graph.dangling_in_closure(bundle_id):
        console.print(f"  [yellow]missing:[/] {anomaly}")


if __name__ == "__main__":
    main()
