"""Image registry maintenance commands.

All commands work from the saved datasets and the local registry; only
``process`` and ``check`` touch the network.

Examples::

    $ hanamal images process --refresh
    $ hanamal images check
    $ hanamal images prune
    $ hanamal images dedupe
    $ hanamal images stats --json
"""

import asyncio
import json
from typing import Annotated

import typer
from rich.table import Table

from hanamal.cli.output import configure_logging, console, print_report
from hanamal.config import settings
from hanamal.images.errors import RegistryPersistenceError
from hanamal.images.maintenance import (
    UrlHealth,
    check_urls,
    collect_slot_keys,
    collect_stats,
    find_remote_references,
    prune_orphans,
    remove_duplicate_files,
)
from hanamal.images.registry import RegistryStore
from hanamal.images.rewriter import remap_local_paths
from hanamal.lib.client import build_http_client
from hanamal.records.store import load_datasets, save_datasets
from hanamal.sync import open_registry, open_store, process_saved_data

app = typer.Typer(no_args_is_help=True)

VerboseOption = Annotated[
    bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
]


def _flush_or_exit(registry: RegistryStore) -> None:
    try:
        registry.flush()
    except RegistryPersistenceError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command("process")
def process_cmd(
    refresh: Annotated[
        bool,
        typer.Option("--refresh", help="Re-download images already registered"),
    ] = False,
    verbose: VerboseOption = False,
) -> None:
    """Download images still remote in the saved datasets."""
    configure_logging(verbose)
    try:
        report = asyncio.run(process_saved_data(settings, refresh=refresh))
    except RegistryPersistenceError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    print_report(report)


@app.command("check")
def check_cmd(verbose: VerboseOption = False) -> None:
    """Check that images still served remotely are reachable."""
    configure_logging(verbose)
    datasets = load_datasets(settings.data_dir, settings.airtable_tables)
    references = find_remote_references(datasets, settings.image_fields)
    if not references:
        console.print("All images are local.")
        return

    async def run() -> list[UrlHealth]:
        async with build_http_client(
            timeout=settings.http_timeout_seconds, follow_redirects=True
        ) as client:
            return await check_urls(client, [r.source_url for r in references])

    results = asyncio.run(run())
    broken = [r for r in results if not r.accessible]
    console.print(f"Accessible: {len(results) - len(broken)}")
    console.print(f"Broken: {len(broken)}")
    for result in broken:
        console.print(f"  - {result.url}")
        console.print(f"    Status: {result.status or 'ERROR'}")
        if result.error:
            console.print(f"    Error: {result.error}")
    if broken:
        raise typer.Exit(1)


@app.command("prune")
def prune_cmd(verbose: VerboseOption = False) -> None:
    """Forget slots no saved record uses and delete their images."""
    configure_logging(verbose)
    datasets = load_datasets(settings.data_dir, settings.airtable_tables)
    if not datasets:
        typer.echo("No saved datasets found; refusing to prune everything.", err=True)
        raise typer.Exit(1)

    registry = open_registry(settings)
    result = prune_orphans(
        registry,
        open_store(settings),
        collect_slot_keys(datasets, settings.image_fields),
    )
    _flush_or_exit(registry)
    console.print(
        f"Removed {result.slots_removed} slots and {len(result.files_removed)} images"
    )


@app.command("dedupe")
def dedupe_cmd(verbose: VerboseOption = False) -> None:
    """Collapse byte-identical image files and relink saved datasets."""
    configure_logging(verbose)
    registry = open_registry(settings)
    result = remove_duplicate_files(registry, open_store(settings))
    _flush_or_exit(registry)

    if result.replaced:
        datasets = load_datasets(settings.data_dir, settings.airtable_tables)
        relinked = {
            name: [
                remap_local_paths(r, result.replaced, settings.image_fields)
                for r in records
            ]
            for name, records in datasets.items()
        }
        save_datasets(settings.data_dir, relinked)

    console.print(
        f"Removed {len(result.files_removed)} duplicate files, "
        f"{result.unique} unique images"
    )


@app.command("stats")
def stats_cmd(
    as_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show registry and image directory statistics."""
    stats = collect_stats(open_registry(settings), open_store(settings))
    if as_json:
        typer.echo(json.dumps(stats.model_dump(), indent=2))
        return

    table = Table(title="Image registry")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Registered slots", str(stats.registry.slots))
    table.add_row("Stored images", str(stats.registry.contents))
    table.add_row("Slots sharing a file", str(stats.registry.shared_slots))
    table.add_row("Files on disk", str(stats.files_on_disk))
    table.add_row("Bytes on disk", f"{stats.bytes_on_disk:,}")
    table.add_row("Orphaned files", str(len(stats.orphaned_files)))
    table.add_row("Missing files", str(len(stats.missing_files)))
    console.print(table)
