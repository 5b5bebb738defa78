"""Root CLI app.

Exposed as the ``hanamal`` entry point.

Examples::

    $ hanamal sync
    $ hanamal sync --prune --verbose
    $ hanamal images process
    $ hanamal images check
    $ hanamal images stats --json
"""

import asyncio
from typing import Annotated

import typer

from hanamal.cli.images import app as images_app
from hanamal.cli.output import configure_logging, print_report
from hanamal.config import settings
from hanamal.images.errors import RegistryPersistenceError
from hanamal.sync import SyncConfigurationError, sync_site

app = typer.Typer(
    name="hanamal",
    help="Sync site content from Airtable and keep images local",
    pretty_exceptions_show_locals=False,
    no_args_is_help=True,
    add_completion=False,
)

app.add_typer(images_app, name="images", help="Image registry maintenance")


@app.command()
def sync(
    refresh: Annotated[
        bool,
        typer.Option("--refresh", help="Re-download images already registered"),
    ] = False,
    prune: Annotated[
        bool,
        typer.Option("--prune", help="Delete images no record uses any more"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging"),
    ] = False,
) -> None:
    """Fetch every table and download images while their URLs are fresh."""
    configure_logging(verbose)
    try:
        report = asyncio.run(sync_site(settings, refresh=refresh, prune=prune))
    except SyncConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except RegistryPersistenceError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    print_report(report, title="Airtable sync")
    if report.failed_tables:
        raise typer.Exit(1)
