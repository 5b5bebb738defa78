"""Rich rendering of run summaries."""

import logging

from rich.console import Console
from rich.table import Table

from hanamal.images.models import SyncReport

console = Console(highlight=False)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def print_report(report: SyncReport, *, title: str = "Image sync") -> None:
    table = Table(title=title)
    table.add_column("Dataset")
    table.add_column("Downloaded", justify="right")
    table.add_column("Reused", justify="right")
    table.add_column("Failed", justify="right")

    for name, stats in report.datasets.items():
        if not stats.total:
            continue
        failed = f"[red]{stats.failed}[/red]" if stats.failed else "0"
        table.add_row(name, str(stats.downloaded), str(stats.reused), failed)

    totals = report.totals
    table.add_section()
    table.add_row(
        "total", str(totals.downloaded), str(totals.reused), str(totals.failed)
    )
    console.print(table)

    for outcome in report.failures:
        console.print(
            f"[yellow]kept remote URL[/yellow] {outcome.slot_key}: {outcome.error}"
        )
    if report.registry_reset:
        console.print(
            "[yellow]image registry was unreadable and has been rebuilt[/yellow]"
        )
    if report.failed_tables:
        console.print(
            f"[red]tables not fetched:[/red] {', '.join(report.failed_tables)}"
        )
    if report.pruned_slots or report.pruned_files:
        console.print(
            f"Pruned {report.pruned_slots} slots and {report.pruned_files} images"
        )
    if report.duration_seconds is not None:
        console.print(f"Done in {report.duration_seconds:.1f}s")
