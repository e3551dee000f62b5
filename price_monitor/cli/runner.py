# price_monitor/cli/runner.py

"""Headless one-shot monitoring pass and API server launcher."""

import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path

from rich.console import Console
from rich.progress import Progress
from rich.table import Table

from price_monitor.config.settings import Settings
from price_monitor.filters.product_validator import ProductValidator
from price_monitor.models.events import BroadcastEvent
from price_monitor.models.price_change import PriceChangeRecord
from price_monitor.models.product import MonitoredProduct
from price_monitor.notifications.email_notifier import EmailNotifier
from price_monitor.services.monitor_orchestrator import MonitorOrchestrator
from price_monitor.storage.catalog_client import CatalogClient, CatalogError
from price_monitor.storage.session_store import SessionStore

logger = logging.getLogger("price_monitor.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)


def load_products_file(path: str) -> list[MonitoredProduct]:
    """Read products from a JSON file (a list or ``{"products": [...]}``).

    Raises ``ValueError`` when the file holds no valid products.
    """
    with open(Path(path), encoding="utf-8") as f:
        data = json.load(f)
    records = data.get("products") if isinstance(data, dict) else data
    if not isinstance(records, list):
        raise ValueError(f"{path}: expected a list of products")

    products, errors = ProductValidator.validate(records)
    for error in errors:
        _err.print(f"[yellow]Skipped {error}[/yellow]")
    if not products and records:
        raise ValueError(f"{path}: no valid products")
    return products


def _print_table(changes: list[PriceChangeRecord]) -> None:
    """Render a Rich table of price changes to stdout."""
    currency = Settings.CURRENCY_CODE
    table = Table(
        title="Price Changes",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("#", style="dim", width=4)
    table.add_column("Product", max_width=50)
    table.add_column("Old", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Change", justify="right")
    table.add_column("Offer", justify="center")
    table.add_column("URL", overflow="fold", style="dim")

    for idx, change in enumerate(changes, 1):
        style = "red" if change.is_increase else "green"
        sign = "+" if change.is_increase else ""
        pct = (
            f" ({sign}{change.percentage_change}%)"
            if change.percentage_change is not None
            else ""
        )
        offer = (
            f"yes (was {change.original_price:,.2f})"
            if change.is_on_offer and change.original_price is not None
            else "yes" if change.is_on_offer else "-"
        )
        table.add_row(
            str(idx),
            change.name[:50],
            f"{currency} {change.old_price:,.2f}",
            f"{currency} {change.new_price:,.2f}",
            f"[{style}]{sign}{change.difference:,.2f}{pct}[/{style}]",
            offer,
            change.url,
        )

    Console().print(table)


async def cli_check(
    products_file: str | None,
    output_format: str,
    write_back: bool,
) -> int:
    """Run one monitoring pass and return an exit code (0=ok, 1=fail)."""
    catalog = CatalogClient()
    try:
        if products_file is not None:
            products = load_products_file(products_file)
        else:
            products = await asyncio.to_thread(catalog.list_products)
    except (CatalogError, OSError, ValueError) as exc:
        logger.error("Could not load products: %s", exc, exc_info=True)
        _err.print(f"[red]Could not load products: {exc}[/red]")
        return 1

    if not products:
        _err.print("[yellow]No products to check.[/yellow]")
        return 0

    notifier = EmailNotifier()
    if not notifier.configured:
        _err.print("[dim]E-mail not configured, alerts disabled[/dim]")

    orchestrator = MonitorOrchestrator(
        SessionStore(),
        notifier=notifier if notifier.configured else None,
        catalog=catalog if write_back else None,
    )
    session_id = f"cli-{uuid.uuid4().hex[:8]}"

    with Progress(console=_err, transient=True) as progress:
        task = progress.add_task("Checking prices...", total=len(products))

        def on_event(event: BroadcastEvent) -> None:
            if event.type == "progress":
                current = event.payload.get("product") or "done"
                progress.update(
                    task,
                    completed=event.payload["completed"],
                    description=f"Checking {current}",
                )

        result = await orchestrator.run(products, session_id, on_event)

    if result.error is not None:
        _err.print(f"[red]Run failed: {result.error}[/red]")
        return 1

    _err.print(
        f"[green]✓ {len(result.updated_products)} of {result.total}"
        f" products checked, {len(result.price_changes)} changed[/green]"
    )
    if result.failed_products:
        _err.print(
            f"[yellow]No price for: "
            f"{', '.join(result.failed_products)}[/yellow]"
        )

    if output_format == "table":
        if result.price_changes:
            _print_table(result.price_changes)
    else:
        json.dump(result.to_dict(), sys.stdout, ensure_ascii=False, indent=2)
        sys.stdout.write("\n")

    return 0


def run_server(host: str | None, port: int | None, debug: bool) -> None:
    """Serve the HTTP API with catalog write-back enabled."""
    from price_monitor.api.app import create_app

    app = create_app(catalog=CatalogClient())
    app.run(
        host=host or Settings.API_HOST,
        port=port or Settings.API_PORT,
        debug=debug,
        threaded=True,
        use_reloader=False,
    )
