# rentwatch/cli/runner.py

"""Headless CLI commands over the pipeline and the price store."""

import json
import logging
import sys

from rich.console import Console
from rich.table import Table

from rentwatch.config.settings import Settings
from rentwatch.errors import ConfigurationError
from rentwatch.services.alert_evaluator import AlertEvaluator
from rentwatch.services.pipeline_orchestrator import (
    PipelineOrchestrator,
    RunSummary,
)
from rentwatch.storage.price_history_db import (
    AVAILABILITY_CACHE_KEY,
    PriceHistoryDB,
)

logger = logging.getLogger("rentwatch.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)


def split_csv(raw: str | None) -> list[str] | None:
    """Split a comma-separated option; ``None`` stays ``None``."""
    if raw is None:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


def resolve_source_ids(source_csv: str | None) -> list[str] | None:
    """Validate requested source IDs against the registry.

    Returns ``None`` (all sources) when *source_csv* is ``None``.
    Raises ``SystemExit`` on unknown IDs.
    """
    requested = split_csv(source_csv)
    if requested is None:
        return None
    available = {s["id"] for s in Settings.AVAILABLE_SOURCES}
    unknown = [r for r in requested if r.lower() not in available]
    if unknown:
        _err.print(
            f"[red]Unknown source(s): {', '.join(unknown)}[/red]"
        )
        _err.print(f"[dim]Available: {', '.join(sorted(available))}[/dim]")
        raise SystemExit(1)
    return [r.lower() for r in requested]


def _money(value: object) -> str:
    if isinstance(value, (int, float)) and value > 0:
        return f"${value:,.0f}"
    return "N/A"


# ── run ──────────────────────────────────────────────────


def _print_summary(summary: RunSummary) -> None:
    table = Table(
        title="Run Summary",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Source", style="magenta")
    table.add_column("OK", justify="center")
    table.add_column("Scraped", justify="right")
    table.add_column("Filtered", justify="right")
    table.add_column("Upserted", justify="right")
    table.add_column("Priced", justify="right", style="green")
    table.add_column("Alerts", justify="right", style="yellow")
    table.add_column("Errors", style="red", overflow="fold")

    for r in summary.sources:
        table.add_row(
            r.source,
            "[green]yes[/green]" if r.success else "[red]no[/red]",
            str(r.scraped),
            str(r.filtered),
            str(r.upserted),
            str(r.priced),
            str(r.alerts),
            "\n".join(r.errors[-2:]),
        )
    table.add_row(
        "[bold]total[/bold]",
        "",
        str(summary.total_scraped),
        "",
        str(summary.total_upserted),
        str(summary.total_priced),
        str(summary.total_alerts),
        "\n".join(summary.errors),
    )
    Console().print(table)


async def cli_run(
    source_csv: str | None,
    wings_csv: str | None,
    as_json: bool,
) -> int:
    """Run the full pipeline now and return an exit code."""
    source_ids = resolve_source_ids(source_csv)
    store = PriceHistoryDB()
    try:
        orchestrator = PipelineOrchestrator(store)
        _err.print("[bold]Running price collection...[/bold]")
        summary = await orchestrator.run_all(
            source_ids=source_ids, wings=split_csv(wings_csv),
        )
    finally:
        store.close()

    if summary.busy:
        _err.print("[yellow]A run is already in progress.[/yellow]")
        return 1

    if as_json:
        json.dump(summary.to_dict(), sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        _print_summary(summary)

    if not summary.success:
        _err.print("[red]No source completed successfully.[/red]")
        return 1
    _err.print(
        f"[green]✓ {summary.total_priced} prices recorded, "
        f"{summary.total_alerts} alerts[/green]"
    )
    return 0


# ── availability ─────────────────────────────────────────


def _print_availability(payload: dict[str, object]) -> None:
    for key, title in (
        ("available_now", "Available Now"),
        ("available_soon", "Available Within "
         f"{Settings.AVAILABILITY_WINDOW_DAYS} Days"),
    ):
        table = Table(title=title, show_lines=False, title_style="bold cyan")
        table.add_column("Unit", style="bold")
        table.add_column("Plan")
        table.add_column("Rent", justify="right", style="green")
        table.add_column("Move-in", justify="right")
        rows = payload.get(key) or []
        if isinstance(rows, list):
            for row in rows:
                if isinstance(row, dict):
                    table.add_row(
                        str(row.get("unit", "")),
                        str(row.get("plan") or "-"),
                        _money(row.get("rent")),
                        str(row.get("move_in") or row.get("date_text") or "-"),
                    )
        Console().print(table)


async def cli_availability(
    wings_csv: str | None,
    cached: bool,
    as_json: bool,
) -> int:
    """Show move-in availability, scraping fresh unless *cached*."""
    store = PriceHistoryDB()
    try:
        if cached:
            payload = store.get_availability_cache()
            if payload is None:
                _err.print("[yellow]No cached availability yet.[/yellow]")
                return 1
            _err.print(f"[dim]Cached at {payload.get('cached_at')}[/dim]")
        else:
            _err.print("[bold]Scraping availability...[/bold]")
            result = await PipelineOrchestrator(store).refresh_availability(
                wings=split_csv(wings_csv),
            )
            for error_msg in result.errors:
                _err.print(f"[red]Error: {error_msg}[/red]")
            if result.errors:
                return 1
            payload = result.to_dict()
    finally:
        store.close()

    if as_json:
        json.dump(payload, sys.stdout, indent=2, default=str)
        sys.stdout.write("\n")
    else:
        _print_availability(payload)
    return 0


# ── alerts / threshold / history ─────────────────────────


def run_alerts() -> int:
    """List undismissed alerts."""
    store = PriceHistoryDB()
    try:
        alerts = store.get_active_alerts()
    finally:
        store.close()

    if not alerts:
        _err.print("[dim]No active alerts.[/dim]")
        return 0

    table = Table(title="Active Alerts", show_lines=True, title_style="bold cyan")
    table.add_column("ID", style="dim", width=5)
    table.add_column("Kind")
    table.add_column("Source", style="magenta")
    table.add_column("Unit", style="bold")
    table.add_column("Old", justify="right")
    table.add_column("New", justify="right", style="green")
    table.add_column("Change", justify="right")
    table.add_column("Created", style="dim")
    for a in alerts:
        pct = a.get("percentage_change")
        table.add_row(
            str(a["id"]),
            "New low" if a["alert_kind"] == "new_low" else "Price drop",
            str(a["source"]),
            str(a["unit_name"]),
            _money(a["old_price"]),
            _money(a["new_price"]),
            f"-{pct:.2f}%" if isinstance(pct, (int, float)) else "-",
            str(a["created_at"])[:16],
        )
    Console().print(table)
    return 0


def run_dismiss(alert_id: int) -> int:
    """Soft-dismiss an alert."""
    store = PriceHistoryDB()
    try:
        changed = store.dismiss_alert(alert_id)
    finally:
        store.close()
    if not changed:
        _err.print(f"[yellow]No active alert with id {alert_id}.[/yellow]")
        return 1
    _err.print(f"[green]✓ Alert {alert_id} dismissed[/green]")
    return 0


def run_threshold(kind: str | None, value: str | None) -> int:
    """Show the threshold, or validate and store a new one."""
    if kind is not None and value is None:
        _err.print("[red]threshold needs both a kind and a value[/red]")
        return 1
    store = PriceHistoryDB()
    try:
        evaluator = AlertEvaluator(store)
        if kind is None:
            current = evaluator.load_threshold()
        else:
            current = evaluator.update_threshold(kind, value)
    except ConfigurationError as exc:
        _err.print(f"[red]Invalid threshold: {exc}[/red]")
        return 1
    finally:
        store.close()

    unit = "%" if current.kind.value == "percentage" else " dollars"
    _err.print(
        f"[green]Alert threshold: {current.kind.value} "
        f"{current.value:g}{unit}[/green]"
    )
    return 0


def run_history(unit_id: int, limit: int | None) -> int:
    """Print the daily price series of one unit."""
    store = PriceHistoryDB()
    try:
        points = store.get_price_history(unit_id, limit=limit)
    finally:
        store.close()

    if not points:
        _err.print(f"[yellow]No price history for unit {unit_id}.[/yellow]")
        return 1

    table = Table(
        title=f"Price history for unit {unit_id}",
        title_style="bold cyan",
    )
    table.add_column("Date")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Available", justify="center")
    for p in points:
        table.add_row(
            p.collection_date.isoformat(),
            _money(p.price),
            "yes" if p.is_available else "no",
        )
    Console().print(table)
    return 0


def run_prices(as_json: bool = False) -> int:
    """Print the most recent price of every tracked unit."""
    store = PriceHistoryDB()
    try:
        rows = store.get_latest_prices()
    finally:
        store.close()

    if as_json:
        print(json.dumps(rows, indent=2))
        return 0
    if not rows:
        _err.print("[dim]No prices recorded yet.[/dim]")
        return 0

    table = Table(title="Latest Prices", title_style="bold cyan")
    table.add_column("ID", style="dim", width=5)
    table.add_column("Source", style="magenta")
    table.add_column("Unit", style="bold")
    table.add_column("Layout")
    table.add_column("Sq ft", justify="right")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Available", justify="center")
    table.add_column("Date", style="dim")
    for r in rows:
        layout = f"{r['bedrooms']}bd/{r['bathrooms']:g}ba"
        if r["has_den"]:
            layout += "+den"
        table.add_row(
            str(r["unit_id"]),
            str(r["source"]),
            str(r["name"]),
            layout,
            str(r["square_footage"] or "-"),
            _money(r["price"]),
            "yes" if r["is_available"] else "no",
            str(r["collection_date"]),
        )
    Console().print(table)
    return 0


def run_status() -> int:
    """Print run status, schedule and store statistics."""
    store = PriceHistoryDB()
    try:
        status = PipelineOrchestrator(store).get_status()
        stored = store.get_all_settings()
    finally:
        store.close()

    stats = status["statistics"]
    table = Table(title="Status", show_header=False, title_style="bold cyan")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Last run", status["last_run_time"] or "never")
    table.add_row("Next run", status["next_run_time"])
    table.add_row("Schedule", ", ".join(status["schedule"]))
    table.add_row("Sources", str(stats["sources"]))
    table.add_row("Units", str(stats["units"]))
    table.add_row("Price points", str(stats["price_points"]))
    table.add_row("Active alerts", str(stats["active_alerts"]))
    table.add_row("Last collection", stats["last_collection"] or "-")
    Console().print(table)

    settings_table = Table(title="Stored Settings", title_style="bold cyan")
    settings_table.add_column("Key", style="bold")
    settings_table.add_column("Value")
    for key, value in stored.items():
        # The availability payload is too large for a table cell
        if key == AVAILABILITY_CACHE_KEY:
            value = f"{len(value)} bytes"
        settings_table.add_row(key, value)
    Console().print(settings_table)
    return 0


async def run_health_check() -> int:
    """Run connectivity health check on all sources."""
    from rentwatch.services.health_checker import HealthChecker

    _err.print("[bold]Running source health check...[/bold]")
    checker = HealthChecker()
    results = await checker.check_all()

    table = Table(
        title="Source Health Check",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Source", style="bold")
    table.add_column("Status", justify="center")
    table.add_column("Latency", justify="right")
    table.add_column("Notes", style="dim")

    any_down = False
    for r in results:
        if r.status == "ok":
            status = "[green]OK[/green]"
        elif r.status == "slow":
            status = "[yellow]SLOW[/yellow]"
        else:
            status = "[red]DOWN[/red]"
            any_down = True
        latency = f"{r.latency_ms:.0f}ms" if r.latency_ms > 0 else "-"
        table.add_row(r.source_id, status, latency, r.message)

    Console().print(table)
    return 1 if any_down else 0
