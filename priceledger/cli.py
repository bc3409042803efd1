"""priceledger CLI - async commands over the versioned price store.

Commands:
- init: Initialize database schema
- load-rates: Load exchange rates from YAML into the database
- resolve: Show the current and pending price at an instant
- schedule: Create or edit the pending price for a product/tier
- unschedule: Withdraw a pending price
- history: Show every version of a product's prices
- upcoming: List pending prices taking effect soon
- check: Verify versioning rules for a product
- changelog: Show price change audit entries
- convert: Convert an amount with the stored exchange rates
- link: Derive the linked CNY/IDR amount for an edit
- rates list|history|add|set: Maintain stored exchange rates
- web serve: Run the JSON API
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.ext.asyncio import AsyncSession

from priceledger.config import get_config
from priceledger.core.business_time import format_local
from priceledger.core.clock import ensure_utc
from priceledger.core.logging import configure_logging
from priceledger.currency.linkage import compute_linked_amount, linked_currency
from priceledger.currency.rounding import normalize_currency
from priceledger.db.connection import close_db, get_engine, get_session
from priceledger.db.models import Base
from priceledger.db.price_store import SqlPriceStore
from priceledger.exceptions import PricingError
from priceledger.models import (
    ChangeLogFilters,
    ChangeType,
    ExchangeRateRecord,
    LinkageMode,
    PriceRecord,
    PriceTier,
    SubjectKey,
)
from priceledger.rates.sql_provider import SqlExchangeRateProvider
from priceledger.rates.static import load_rates_file
from priceledger.versioning import resolver
from priceledger.versioning.mutation import PriceMutationService

app = typer.Typer(
    name="priceledger",
    help="priceledger - Effective-dated multi-currency price versioning",
    no_args_is_help=True,
)
web_cli = typer.Typer(help="Web API")
app.add_typer(web_cli, name="web")
rates_cli = typer.Typer(help="Exchange rate management", no_args_is_help=True)
app.add_typer(rates_cli, name="rates")

console = Console()


@app.callback()
def main():
    """Configure logging before any command runs."""
    configure_logging()


def _service(session: AsyncSession) -> PriceMutationService:
    return PriceMutationService(
        SqlPriceStore(session),
        rate_provider=SqlExchangeRateProvider(session),
        config=get_config().pricing,
    )


def _run(coro) -> None:
    """Run an async command body, reporting engine errors as exit code 1."""

    async def _main():
        try:
            await coro
        finally:
            await close_db()

    try:
        asyncio.run(_main())
    except PricingError as e:
        console.print(f"[bold red]✗[/bold red] {type(e).__name__}: {e}")
        raise typer.Exit(1)


def _parse_amount(value: str | None, label: str) -> Decimal | None:
    if value is None:
        return None
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        raise typer.BadParameter(f"{label} must be a decimal number, got {value!r}")
    if not parsed.is_finite():
        raise typer.BadParameter(f"{label} must be a finite number, got {value!r}")
    return parsed


def _price_table(title: str, records: list[PriceRecord], now: datetime) -> Table:
    offset = get_config().pricing.business_utc_offset_hours

    table = Table(title=title)
    table.add_column("Tier", style="cyan")
    table.add_column("State")
    table.add_column("Amounts", style="green")
    table.add_column("Rate", justify="right")
    table.add_column("From (local)")
    table.add_column("To (local)")
    table.add_column("Reason", style="dim")
    table.add_column("ID", style="dim")

    for record in records:
        siblings = [r for r in records if r.tier == record.tier]
        table.add_row(
            record.tier.value,
            resolver.price_state(record, now, siblings).value,
            ", ".join(f"{c} {a}" for c, a in sorted(record.non_null_amounts().items())),
            str(record.exchange_rate) if record.exchange_rate is not None else "-",
            format_local(record.effective_from, offset),
            format_local(record.effective_to, offset) if record.effective_to else "-",
            record.change_reason or "",
            str(record.id),
        )
    return table


def _rate_table(title: str, records: list[ExchangeRateRecord]) -> Table:
    table = Table(title=title)
    table.add_column("Pair", style="cyan")
    table.add_column("Rate", justify="right", style="green")
    table.add_column("From (UTC)")
    table.add_column("To (UTC)")
    table.add_column("Approved")
    table.add_column("Source", style="dim")
    table.add_column("ID", style="dim")

    for record in records:
        table.add_row(
            f"{record.from_currency}->{record.to_currency}",
            str(record.rate),
            record.effective_from.isoformat(),
            record.effective_to.isoformat() if record.effective_to else "-",
            "yes" if record.approved else "no",
            record.source or "",
            str(record.id),
        )
    return table


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    async def _init():
        engine = get_engine()
        async with engine.begin() as conn:
            if drop:
                console.print("[yellow]Dropping existing tables...[/yellow]")
                await conn.run_sync(Base.metadata.drop_all)
            console.print("[green]Creating tables...[/green]")
            await conn.run_sync(Base.metadata.create_all)

    _run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command(name="load-rates")
def load_rates_cmd(
    file: Path | None = typer.Argument(None, help="Exchange rate YAML (default: configured file)"),
):
    """Load exchange rates from YAML into the database."""
    config = get_config()
    path = file or config.exchange_rates_path

    try:
        records = load_rates_file(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    async def _load():
        async with get_session() as session:
            count = await SqlExchangeRateProvider(session).add_rates(records)
        console.print(f"[bold green]✓[/bold green] Loaded {count} exchange rates from {path}")

    _run(_load())


@app.command()
def resolve(
    product_id: str = typer.Argument(..., help="Product ID"),
    tier: PriceTier = typer.Argument(..., help="Price tier"),
    as_of: str | None = typer.Option(None, "--as-of", help="As-of timestamp (ISO format, UTC if naive)"),
    org_id: str | None = typer.Option(None, "--org", help="Organization ID"),
):
    """Show the current and pending price at an instant."""
    subject = SubjectKey(product_id=product_id, organization_id=org_id)
    as_of_dt = ensure_utc(datetime.fromisoformat(as_of)) if as_of else None

    async def _resolve():
        async with get_session() as session:
            service = _service(session)
            resolved = await service.resolve_at(subject, tier, as_of_dt)

        records = [r for r in (resolved.current, resolved.pending) if r is not None]
        if not records:
            console.print(f"[yellow]No {tier.value} price configured for {subject}[/yellow]")
            return
        console.print(
            _price_table(f"{subject} ({tier.value}) as of {resolved.as_of.isoformat()}", records, resolved.as_of)
        )

    _run(_resolve())


@app.command()
def schedule(
    product_id: str = typer.Argument(..., help="Product ID"),
    tier: PriceTier = typer.Argument(..., help="Price tier"),
    effective_from: str = typer.Option(..., "--from", help="Local start, YYYY-MM-DDTHH:mm (UTC+7)"),
    cny: str | None = typer.Option(None, "--cny", help="CNY amount"),
    idr: str | None = typer.Option(None, "--idr", help="IDR amount"),
    rate: str | None = typer.Option(None, "--rate", help="IDR per 1 CNY"),
    linkage: LinkageMode = typer.Option(LinkageMode.NONE, "--linkage", help="Linkage mode"),
    reason: str | None = typer.Option(None, "--reason", help="Change reason"),
    org_id: str | None = typer.Option(None, "--org", help="Organization ID"),
    changed_by: str = typer.Option("cli", "--by", help="Actor for the audit trail"),
):
    """Create or edit the pending price for a product/tier."""
    subject = SubjectKey(product_id=product_id, organization_id=org_id)
    amounts = {
        "CNY": _parse_amount(cny, "--cny"),
        "IDR": _parse_amount(idr, "--idr"),
    }
    exchange_rate = _parse_amount(rate, "--rate")

    async def _schedule():
        async with get_session() as session:
            service = _service(session)
            record = await service.create_or_update_pending(
                subject,
                tier,
                amounts,
                exchange_rate,
                effective_from,
                reason,
                linkage_mode=linkage,
                changed_by=changed_by,
                source="cli",
            )
            now = service.clock.now()
        console.print(_price_table("Pending price", [record], now))
        console.print(f"[bold green]✓[/bold green] Scheduled {tier.value} price for {subject}")

    _run(_schedule())


@app.command()
def unschedule(
    product_id: str = typer.Argument(..., help="Product ID"),
    tier: PriceTier = typer.Argument(..., help="Price tier"),
    price_id: UUID = typer.Argument(..., help="Pending price ID"),
    org_id: str | None = typer.Option(None, "--org", help="Organization ID"),
    changed_by: str = typer.Option("cli", "--by", help="Actor for the audit trail"),
    reason: str | None = typer.Option(None, "--reason", help="Change reason"),
):
    """Withdraw a pending price (fails once it has become effective)."""
    subject = SubjectKey(product_id=product_id, organization_id=org_id)

    async def _unschedule():
        async with get_session() as session:
            await _service(session).delete_pending(
                subject, tier, price_id, changed_by=changed_by, reason=reason
            )
        console.print(f"[bold green]✓[/bold green] Deleted pending price {price_id}")

    _run(_unschedule())


@app.command()
def history(
    product_id: str = typer.Argument(..., help="Product ID"),
    tier: PriceTier | None = typer.Option(None, "--tier", help="Only this tier"),
    org_id: str | None = typer.Option(None, "--org", help="Organization ID"),
):
    """Show every version of a product's prices, newest first."""
    subject = SubjectKey(product_id=product_id, organization_id=org_id)

    async def _history():
        async with get_session() as session:
            service = _service(session)
            records = await service.list_history(subject, tier)
            now = service.clock.now()

        if not records:
            console.print(f"[yellow]No price history for {subject}[/yellow]")
            return
        console.print(_price_table(f"Price history: {subject}", records, now))

    _run(_history())


@app.command()
def upcoming(
    hours: int | None = typer.Option(None, "--hours", help="Look-ahead window in hours"),
    product_id: str | None = typer.Option(None, "--product", help="Only this product"),
):
    """List pending prices taking effect soon."""

    async def _upcoming():
        async with get_session() as session:
            service = _service(session)
            records = await service.list_upcoming(hours_ahead=hours, product_id=product_id)
            now = service.clock.now()

        if not records:
            console.print("[yellow]No upcoming price changes[/yellow]")
            return
        console.print(_price_table("Upcoming price changes", records, now))

    _run(_upcoming())


@app.command()
def check(
    product_id: str = typer.Argument(..., help="Product ID"),
    org_id: str | None = typer.Option(None, "--org", help="Organization ID"),
):
    """Verify the single-pending and non-overlap rules for every tier."""
    subject = SubjectKey(product_id=product_id, organization_id=org_id)

    async def _check():
        async with get_session() as session:
            service = _service(session)
            records = await service.list_history(subject)
            now = service.clock.now()

        problems = 0
        for tier in PriceTier:
            tier_records = [r for r in records if r.tier == tier]
            pending = resolver.count_pending(tier_records, now)
            if pending > 1:
                problems += 1
                console.print(f"[red]{tier.value}: {pending} pending records[/red]")
            for earlier, later in resolver.find_overlaps(tier_records, now):
                problems += 1
                console.print(f"[red]{tier.value}: {earlier.id} overlaps {later.id}[/red]")

        if problems:
            console.print(f"[bold red]✗[/bold red] {problems} problem(s) found for {subject}")
            raise typer.Exit(1)
        console.print(f"[bold green]✓[/bold green] {len(records)} price records for {subject} are consistent")

    _run(_check())


@app.command()
def changelog(
    product_id: str | None = typer.Argument(None, help="Product ID (default: all)"),
    org_id: str | None = typer.Option(None, "--org", help="Organization ID"),
    tier: PriceTier | None = typer.Option(None, "--tier", help="Only this tier"),
    currency: str | None = typer.Option(None, "--currency", help="Only this currency"),
    change_type: ChangeType | None = typer.Option(None, "--type", help="Only this change type"),
    page: int = typer.Option(1, "--page", min=1),
    size: int = typer.Option(20, "--size", min=1),
):
    """Show price change audit entries, newest first."""
    subject = SubjectKey(product_id=product_id, organization_id=org_id) if product_id else None
    filters = ChangeLogFilters(tier=tier, currency=currency, change_type=change_type)

    async def _changelog():
        async with get_session() as session:
            result = await _service(session).list_change_log(subject, filters, page, size)

        table = Table(title=f"Price changes (page {result.page}/{max(result.pages, 1)}, {result.total} total)")
        table.add_column("When (UTC)")
        table.add_column("Product", style="cyan")
        table.add_column("Tier")
        table.add_column("Type")
        table.add_column("Ccy")
        table.add_column("Old", justify="right")
        table.add_column("New", justify="right")
        table.add_column("Δ", justify="right")
        table.add_column("Δ%", justify="right")
        table.add_column("By", style="dim")

        for entry in result.items:
            table.add_row(
                entry.changed_at.strftime("%Y-%m-%d %H:%M"),
                str(entry.subject),
                entry.tier.value,
                entry.change_type.value,
                entry.currency,
                str(entry.old_amount) if entry.old_amount is not None else "-",
                str(entry.new_amount) if entry.new_amount is not None else "-",
                str(entry.delta) if entry.delta is not None else "-",
                str(entry.delta_percentage) if entry.delta_percentage is not None else "-",
                entry.changed_by,
            )
        console.print(table)

    _run(_changelog())


@app.command()
def convert(
    amount: str = typer.Argument(..., help="Amount to convert"),
    from_currency: str = typer.Argument(..., help="Source currency"),
    to_currency: str = typer.Argument(..., help="Target currency"),
    as_of: str | None = typer.Option(None, "--as-of", help="As-of timestamp (ISO format, UTC if naive)"),
):
    """Convert an amount with the stored exchange rates."""
    value = _parse_amount(amount, "amount")
    as_of_dt = ensure_utc(datetime.fromisoformat(as_of)) if as_of else None

    async def _convert():
        async with get_session() as session:
            provider = SqlExchangeRateProvider(session)
            when = as_of_dt or datetime.now(timezone.utc)
            converted = await provider.convert(value, from_currency, to_currency, when)
        console.print(
            f"{value} {normalize_currency(from_currency)} = "
            f"[bold green]{converted} {normalize_currency(to_currency)}[/bold green]"
        )

    _run(_convert())


@app.command()
def link(
    amount: str = typer.Argument(..., help="Amount typed into the edited field"),
    currency: str = typer.Argument(..., help="Currency of the edited field"),
    rate: str = typer.Option(..., "--rate", help="IDR per 1 CNY"),
    linkage: LinkageMode = typer.Option(LinkageMode.PRIMARY_IS_CNY, "--linkage", help="Linkage mode"),
):
    """Derive the linked CNY/IDR amount for an edit (no database access)."""
    value = _parse_amount(amount, "amount")
    exchange_rate = _parse_amount(rate, "--rate")

    try:
        linked = compute_linked_amount(currency, value, exchange_rate, linkage)
    except PricingError as e:
        console.print(f"[bold red]✗[/bold red] {type(e).__name__}: {e}")
        raise typer.Exit(1)

    if linked is None:
        console.print(f"[yellow]No derivation: {currency.upper()} is not the primary under {linkage.value}[/yellow]")
        return
    console.print(f"{linked_currency(currency)} [bold green]{linked}[/bold green]")


@rates_cli.command("list")
def rates_list(
    from_currency: str | None = typer.Option(None, "--from", help="Filter by source currency"),
    to_currency: str | None = typer.Option(None, "--to", help="Filter by target currency"),
    as_of: str | None = typer.Option(None, "--as-of", help="As-of timestamp (ISO format, UTC if naive)"),
):
    """Show the approved rate in force for each currency pair."""
    when = ensure_utc(datetime.fromisoformat(as_of)) if as_of else datetime.now(timezone.utc)

    async def _list():
        async with get_session() as session:
            records = await SqlExchangeRateProvider(session).list_current(when, from_currency, to_currency)
        if not records:
            console.print(f"[yellow]No exchange rates in force at {when.isoformat()}[/yellow]")
            return
        console.print(_rate_table(f"Exchange rates as of {when.isoformat()}", records))

    _run(_list())


@rates_cli.command("history")
def rates_history(
    from_currency: str | None = typer.Option(None, "--from", help="Filter by source currency"),
    to_currency: str | None = typer.Option(None, "--to", help="Filter by target currency"),
    page: int = typer.Option(1, "--page", min=1),
    size: int = typer.Option(20, "--size", min=1, max=200),
):
    """Show every stored rate, newest first."""

    async def _history():
        async with get_session() as session:
            result = await SqlExchangeRateProvider(session).list_history(
                from_currency, to_currency, page, size
            )
        if not result.items:
            console.print("[yellow]No exchange rates stored[/yellow]")
            return
        console.print(_rate_table(f"Exchange rate history (page {result.page}/{result.pages})", result.items))
        console.print(f"[dim]{result.total} rates[/dim]")

    _run(_history())


@rates_cli.command("add")
def rates_add(
    from_currency: str = typer.Argument(..., help="Source currency"),
    to_currency: str = typer.Argument(..., help="Target currency"),
    rate: str = typer.Argument(..., help="Units of to_currency per 1 from_currency"),
    effective_from: str | None = typer.Option(None, "--from", help="Start (ISO format, UTC if naive; default now)"),
    reason: str | None = typer.Option(None, "--reason", help="Change reason"),
    source: str | None = typer.Option(None, "--source", help="Where the rate came from"),
    unapproved: bool = typer.Option(False, "--unapproved", help="Store without approving"),
    changed_by: str = typer.Option("cli", "--by", help="Actor for the audit trail"),
):
    """Add a rate; an approved one closes the rate it takes over from."""
    value = _parse_amount(rate, "rate")
    if value <= 0:
        raise typer.BadParameter("rate must be greater than 0")
    start = ensure_utc(datetime.fromisoformat(effective_from)) if effective_from else datetime.now(timezone.utc)

    async def _add():
        record = ExchangeRateRecord(
            from_currency=normalize_currency(from_currency),
            to_currency=normalize_currency(to_currency),
            rate=value,
            effective_from=start,
            approved=not unapproved,
            source=source,
            change_reason=reason,
            changed_by=changed_by,
        )
        async with get_session() as session:
            stored = await SqlExchangeRateProvider(session).create_rate(record)
        console.print(_rate_table("Added exchange rate", [stored]))
        console.print(f"[bold green]✓[/bold green] Added {stored.from_currency}->{stored.to_currency} rate {stored.rate}")

    _run(_add())


@rates_cli.command("set")
def rates_set(
    rate_id: UUID = typer.Argument(..., help="Exchange rate ID"),
    rate: str | None = typer.Option(None, "--rate", help="New rate"),
    effective_to: str | None = typer.Option(None, "--until", help="New end (ISO format, UTC if naive)"),
    reason: str | None = typer.Option(None, "--reason", help="Change reason"),
    changed_by: str = typer.Option("cli", "--by", help="Actor for the audit trail"),
):
    """Edit a stored rate."""
    patch: dict = {"changed_by": changed_by}
    if rate is not None:
        patch["rate"] = _parse_amount(rate, "--rate")
    if effective_to is not None:
        patch["effective_to"] = ensure_utc(datetime.fromisoformat(effective_to))
    if reason is not None:
        patch["change_reason"] = reason

    async def _set():
        async with get_session() as session:
            updated = await SqlExchangeRateProvider(session).update_rate(rate_id, patch)
        console.print(_rate_table("Updated exchange rate", [updated]))

    _run(_set())


@web_cli.command("serve")
def web_serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind"),
    port: int = typer.Option(8001, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload (dev only)"),
):
    """Run the FastAPI JSON API."""
    import uvicorn

    typer.echo(f"Starting priceledger API on http://{host}:{port}")
    uvicorn.run("priceledger.web.app:app", host=host, port=port, reload=reload, workers=1)


if __name__ == "__main__":
    app()
