"""
InAppPay CLI entry point.

Usage:
    inapppay [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.progress import Progress
from rich.table import Table

from . import __version__
from .client import InAppPayClient
from .config import InAppPaySettings
from .constants import DEFAULT_CURRENCY, PaymentMethod
from .logging import configure_logging, mask_value
from .models.errors import InAppPayError
from .models.outcome import Cancelled, Declined, Expired, FatalFailure, Outcome, Success, TransientFailure
from .models.purchase import CardDetails, PurchaseRequest
from .models.transaction import TransactionSnapshot
from .validators import validate_amount

console = Console()


@click.group()
@click.version_option(__version__, message="%(prog)s %(version)s")
@click.option("--base-url", envvar="INAPPPAY_BASE_URL", help="Cloud functions base URL")
@click.option("--project", "project_name", envvar="INAPPPAY_PROJECT_NAME", help="Project name")
@click.option("--user", "user_id", envvar="INAPPPAY_USER_ID", help="User or device id")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, base_url: str | None, project_name: str | None, user_id: str | None, verbose: bool):
    """InAppPay CLI - purchase items and check ownership from a terminal."""
    ctx.ensure_object(dict)

    settings = InAppPaySettings()
    overrides = {
        key: value
        for key, value in (
            ("base_url", base_url),
            ("project_name", project_name),
            ("user_id", user_id),
        )
        if value
    }
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_format=settings.log_json,
    )

    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose


def _run(ctx: click.Context, action: Callable[[InAppPayClient], Awaitable[Any]]) -> Any:
    """Build a client from settings, run ``action`` with it and close it."""
    settings: InAppPaySettings = ctx.obj["settings"]

    async def runner() -> Any:
        async with InAppPayClient.from_settings(settings) as client:
            return await action(client)

    try:
        return asyncio.run(runner())
    except ValueError as e:
        console.print(f"[yellow]{e}[/yellow]")
    except InAppPayError as e:
        console.print(f"[red]Error: {e.message}[/red] [dim]({e.code})[/dim]")
    ctx.exit(1)


def _print_outcome(outcome: Outcome, snapshot: Optional[TransactionSnapshot] = None) -> None:
    attempts = f" after {snapshot.attempt_count} attempt(s)" if snapshot else ""
    if isinstance(outcome, Success):
        console.print(f"\n[green]✓ Purchase completed{attempts}[/green]")
        console.print(f"  Receipt: [cyan]{outcome.receipt}[/cyan]")
        if outcome.message:
            console.print(f"  {outcome.message}")
    elif isinstance(outcome, Declined):
        console.print(f"\n[red]✗ Purchase declined{attempts}: {outcome.reason}[/red]")
        if outcome.message and outcome.message != outcome.reason:
            console.print(f"  {outcome.message}")
    elif isinstance(outcome, (TransientFailure, FatalFailure)):
        console.print(f"\n[red]✗ Purchase failed{attempts}: {outcome.cause}[/red]")
    elif isinstance(outcome, Cancelled):
        console.print(f"\n[yellow]Purchase cancelled: {outcome.reason}[/yellow]")
    elif isinstance(outcome, Expired):
        after = f" after {outcome.deadline:g}s" if outcome.deadline is not None else ""
        console.print(f"\n[yellow]Purchase expired{after}[/yellow]")


@cli.command()
@click.argument("item_id")
@click.option("--amount", required=True, help="Amount to charge, e.g. 4.99")
@click.option("--currency", default=DEFAULT_CURRENCY, show_default=True, help="ISO 4217 currency")
@click.option("--card-number", help="Card number")
@click.option("--expiry", help="Card expiry (MM/YY)")
@click.option("--cvv", help="Card security code")
@click.option("--name", "holder_name", default="", help="Cardholder name")
@click.option("--paypal", is_flag=True, help="Pay with PayPal instead of a card")
@click.option("--deadline", type=float, help="Give up after this many seconds")
@click.pass_context
def buy(
    ctx,
    item_id: str,
    amount: str,
    currency: str,
    card_number: str | None,
    expiry: str | None,
    cvv: str | None,
    holder_name: str,
    paypal: bool,
    deadline: float | None,
):
    """Purchase an item."""
    card = None
    if card_number and not paypal:
        card = CardDetails(
            number=card_number,
            expiry=expiry or "",
            cvv=cvv or "",
            holder_name=holder_name,
        )

    async def action(client: InAppPayClient) -> Outcome:
        request = PurchaseRequest(
            item_id=item_id,
            amount=validate_amount(amount),
            currency=currency.upper(),
            payment_method=PaymentMethod.PAYPAL if paypal else PaymentMethod.CARD,
            card=card,
        )
        with Progress(console=console, transient=True) as progress:
            task = progress.add_task("Processing purchase...", total=None)
            client.on_progress(
                lambda snap: progress.update(
                    task, description=f"Processing purchase (attempt {snap.attempt_count})..."
                )
            )
            handle = await client.submit(request, deadline=deadline)
            outcome = await handle.result()
        _print_outcome(outcome, handle.snapshot())
        handle.acknowledge()
        return outcome

    outcome = _run(ctx, action)
    if not isinstance(outcome, Success):
        ctx.exit(1)


@cli.command()
@click.argument("item_id")
@click.pass_context
def validate(ctx, item_id: str):
    """Check that an item can be purchased."""
    info = _run(ctx, lambda client: client.validate_item(item_id))

    console.print(f"\n[bold blue]{info.name or item_id}[/bold blue]\n")
    console.print(f"Type: [cyan]{info.type}[/cyan]")
    if info.description:
        console.print(f"Description: {info.description}")
    if info.price:
        console.print(f"Price: {info.price}")
    console.print()


@cli.command()
@click.argument("item_id")
@click.pass_context
def purchased(ctx, item_id: str):
    """Check whether the user owns an item."""
    status = _run(ctx, lambda client: client.is_user_purchased(item_id))
    if status.owned:
        console.print(f"[green]✓ {item_id} is purchased[/green]")
    else:
        console.print(f"[yellow]{item_id} is not purchased[/yellow]")


@cli.command()
@click.argument("item_id")
@click.pass_context
def subscribed(ctx, item_id: str):
    """Check whether the user has an active subscription."""
    status = _run(ctx, lambda client: client.is_user_subscribed(item_id))
    if status.owned:
        console.print(f"[green]✓ Subscribed to {item_id}[/green]")
    else:
        console.print(f"[yellow]Not subscribed to {item_id}[/yellow]")


def _records_table(title: str, records: list[dict[str, Any]]) -> Table:
    table = Table(title=title)
    columns: list[str] = []
    for record in records:
        for key in record:
            if key not in columns:
                columns.append(key)
    for column in columns:
        table.add_column(column)
    for record in records:
        table.add_row(*(str(record.get(column, "")) for column in columns))
    return table


@cli.command()
@click.pass_context
def subscriptions(ctx):
    """List the user's subscriptions."""
    records = _run(ctx, lambda client: client.get_user_subscriptions())
    if not records:
        console.print("[yellow]No subscriptions found[/yellow]")
        return
    console.print(_records_table("Subscriptions", records))


@cli.command()
@click.pass_context
def purchases(ctx):
    """List the user's purchases."""
    records = _run(ctx, lambda client: client.get_user_purchases())
    if not records:
        console.print("[yellow]No purchases found[/yellow]")
        return
    console.print(_records_table("Purchases", records))


@cli.command("config")
@click.pass_context
def show_config(ctx):
    """Show the effective configuration."""
    settings: InAppPaySettings = ctx.obj["settings"]

    console.print("\n[bold blue]InAppPay Configuration[/bold blue]\n")
    console.print(f"Base URL: [cyan]{settings.base_url}[/cyan]")
    console.print(f"Project: [cyan]{settings.project_name or 'Not configured'}[/cyan]")
    console.print(f"User: [cyan]{settings.user_id or 'Not configured'}[/cyan]")
    if settings.api_key:
        console.print(f"API Key: [green]{mask_value(settings.api_key)}[/green]")
    else:
        console.print("API Key: [yellow]Not configured[/yellow]")
    console.print(
        f"Retries: {settings.max_attempts} attempts within {settings.max_elapsed_seconds:g}s"
    )
    console.print(f"Key store: {settings.key_store_dsn or 'in-memory'}")
    console.print()


def main():
    """Main entry point."""
    try:
        cli(obj={})
    except ValidationError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise SystemExit(2)


if __name__ == "__main__":
    main()
