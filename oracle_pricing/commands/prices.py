"""CLI commands for current prices and FX rates."""

import json
from typing import Tuple

import click
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich import box

from ..core.config import ConfigError
from ..core.context import get_current_context
from ..core.exceptions import PricingError
from ..data.currencies import format_fiat_amount, is_fiat
from .common import async_command, console, pricing_service, selected_network


@click.command()
@click.argument('symbols', nargs=-1, required=True)
@click.option('--quote', '-q', default='USD', help='Quote currency (default: USD)')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
              default='table', help='Output format')
@click.pass_context
@async_command
async def price(ctx, symbols: Tuple[str, ...], quote: str, output_format: str):
    """Get current oracle prices for assets.

    Examples:
        oracle-pricing price XLM USDC
        oracle-pricing --network testnet price XLM --quote EUR
        oracle-pricing price XLM BTC --format json
    """
    app_ctx = get_current_context()
    quote = quote.upper()

    try:
        async with pricing_service() as service:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True
            ) as progress:
                task = progress.add_task(f"Fetching prices for {len(symbols)} assets...", total=None)
                prices = await service.get_prices(list(symbols), quote, selected_network())
                progress.update(task, completed=True)

    except (PricingError, ConfigError) as e:
        console.print(f"[red]Error fetching prices: {e}[/red]")
        if app_ctx.debug:
            console.print_exception()
        ctx.exit(1)

    if output_format == 'json':
        payload = {symbol: (value if value else None) for symbol, value in prices.items()}
        click.echo(json.dumps({'quote': quote, 'prices': payload}, indent=2))
        return

    _display_prices_table(prices, quote)


@click.command()
@click.argument('from_currency')
@click.argument('to_currency')
@click.option('--amount', '-a', type=float, default=1.0, help='Amount to convert')
@click.pass_context
@async_command
async def fx(ctx, from_currency: str, to_currency: str, amount: float):
    """Convert between fiat currencies using the FX oracle.

    Examples:
        oracle-pricing fx USD EUR
        oracle-pricing fx EUR JPY --amount 250
    """
    app_ctx = get_current_context()
    from_currency = from_currency.upper()
    to_currency = to_currency.upper()

    for code in (from_currency, to_currency):
        if not is_fiat(code):
            console.print(f"[red]{code} is not a supported fiat currency[/red]")
            ctx.exit(1)

    try:
        async with pricing_service() as service:
            multiplier = await service.get_fx_multiplier(from_currency, to_currency, selected_network())
    except (PricingError, ConfigError) as e:
        console.print(f"[red]Error fetching FX rate: {e}[/red]")
        if app_ctx.debug:
            console.print_exception()
        ctx.exit(1)

    console.print(
        f"{format_fiat_amount(amount, from_currency)} = "
        f"[green]{format_fiat_amount(amount * multiplier, to_currency)}[/green] "
        f"[dim](1 {from_currency} = {multiplier:.6f} {to_currency})[/dim]"
    )


def _display_prices_table(prices, quote: str):
    """Display prices in table format."""
    table = Table(title=f"Oracle Prices ({quote})", box=box.ROUNDED)
    table.add_column("Asset", style="cyan", no_wrap=True)
    table.add_column("Price", style="green", justify="right")

    for symbol, value in prices.items():
        if is_fiat(quote):
            shown = format_fiat_amount(value, quote)
        else:
            shown = f"{value:,.8f}".rstrip('0').rstrip('.') + f" {quote}" if value else "N/A"
        table.add_row(symbol.upper(), shown if value else "[red]N/A[/red]")

    console.print(table)
