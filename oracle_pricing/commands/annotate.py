"""CLI command valuing a transaction history file in fiat."""

import json
from pathlib import Path

import click
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich import box

from ..core.config import ConfigError
from ..core.context import get_current_context
from ..core.exceptions import PricingError
from ..data.currencies import format_fiat_amount, is_fiat
from ..data.models import NormalizedTransaction
from .common import async_command, console, pricing_service, selected_network


def load_transactions(path: Path):
    """Read transactions from a JSON list, or an object with a ``transactions`` list."""
    with open(path, 'r') as f:
        payload = json.load(f)

    if isinstance(payload, dict):
        payload = payload.get('transactions', [])
    if not isinstance(payload, list):
        raise click.BadParameter(f"{path} must contain a list of transactions")

    try:
        return [NormalizedTransaction.from_dict(item) for item in payload]
    except (KeyError, TypeError, ValueError) as e:
        raise click.BadParameter(f"Invalid transaction in {path}: {e}")


@click.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--quote', '-q', default='USD', help='Fiat currency to value in (default: USD)')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
              default='table', help='Output format')
@click.pass_context
@async_command
async def annotate(ctx, file: Path, quote: str, output_format: str):
    """Value every transaction in a JSON history file.

    Examples:
        oracle-pricing annotate history.json
        oracle-pricing annotate history.json --quote EUR --format json
    """
    app_ctx = get_current_context()
    quote = quote.upper()

    if not is_fiat(quote):
        raise click.BadParameter(f"{quote} is not a supported fiat currency", param_hint='--quote')

    transactions = load_transactions(file)
    network = selected_network()

    try:
        async with pricing_service() as service:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True
            ) as progress:
                task = progress.add_task(f"Valuing {len(transactions)} transactions...", total=None)
                annotations = await service.annotate_fiat_values(transactions, quote, network)
                progress.update(task, completed=True)

            summary = service.summarize(transactions, annotations, quote, network)
    except (PricingError, ConfigError) as e:
        console.print(f"[red]Error valuing transactions: {e}[/red]")
        if app_ctx.debug:
            console.print_exception()
        ctx.exit(1)

    if output_format == 'json':
        click.echo(json.dumps({
            'quote': quote,
            'values': annotations,
            'summary': summary.to_dict()
        }, indent=2))
        return

    table = Table(title=f"Transaction Values ({quote})", box=box.ROUNDED)
    table.add_column("Date", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Dir", justify="center")
    table.add_column("Amount", justify="right")
    table.add_column("Asset")
    table.add_column("Value", style="green", justify="right")

    for tx in transactions:
        direction_style = "green" if tx.direction.value == "in" else "red"
        table.add_row(
            tx.created_at.strftime("%Y-%m-%d"),
            tx.id,
            f"[{direction_style}]{tx.direction.value}[/{direction_style}]",
            f"{tx.amount:,.7f}".rstrip('0').rstrip('.') if tx.amount else "-",
            "XLM" if tx.is_native else (tx.asset_code or "?"),
            format_fiat_amount(annotations.get(tx.id), quote)
        )

    console.print(table)
    console.print(
        f"In: {format_fiat_amount(summary.total_fiat_in, quote)}  "
        f"Out: {format_fiat_amount(summary.total_fiat_out, quote)}  "
        f"Unresolved: {summary.unresolved}/{summary.total}"
    )
