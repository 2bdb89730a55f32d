"""CLI commands for historical daily rates."""

from datetime import datetime
from typing import Optional

import click

from ..core.config import ConfigError
from ..core.context import get_current_context
from ..core.exceptions import PricingError
from .common import async_command, console, pricing_service


@click.command()
@click.argument('day', required=False, type=click.DateTime(['%Y-%m-%d']))
@click.option('--current', is_flag=True, help="Show today's rate instead of a past day")
@click.pass_context
@async_command
async def rate(ctx, day: Optional[datetime], current: bool):
    """Show the historical daily rate of the configured pair.

    Missing days are backfilled; if a day is still missing, the nearest
    recorded day is used.

    Examples:
        oracle-pricing rate 2024-01-15
        oracle-pricing rate --current
    """
    app_ctx = get_current_context()

    if day is None and not current:
        raise click.UsageError("Give a DAY or --current")
    if day is not None and current:
        raise click.UsageError("DAY and --current are mutually exclusive")

    try:
        async with pricing_service() as service:
            pair = service.historical.pair
            if current:
                value = await service.get_current_rate()
                label = "today"
            else:
                value = await service.get_rate_for_date(day.date())
                label = day.strftime("%Y-%m-%d")
    except (PricingError, ConfigError) as e:
        console.print(f"[red]Error fetching rate: {e}[/red]")
        if app_ctx.debug:
            console.print_exception()
        ctx.exit(1)

    if not value:
        console.print(f"[yellow]{pair} {label}: N/A[/yellow]")
        return

    console.print(f"{pair} {label}: [green]{value:.6f}[/green]")
