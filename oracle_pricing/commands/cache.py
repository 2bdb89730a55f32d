"""CLI commands for inspecting and clearing caches."""

import click
from rich.table import Table
from rich import box

from ..core.config import ConfigError
from ..core.context import get_current_context
from ..core.exceptions import PricingError
from .common import async_command, console, pricing_service, selected_network


@click.group()
def cache():
    """Price cache management commands."""
    pass


@cache.command()
@click.pass_context
@async_command
async def stats(ctx):
    """Show price cache and historical table statistics."""
    app_ctx = get_current_context()

    try:
        async with pricing_service() as service:
            network = selected_network() or service.default_network
            cache_stats = await service.get_cache_stats(network)
            history = await service.historical.stats()
    except (PricingError, ConfigError) as e:
        console.print(f"[red]Error getting cache statistics: {e}[/red]")
        if app_ctx.debug:
            console.print_exception()
        ctx.exit(1)

    table = Table(title=f"Price Cache ({network})", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Memory Entries", str(cache_stats['memory_entries']))
    table.add_row("Storage Entries", str(cache_stats['storage_entries']))
    table.add_row("Hit Rate", f"{cache_stats['hit_rate'] * 100:.1f}%")
    table.add_row("Evictions", str(cache_stats['evictions']))
    table.add_row("Historical Pair", history['pair'])
    table.add_row("Historical Days", str(history['entries']))
    table.add_row("Oldest Day", history['oldest_date'] or "-")
    table.add_row("Newest Day", history['newest_date'] or "-")

    console.print(table)


@cache.command()
@click.option('--all', 'clear_all', is_flag=True,
              help='Clear every network and the historical rate table')
@click.pass_context
@async_command
async def clear(ctx, clear_all: bool):
    """Clear cached prices for the selected network."""
    app_ctx = get_current_context()

    try:
        async with pricing_service() as service:
            if clear_all:
                cleared = await service.clear_price_cache()
                await service.historical.clear()
                target = "all networks"
            else:
                target = selected_network() or service.default_network
                cleared = await service.clear_price_cache(target)
    except (PricingError, ConfigError) as e:
        console.print(f"[red]Error clearing cache: {e}[/red]")
        if app_ctx.debug:
            console.print_exception()
        ctx.exit(1)

    console.print(f"[green]Cleared {cleared} cached entries for {target}[/green]")
