"""
Main CLI module for oracle-pricing.

The root group loads configuration once and stores it in the application
context; every command builds its own pricing service from it.
"""

import logging
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from oracle_pricing.core.config import ConfigError, ConfigManager
from oracle_pricing.core.context import AppContext, set_context
from oracle_pricing.core.logging import setup_logging as setup_structured_logging

console = Console(stderr=True)
logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False, verbose: bool = False) -> None:
    """Set up interactive logging."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True
    )

    logging.getLogger("oracle_pricing").setLevel(level)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config', '-c', 'config_dir', type=click.Path(exists=True, file_okay=False),
              help='Directory holding config.yaml / <ENVIRONMENT>.yaml')
@click.option('--network', '-n', default=None, help='Network to price on (default from config)')
@click.pass_context
def main(ctx: click.Context, debug: bool, verbose: bool, config_dir: Optional[str],
         network: Optional[str]) -> None:
    """
    Oracle Pricing - on-chain oracle prices, FX conversion and historical
    fiat valuation of account transactions.
    """
    setup_logging(debug, verbose)

    config_manager = ConfigManager(config_dir)
    try:
        config_manager.load()
    except ConfigError as e:
        raise click.ClickException(f"Configuration failed: {e}")

    config = config_manager.get_all()

    # Structured output replaces the interactive handler when asked for
    if config_manager.get('logging.structured', False) and not debug:
        setup_structured_logging(config)

    app_ctx = AppContext(
        config=config,
        config_dir=config_dir,
        network=network,
        debug=debug,
        verbose=verbose
    )
    set_context(app_ctx)

    if ctx.invoked_subcommand:
        app_ctx.push_command(ctx.invoked_subcommand)
    else:
        click.echo(ctx.get_help())


@main.command()
def version() -> None:
    """Show version information."""
    from oracle_pricing import __version__

    click.echo(f"oracle-pricing v{__version__}")


def register_commands():
    """Register all commands with the main CLI."""
    from oracle_pricing.commands import annotate, cache, fx, price, rate

    main.add_command(price)
    main.add_command(fx)
    main.add_command(rate)
    main.add_command(annotate)
    main.add_command(cache)


register_commands()


if __name__ == '__main__':
    main()
