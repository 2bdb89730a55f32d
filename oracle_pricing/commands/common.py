"""Helpers shared by CLI command modules."""

import asyncio
import functools
from contextlib import asynccontextmanager
from typing import AsyncIterator

from rich.console import Console

from ..core.config import PricingSettings
from ..core.context import get_current_context
from ..data.service import PricingService, build_pricing_service

console = Console()


def async_command(f):
    """Decorator to make Click commands async-compatible."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


@asynccontextmanager
async def pricing_service() -> AsyncIterator[PricingService]:
    """Build, start and finally shut down a service from the CLI configuration."""
    app_ctx = get_current_context()
    settings = PricingSettings.from_config(app_ctx.config)
    service = build_pricing_service(settings)

    async with service:
        yield service


def selected_network() -> str:
    return get_current_context().network
