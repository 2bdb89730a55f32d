"""HTTP clients for external price sources."""

from .kraken import KrakenOHLCClient
from .soroban import SorobanGatewayReader

__all__ = ['KrakenOHLCClient', 'SorobanGatewayReader']
