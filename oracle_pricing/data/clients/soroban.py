"""Read-only contract calls through an HTTP simulation gateway."""

from typing import Any, List, Optional
import logging

from ...core.exceptions import AssetNotFound, InvalidResponse
from ..api_client import APIClientConfig, BaseAPIClient, RateLimiter
from ..oracle import ContractReader

logger = logging.getLogger(__name__)


class SorobanGatewayReader(BaseAPIClient, ContractReader):
    """ContractReader that posts simulation requests to a JSON gateway.

    The gateway receives ``{"contract", "method", "args", "network"}`` and
    answers ``{"result": ...}`` or ``{"error": {"code", "message"}}``.
    Retries and throttling are left to the caller, so by default the client
    makes one unthrottled attempt per call.
    """

    def __init__(self, gateway_url: str, network: str = "mainnet", timeout: int = 30,
                 api_key: Optional[str] = None, rate_limiter: Optional[RateLimiter] = None):
        """Initialize gateway reader.

        Args:
            gateway_url: Simulation endpoint URL
            network: Network name sent with every request
            timeout: Request timeout in seconds
            api_key: Optional bearer token for the gateway
            rate_limiter: Limiter for HTTP calls, or None when the caller throttles
        """
        config = APIClientConfig(
            base_url=gateway_url,
            api_key=api_key,
            timeout=timeout,
            max_retries=0,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": "oracle-pricing/0.1"
            }
        )
        super().__init__(config, f"soroban-gateway:{network}", rate_limiter)
        self.rate_limiter = rate_limiter
        self.network = network

    def _get_auth_headers(self):
        return {"Authorization": f"Bearer {self.config.api_key}"}

    async def simulate_read_only_call(self, contract_address: str, method: str,
                                      args: List[Any]) -> Any:
        body = {
            "contract": contract_address,
            "method": method,
            "args": args,
            "network": self.network
        }

        response = await self._make_request("POST", "", json_body=body)

        if response.status_code == 404:
            raise AssetNotFound(f"{method} on {contract_address} returned not found")
        if not response.is_success:
            raise InvalidResponse(f"Gateway returned HTTP {response.status_code} for {method}")

        data = response.data
        if not isinstance(data, dict):
            raise InvalidResponse(f"Gateway returned a non-JSON body for {method}")

        error = data.get('error')
        if error:
            code = error.get('code') if isinstance(error, dict) else None
            message = error.get('message', error) if isinstance(error, dict) else error
            if code == 'not_found':
                raise AssetNotFound(f"{method} on {contract_address}: {message}")
            raise InvalidResponse(f"Simulation of {method} failed: {message}")

        if 'result' not in data:
            raise InvalidResponse(f"Gateway response for {method} has no result")

        return data['result']
