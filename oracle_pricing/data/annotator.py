"""Fiat valuation of account transaction batches."""

from typing import Dict, Sequence
import logging

from ..core.exceptions import PricingError
from .engine import PriceResolutionEngine
from .historical import HistoricalRateService
from .models import FiatAnnotation, FiatSummary, NormalizedTransaction, TransactionDirection

logger = logging.getLogger(__name__)


class TransactionFiatAnnotator:
    """Values transactions in a fiat currency.

    Native amounts use the historical day rate for the transaction's date.
    Other assets use the current USD price, since there is no historical
    series for arbitrary assets. Conversions run one at a time so they stay
    within the shared rate limit.
    """

    def __init__(self, engine: PriceResolutionEngine, historical: HistoricalRateService,
                 reporting_currency: str = "USD"):
        self.engine = engine
        self.historical = historical
        self.reporting_currency = reporting_currency.upper()

    async def annotate(self, transactions: Sequence[NormalizedTransaction],
                       quote_currency: str = "USD") -> FiatAnnotation:
        """Compute the fiat value of every transaction.

        Args:
            transactions: Transactions in display order
            quote_currency: Fiat currency to value them in

        Returns:
            Mapping of transaction id to fiat amount, 0.0 when unresolved
        """
        if not transactions:
            return {}

        quote_currency = quote_currency.upper()

        await self._prime_history(transactions)
        multiplier = await self._batch_multiplier(quote_currency)

        asset_prices: Dict[str, float] = {}
        annotations: FiatAnnotation = {}

        for tx in transactions:
            if not tx.amount:
                annotations[tx.id] = 0.0
                continue

            if tx.is_native:
                price = await self.historical.get_rate_for_date(tx.created_at)
            else:
                price = await self._asset_price(tx, asset_prices)

            annotations[tx.id] = tx.amount * price * multiplier if price else 0.0

        unresolved = sum(1 for tx in transactions if tx.amount and not annotations[tx.id])
        logger.info(
            f"Annotated {len(transactions)} transactions in {quote_currency} "
            f"({unresolved} unresolved)"
        )
        return annotations

    def summarize(self, transactions: Sequence[NormalizedTransaction],
                  annotations: FiatAnnotation, quote_currency: str = "USD") -> FiatSummary:
        """Total the in and out amounts and their fiat values."""
        summary = FiatSummary(total=len(transactions), quote_currency=quote_currency.upper())

        for tx in transactions:
            amount = tx.amount or 0.0
            fiat = annotations.get(tx.id, 0.0)

            if amount and not fiat:
                summary.unresolved += 1

            if tx.direction == TransactionDirection.IN:
                summary.total_in += amount
                summary.total_fiat_in += fiat
            else:
                summary.total_out += amount
                summary.total_fiat_out += fiat

        return summary

    async def _prime_history(self, transactions: Sequence[NormalizedTransaction]):
        native = [tx.created_at for tx in transactions if tx.is_native and tx.amount]
        if not native:
            return

        earliest = min(native)
        try:
            await self.historical.prime_range(earliest, self.historical.today())
        except PricingError as e:
            logger.warning(f"Historical priming failed, continuing with cached rates: {e}")

    async def _batch_multiplier(self, quote_currency: str) -> float:
        try:
            return await self.engine.get_fx_multiplier(self.reporting_currency, quote_currency)
        except PricingError as e:
            logger.warning(
                f"No {self.reporting_currency}->{quote_currency} rate, "
                f"values stay in {self.reporting_currency}: {e}"
            )
            return 1.0

    async def _asset_price(self, tx: NormalizedTransaction, prices: Dict[str, float]) -> float:
        key = tx.asset_key
        if key in prices:
            return prices[key]

        price = 0.0
        if tx.asset_code:
            try:
                price = await self.engine.get_price(tx.asset_code, self.reporting_currency,
                                                    issuer=tx.asset_issuer)
            except PricingError as e:
                logger.warning(f"No price for {key}: {e}")
        else:
            logger.warning(f"Transaction {tx.id} has no asset code")

        prices[key] = price
        return price
