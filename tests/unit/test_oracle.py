"""Tests for oracle decoding and contract reads."""

import asyncio
import logging

import pytest

from oracle_pricing.core.exceptions import AssetNotFound, InvalidResponse, TransientNetworkError
from oracle_pricing.data.models import AssetDescriptor, Decoded, DecodeFailure, OracleSource
from oracle_pricing.data.oracle import decode_price

from tests.conftest import CEX_CONTRACT, FOREX_CONTRACT, NATIVE_CONTRACT, scaled


class TestDecodePrice:
    """Test decode_price."""

    @pytest.mark.parametrize("raw", [
        12_000_000_000_000,
        "12000000000000",
        " 12000000000000 ",
        {"price": 12_000_000_000_000, "timestamp": 1700000000},
        {"value": "12000000000000"},
        [12_000_000_000_000, 1700000000],
    ])
    def test_accepted_shapes(self, raw):
        assert decode_price(raw, 14) == Decoded(0.12)

    def test_large_value_keeps_precision(self):
        result = decode_price(6_000_000_000_000_000_000, 14)

        assert result == Decoded(60000.0)

    @pytest.mark.parametrize("raw", [
        None,
        True,
        "abc",
        float("nan"),
        float("inf"),
        "Infinity",
        [],
        {"timestamp": 1},
        object(),
    ])
    def test_rejected_shapes(self, raw):
        result = decode_price(raw, 14)

        assert isinstance(result, DecodeFailure)
        assert result.reason


class TestOracleClient:
    """Test OracleClient reads."""

    @pytest.mark.asyncio
    async def test_base_quote_uses_lastprice(self, oracle_client, reader):
        price = await oracle_client.read_last_price("xlm", "usd", OracleSource.CEX_DEX)

        assert price == pytest.approx(0.11)
        assert reader.calls == [(CEX_CONTRACT, "lastprice", [{"type": "other", "code": "XLM"}])]

    @pytest.mark.asyncio
    async def test_cross_quote_uses_x_last_price(self, oracle_client, reader):
        price = await oracle_client.read_last_price("BTC", "XLM", OracleSource.CEX_DEX)

        assert price == pytest.approx(500000)
        contract, method, args = reader.calls[0]
        assert method == "x_last_price"
        assert args[1] == {"type": "other", "code": "XLM"}

    @pytest.mark.asyncio
    async def test_issued_asset_argument(self, oracle_client, reader):
        reader.prices[CEX_CONTRACT]["USDC"] = scaled(0.999)
        asset = AssetDescriptor("USDC", "GISSUER")

        await oracle_client.read_last_price(asset, "USD", OracleSource.CEX_DEX)

        assert reader.calls[0][2] == [{"type": "stellar", "code": "USDC", "issuer": "GISSUER"}]

    @pytest.mark.asyncio
    async def test_transient_errors_retried_with_backoff(self, oracle_client, reader, fake_sleep):
        """Delays double between attempts and every attempt is a call."""
        reader.fail(CEX_CONTRACT, "XLM", TransientNetworkError("timeout"), TransientNetworkError("timeout"))

        price = await oracle_client.read_last_price("XLM", "USD", OracleSource.CEX_DEX)

        assert price == pytest.approx(0.11)
        assert fake_sleep.calls == [0.5, 1.0]
        assert oracle_client.call_count == 3
        assert oracle_client.rate_limiter.get_stats()['admitted'] == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted_raises_last_error(self, oracle_client, reader, fake_sleep):
        reader.fail(
            CEX_CONTRACT, "XLM",
            TransientNetworkError("first"), TransientNetworkError("second"), TransientNetworkError("third")
        )

        with pytest.raises(TransientNetworkError, match="third"):
            await oracle_client.read_last_price("XLM", "USD", OracleSource.CEX_DEX)

        assert fake_sleep.calls == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_undecodable_result_retried_then_invalid(self, oracle_client, reader):
        reader.prices[CEX_CONTRACT]["XLM"] = "garbage"

        with pytest.raises(InvalidResponse):
            await oracle_client.read_last_price("XLM", "USD", OracleSource.CEX_DEX)

        assert len(reader.calls) == 3

    @pytest.mark.asyncio
    async def test_missing_price_is_terminal(self, oracle_client, reader, fake_sleep):
        """An absent asset is reported once and never retried."""
        with pytest.raises(AssetNotFound):
            await oracle_client.read_last_price("DOGE", "USD", OracleSource.CEX_DEX)

        assert len(reader.calls) == 1
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_zero_price_is_not_found(self, oracle_client, reader):
        reader.prices[NATIVE_CONTRACT]["XLM"] = 0

        with pytest.raises(AssetNotFound):
            await oracle_client.read_last_price("XLM", "USD", OracleSource.VENUE_NATIVE)

    @pytest.mark.asyncio
    async def test_unconfigured_source(self, oracle_client):
        del oracle_client.oracles[OracleSource.FOREX]

        with pytest.raises(AssetNotFound):
            await oracle_client.read_last_price("EUR", "USD", OracleSource.FOREX)


class TestAssetLists:
    """Test asset list loading and caching."""

    @pytest.mark.asyncio
    async def test_list_assets_cached(self, oracle_client, reader):
        reader.assets[FOREX_CONTRACT] = ["EUR", {"code": "GBP"}, {"code": "USDC", "issuer": "GA"}]

        first = await oracle_client.list_assets(OracleSource.FOREX)
        second = await oracle_client.list_assets(OracleSource.FOREX)

        assert first == ["EUR", "GBP", "USDC:GA"]
        assert second == first
        assert len(reader.calls_for("assets")) == 1

    @pytest.mark.asyncio
    async def test_supports(self, oracle_client, reader):
        reader.assets[CEX_CONTRACT] = ["XLM", "BTC"]

        assert await oracle_client.supports("xlm", OracleSource.CEX_DEX) is True
        assert await oracle_client.supports("DOGE", OracleSource.CEX_DEX) is False

    @pytest.mark.asyncio
    async def test_supports_unknown_when_list_unavailable(self, oracle_client):
        assert await oracle_client.supports("XLM", OracleSource.CEX_DEX) is None

    @pytest.mark.asyncio
    async def test_empty_list_is_invalid(self, oracle_client, reader):
        reader.assets[CEX_CONTRACT] = []

        with pytest.raises(InvalidResponse):
            await oracle_client.list_assets(OracleSource.CEX_DEX)

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_call(self, oracle_client, reader):
        reader.assets[CEX_CONTRACT] = ["XLM", "BTC"]

        results = await asyncio.gather(
            *(oracle_client.supports(code, OracleSource.CEX_DEX) for code in ("XLM", "BTC", "ETH", "USDC"))
        )

        assert results == [True, True, False, False]
        assert len(reader.calls_for("assets")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_load_failure_shared(self, oracle_client, reader, fake_sleep):
        reader.fail(CEX_CONTRACT, "assets", *(TransientNetworkError("timeout") for _ in range(3)))

        results = await asyncio.gather(
            *(oracle_client.supports(code, OracleSource.CEX_DEX) for code in ("XLM", "BTC", "ETH"))
        )

        assert results == [None, None, None]
        assert len(reader.calls_for("assets")) == 3
        assert fake_sleep.calls == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_failed_load_remembered_until_retry_window(self, oracle_client, reader, clock):
        reader.fail(CEX_CONTRACT, "assets", *(TransientNetworkError("timeout") for _ in range(3)))

        assert await oracle_client.supports("XLM", OracleSource.CEX_DEX) is None
        reader.assets[CEX_CONTRACT] = ["XLM"]

        assert await oracle_client.supports("XLM", OracleSource.CEX_DEX) is None
        assert len(reader.calls_for("assets")) == 3

        clock.advance(oracle_client.asset_list_retry_after)

        assert await oracle_client.supports("XLM", OracleSource.CEX_DEX) is True
        assert len(reader.calls_for("assets")) == 4

    @pytest.mark.asyncio
    async def test_forgetting_failures_allows_reload(self, oracle_client, reader):
        assert await oracle_client.supports("XLM", OracleSource.CEX_DEX) is None
        reader.assets[CEX_CONTRACT] = ["XLM"]

        oracle_client.forget_asset_list_failures()

        assert await oracle_client.supports("XLM", OracleSource.CEX_DEX) is True
        assert len(reader.calls_for("assets")) == 2

    @pytest.mark.asyncio
    async def test_retry_log_names_oracle_and_network(self, oracle_client, reader, caplog):
        caplog.set_level(logging.WARNING, logger="oracle_pricing.data.oracle")
        reader.assets[CEX_CONTRACT] = ["XLM"]
        reader.fail(CEX_CONTRACT, "assets", TransientNetworkError("timeout"))

        await oracle_client.list_assets(OracleSource.CEX_DEX)

        assert "cex_dex assets on mainnet failed (attempt 1/3): timeout" in caplog.text
