"""Tests for data models and currency helpers."""

from datetime import datetime, timezone

import pytest

from oracle_pricing.core.exceptions import PriceUnavailable
from oracle_pricing.data.currencies import FIAT_CURRENCIES, format_fiat_amount, get_currency, is_fiat
from oracle_pricing.data.models import (
    AssetDescriptor,
    CacheEntry,
    DatedRate,
    NormalizedTransaction,
    PriceQuoteKey,
    TransactionDirection
)


class TestAssetDescriptor:
    """Test AssetDescriptor."""

    def test_contract_arguments(self):
        assert AssetDescriptor("XLM").to_arg() == {"type": "other", "code": "XLM"}
        assert AssetDescriptor("USDC", "GA").to_arg() == {"type": "stellar", "code": "USDC", "issuer": "GA"}

    def test_key(self):
        assert AssetDescriptor("XLM").key == "XLM"
        assert AssetDescriptor("USDC", "GA").key == "USDC:GA"


class TestPriceQuoteKey:
    def test_str_normalizes_case(self):
        assert str(PriceQuoteKey("mainnet", "xlm", "eur")) == "mainnet:XLM:EUR"


class TestCacheEntry:
    """Test CacheEntry."""

    def test_freshness_is_inclusive(self):
        entry = CacheEntry(value=1.0, timestamp=100.0)

        assert entry.is_fresh(400.0, 300)
        assert not entry.is_fresh(400.1, 300)

    def test_dict_round_trip_keeps_timestamp(self):
        entry = CacheEntry(value=[1, 2], timestamp=5.5, hits=3)

        restored = CacheEntry.from_dict(entry.to_dict())

        assert restored == entry


class TestDatedRate:
    def test_rate_must_be_positive(self):
        with pytest.raises(ValueError):
            DatedRate(datetime(2024, 1, 1).date(), 0.0)


class TestNormalizedTransaction:
    """Test NormalizedTransaction."""

    def test_from_dict_camel_case(self):
        tx = NormalizedTransaction.from_dict({
            "id": 42,
            "createdAt": "2024-01-15T10:00:00Z",
            "assetType": "credit_alphanum4",
            "assetCode": "USDC",
            "assetIssuer": "GA",
            "direction": "out",
            "amount": "12.5",
        })

        assert tx.id == "42"
        assert tx.created_at == datetime(2024, 1, 15, 10, tzinfo=timezone.utc)
        assert tx.direction == TransactionDirection.OUT
        assert tx.amount == 12.5
        assert not tx.is_native
        assert tx.asset_key == "USDC:GA"

    def test_naive_datetime_treated_as_utc(self):
        tx = NormalizedTransaction(id="1", created_at=datetime(2024, 1, 1, 12))

        assert tx.created_at.tzinfo == timezone.utc
        assert tx.is_native
        assert tx.amount is None

    def test_epoch_timestamp(self):
        tx = NormalizedTransaction.from_dict({"id": "1", "created_at": 1704067200})

        assert tx.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("data,message", [
        ({"id": "x", "amount": 1}, "has no created_at"),
        ({"id": "x", "created_at": None}, "has no created_at"),
        ({"created_at": "2024-01-01T00:00:00Z"}, "has no id"),
    ])
    def test_from_dict_requires_id_and_timestamp(self, data, message):
        with pytest.raises(ValueError, match=message):
            NormalizedTransaction.from_dict(data)


class TestCurrencies:
    """Test fiat currency helpers."""

    def test_supported_set(self):
        assert len(FIAT_CURRENCIES) == 29
        assert is_fiat("eur")
        assert not is_fiat("XLM")
        assert get_currency("gbp").symbol == "£"
        assert get_currency("XYZ") is None

    @pytest.mark.parametrize("amount,code,expected", [
        (1234.56, "USD", "$1,234.56"),
        (-5, "EUR", "-€5.00"),
        (0.004, "USD", "$0.004000"),
        (1500.4, "JPY", "¥1,500"),
        (0.5, "KRW", "₩0.5000"),
        (10, "XYZ", "XYZ 10.00"),
    ])
    def test_format_fiat_amount(self, amount, code, expected):
        assert format_fiat_amount(amount, code) == expected

    @pytest.mark.parametrize("amount", [None, 0, 0.0])
    def test_unresolved_amounts(self, amount):
        assert format_fiat_amount(amount, "EUR") == "N/A"


class TestExceptions:
    def test_price_unavailable_message(self):
        error = PriceUnavailable("XLM", "EUR", "testnet", "cex_dex: timeout")

        assert str(error) == "No price available for XLM/EUR on testnet: cex_dex: timeout"
        assert error.reason == "cex_dex: timeout"
