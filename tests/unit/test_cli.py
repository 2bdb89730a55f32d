"""Tests for CLI functionality."""

import json
from datetime import date
from unittest.mock import patch

import pytest

from oracle_pricing import __version__
from oracle_pricing.cli import main
from oracle_pricing.data.service import build_pricing_service
from oracle_pricing.data.storage import MemoryKeyValueStore

from tests.conftest import daily_closes


def json_output(result):
    """Decode the JSON document printed after any log lines."""
    lines = result.output.splitlines()
    start = lines.index("{")
    return json.loads("\n".join(lines[start:]))


@pytest.fixture
def fake_service(pricing_settings, reader, ohlc_client, clock):
    """Patch the CLI to build services backed by the in-memory fakes."""
    ohlc_client.closes = daily_closes(date(2024, 1, 1), date(2024, 3, 1), 0.12)

    def factory(settings):
        return build_pricing_service(
            pricing_settings,
            store=MemoryKeyValueStore(),
            reader=reader,
            ohlc_client=ohlc_client,
            clock=clock
        )

    with patch('oracle_pricing.commands.common.build_pricing_service', side_effect=factory) as mock_build:
        yield mock_build


class TestMainCLI:
    """Test the root command."""

    def test_help(self, cli_runner):
        result = cli_runner.invoke(main, ['--help'])

        assert result.exit_code == 0
        assert "Oracle Pricing" in result.output
        for command in ("price", "fx", "rate", "annotate", "cache"):
            assert command in result.output

    def test_no_command_shows_help(self, cli_runner):
        result = cli_runner.invoke(main, [])

        assert result.exit_code == 0
        assert "Usage" in result.output

    def test_version(self, cli_runner):
        result = cli_runner.invoke(main, ['version'])

        assert result.exit_code == 0
        assert f"oracle-pricing v{__version__}" in result.output

    def test_invalid_config_dir(self, cli_runner, temp_dir):
        (temp_dir / "config.yaml").write_text("networks: [unclosed")

        result = cli_runner.invoke(main, ['--config', str(temp_dir), 'version'])

        assert result.exit_code == 1
        assert "Configuration failed" in result.output


class TestPriceCommands:
    """Test price and fx commands."""

    def test_price_json(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['price', 'XLM', 'BTC', '--format', 'json'])

        assert result.exit_code == 0
        payload = json_output(result)
        assert payload['quote'] == "USD"
        assert payload['prices']['XLM'] == pytest.approx(0.12)
        assert payload['prices']['BTC'] == pytest.approx(60000)

    def test_unpriced_asset_is_null_in_json(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['price', 'XLM', 'DOGE', '--format', 'json'])

        assert result.exit_code == 0
        assert json_output(result)['prices']['DOGE'] is None

    def test_price_table(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['price', 'XLM', 'DOGE', '--quote', 'EUR'])

        assert result.exit_code == 0
        assert "Oracle Prices (EUR)" in result.output
        assert "€0.10" in result.output
        assert "N/A" in result.output

    def test_unknown_network(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['--network', 'futurenet', 'price', 'XLM'])

        assert result.exit_code == 1
        assert "Unknown network" in result.output

    def test_fx(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['fx', 'usd', 'eur', '--amount', '100'])

        assert result.exit_code == 0
        assert "$100.00" in result.output
        assert "€80.00" in result.output

    def test_fx_rejects_non_fiat(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['fx', 'USD', 'XLM'])

        assert result.exit_code == 1
        assert "not a supported fiat currency" in result.output
        fake_service.assert_not_called()


class TestRateCommand:
    """Test the rate command."""

    def test_rate_for_day(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['rate', '2024-01-15'])

        assert result.exit_code == 0
        assert "XLMUSD 2024-01-15: 0.120000" in result.output

    def test_current_rate(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['rate', '--current'])

        assert result.exit_code == 0
        assert "XLMUSD today: 0.120000" in result.output

    def test_requires_day_or_current(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['rate'])

        assert result.exit_code == 2

    def test_day_and_current_exclusive(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['rate', '2024-01-15', '--current'])

        assert result.exit_code == 2


class TestAnnotateCommand:
    """Test the annotate command."""

    @pytest.fixture
    def history_file(self, temp_dir):
        path = temp_dir / "history.json"
        path.write_text(json.dumps({"transactions": [
            {"id": "a", "created_at": "2024-01-15T10:00:00Z", "asset_type": "native",
             "direction": "in", "amount": "100"},
            {"id": "b", "created_at": "2024-01-16T10:00:00Z", "asset_type": "credit_alphanum4",
             "direction": "out", "amount": 20, "asset_code": "USDC", "asset_issuer": "GISSUER"},
            {"id": "c", "created_at": "2024-01-17T10:00:00Z", "asset_type": "native",
             "direction": "out"},
        ]}))
        return path

    def test_annotate_json(self, cli_runner, fake_service, history_file):
        result = cli_runner.invoke(main, ['annotate', str(history_file), '--quote', 'EUR',
                                          '--format', 'json'])

        assert result.exit_code == 0
        payload = json_output(result)
        assert payload['quote'] == "EUR"
        assert payload['values']['a'] == pytest.approx(100 * 0.12 * 0.8)
        assert payload['values']['b'] == pytest.approx(20 * 0.8)
        assert payload['values']['c'] == 0.0
        assert payload['summary']['total'] == 3
        assert payload['summary']['unresolved'] == 0

    def test_annotate_table(self, cli_runner, fake_service, history_file):
        result = cli_runner.invoke(main, ['annotate', str(history_file)])

        assert result.exit_code == 0
        assert "Transaction Values (USD)" in result.output
        assert "In: $12.00" in result.output
        assert "Unresolved: 0/3" in result.output

    def test_rejects_non_fiat_quote(self, cli_runner, fake_service, history_file):
        result = cli_runner.invoke(main, ['annotate', str(history_file), '--quote', 'BTC'])

        assert result.exit_code == 2

    def test_invalid_file(self, cli_runner, fake_service, temp_dir):
        path = temp_dir / "bad.json"
        path.write_text(json.dumps({"transactions": "nope"}))

        result = cli_runner.invoke(main, ['annotate', str(path)])

        assert result.exit_code == 2

    def test_transaction_without_timestamp(self, cli_runner, fake_service, temp_dir):
        path = temp_dir / "undated.json"
        path.write_text(json.dumps([{"id": "x", "amount": 1}]))

        result = cli_runner.invoke(main, ['annotate', str(path)])

        assert result.exit_code == 2
        assert "has no created_at" in result.output


class TestCacheCommands:
    """Test cache commands."""

    def test_stats(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['cache', 'stats'])

        assert result.exit_code == 0
        assert "Price Cache (mainnet)" in result.output
        assert "Historical Pair" in result.output

    def test_clear_all(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['cache', 'clear', '--all'])

        assert result.exit_code == 0
        assert "for all networks" in result.output

    def test_clear_network(self, cli_runner, fake_service):
        result = cli_runner.invoke(main, ['--network', 'testnet', 'cache', 'clear'])

        assert result.exit_code == 0
        assert "for testnet" in result.output
