"""
Layered configuration: packaged YAML defaults, user YAML files, .env and
environment variable overrides.

The resulting tree is turned into typed ``PricingSettings`` used to wire the
pricing service.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import yaml
from dotenv import load_dotenv

from ..data.models import OracleConfig, OracleSource

logger = logging.getLogger(__name__)

PACKAGE_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


class ConfigError(Exception):
    """Configuration-related errors."""
    pass


class ConfigManager:
    """
    Hierarchical configuration manager.

    Sources are applied in order, later ones winning: the packaged
    ``default.yaml``, ``config.yaml`` and ``<ENVIRONMENT>.yaml`` from the
    user config directory, a ``.env`` file, then ``<PREFIX>_*`` environment
    variables.
    """

    def __init__(
        self,
        config_dir: Optional[Union[str, Path]] = None,
        env_prefix: str = "ORACLE_PRICING",
        env_file: Optional[Union[str, Path]] = None
    ):
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self.env_prefix = env_prefix
        self.env_file = env_file

        self._config: Dict[str, Any] = {}
        self._loaded = False

    async def initialize(self) -> None:
        """Initialize the configuration manager."""
        logger.info("Initializing configuration manager")
        self.load()
        logger.info("Configuration manager initialized")

    def load(self) -> None:
        """Load configuration from all sources."""
        self._config = {}

        self._load_yaml_config()

        load_dotenv(self.env_file)
        self._apply_env_overrides()

        self._loaded = True
        logger.info(f"Loaded configuration with {len(self._config)} top-level keys")

    def _load_yaml_config(self) -> None:
        """Load configuration from YAML files."""
        config_files = [
            PACKAGE_CONFIG_DIR / "default.yaml",
            self.config_dir / "config.yaml",
        ]

        env = os.getenv("ENVIRONMENT", "development")
        env_config = self.config_dir / f"{env}.yaml"
        if env_config.exists():
            config_files.append(env_config)

        for config_file in config_files:
            if not config_file.exists():
                continue
            try:
                with open(config_file, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Failed to load config from {config_file}: {e}") from e

            if not isinstance(file_config, dict):
                raise ConfigError(f"Config file {config_file} must contain a mapping")

            self._merge_config(self._config, file_config)
            logger.debug(f"Loaded config from {config_file}")

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        prefix = f"{self.env_prefix}_"

        for key, value in os.environ.items():
            if key.startswith(prefix):
                config_key = self._env_key_path(key[len(prefix):])
                self._set_nested_value(self._config, config_key, value)
                logger.debug(f"Applied env override: {config_key} = {value}")

    def _env_key_path(self, name: str) -> str:
        """Map CACHE_PRICE_TTL to cache.price_ttl using the keys already loaded.

        Underscores separate levels unless a longer run of parts names an
        existing key at that level.
        """
        parts = name.lower().split('_')
        path = []
        current: Any = self._config
        i = 0

        while i < len(parts):
            step = 1
            if isinstance(current, dict):
                for j in range(len(parts), i, -1):
                    if '_'.join(parts[i:j]) in current:
                        step = j - i
                        break

            segment = '_'.join(parts[i:i + step])
            path.append(segment)
            current = current.get(segment) if isinstance(current, dict) else None
            i += step

        return '.'.join(path)

    def _merge_config(self, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        """Recursively merge configuration dictionaries."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_config(target[key], value)
            else:
                target[key] = value

    def _set_nested_value(self, config: Dict[str, Any], key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._convert_value(value)

    def _convert_value(self, value: Any) -> Any:
        """Convert string value to appropriate type."""
        if not isinstance(value, str):
            return value

        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value using dot notation."""
        if not self._loaded:
            raise ConfigError("Configuration not loaded")

        current = self._config
        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default

        return current

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value using dot notation."""
        self._set_nested_value(self._config, key, value)

    def get_all(self) -> Dict[str, Any]:
        """Get a copy of the whole configuration tree."""
        return dict(self._config)

    def has(self, key: str) -> bool:
        """Check if a configuration key exists."""
        if not self._loaded:
            return False

        current = self._config
        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return False

        return True


@dataclass
class NetworkSettings:
    """Oracle wiring for one network."""

    name: str
    gateway_url: str
    native_asset: str = "XLM"
    oracles: Dict[OracleSource, OracleConfig] = field(default_factory=dict)


@dataclass
class PricingSettings:
    """Typed view of the configuration used to build the pricing service."""

    networks: Dict[str, NetworkSettings] = field(default_factory=dict)
    default_network: str = "mainnet"

    price_ttl: float = 300
    fx_ttl: float = 300
    asset_list_ttl: float = 86400
    price_cache_entries: int = 500
    fx_cache_entries: int = 100
    asset_list_cache_entries: int = 10

    window_seconds: float = 10.0
    requests_per_window: int = 50

    max_retries: int = 3
    retry_delay: float = 0.5
    backoff_factor: float = 2.0
    asset_list_retry_after: float = 60

    historical_pair: str = "XLMUSD"
    historical_pair_fallbacks: List[str] = field(default_factory=lambda: ["XXLMZUSD"])
    historical_min_date: date = date(2017, 1, 1)
    historical_current_ttl: float = 21600
    historical_requests_per_minute: int = 20

    storage_backend: str = "sqlite"
    storage_path: str = "oracle_pricing.db"
    storage_max_entries: int = 5000

    @classmethod
    def from_config(cls, config: Union[ConfigManager, Dict[str, Any]]) -> 'PricingSettings':
        """Build settings from a loaded ConfigManager or a plain config tree.

        Raises:
            ConfigError: if a network or oracle entry is malformed
        """
        tree = config.get_all() if isinstance(config, ConfigManager) else config
        defaults = cls()

        def value(path: str, default: Any) -> Any:
            current: Any = tree
            for part in path.split('.'):
                if not isinstance(current, dict) or part not in current:
                    return default
                current = current[part]
            return current

        networks = {
            name: _network_from_dict(name, entry)
            for name, entry in (value('networks', {}) or {}).items()
        }

        min_date = value('historical.min_date', defaults.historical_min_date)
        if isinstance(min_date, str):
            try:
                min_date = date.fromisoformat(min_date)
            except ValueError as e:
                raise ConfigError(f"historical.min_date is not an ISO date: {min_date}") from e

        fallbacks = value('historical.pair_fallbacks', defaults.historical_pair_fallbacks)
        if isinstance(fallbacks, str):
            fallbacks = [p.strip() for p in fallbacks.split(',') if p.strip()]

        cache = 'cache.max_memory_entries'
        return cls(
            networks=networks,
            default_network=value('default_network', defaults.default_network),
            price_ttl=float(value('cache.price_ttl', defaults.price_ttl)),
            fx_ttl=float(value('cache.fx_ttl', defaults.fx_ttl)),
            asset_list_ttl=float(value('cache.asset_list_ttl', defaults.asset_list_ttl)),
            price_cache_entries=int(value(f'{cache}.price', defaults.price_cache_entries)),
            fx_cache_entries=int(value(f'{cache}.fx', defaults.fx_cache_entries)),
            asset_list_cache_entries=int(value(f'{cache}.asset_lists', defaults.asset_list_cache_entries)),
            window_seconds=float(value('rate_limit.window_seconds', defaults.window_seconds)),
            requests_per_window=int(value('rate_limit.requests_per_window', defaults.requests_per_window)),
            max_retries=int(value('oracle.max_retries', defaults.max_retries)),
            retry_delay=float(value('oracle.retry_delay', defaults.retry_delay)),
            backoff_factor=float(value('oracle.backoff_factor', defaults.backoff_factor)),
            asset_list_retry_after=float(
                value('oracle.asset_list_retry_after', defaults.asset_list_retry_after)
            ),
            historical_pair=str(value('historical.pair', defaults.historical_pair)),
            historical_pair_fallbacks=list(fallbacks),
            historical_min_date=min_date,
            historical_current_ttl=float(value('historical.current_ttl', defaults.historical_current_ttl)),
            historical_requests_per_minute=int(
                value('historical.requests_per_minute', defaults.historical_requests_per_minute)
            ),
            storage_backend=str(value('storage.backend', defaults.storage_backend)),
            storage_path=str(value('storage.path', defaults.storage_path)),
            storage_max_entries=int(value('storage.max_entries', defaults.storage_max_entries)),
        )

    def network(self, name: Optional[str] = None) -> NetworkSettings:
        name = name or self.default_network
        try:
            return self.networks[name]
        except KeyError:
            raise ConfigError(f"Unknown network '{name}' (configured: {', '.join(sorted(self.networks))})")


def _network_from_dict(name: str, entry: Dict[str, Any]) -> NetworkSettings:
    if not isinstance(entry, dict) or 'gateway_url' not in entry:
        raise ConfigError(f"Network '{name}' needs a gateway_url")

    oracles = {}
    for source_name, oracle in (entry.get('oracles') or {}).items():
        try:
            source = OracleSource(source_name)
        except ValueError:
            raise ConfigError(f"Unknown oracle source '{source_name}' on network '{name}'")

        if isinstance(oracle, str):
            oracle = {'contract': oracle}
        if not isinstance(oracle, dict) or not oracle.get('contract'):
            raise ConfigError(f"Oracle '{source_name}' on network '{name}' needs a contract")

        oracles[source] = OracleConfig(
            source=source,
            contract=oracle['contract'],
            decimals=int(oracle.get('decimals', 14)),
            base=str(oracle.get('base', 'USD')).upper()
        )

    return NetworkSettings(
        name=name,
        gateway_url=entry['gateway_url'],
        native_asset=str(entry.get('native_asset', 'XLM')).upper(),
        oracles=oracles
    )
