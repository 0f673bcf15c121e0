"""
SPOT Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (SPOT_*)
    2. Runtime overrides
    3. User config file (~/.spot/config.yaml)
    4. Project config file (./spot.yaml)
    5. Default values

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")

TRANCHE_RATIO_GRANULARITY = 1000


class ConfigError(Exception):
    """Configuration error."""
    pass


class ValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._coerce(value)
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        """Drop any runtime override."""
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        elif target_type == list:
            return [int(v) for v in value.split(",")]  # type: ignore
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


def _valid_ratios(ratios: List[int]) -> bool:
    return (
        len(ratios) >= 2
        and all(isinstance(r, int) and r > 0 for r in ratios)
        and sum(ratios) == TRANCHE_RATIO_GRANULARITY
    )


@dataclass
class PerpConfig:
    """Configuration for the perpetual tranche."""
    claim_token: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="SPOT",
        env_var="SPOT_PERP_CLAIM_TOKEN",
        description="Claim token id (also the perp's account)",
        validator=lambda x: bool(x.strip()),
    ))
    min_tranche_maturity_sec: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1200,
        env_var="SPOT_PERP_MIN_MATURITY_SEC",
        description="Minimum time to maturity for queue admission",
        validator=lambda x: x >= 0,
    ))
    max_tranche_maturity_sec: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=4800,
        env_var="SPOT_PERP_MAX_MATURITY_SEC",
        description="Exclusive upper bound on time to maturity for queue admission",
        validator=lambda x: x > 0,
    ))
    reserve_dust_amt: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_PERP_DUST_AMT",
        description="Balances at or below this are dropped from the reserve",
        validator=lambda x: x >= 0,
    ))
    yield_decimals: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=6,
        env_var="SPOT_PERP_YIELD_DECIMALS",
        description="Fixed-point decimals of yield factors",
        validator=lambda x: 0 <= x <= 36,
    ))
    price_decimals: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=18,
        env_var="SPOT_PERP_PRICE_DECIMALS",
        description="Fixed-point decimals of tranche prices",
        validator=lambda x: 0 <= x <= 36,
    ))
    freeze_used_yields: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="SPOT_PERP_FREEZE_USED_YIELDS",
        description="Reject yield updates for classes already used to mint",
    ))


@dataclass
class VaultConfig:
    """Configuration for the rollover vault."""
    share_token: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="VSHARE",
        env_var="SPOT_VAULT_SHARE_TOKEN",
        description="Vault share token id (also the vault's account)",
        validator=lambda x: bool(x.strip()),
    ))
    initial_rate: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1000000,
        env_var="SPOT_VAULT_INITIAL_RATE",
        description="Shares minted per underlying unit on the first deposit",
        validator=lambda x: x > 0,
    ))
    min_deployment_amt: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_VAULT_MIN_DEPLOYMENT",
        description="Smallest underlying amount a deploy may tranche",
        validator=lambda x: x >= 0,
    ))
    min_underlying_bal: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_VAULT_MIN_UNDERLYING_BAL",
        description="Absolute underlying balance kept liquid",
        validator=lambda x: x >= 0,
    ))
    min_underlying_perc: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_VAULT_MIN_UNDERLYING_PERC",
        description="Fraction of TVL kept liquid (fee decimals)",
        validator=lambda x: 0 <= x <= 10 ** 8,
    ))
    max_deployed_count: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=47,
        env_var="SPOT_VAULT_MAX_DEPLOYED",
        description="Maximum number of deployed tranches held",
        validator=lambda x: x > 0,
    ))
    tranche_dust_amt: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_VAULT_DUST_AMT",
        description="Tranche balances at or below this are written off",
        validator=lambda x: x >= 0,
    ))


@dataclass
class FeeConfig:
    """Configuration for the fee policy. Percentages use ``decimals``."""
    decimals: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=8,
        env_var="SPOT_FEE_DECIMALS",
        description="Fixed-point decimals of fee percentages",
        validator=lambda x: 0 < x <= 18,
    ))
    perp_mint_fee_perc: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_FEE_PERP_MINT",
        description="Perp mint fee",
    ))
    perp_burn_fee_perc: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_FEE_PERP_BURN",
        description="Perp burn fee",
    ))
    perp_rollover_fee_perc: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_FEE_PERP_ROLLOVER",
        description="Perp rollover fee, negative pays a reward",
    ))
    vault_mint_fee_perc: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_FEE_VAULT_MINT",
        description="Vault mint fee",
    ))
    vault_burn_fee_perc: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_FEE_VAULT_BURN",
        description="Vault burn fee",
    ))
    underlying_to_perp_swap_fee_perc: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_FEE_SWAP_TO_PERP",
        description="Vault fee on underlying to perp swaps",
    ))
    perp_to_underlying_swap_fee_perc: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_FEE_SWAP_TO_UNDERLYING",
        description="Vault fee on perp to underlying swaps",
    ))
    target_subscription_ratio: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=133000000,
        env_var="SPOT_FEE_TARGET_SR",
        description="Target vault to perp subscription ratio",
        validator=lambda x: x > 0,
    ))
    gate_by_subscription: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="SPOT_FEE_GATE_BY_SR",
        description="Charge mint/burn fees and allow swaps depending on the deviation ratio",
    ))


@dataclass
class IssuerConfig:
    """Configuration for the bond issuer."""
    collateral_token: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="AMPL",
        env_var="SPOT_ISSUER_COLLATERAL",
        description="Collateral token id",
        validator=lambda x: bool(x.strip()),
    ))
    tranche_ratios: ConfigValue[list] = field(default_factory=lambda: ConfigValue(
        default=[200, 800],
        env_var="SPOT_ISSUER_RATIOS",
        description="Tranche ratios, most senior first, summing to 1000",
        validator=_valid_ratios,
    ))
    max_maturity_duration: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=4800,
        env_var="SPOT_ISSUER_MAX_MATURITY",
        description="Bond lifetime in seconds",
        validator=lambda x: x > 0,
    ))
    min_issue_time_interval: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1200,
        env_var="SPOT_ISSUER_INTERVAL",
        description="Seconds between issue windows",
        validator=lambda x: x > 0,
    ))
    issue_window_offset: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="SPOT_ISSUER_WINDOW_OFFSET",
        description="Offset of the issue window within the interval",
        validator=lambda x: x >= 0,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="SPOT_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="SPOT_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class SpotConfig:
    """
    Root configuration for SPOT.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    perp: PerpConfig = field(default_factory=PerpConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    fees: FeeConfig = field(default_factory=FeeConfig)
    issuer: IssuerConfig = field(default_factory=IssuerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)

    def apply(self, data: Dict[str, Any]) -> None:
        """Apply nested dictionary values, rejecting unknown keys."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], path: str) -> None:
            for key, value in values.items():
                key_path = f"{path}.{key}" if path else key
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {key_path}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, key_path)
                else:
                    raise ConfigError(f"Invalid config section: {key_path}")

        apply_to_config(self, data, "")


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = SpotConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> SpotConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file must contain a mapping: {path}")
            self._config.apply(data)
            self._config_paths.append(path)

    def load_defaults(self) -> List[Path]:
        """Load default configuration files that exist; returns the paths loaded."""
        default_paths = [
            Path("spot.yaml"),
            Path("config/spot.yaml"),
            Path.home() / ".spot" / "config.yaml",
        ]

        loaded = []
        for path in default_paths:
            if path.exists():
                self.load_from_file(path)
                loaded.append(path)
        return loaded

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("vault.max_deployed_count", 10)
        """
        attr = self._resolve(path)
        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("perp.yield_decimals")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def reset(self) -> None:
        """Restore defaults and forget loaded files."""
        self._config = SpotConfig()
        self._config_paths = []

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except (TypeError, ValueError, ArithmeticError) as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)

        perp = self._config.perp
        if perp.min_tranche_maturity_sec.get() >= perp.max_tranche_maturity_sec.get():
            errors.append("perp: min_tranche_maturity_sec must be below max_tranche_maturity_sec")
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> SpotConfig:
    """Get the current SPOT configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
