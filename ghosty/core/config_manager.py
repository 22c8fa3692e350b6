"""
Configuration manager for Ghosty Trader.
Handles loading, validation, and management of system configuration.
"""

import copy
import json
import os
from typing import Dict, Any, Optional
import structlog

from ..shared.types import SignalSettings, SystemConfig, TradeConfig, TradeMode, parse_barrier
from ..shared.constants import (
    ALL_SYMBOLS, AUTO_BARRIER, AUTO_PARITY_THRESHOLD, CONFIG_FILE, CONFIRM_COUNT,
    COOLDOWN_MS, DEFAULT_APP_ID, DEFAULT_CURRENCY, DEFAULT_LOG_LEVEL, DEFAULT_STAKE,
    LOG_DIR, LOG_LEVELS, MIN_HISTORY, PING_INTERVAL_S, PROB_THRESHOLD,
    RECONNECT_DELAY_S, SIDE_SUM_THRESHOLD, STREAK_LENGTH, TICK_CAPACITY,
    VOLATILITY_INDICES, WS_ENDPOINT
)
from ..shared.utils import ensure_directory_exists

logger = structlog.get_logger(__name__)


class ConfigManager:
    """Manages system configuration with validation and defaults."""

    def __init__(self, config_file: str = CONFIG_FILE):
        """Initialize configuration manager.

        Args:
            config_file: Path to configuration file
        """
        self.config_file = config_file
        self._config: Optional[SystemConfig] = None
        self._defaults = self._get_default_config()

    def load_config(self) -> SystemConfig:
        """Read the JSON file, writing the defaults first when it is missing.

        Returns:
            SystemConfig: Defaults overlaid with the file, validated

        Raises:
            ValueError: If the file is not a JSON object or a value is invalid
        """
        if not os.path.exists(self.config_file):
            logger.warning("No config file, writing defaults", config_file=self.config_file)
            self._create_default_config()

        try:
            with open(self.config_file, 'r') as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"{self.config_file} is not valid JSON: {e}") from e

        if not isinstance(raw, dict):
            raise ValueError(f"{self.config_file} must hold a JSON object")

        try:
            sections = self._validate_config(self._merge_with_defaults(raw))
        except ValueError as e:
            logger.error("Invalid configuration", config_file=self.config_file, error=str(e))
            raise

        self._config = self._dict_to_system_config(sections)
        logger.debug(
            "Configuration loaded",
            config_file=self.config_file,
            mode=self._config.trading.get("mode"),
            symbols=self._config.trading.get("symbols")
        )
        return self._config

    def get_config(self) -> SystemConfig:
        """Loaded configuration, reading the file on first use."""
        return self._config if self._config is not None else self.load_config()

    def build_trade_config(self, overrides: Optional[Dict[str, Any]] = None) -> TradeConfig:
        """Build the run configuration from the trading section.

        Args:
            overrides: Values taking precedence over the file (None entries ignored)

        Returns:
            TradeConfig: Run configuration for the controller
        """
        trading = dict(self.get_config().trading)
        for key, value in (overrides or {}).items():
            if value is not None:
                trading[key] = value

        self._validate_trading(trading)

        return TradeConfig(
            symbols=trading["symbols"],
            mode=TradeMode.parse(trading["mode"]),
            barrier=trading["barrier"],
            stake=float(trading["stake"]),
            take_profit=_optional_float(trading.get("take_profit")),
            stop_loss=_optional_float(trading.get("stop_loss"))
        )

    def signal_settings(self) -> SignalSettings:
        """Signal thresholds from the signal section."""
        signal = self.get_config().signal
        return SignalSettings(
            prob_threshold=float(signal["prob_threshold"]),
            side_sum_threshold=float(signal["side_sum_threshold"]),
            auto_parity_threshold=float(signal["auto_parity_threshold"]),
            confirm_count=int(signal["confirm_count"]),
            streak_length=int(signal["streak_length"]),
            min_history=int(signal["min_history"])
        )

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values."""
        return {
            "system": {
                "environment": "development",
                "log_level": DEFAULT_LOG_LEVEL,
                "log_dir": LOG_DIR
            },
            "session": {
                "endpoint": WS_ENDPOINT,
                "app_id": DEFAULT_APP_ID,
                "ping_interval": PING_INTERVAL_S,
                "reconnect_delay": RECONNECT_DELAY_S,
                "ready_timeout": 30.0
            },
            "trading": {
                "symbols": ALL_SYMBOLS,
                "mode": TradeMode.AUTO.value,
                "barrier": AUTO_BARRIER,
                "stake": DEFAULT_STAKE,
                "take_profit": None,
                "stop_loss": None,
                "currency": DEFAULT_CURRENCY,
                "cooldown_ms": COOLDOWN_MS
            },
            "signal": {
                "prob_threshold": PROB_THRESHOLD,
                "side_sum_threshold": SIDE_SUM_THRESHOLD,
                "auto_parity_threshold": AUTO_PARITY_THRESHOLD,
                "confirm_count": CONFIRM_COUNT,
                "streak_length": STREAK_LENGTH,
                "min_history": MIN_HISTORY
            },
            "data": {
                "tick_capacity": TICK_CAPACITY
            }
        }

    def _create_default_config(self) -> None:
        """Create default configuration file."""
        config_dir = os.path.dirname(self.config_file)
        if config_dir:
            ensure_directory_exists(config_dir)

        with open(self.config_file, 'w') as f:
            json.dump(self._defaults, f, indent=2)

        logger.info("Default configuration file created", config_file=self.config_file)

    def _merge_with_defaults(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Merge configuration with defaults."""
        merged = copy.deepcopy(self._defaults)
        merged = self._deep_update(merged, config)
        return merged

    def _deep_update(self, base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
        """Deep update dictionary with another dictionary."""
        for key, value in updates.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                base[key] = self._deep_update(base[key], value)
            else:
                base[key] = value
        return base

    def _validate_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Validate configuration values."""
        for section in ("system", "session", "trading", "signal", "data"):
            if section not in config:
                raise ValueError(f"Missing '{section}' section in configuration")

        system = config["system"]
        if str(system.get("log_level", "")).upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}")

        session = config["session"]
        if not session.get("endpoint"):
            raise ValueError("session endpoint must be set")
        if not session.get("ping_interval", 0) > 0:
            raise ValueError("ping_interval must be positive")
        if not session.get("reconnect_delay", 0) > 0:
            raise ValueError("reconnect_delay must be positive")

        self._validate_trading(config["trading"])
        if config["trading"].get("cooldown_ms", 0) < 0:
            raise ValueError("cooldown_ms must be non-negative")

        signal = config["signal"]
        for key in ("prob_threshold", "side_sum_threshold", "auto_parity_threshold"):
            if not 0 <= signal.get(key, -1) <= 100:
                raise ValueError(f"{key} must be a percentage between 0 and 100")
        if not isinstance(signal.get("confirm_count"), int) or signal["confirm_count"] < 1:
            raise ValueError("confirm_count must be a positive integer")
        if not isinstance(signal.get("streak_length"), int) or signal["streak_length"] < 2:
            raise ValueError("streak_length must be an integer of at least 2")
        if not isinstance(signal.get("min_history"), int) or signal["min_history"] < 1:
            raise ValueError("min_history must be a positive integer")

        capacity = config["data"].get("tick_capacity")
        if not isinstance(capacity, int) or capacity <= 0:
            raise ValueError("tick_capacity must be a positive integer")
        if capacity < signal["min_history"]:
            logger.warning(
                "Tick capacity below minimum history, no symbol will ever be evaluated",
                tick_capacity=capacity,
                min_history=signal["min_history"]
            )

        return config

    def _validate_trading(self, trading: Dict[str, Any]) -> None:
        """Validate the trading section (limits may still be unset here)."""
        symbols = trading.get("symbols")
        if isinstance(symbols, str):
            if symbols.lower() != ALL_SYMBOLS and not symbols.strip():
                raise ValueError("symbols must be 'all', a symbol or a list of symbols")
        elif not isinstance(symbols, list) or not symbols:
            raise ValueError("symbols must be 'all', a symbol or a list of symbols")
        elif any(not isinstance(s, str) or not s for s in symbols):
            raise ValueError("symbols must be non-empty strings")

        if isinstance(symbols, str) and symbols.lower() != ALL_SYMBOLS and symbols not in VOLATILITY_INDICES:
            logger.warning("Symbol outside the known volatility indices", symbol=symbols)

        TradeMode.parse(trading.get("mode"))

        parse_barrier(trading.get("barrier"))

        if not _optional_float(trading.get("stake")) or float(trading["stake"]) <= 0:
            raise ValueError("stake must be positive")

        for key in ("take_profit", "stop_loss"):
            value = trading.get(key)
            if value is not None and _optional_float(value) is None:
                raise ValueError(f"{key} must be a number")
            if value is not None and float(value) < 0:
                raise ValueError(f"{key} must be non-negative")

    def _dict_to_system_config(self, config_dict: Dict[str, Any]) -> SystemConfig:
        """Convert dictionary to SystemConfig object."""
        return SystemConfig(
            system=config_dict["system"],
            session=config_dict["session"],
            trading=config_dict["trading"],
            signal=config_dict["signal"],
            data=config_dict["data"]
        )


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
