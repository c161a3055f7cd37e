"""
Config loader: YAML file -> frozen dataclass tree.

Deployment-specific values resolved from environment variables
(TRADEBOOK_DB_PATH, TRADEBOOK_WEBHOOK_URL). The config file holds only
non-secret values.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from trade_core.contracts import TradeGrouping
from trade_core.validation import OrderLimits

logger = logging.getLogger("tradebook.config")


class ConfigError(ValueError):
    """Config file is readable but one of its values is invalid."""


@dataclass(frozen=True)
class StoreConfig:
    path: str = "data/tradebook.db"


@dataclass(frozen=True)
class EngineConfig:
    grouping: TradeGrouping = TradeGrouping.PER_EXIT
    lock_timeout_seconds: float = 30.0
    market_timezone: str = "America/New_York"
    swing_threshold_hours: float = 24.0
    max_price: Decimal = Decimal("1000000000")
    max_quantity: int = 1_000_000_000

    @property
    def swing_threshold(self) -> timedelta:
        return timedelta(hours=self.swing_threshold_hours)

    @property
    def order_limits(self) -> OrderLimits:
        return OrderLimits(max_price=self.max_price, max_quantity=self.max_quantity)


@dataclass(frozen=True)
class JournalConfig:
    path: str = "data/journal.jsonl"
    echo_stdout: bool = False


@dataclass(frozen=True)
class AlertingConfig:
    structured_logs: bool = True
    webhook_url: str = ""


@dataclass(frozen=True)
class AppConfig:
    store: StoreConfig = field(default_factory=StoreConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    journal: JournalConfig = field(default_factory=JournalConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(value).__name__}")
    return value


def _positive_float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigError(f"{name} must be > 0, got {number}")
    return number


def _engine_config(raw: dict) -> EngineConfig:
    defaults = EngineConfig()

    grouping_raw = str(raw.get("grouping", defaults.grouping.value)).strip().lower()
    try:
        grouping = TradeGrouping(grouping_raw)
    except ValueError as exc:
        allowed = ", ".join(g.value for g in TradeGrouping)
        raise ConfigError(f"engine.grouping must be one of {allowed}, got {grouping_raw!r}") from exc

    tz_name = str(raw.get("market_timezone", defaults.market_timezone))
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"engine.market_timezone: unknown timezone {tz_name!r}") from exc

    try:
        max_price = Decimal(str(raw.get("max_price", defaults.max_price)))
    except InvalidOperation as exc:
        raise ConfigError(f"engine.max_price must be a number, got {raw.get('max_price')!r}") from exc
    if not max_price.is_finite() or max_price <= 0:
        raise ConfigError(f"engine.max_price must be > 0, got {max_price}")

    max_quantity = raw.get("max_quantity", defaults.max_quantity)
    if isinstance(max_quantity, bool) or not isinstance(max_quantity, int) or max_quantity <= 0:
        raise ConfigError(f"engine.max_quantity must be a positive integer, got {max_quantity!r}")

    return EngineConfig(
        grouping=grouping,
        lock_timeout_seconds=_positive_float(
            raw.get("lock_timeout_seconds", defaults.lock_timeout_seconds), "engine.lock_timeout_seconds"
        ),
        market_timezone=tz_name,
        swing_threshold_hours=_positive_float(
            raw.get("swing_threshold_hours", defaults.swing_threshold_hours), "engine.swing_threshold_hours"
        ),
        max_price=max_price,
        max_quantity=max_quantity,
    )


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """
    Load configuration from a YAML file.

    Environment overrides:
      - TRADEBOOK_DB_PATH       replaces store.path
      - TRADEBOOK_WEBHOOK_URL   replaces alerting.webhook_url
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    s_raw = _section(raw, "store")
    store_cfg = StoreConfig(
        path=os.environ.get("TRADEBOOK_DB_PATH") or str(s_raw.get("path", StoreConfig.path)),
    )

    engine_cfg = _engine_config(_section(raw, "engine"))

    j_raw = _section(raw, "journal")
    j_cfg = JournalConfig(
        path=str(j_raw.get("path", JournalConfig.path)),
        echo_stdout=bool(j_raw.get("echo_stdout", False)),
    )

    a_raw = _section(raw, "alerting")
    a_cfg = AlertingConfig(
        structured_logs=bool(a_raw.get("structured_logs", True)),
        webhook_url=os.environ.get("TRADEBOOK_WEBHOOK_URL") or str(a_raw.get("webhook_url", "")),
    )

    logger.debug("Loaded config from %s (grouping=%s)", config_path, engine_cfg.grouping.value)
    return AppConfig(
        store=store_cfg,
        engine=engine_cfg,
        journal=j_cfg,
        alerting=a_cfg,
    )
