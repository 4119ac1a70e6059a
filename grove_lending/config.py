"""Lending engine configuration: YAML file plus .env, as frozen dataclasses."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, TypeVar

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LendingConfig:
    interest_rate: Decimal = Decimal("0.10")
    collateralization_ratio: Decimal = Decimal("1.25")
    harvest_collateralization_ratio: Decimal = Decimal("1.10")
    liquidation_threshold: Decimal = Decimal("0.90")
    liquidation_penalty: Decimal = Decimal("0.05")
    liquidator_reward: Decimal = Decimal("0.02")
    seasonal_terms: bool = True
    default_duration_days: int = 180
    max_conflict_retries: int = 3


@dataclass(frozen=True)
class PoolConfig:
    base_apy: Decimal = Decimal("0.085")
    apy_slope: Decimal = Decimal("0.10")


@dataclass(frozen=True)
class HealthBandsConfig:
    healthy: float = 1.5
    monitor: float = 1.2
    liquidation: float = 1.0


@dataclass(frozen=True)
class MonitorConfig:
    check_interval_minutes: int = 5
    auto_liquidate: bool = True
    thresholds: HealthBandsConfig = field(default_factory=HealthBandsConfig)


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StaticPricesConfig:
    prices: dict[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceFeedConfig:
    provider: str = "static"
    max_age_seconds: int = 300
    cache_ttl_seconds: int = 300
    static: StaticPricesConfig = field(default_factory=StaticPricesConfig)
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    lending: LendingConfig = field(default_factory=LendingConfig)
    pools: dict[str, PoolConfig] = field(default_factory=dict)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    price_feed: PriceFeedConfig = field(default_factory=PriceFeedConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)

    def pool_config(self, asset: str) -> PoolConfig:
        return self.pools.get(asset, PoolConfig())


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_PLACEHOLDER = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Substitute ``${VAR}`` placeholders anywhere in the parsed YAML tree."""
    if isinstance(value, str):
        return _PLACEHOLDER.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, list):
        return [_interpolate_env(v) for v in value]
    if isinstance(value, dict):
        return {key: _interpolate_env(v) for key, v in value.items()}
    return value


# ---------------------------------------------------------------------------
# Section builders
# ---------------------------------------------------------------------------


def _as_bool(value: Any) -> bool:
    # interpolated env values arrive as strings
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_decimal(value: Any) -> Decimal:
    # str() first so YAML floats like 0.1 do not carry binary noise
    return Decimal(str(value))


_SCALARS: dict[str, Callable[[Any], Any]] = {
    "bool": _as_bool,
    "int": int,
    "float": float,
    "str": str,
    "Decimal": _as_decimal,
}

S = TypeVar("S")


def _section(cls: type[S], raw: dict[str, Any] | None, **nested: Any) -> S:
    """Build *cls* from the scalar keys of *raw*; nested sections are passed in."""
    raw = raw or {}
    values: dict[str, Any] = {}
    for f in fields(cls):
        convert = _SCALARS.get(f.type)
        if convert is not None and raw.get(f.name) not in (None, ""):
            values[f.name] = convert(raw[f.name])
    values.update(nested)
    return cls(**values)


def _price_feed(raw: dict[str, Any]) -> PriceFeedConfig:
    static_prices = (raw.get("static") or {}).get("prices") or {}
    pyth = raw.get("pyth") or {}
    return _section(
        PriceFeedConfig,
        raw,
        static=StaticPricesConfig(
            prices={asset: _as_decimal(p) for asset, p in static_prices.items()}
        ),
        pyth=_section(
            PythConfig,
            pyth,
            feeds={asset: str(feed) for asset, feed in (pyth.get("feeds") or {}).items()},
        ),
    )


def _app_config(raw: dict[str, Any]) -> AppConfig:
    monitor = raw.get("monitor") or {}
    notifications = raw.get("notifications") or {}
    return AppConfig(
        lending=_section(LendingConfig, raw.get("lending")),
        pools={
            asset: _section(PoolConfig, curve)
            for asset, curve in (raw.get("pools") or {}).items()
        },
        monitor=_section(
            MonitorConfig,
            monitor,
            thresholds=_section(HealthBandsConfig, monitor.get("thresholds")),
        ),
        price_feed=_price_feed(raw.get("price_feed") or {}),
        notifications=NotificationsConfig(
            telegram=_section(TelegramConfig, notifications.get("telegram")),
            email=_section(EmailConfig, notifications.get("email")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Read ``config.yaml`` (after loading ``.env``) into a validated :class:`AppConfig`.

    Every ``${VAR}`` in the file is replaced with the environment value, or
    the empty string when unset. Missing sections and keys take the
    dataclass defaults.

    Raises:
        FileNotFoundError: *config_path* does not exist.
        ValueError: a value is out of range.
    """
    load_dotenv()

    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    raw = _interpolate_env(yaml.safe_load(path.read_text()) or {})
    cfg = _app_config(raw)
    _validate(cfg)
    logger.info("Loaded lending config from %s (%d pools)", path, len(cfg.pools))
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    lending = cfg.lending
    if lending.interest_rate < 0:
        raise ValueError("interest_rate must not be negative")
    for name in ("collateralization_ratio", "harvest_collateralization_ratio"):
        if getattr(lending, name) < 1:
            raise ValueError(f"{name} must be at least 1.0")
    if not (0 < lending.liquidation_threshold <= 1):
        raise ValueError("liquidation_threshold must be in (0, 1]")
    if not (0 <= lending.liquidation_penalty < 1):
        raise ValueError("liquidation_penalty must be in [0, 1)")
    if not (0 <= lending.liquidator_reward <= lending.liquidation_penalty):
        raise ValueError("liquidator_reward must be between 0 and liquidation_penalty")
    if lending.max_conflict_retries < 1:
        raise ValueError("max_conflict_retries must be at least 1")

    bands = cfg.monitor.thresholds
    if not (bands.healthy > bands.monitor >= bands.liquidation > 0):
        raise ValueError(
            "Health bands must satisfy healthy > monitor >= liquidation > 0"
        )

    if cfg.price_feed.provider not in ("static", "pyth"):
        raise ValueError(f"Unknown price feed provider '{cfg.price_feed.provider}'")

    for asset, pool in cfg.pools.items():
        if pool.base_apy < 0 or pool.apy_slope < 0:
            raise ValueError(f"Pool '{asset}' APY curve must be non-decreasing")
