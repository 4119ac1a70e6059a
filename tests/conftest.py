"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from grove_lending.config import (
    AppConfig,
    EmailConfig,
    HealthBandsConfig,
    LendingConfig,
    MonitorConfig,
    NotificationsConfig,
    PoolConfig,
    PriceFeedConfig,
    PythConfig,
    StaticPricesConfig,
    TelegramConfig,
)
from grove_lending.models import PriceQuote, SettlementIntent, SettlementResult
from grove_lending.oracles import StaticPriceOracle
from grove_lending.services.market import LendingMarket
from grove_lending.settlement import InstantSettlement

# 1 March 2024, off-season: ratio 1.25, loan duration 90 days.
OFF_SEASON = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
HARVEST = datetime(2024, 11, 1, 12, 0, tzinfo=timezone.utc)

POOL = "USDC"
COLLATERAL = "GROVE"


class FakeClock:
    """Settable clock injected wherever services read the time."""

    def __init__(self, now: datetime = OFF_SEASON) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSink:
    def __init__(self) -> None:
        self.events: list = []

    async def publish(self, event) -> None:
        self.events.append(event)

    def of_type(self, cls: type) -> list:
        return [e for e in self.events if isinstance(e, cls)]


class RejectingSettlement:
    def __init__(self, error: str = "insufficient gas") -> None:
        self.error = error
        self.submitted: list[SettlementIntent] = []

    async def submit(self, intent: SettlementIntent) -> SettlementResult:
        self.submitted.append(intent)
        return SettlementResult(success=False, error=self.error)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.pyth.network/v2/updates/price/latest",
        feeds={"GROVE": "0xabc123", "USDC": "def456"},
    )


@pytest.fixture()
def sample_app_config(sample_pyth_config: PythConfig) -> AppConfig:
    return AppConfig(
        lending=LendingConfig(),
        pools={POOL: PoolConfig(base_apy=Decimal("0.085"), apy_slope=Decimal("0.10"))},
        monitor=MonitorConfig(
            check_interval_minutes=5,
            auto_liquidate=True,
            thresholds=HealthBandsConfig(healthy=1.5, monitor=1.2, liquidation=1.0),
        ),
        price_feed=PriceFeedConfig(
            provider="static",
            max_age_seconds=300,
            cache_ttl_seconds=300,
            static=StaticPricesConfig(prices={COLLATERAL: Decimal("1.0")}),
            pyth=sample_pyth_config,
        ),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
            email=EmailConfig(enabled=False),
        ),
    )


# ---------------------------------------------------------------------------
# Market fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def oracle(sample_app_config: AppConfig, clock: FakeClock) -> StaticPriceOracle:
    return StaticPriceOracle(sample_app_config.price_feed.static, clock=clock)


@pytest.fixture()
def settlement() -> InstantSettlement:
    return InstantSettlement()


@pytest.fixture()
def market(
    sample_app_config: AppConfig,
    oracle: StaticPriceOracle,
    settlement: InstantSettlement,
    sink: RecordingSink,
    clock: FakeClock,
) -> LendingMarket:
    return LendingMarket(
        sample_app_config, oracle=oracle, settlement=settlement, events=sink, clock=clock
    )


@pytest.fixture()
def make_quote(clock: FakeClock):
    """Factory for quotes stamped at the current fake time."""

    def _make(price: str, asset: str = COLLATERAL) -> PriceQuote:
        return PriceQuote(asset=asset, price=Decimal(price), as_of=clock())

    return _make


@pytest.fixture()
def rejecting_settlement() -> RejectingSettlement:
    return RejectingSettlement()


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    lending:
      interest_rate: 0.10
      collateralization_ratio: 1.25
      harvest_collateralization_ratio: 1.10
      liquidation_threshold: 0.90
      liquidation_penalty: 0.05
      liquidator_reward: 0.02
    pools:
      USDC:
        base_apy: 0.085
        apy_slope: 0.10
    monitor:
      check_interval_minutes: 5
      thresholds:
        healthy: 1.5
        monitor: 1.2
        liquidation: 1.0
    price_feed:
      provider: static
      max_age_seconds: 300
      static:
        prices: {GROVE: 1.0}
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {GROVE: "aaa"}
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
