"""Unit tests for health-factor math, tier classification and the health monitor."""
from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from grove_lending.config import HealthBandsConfig
from grove_lending.events import HealthTierChanged
from grove_lending.models import (
    LoanStatus,
    PriceQuote,
    RiskTier,
    SettlementIntent,
    SettlementKind,
    SettlementResult,
)
from grove_lending.services.health_monitor import (
    classify,
    collateral_value,
    health_factor,
    is_liquidatable,
)
from grove_lending.services.market import LendingMarket

BANDS = HealthBandsConfig()


class TestHealthMath:
    def test_collateral_value(self) -> None:
        assert collateral_value(1250, Decimal("0.70")) == Decimal("875.00")

    def test_liquidation_example(self) -> None:
        hf = health_factor(1250, Decimal("0.70"), Decimal("0.90"), 1100)
        assert hf == pytest.approx(0.716, abs=1e-3)
        assert is_liquidatable(hf, BANDS)

    def test_zero_debt_is_infinite(self) -> None:
        assert health_factor(1250, Decimal("1"), Decimal("0.9"), 0) == float("inf")

    def test_pure_function(self) -> None:
        args = (1250, Decimal("0.83"), Decimal("0.9"), 1100)
        assert health_factor(*args) == health_factor(*args)

    @pytest.mark.parametrize(
        "hf, tier",
        [
            (1.51, RiskTier.HEALTHY),
            (1.5, RiskTier.MONITOR),
            (1.2, RiskTier.MONITOR),
            (1.19, RiskTier.AT_RISK),
            (0.5, RiskTier.AT_RISK),
            (float("inf"), RiskTier.HEALTHY),
        ],
    )
    def test_classify_bands(self, hf: float, tier: RiskTier) -> None:
        assert classify(hf, BANDS) is tier

    def test_liquidation_boundary(self) -> None:
        assert not is_liquidatable(1.0, BANDS)
        assert is_liquidatable(0.9999, BANDS)


async def _open_loan(market: LendingMarket, make_quote, collateral: int = 2000):
    await market.deposit("USDC", "lp-1", 100_000)
    return await market.borrow("0xBORROWER", 1000, "GROVE", collateral, "USDC", quote=make_quote("1.0"))


class TestHealthMonitor:
    @pytest.mark.asyncio
    async def test_refresh_records_sample_and_updates_loan(self, market, make_quote) -> None:
        loan = await _open_loan(market, make_quote)

        check = await market.health.refresh(loan.loan_id, make_quote("0.9"))

        # 2000 * 0.9 * 0.9 / 1100
        assert check.health_factor == pytest.approx(1.4727, abs=1e-4)
        assert check.tier is RiskTier.MONITOR
        assert check.previous_tier is RiskTier.HEALTHY
        assert market.store.get_loan(loan.loan_id).health_factor == check.health_factor
        assert market.vault.get_lock(loan.loan_id).current_price == Decimal("0.9")
        history = market.store.health_history(loan.loan_id)
        assert [s.tier for s in history] == [RiskTier.HEALTHY, RiskTier.MONITOR]

    @pytest.mark.asyncio
    async def test_tier_change_emits_event(self, market, make_quote, sink) -> None:
        loan = await _open_loan(market, make_quote)

        await market.health.refresh(loan.loan_id, make_quote("0.9"))
        await market.health.refresh(loan.loan_id, make_quote("0.9"))

        events = sink.of_type(HealthTierChanged)
        assert len(events) == 1
        assert events[0].previous_tier is RiskTier.HEALTHY
        assert events[0].tier is RiskTier.MONITOR

    @pytest.mark.asyncio
    async def test_refresh_skips_closed_loan(self, market, make_quote) -> None:
        loan = await _open_loan(market, make_quote)
        await market.repay(loan.loan_id, 1100)

        assert await market.health.refresh(loan.loan_id, make_quote("0.5")) is None

    @pytest.mark.asyncio
    async def test_sweep_refetches_stale_cached_price(self, market, make_quote, clock) -> None:
        loan = await _open_loan(market, make_quote)
        market.prices.update(
            PriceQuote("GROVE", Decimal("0.5"), clock() - timedelta(hours=1))
        )

        result = await market.health.sweep()

        assert result.deferred == 0
        assert result.checks[0].price == Decimal("1.0")
        assert market.store.get_loan(loan.loan_id).status is LoanStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_sweep_defers_without_fresh_price(
        self, sample_app_config, settlement, clock, make_quote
    ) -> None:
        oracle = AsyncMock()
        oracle.fetch_prices.return_value = {}
        market = LendingMarket(sample_app_config, oracle=oracle, settlement=settlement, clock=clock)
        loan = await _open_loan(market, make_quote)

        result = await market.health.sweep()

        assert result.deferred == 1
        assert result.checked == 0
        assert market.store.get_loan(loan.loan_id).status is LoanStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_stale_price_update_is_ignored(self, market, make_quote, clock) -> None:
        loan = await _open_loan(market, make_quote, collateral=1250)

        result = await market.health.on_price_update(
            PriceQuote("GROVE", Decimal("0.70"), clock() - timedelta(hours=6))
        )

        assert result.deferred == 1
        assert result.checked == 0
        assert result.liquidated == []
        assert market.store.get_loan(loan.loan_id).status is LoanStatus.ACTIVE
        assert len(market.store.health_history(loan.loan_id)) == 1

    @pytest.mark.asyncio
    async def test_rejected_seizure_does_not_stop_sweep(
        self, market, make_quote, oracle, settlement
    ) -> None:
        await market.deposit("USDC", "lp-1", 100_000)
        first = await market.borrow("0xA", 1000, "GROVE", 1250, "USDC", quote=make_quote("1.0"))
        second = await market.borrow("0xB", 1000, "GROVE", 1250, "USDC", quote=make_quote("1.0"))
        oracle.set_price("GROVE", Decimal("0.70"))
        market.prices.clear_cache()

        approve = settlement.submit
        rejected: list[str] = []

        async def reject_first_seizure(intent: SettlementIntent) -> SettlementResult:
            if intent.kind is SettlementKind.SEIZE_COLLATERAL and not rejected:
                rejected.append(intent.loan_id)
                return SettlementResult(success=False, error="reverted")
            return await approve(intent)

        with patch.object(settlement, "submit", side_effect=reject_first_seizure):
            result = await market.health.sweep()

        assert result.checked == 2
        assert result.failed == rejected
        assert len(result.liquidated) == 1
        assert set(result.liquidated + result.failed) == {first.loan_id, second.loan_id}
        assert market.store.get_loan(rejected[0]).status is LoanStatus.ACTIVE
        assert market.store.get_loan(result.liquidated[0]).status is LoanStatus.LIQUIDATED

    @pytest.mark.asyncio
    async def test_no_auto_liquidation_when_disabled(
        self, sample_app_config, oracle, settlement, clock, make_quote
    ) -> None:
        config = replace(
            sample_app_config,
            monitor=replace(sample_app_config.monitor, auto_liquidate=False),
        )
        market = LendingMarket(config, oracle=oracle, settlement=settlement, clock=clock)
        loan = await _open_loan(market, make_quote, collateral=1250)

        result = await market.health.on_price_update(make_quote("0.70"))

        assert result.liquidated == []
        assert result.checks[0].liquidatable
        assert market.store.get_loan(loan.loan_id).status is LoanStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_loans_at_risk_sorted(self, market, make_quote) -> None:
        await market.deposit("USDC", "lp-1", 100_000)
        safe = await market.borrow("0xA", 1000, "GROVE", 3000, "USDC", quote=make_quote("1.0"))
        risky = await market.borrow("0xB", 1000, "GROVE", 1300, "USDC", quote=make_quote("1.0"))
        riskier = await market.borrow("0xC", 1000, "GROVE", 1250, "USDC", quote=make_quote("1.0"))

        at_risk = market.health.loans_at_risk()

        assert [l.loan_id for l in at_risk] == [riskier.loan_id, risky.loan_id]
        assert safe.loan_id not in {l.loan_id for l in at_risk}
