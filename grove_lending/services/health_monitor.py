"""Health monitor: recomputes loan health factors against live prices."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Callable

from ..config import AppConfig, HealthBandsConfig
from ..errors import LendingError, LoanNotLiquidatable, PriceUnavailable
from ..events import HealthTierChanged, emit
from ..interfaces.event_sink import EventSink
from ..models import HealthSample, Loan, LoanStatus, PriceQuote, RiskTier, utcnow
from ..store import LendingStore, loan_key, retry_on_conflict
from .collateral_vault import CollateralVault
from .price_service import PriceService

if TYPE_CHECKING:
    from .liquidation_engine import LiquidationEngine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure health math
# ---------------------------------------------------------------------------


def collateral_value(collateral_amount: int, price: Decimal) -> Decimal:
    return Decimal(collateral_amount) * price


def health_factor(
    collateral_amount: int,
    price: Decimal,
    liquidation_threshold: Decimal,
    outstanding_debt: int,
) -> float:
    """Risk-adjusted collateral value over outstanding debt (inf when debt is zero)."""
    if outstanding_debt <= 0:
        return float("inf")
    adjusted = collateral_value(collateral_amount, price) * liquidation_threshold
    return float(adjusted / Decimal(outstanding_debt))


def classify(hf: float, bands: HealthBandsConfig) -> RiskTier:
    if hf > bands.healthy:
        return RiskTier.HEALTHY
    if hf >= bands.monitor:
        return RiskTier.MONITOR
    return RiskTier.AT_RISK


def is_liquidatable(hf: float, bands: HealthBandsConfig) -> bool:
    return hf < bands.liquidation


def loan_health(loan: Loan, price: Decimal) -> float:
    return health_factor(
        loan.collateral_amount, price, loan.liquidation_threshold, loan.remaining_balance
    )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HealthCheck:
    loan_id: str
    health_factor: float
    tier: RiskTier
    previous_tier: RiskTier | None
    liquidatable: bool
    price: Decimal


@dataclass
class SweepResult:
    checked: int = 0
    deferred: int = 0
    liquidated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    checks: list[HealthCheck] = field(default_factory=list)

    @property
    def at_risk(self) -> list[HealthCheck]:
        return [c for c in self.checks if c.tier is RiskTier.AT_RISK]


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class HealthMonitor:
    """Keeps ``Loan.health_factor`` current and hands breaches to liquidation."""

    def __init__(
        self,
        store: LendingStore,
        vault: CollateralVault,
        prices: PriceService,
        config: AppConfig,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._vault = vault
        self._prices = prices
        self._config = config
        self._bands = config.monitor.thresholds
        self._events = events
        self._clock = clock
        self._liquidation_engine: LiquidationEngine | None = None

    def attach_liquidation_engine(self, engine: LiquidationEngine) -> None:
        self._liquidation_engine = engine

    def classify(self, hf: float) -> RiskTier:
        return classify(hf, self._bands)

    def _previous_tier(self, loan_id: str) -> RiskTier | None:
        history = self._store.health_history(loan_id)
        return history[-1].tier if history else None

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    async def refresh(self, loan_id: str, quote: PriceQuote) -> HealthCheck | None:
        """Recompute one loan's health factor; None if the loan is no longer active."""

        async def attempt() -> HealthCheck | None:
            async with self._store.locked(loan_key(loan_id)):
                loan = self._store.get_loan(loan_id)
                if loan is None or loan.status is not LoanStatus.ACTIVE:
                    return None

                hf = loan_health(loan, quote.price)
                tier = self.classify(hf)
                previous = self._previous_tier(loan_id)
                now = self._clock()

                uow = self._store.transaction()
                uow.put_loan(replace(loan, health_factor=hf))
                lock = self._vault.get_lock(loan_id)
                if lock is not None:
                    uow.put_collateral_lock(self._vault.mark_price(lock, quote.price))
                uow.add_health_sample(
                    HealthSample(
                        loan_id=loan_id,
                        health_factor=hf,
                        collateral_price=quote.price,
                        collateral_value=collateral_value(loan.collateral_amount, quote.price),
                        tier=tier,
                        checked_at=now,
                    )
                )
                uow.commit()
                return HealthCheck(
                    loan_id=loan_id,
                    health_factor=hf,
                    tier=tier,
                    previous_tier=previous,
                    liquidatable=is_liquidatable(hf, self._bands),
                    price=quote.price,
                )

        check = await retry_on_conflict(attempt, self._config.lending.max_conflict_retries)
        if check is None:
            return None

        logger.debug("Loan %s health %.4f (%s)", loan_id, check.health_factor, check.tier.value)
        if check.tier is not check.previous_tier:
            loan = self._store.get_loan(loan_id)
            logger.info(
                "Loan %s moved %s -> %s (HF %.4f)",
                loan_id,
                check.previous_tier.value if check.previous_tier else "-",
                check.tier.value,
                check.health_factor,
            )
            await emit(
                self._events,
                HealthTierChanged(
                    loan_id=loan_id,
                    borrower=loan.borrower if loan else "",
                    previous_tier=check.previous_tier,
                    tier=check.tier,
                    health_factor=check.health_factor,
                    collateral_asset=loan.collateral_asset if loan else quote.asset,
                    checked_at=self._clock(),
                ),
            )
        return check

    async def _liquidate_if_needed(
        self, check: HealthCheck, quote: PriceQuote, result: SweepResult
    ) -> None:
        if not check.liquidatable:
            return
        if self._liquidation_engine is None or not self._config.monitor.auto_liquidate:
            logger.warning(
                "Loan %s is liquidatable (HF %.4f) but auto-liquidation is off",
                check.loan_id, check.health_factor,
            )
            return
        try:
            await self._liquidation_engine.liquidate(check.loan_id, quote=quote)
        except LoanNotLiquidatable as e:
            # Closed or recovered between the health check and the liquidation.
            logger.info("Skipped liquidation: %s", e)
        except LendingError as e:
            # The loan stays active and is retried on the next sweep.
            logger.error("Liquidation of loan %s failed: %s", check.loan_id, e)
            result.failed.append(check.loan_id)
        else:
            result.liquidated.append(check.loan_id)

    async def on_price_update(self, quote: PriceQuote) -> SweepResult:
        """Recompute every active loan collateralized by ``quote.asset``.

        A stale or non-positive quote is not applied; the affected loans are
        counted as deferred.
        """
        result = SweepResult()
        affected = [
            loan for loan in self._store.loans(LoanStatus.ACTIVE)
            if loan.collateral_asset == quote.asset
        ]
        try:
            self._prices.ensure_fresh(quote)
        except PriceUnavailable as e:
            logger.warning("Ignoring price update: %s", e)
            result.deferred = len(affected)
            return result

        self._prices.update(quote)
        for loan in affected:
            check = await self.refresh(loan.loan_id, quote)
            if check is None:
                continue
            result.checked += 1
            result.checks.append(check)
            await self._liquidate_if_needed(check, quote, result)
        return result

    async def sweep(self) -> SweepResult:
        """Recompute all active loans; assets without a fresh price are deferred."""
        result = SweepResult()
        active = self._store.loans(LoanStatus.ACTIVE)
        logger.info("Health sweep over %d active loans", len(active))

        quotes: dict[str, PriceQuote | None] = {}
        for loan in active:
            asset = loan.collateral_asset
            if asset not in quotes:
                try:
                    quotes[asset] = await self._prices.get_price(asset)
                except PriceUnavailable as e:
                    logger.warning("Deferring loans on %s: %s", asset, e)
                    quotes[asset] = None

            quote = quotes[asset]
            if quote is None:
                result.deferred += 1
                continue

            check = await self.refresh(loan.loan_id, quote)
            if check is None:
                continue
            result.checked += 1
            result.checks.append(check)
            await self._liquidate_if_needed(check, quote, result)

        logger.info(
            "Sweep summary: %d checked, %d deferred, %d liquidated, %d failed, %d at risk",
            result.checked, result.deferred, len(result.liquidated), len(result.failed),
            len(result.at_risk),
        )
        return result

    def loans_at_risk(self) -> list[Loan]:
        """Active loans in the at-risk tier, lowest health factor first."""
        loans = [
            loan for loan in self._store.loans(LoanStatus.ACTIVE)
            if self.classify(loan.health_factor) is RiskTier.AT_RISK
        ]
        return sorted(loans, key=lambda loan: loan.health_factor)
