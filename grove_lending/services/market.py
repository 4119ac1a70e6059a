"""Lending market: wires the lending services over one store."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..config import AppConfig
from ..interfaces.event_sink import EventSink
from ..interfaces.price_oracle import PriceOracle
from ..interfaces.settlement import SettlementLedger
from ..models import LiquidationRecord, Loan, PriceQuote, utcnow
from ..oracles import PythOracle, StaticPriceOracle
from ..settlement import InstantSettlement
from ..store import LendingStore
from .collateral_vault import CollateralVault
from .credit_risk import CreditRiskAdjuster
from .health_monitor import HealthMonitor
from .liquidation_engine import LiquidationEngine
from .loan_originator import LoanOriginator
from .pool_ledger import PoolLedger
from .price_service import PriceService
from .repayment_processor import RepaymentProcessor, RepaymentReceipt

logger = logging.getLogger(__name__)


def build_oracle(config: AppConfig, clock: Callable[[], datetime] = utcnow) -> PriceOracle:
    """Price oracle selected by ``price_feed.provider``."""
    feed = config.price_feed
    if feed.provider == "pyth":
        return PythOracle(feed.pyth)
    return StaticPriceOracle(feed.static, clock=clock)


class LendingMarket:
    """All lending services sharing one store, price feed and settlement ledger."""

    def __init__(
        self,
        config: AppConfig,
        store: LendingStore | None = None,
        oracle: PriceOracle | None = None,
        settlement: SettlementLedger | None = None,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.store = store or LendingStore()
        self.oracle = oracle or build_oracle(config, clock)
        self.settlement = settlement or InstantSettlement()
        self.events = events
        self.clock = clock

        self.prices = PriceService(self.oracle, config.price_feed, clock=clock)
        self.pools = PoolLedger(self.store, config, clock=clock)
        self.vault = CollateralVault(self.store)
        self.credit = CreditRiskAdjuster(self.store, config.lending)
        self.originator = LoanOriginator(
            self.store, self.pools, self.vault, self.credit, self.prices,
            self.settlement, config, clock=clock,
        )
        self.health = HealthMonitor(
            self.store, self.vault, self.prices, config, events=events, clock=clock
        )
        self.liquidations = LiquidationEngine(
            self.store, self.pools, self.vault, self.prices, self.settlement,
            config, events=events, clock=clock,
        )
        self.repayments = RepaymentProcessor(
            self.store, self.pools, self.vault, self.credit, self.settlement,
            config, events=events, clock=clock,
        )
        self.health.attach_liquidation_engine(self.liquidations)
        logger.debug(
            "Lending market ready (%s prices, %d configured pools)",
            config.price_feed.provider, len(config.pools),
        )

    # Convenience pass-throughs for the common borrower/LP actions.

    async def deposit(self, asset: str, provider: str, amount: int) -> int:
        return await self.pools.deposit(asset, provider, amount)

    async def withdraw(self, asset: str, provider: str, lp_units: int) -> int:
        return await self.pools.withdraw(asset, provider, lp_units)

    async def borrow(
        self,
        borrower: str,
        principal: int,
        collateral_asset: str,
        collateral_amount: int,
        pool_asset: str,
        quote: PriceQuote | None = None,
    ) -> Loan:
        return await self.originator.originate(
            borrower, principal, collateral_asset, collateral_amount, pool_asset, quote=quote
        )

    async def repay(
        self, loan_id: str, amount: int, paid_at: datetime | None = None
    ) -> RepaymentReceipt:
        return await self.repayments.repay(loan_id, amount, paid_at=paid_at)

    async def liquidate(self, loan_id: str, liquidator: str | None = None) -> LiquidationRecord:
        return await self.liquidations.liquidate(loan_id, liquidator=liquidator)
