"""Liquidation engine: forced closure of under-collateralized loans."""
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable

from ..config import AppConfig
from ..errors import LoanNotFound, LoanNotLiquidatable
from ..events import LoanLiquidated, emit
from ..interfaces.event_sink import EventSink
from ..interfaces.settlement import SettlementLedger
from ..models import (
    ONE,
    LiquidationRecord,
    LoanStatus,
    PriceQuote,
    SettlementIntent,
    SettlementKind,
    to_minor_units,
    utcnow,
)
from ..settlement import settle
from ..store import LendingStore, loan_key, pool_key, retry_on_conflict
from .collateral_vault import CollateralVault
from .health_monitor import collateral_value, is_liquidatable, loan_health
from .pool_ledger import PoolLedger
from .price_service import PriceService

logger = logging.getLogger(__name__)


class LiquidationEngine:
    """Closes loans whose health factor has fallen below the liquidation band.

    The status check and the status change happen under the loan lock in one
    unit of work, so a loan is liquidated at most once.
    """

    def __init__(
        self,
        store: LendingStore,
        ledger: PoolLedger,
        vault: CollateralVault,
        prices: PriceService,
        settlement: SettlementLedger,
        config: AppConfig,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._vault = vault
        self._prices = prices
        self._settlement = settlement
        self._config = config
        self._lending = config.lending
        self._bands = config.monitor.thresholds
        self._events = events
        self._clock = clock

    async def liquidate(
        self,
        loan_id: str,
        quote: PriceQuote | None = None,
        liquidator: str | None = None,
    ) -> LiquidationRecord:
        """Liquidate *loan_id* at *quote* (or the current feed price).

        Raises:
            LoanNotFound: unknown loan.
            LoanNotLiquidatable: loan is not active or its health factor is
                at or above the liquidation band.
            PriceUnavailable: the given quote is stale, or no quote was given and
                the feed has no fresh price.
            SettlementFailed: the collateral seizure was rejected.
        """
        loan = self._store.get_loan(loan_id)
        if loan is None:
            raise LoanNotFound(loan_id)
        if quote is None:
            quote = await self._prices.get_price(loan.collateral_asset)
        else:
            quote = self._prices.ensure_fresh(quote)

        async def attempt() -> LiquidationRecord:
            async with self._store.locked(loan_key(loan_id), pool_key(loan.pool_asset)):
                return await self._liquidate_locked(loan_id, quote, liquidator)

        record = await retry_on_conflict(attempt, self._lending.max_conflict_retries)

        logger.info(
            "Loan %s liquidated: collateral value %s, recovered %d, penalty %d, reward %s",
            loan_id,
            record.collateral_value_at_liquidation,
            record.usdc_recovered,
            record.penalty_amount,
            record.liquidator_reward,
        )
        await emit(
            self._events,
            LoanLiquidated(
                loan_id=loan_id,
                borrower=record.borrower,
                collateral_asset=record.collateral_asset,
                collateral_amount=record.collateral_amount,
                health_factor=record.health_factor_at_liquidation,
                usdc_recovered=record.usdc_recovered,
                penalty_amount=record.penalty_amount,
                liquidated_at=record.liquidated_at,
                liquidator=liquidator,
            ),
        )
        return record

    async def _liquidate_locked(
        self, loan_id: str, quote: PriceQuote, liquidator: str | None
    ) -> LiquidationRecord:
        loan = self._store.get_loan(loan_id)
        if loan is None:
            raise LoanNotFound(loan_id)
        if loan.status is not LoanStatus.ACTIVE:
            raise LoanNotLiquidatable(loan_id, f"status is {loan.status.value}")

        hf = loan_health(loan, quote.price)
        if not is_liquidatable(hf, self._bands):
            raise LoanNotLiquidatable(
                loan_id, f"health factor {hf:.4f} >= {self._bands.liquidation}"
            )

        lock = self._vault.get_lock(loan_id)
        if lock is None:
            raise LoanNotLiquidatable(loan_id, "no collateral lock")

        now = self._clock()
        value = collateral_value(loan.collateral_amount, quote.price)
        penalty_amount = to_minor_units(value * self._lending.liquidation_penalty)
        gross_recovered = to_minor_units(value * (ONE - self._lending.liquidation_penalty))
        recovered = min(gross_recovered, loan.remaining_balance)
        surplus = gross_recovered - recovered
        reward = None
        if liquidator is not None:
            reward = min(
                to_minor_units(value * self._lending.liquidator_reward), penalty_amount
            )

        pool = self._ledger.require_pool(loan.pool_asset)
        pool = self._ledger.on_liquidation(pool, loan.outstanding_principal)
        pool = self._ledger.credit_proceeds(pool, recovered)

        record = LiquidationRecord(
            liquidation_id=f"liq_{uuid.uuid4().hex[:12]}",
            loan_id=loan_id,
            borrower=loan.borrower,
            collateral_asset=loan.collateral_asset,
            collateral_amount=loan.collateral_amount,
            collateral_value_at_liquidation=value,
            usdc_recovered=recovered,
            liquidation_penalty=self._lending.liquidation_penalty,
            penalty_amount=penalty_amount,
            liquidation_price=quote.price,
            health_factor_at_liquidation=hf,
            liquidated_at=now,
            liquidator=liquidator,
            liquidator_reward=reward,
            borrower_surplus=surplus,
        )

        uow = self._store.transaction()
        uow.put_pool(pool)
        uow.put_loan(
            replace(loan, status=LoanStatus.LIQUIDATED, liquidated_at=now, health_factor=hf)
        )
        uow.verify()

        reference = await settle(
            self._settlement,
            SettlementIntent(
                kind=SettlementKind.SEIZE_COLLATERAL,
                loan_id=loan_id,
                account=loan.borrower,
                asset=loan.collateral_asset,
                amount=loan.collateral_amount,
            ),
        )
        record = replace(record, settlement_ref=reference)
        uow.put_collateral_lock(
            self._vault.release(self._vault.mark_price(lock, quote.price), now, reference)
        )
        uow.add_liquidation(record)
        uow.commit()
        return record

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history(self, limit: int = 50) -> list[LiquidationRecord]:
        return self._store.liquidations()[:limit]

    def borrower_liquidations(self, borrower: str) -> list[LiquidationRecord]:
        return [r for r in self._store.liquidations() if r.borrower == borrower]
