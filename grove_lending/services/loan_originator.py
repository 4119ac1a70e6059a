"""Loan originator: creates loans under the collateralization constraint."""
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from ..config import AppConfig
from ..errors import InsufficientCollateral, InvalidAmount
from ..interfaces.settlement import SettlementLedger
from ..models import (
    HealthSample,
    Loan,
    PriceQuote,
    SettlementIntent,
    SettlementKind,
    repayment_obligation,
    utcnow,
)
from ..settlement import settle
from ..store import LendingStore, pool_key, retry_on_conflict
from .collateral_vault import CollateralVault
from .credit_risk import CreditRiskAdjuster
from .health_monitor import classify, collateral_value, health_factor
from .pool_ledger import PoolLedger
from .price_service import PriceService

logger = logging.getLogger(__name__)

_PRICE_PLACES = Decimal("0.000001")


def liquidation_price(
    principal: int, collateral_amount: int, liquidation_threshold: Decimal
) -> Decimal:
    """Collateral price at which the loan's opening health factor reaches 1.0."""
    return (
        Decimal(principal) / (Decimal(collateral_amount) * liquidation_threshold)
    ).quantize(_PRICE_PLACES)


class LoanOriginator:
    """Validates, prices and books new loans."""

    def __init__(
        self,
        store: LendingStore,
        ledger: PoolLedger,
        vault: CollateralVault,
        credit: CreditRiskAdjuster,
        prices: PriceService,
        settlement: SettlementLedger,
        config: AppConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._vault = vault
        self._credit = credit
        self._prices = prices
        self._settlement = settlement
        self._config = config
        self._lending = config.lending
        self._clock = clock

    def required_collateral_value(self, principal: int, when: datetime) -> Decimal:
        return Decimal(principal) * self._credit.collateral_ratio(when)

    async def originate(
        self,
        borrower: str,
        principal: int,
        collateral_asset: str,
        collateral_amount: int,
        pool_asset: str,
        quote: PriceQuote | None = None,
    ) -> Loan:
        """Open a loan of *principal* against *collateral_amount* units of *collateral_asset*.

        Raises:
            InvalidAmount: non-positive principal or collateral.
            InsufficientCollateral: collateral value below principal × ratio.
            PoolNotFound / InsufficientLiquidity: the pool cannot fund the loan.
            PriceUnavailable: the given quote is stale, or no quote was given and
                the feed has no fresh price.
            SettlementFailed: the disbursement was rejected.
        """
        if not isinstance(principal, int) or principal <= 0:
            raise InvalidAmount("principal", principal)
        if not isinstance(collateral_amount, int) or collateral_amount <= 0:
            raise InvalidAmount("collateral_amount", collateral_amount)

        if quote is None:
            quote = await self._prices.get_price(collateral_asset)
        else:
            quote = self._prices.ensure_fresh(quote)

        now = self._clock()
        ratio = self._credit.collateral_ratio(now)
        required = Decimal(principal) * ratio
        provided = collateral_value(collateral_amount, quote.price)
        if provided < required:
            raise InsufficientCollateral(required, provided)

        threshold = self._lending.liquidation_threshold
        hf = health_factor(collateral_amount, quote.price, threshold, principal)
        loan = Loan(
            loan_id=f"loan_{uuid.uuid4().hex[:12]}",
            borrower=borrower,
            pool_asset=pool_asset,
            principal=principal,
            collateral_asset=collateral_asset,
            collateral_amount=collateral_amount,
            interest_rate=self._lending.interest_rate,
            collateralization_ratio=ratio,
            liquidation_threshold=threshold,
            repayment_amount=repayment_obligation(principal, self._lending.interest_rate),
            health_factor=hf,
            liquidation_price=liquidation_price(principal, collateral_amount, threshold),
            taken_at=now,
            due_date=now + timedelta(days=self._credit.loan_duration_days(now)),
        )

        async def attempt() -> Loan:
            async with self._store.locked(pool_key(pool_asset)):
                return await self._book_locked(loan, quote)

        booked = await retry_on_conflict(attempt, self._lending.max_conflict_retries)
        logger.info(
            "Loan %s created for %s: %d %s against %d %s @ %s (ratio %s, HF %.4f, due %s)",
            booked.loan_id, borrower, principal, pool_asset, collateral_amount,
            collateral_asset, quote.price, ratio, hf, booked.due_date.date(),
        )
        return booked

    async def _book_locked(self, loan: Loan, quote: PriceQuote) -> Loan:
        pool = self._ledger.reserve(self._ledger.require_pool(loan.pool_asset), loan.principal)
        lock = self._vault.lock(
            loan.loan_id, loan.collateral_asset, loan.collateral_amount, quote.price, loan.taken_at
        )

        uow = self._store.transaction()
        uow.put_pool(pool)
        uow.put_collateral_lock(lock)
        uow.verify()

        reference = await settle(
            self._settlement,
            SettlementIntent(
                kind=SettlementKind.DISBURSE_PRINCIPAL,
                loan_id=loan.loan_id,
                account=loan.borrower,
                asset=loan.pool_asset,
                amount=loan.principal,
            ),
        )

        uow.put_loan(replace(loan, settlement_ref=reference))
        uow.add_health_sample(
            HealthSample(
                loan_id=loan.loan_id,
                health_factor=loan.health_factor,
                collateral_price=quote.price,
                collateral_value=collateral_value(loan.collateral_amount, quote.price),
                tier=classify(loan.health_factor, self._config.monitor.thresholds),
                checked_at=loan.taken_at,
            )
        )
        uow.commit()
        return self._store.get_loan(loan.loan_id)
