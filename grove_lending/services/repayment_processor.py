"""Repayment processor: applies borrower payments to a loan."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable

from ..config import AppConfig
from ..errors import ExcessPayment, InvalidAmount, LoanNotActive, LoanNotFound
from ..events import LoanRepaid, emit
from ..interfaces.event_sink import EventSink
from ..interfaces.settlement import SettlementLedger
from ..models import (
    CreditCategory,
    Loan,
    LoanStatus,
    PaymentType,
    RepaymentEvent,
    SettlementIntent,
    SettlementKind,
    utcnow,
)
from ..settlement import settle
from ..store import LendingStore, loan_key, pool_key, retry_on_conflict
from .collateral_vault import CollateralVault
from .credit_risk import CreditRiskAdjuster
from .pool_ledger import PoolLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepaymentReceipt:
    event: RepaymentEvent
    loan: Loan
    credit: CreditCategory | None = None


def split_payment(loan: Loan, amount: int) -> tuple[int, int]:
    """Split *amount* into (principal, interest) pro rata to the obligation.

    The payment that closes the loan takes whatever interest is still unpaid,
    so the portions always add up to the loan's principal and interest.
    """
    if amount == loan.remaining_balance:
        interest = loan.interest_amount - loan.interest_repaid
    else:
        interest = amount * loan.interest_amount // loan.repayment_amount
        interest = min(interest, loan.interest_amount - loan.interest_repaid)
        interest = max(interest, amount - loan.outstanding_principal)
    return amount - interest, interest


class RepaymentProcessor:
    """Records repayments, closes fully repaid loans and returns liquidity to the pool."""

    def __init__(
        self,
        store: LendingStore,
        ledger: PoolLedger,
        vault: CollateralVault,
        credit: CreditRiskAdjuster,
        settlement: SettlementLedger,
        config: AppConfig,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._vault = vault
        self._credit = credit
        self._settlement = settlement
        self._config = config
        self._events = events
        self._clock = clock

    async def repay(
        self, loan_id: str, amount: int, paid_at: datetime | None = None
    ) -> RepaymentReceipt:
        """Apply a payment of *amount* minor units to *loan_id*.

        Raises:
            InvalidAmount: amount is not a positive integer.
            LoanNotFound / LoanNotActive: nothing to repay.
            ExcessPayment: amount is larger than the remaining balance.
            SettlementFailed: the payment could not be collected.
        """
        if not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount("payment_amount", amount)

        loan = self._store.get_loan(loan_id)
        if loan is None:
            raise LoanNotFound(loan_id)

        async def attempt() -> RepaymentReceipt:
            async with self._store.locked(loan_key(loan_id), pool_key(loan.pool_asset)):
                return await self._repay_locked(loan_id, amount, paid_at or self._clock())

        receipt = await retry_on_conflict(attempt, self._config.lending.max_conflict_retries)

        if receipt.loan.status is LoanStatus.REPAID:
            logger.info(
                "Loan %s fully repaid (%s)",
                loan_id,
                receipt.credit.category.value if receipt.credit else "uncategorized",
            )
            await emit(
                self._events,
                LoanRepaid(
                    loan_id=loan_id,
                    borrower=receipt.loan.borrower,
                    amount_repaid=receipt.loan.amount_repaid,
                    timing=receipt.credit.category.value if receipt.credit else "",
                    repaid_at=receipt.event.paid_at,
                ),
            )
        else:
            logger.info(
                "Partial payment of %d on loan %s. Remaining: %d",
                amount, loan_id, receipt.event.remaining_balance,
            )
        return receipt

    async def _repay_locked(
        self, loan_id: str, amount: int, paid_at: datetime
    ) -> RepaymentReceipt:
        loan = self._store.get_loan(loan_id)
        if loan is None:
            raise LoanNotFound(loan_id)
        if loan.status is not LoanStatus.ACTIVE:
            raise LoanNotActive(loan_id, loan.status.value)
        if amount > loan.remaining_balance:
            raise ExcessPayment(loan_id, loan.remaining_balance, amount)

        principal_portion, interest_portion = split_payment(loan, amount)
        closes = amount == loan.remaining_balance
        remaining = loan.remaining_balance - amount

        updated = replace(
            loan,
            amount_repaid=loan.amount_repaid + amount,
            principal_repaid=loan.principal_repaid + principal_portion,
            interest_repaid=loan.interest_repaid + interest_portion,
        )
        credit = None
        if closes:
            updated = replace(updated, status=LoanStatus.REPAID, repaid_at=paid_at)
            credit = self._credit.categorize_repayment(updated, paid_at)

        pool = self._ledger.release(
            self._ledger.require_pool(loan.pool_asset),
            amount,
            interest_portion,
            closes_loan=closes,
        )

        uow = self._store.transaction()
        uow.put_loan(updated)
        uow.put_pool(pool)
        uow.verify()

        reference = await settle(
            self._settlement,
            SettlementIntent(
                kind=SettlementKind.COLLECT_REPAYMENT,
                loan_id=loan_id,
                account=loan.borrower,
                asset=loan.pool_asset,
                amount=amount,
            ),
        )

        event = RepaymentEvent(
            payment_id=f"payment_{uuid.uuid4().hex[:12]}",
            loan_id=loan_id,
            borrower=loan.borrower,
            payment_amount=amount,
            payment_type=PaymentType.FULL if closes else PaymentType.PARTIAL,
            principal_portion=principal_portion,
            interest_portion=interest_portion,
            remaining_balance=remaining,
            paid_at=paid_at,
            settlement_ref=reference,
        )
        uow.add_repayment(event)
        if closes:
            lock = self._vault.get_lock(loan_id)
            if lock is not None:
                uow.put_collateral_lock(self._vault.release(lock, paid_at, reference))
            uow.add_credit_category(loan.borrower, credit)
        uow.commit()

        return RepaymentReceipt(event=event, loan=self._store.get_loan(loan_id), credit=credit)

    def payment_history(self, loan_id: str) -> list[RepaymentEvent]:
        return self._store.repayments(loan_id)
