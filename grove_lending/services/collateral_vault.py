"""Collateral vault: one lock per loan, released exactly once."""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from ..errors import InvalidAmount, LoanNotActive
from ..models import CollateralLock
from ..store import LendingStore

logger = logging.getLogger(__name__)


class CollateralVault:
    """Tracks locked collateral, its lock-time price and its release."""

    def __init__(self, store: LendingStore) -> None:
        self._store = store

    def get_lock(self, loan_id: str) -> CollateralLock | None:
        return self._store.get_collateral_lock(loan_id)

    def locked_amount(self, token: str) -> int:
        """Total units of *token* currently held by open locks."""
        return sum(
            lock.amount
            for lock in self._store.collateral_locks()
            if lock.token == token and lock.is_locked
        )

    def lock(
        self, loan_id: str, token: str, amount: int, price: Decimal, locked_at: datetime
    ) -> CollateralLock:
        if amount <= 0:
            raise InvalidAmount("collateral_amount", amount)
        if self._store.get_collateral_lock(loan_id) is not None:
            raise LoanNotActive(loan_id, "collateral already locked")
        return CollateralLock(
            loan_id=loan_id,
            token=token,
            amount=amount,
            initial_price=price,
            current_price=price,
            locked_at=locked_at,
        )

    @staticmethod
    def mark_price(lock: CollateralLock, price: Decimal) -> CollateralLock:
        return replace(lock, current_price=price)

    @staticmethod
    def release(
        lock: CollateralLock, released_at: datetime, reference: str | None = None
    ) -> CollateralLock:
        if not lock.is_locked:
            raise LoanNotActive(lock.loan_id, "collateral already released")
        logger.debug("Releasing %d %s held for loan %s", lock.amount, lock.token, lock.loan_id)
        return replace(lock, unlocked_at=released_at, unlock_ref=reference)
