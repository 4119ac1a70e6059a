"""Pool ledger: per-asset liquidity accounting.

The accounting methods (``reserve``, ``release``, ``on_liquidation``,
``credit_proceeds``) are pure: they take the pool row read under the pool lock
and return the updated row, which the caller stages in the same unit of work
as the loan change. After every method

    available_liquidity + total_borrowed == total_liquidity
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Callable

from ..config import AppConfig
from ..errors import InsufficientLiquidity, InvalidAmount, PoolNotFound
from ..models import ONE, ZERO, LpPosition, Pool, utcnow
from ..store import LendingStore, pool_key, retry_on_conflict

logger = logging.getLogger(__name__)

_RATE_PLACES = Decimal("0.000001")


def utilization_rate(total_borrowed: int, total_liquidity: int) -> Decimal:
    """Borrowed fraction of the pool, clamped to [0, 1]."""
    if total_liquidity <= 0:
        return ZERO
    rate = Decimal(total_borrowed) / Decimal(total_liquidity)
    return min(ONE, max(ZERO, rate)).quantize(_RATE_PLACES)


def lp_units_to_mint(amount: int, total_liquidity: int, total_lp_units: int) -> int:
    if total_liquidity <= 0 or total_lp_units <= 0:
        return amount
    return amount * total_lp_units // total_liquidity


def lp_units_value(lp_units: int, total_liquidity: int, total_lp_units: int) -> int:
    if total_lp_units <= 0:
        return 0
    return lp_units * total_liquidity // total_lp_units


def check_invariant(pool: Pool) -> bool:
    return (
        pool.available_liquidity + pool.total_borrowed == pool.total_liquidity
        and pool.available_liquidity >= 0
        and pool.total_borrowed >= 0
        and ZERO <= pool.utilization_rate <= ONE
    )


class PoolLedger:
    """Liquidity bookkeeping for every lending pool in the store."""

    def __init__(
        self,
        store: LendingStore,
        config: AppConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_pool(self, asset: str) -> Pool | None:
        return self._store.get_pool(asset)

    def require_pool(self, asset: str) -> Pool:
        pool = self._store.get_pool(asset)
        if pool is None:
            raise PoolNotFound(asset)
        return pool

    def available_liquidity(self, asset: str) -> int:
        return self.require_pool(asset).available_liquidity

    def pool_share(self, asset: str, provider: str) -> Decimal:
        """Provider's share of the pool as a percentage (0-100)."""
        pool = self.require_pool(asset)
        position = self._store.get_lp_position(asset, provider)
        if position is None or pool.total_lp_units == 0:
            return ZERO
        return Decimal(position.lp_units) * 100 / Decimal(pool.total_lp_units)

    # ------------------------------------------------------------------
    # Accounting transforms
    # ------------------------------------------------------------------

    def _restat(self, pool: Pool, **changes: object) -> Pool:
        pool = replace(pool, **changes)
        curve = self._config.pool_config(pool.asset)
        utilization = utilization_rate(pool.total_borrowed, pool.total_liquidity)
        apy = (curve.base_apy + curve.apy_slope * utilization).quantize(_RATE_PLACES)
        return replace(
            pool, utilization_rate=utilization, current_apy=apy, updated_at=self._clock()
        )

    def reserve(self, pool: Pool, amount: int) -> Pool:
        """Move *amount* from available liquidity to borrowed for a new loan."""
        if amount <= 0:
            raise InvalidAmount("amount", amount)
        if amount > pool.available_liquidity:
            raise InsufficientLiquidity(pool.asset, pool.available_liquidity, amount)
        return self._restat(
            pool,
            available_liquidity=pool.available_liquidity - amount,
            total_borrowed=pool.total_borrowed + amount,
            total_loans_originated=pool.total_loans_originated + 1,
        )

    def release(
        self, pool: Pool, amount: int, interest_portion: int, closes_loan: bool = False
    ) -> Pool:
        """Return a repayment of *amount*, of which *interest_portion* is interest."""
        principal_portion = amount - interest_portion
        if amount <= 0 or interest_portion < 0 or principal_portion < 0:
            raise InvalidAmount("amount", amount)
        return self._restat(
            pool,
            available_liquidity=pool.available_liquidity + amount,
            total_borrowed=pool.total_borrowed - principal_portion,
            total_liquidity=pool.total_liquidity + interest_portion,
            total_interest_earned=pool.total_interest_earned + interest_portion,
            total_loans_repaid=pool.total_loans_repaid + (1 if closes_loan else 0),
        )

    def on_liquidation(self, pool: Pool, principal_amount: int) -> Pool:
        """Write the liquidated loan's outstanding principal off the pool."""
        if principal_amount < 0:
            raise InvalidAmount("principal_amount", principal_amount)
        return self._restat(
            pool,
            total_borrowed=pool.total_borrowed - principal_amount,
            total_liquidity=pool.total_liquidity - principal_amount,
            total_liquidations=pool.total_liquidations + 1,
        )

    def credit_proceeds(self, pool: Pool, amount: int) -> Pool:
        """Add liquidation proceeds back to available liquidity."""
        if amount < 0:
            raise InvalidAmount("amount", amount)
        return self._restat(
            pool,
            available_liquidity=pool.available_liquidity + amount,
            total_liquidity=pool.total_liquidity + amount,
        )

    # ------------------------------------------------------------------
    # Liquidity provider operations
    # ------------------------------------------------------------------

    async def deposit(self, asset: str, provider: str, amount: int) -> int:
        """Supply *amount* to the pool, creating it on first deposit. Returns LP units minted."""
        if not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount("amount", amount)

        async def attempt() -> int:
            async with self._store.locked(pool_key(asset)):
                pool = self._store.get_pool(asset) or Pool(asset=asset)
                position = self._store.get_lp_position(asset, provider) or LpPosition(
                    asset=asset, provider=provider
                )
                minted = lp_units_to_mint(amount, pool.total_liquidity, pool.total_lp_units)
                if minted <= 0:
                    raise InvalidAmount("amount", amount)

                uow = self._store.transaction()
                uow.put_pool(
                    self._restat(
                        pool,
                        total_liquidity=pool.total_liquidity + amount,
                        available_liquidity=pool.available_liquidity + amount,
                        total_lp_units=pool.total_lp_units + minted,
                    )
                )
                uow.put_lp_position(replace(position, lp_units=position.lp_units + minted))
                uow.commit()
                return minted

        minted = await retry_on_conflict(attempt, self._config.lending.max_conflict_retries)
        logger.info("Deposit of %d to %s pool by %s: minted %d LP units", amount, asset, provider, minted)
        return minted

    async def withdraw(self, asset: str, provider: str, lp_units: int) -> int:
        """Burn *lp_units* for their share of the pool. Returns the amount paid out."""
        if not isinstance(lp_units, int) or lp_units <= 0:
            raise InvalidAmount("lp_units", lp_units)

        async def attempt() -> int:
            async with self._store.locked(pool_key(asset)):
                pool = self.require_pool(asset)
                position = self._store.get_lp_position(asset, provider)
                if position is None or position.lp_units < lp_units:
                    raise InvalidAmount("lp_units", lp_units)

                amount = lp_units_value(lp_units, pool.total_liquidity, pool.total_lp_units)
                if amount > pool.available_liquidity:
                    raise InsufficientLiquidity(asset, pool.available_liquidity, amount)

                uow = self._store.transaction()
                uow.put_pool(
                    self._restat(
                        pool,
                        total_liquidity=pool.total_liquidity - amount,
                        available_liquidity=pool.available_liquidity - amount,
                        total_lp_units=pool.total_lp_units - lp_units,
                    )
                )
                uow.put_lp_position(replace(position, lp_units=position.lp_units - lp_units))
                uow.commit()
                return amount

        amount = await retry_on_conflict(attempt, self._config.lending.max_conflict_retries)
        logger.info("Withdrawal of %d LP units from %s pool by %s: paid %d", lp_units, asset, provider, amount)
        return amount
