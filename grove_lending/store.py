"""In-memory lending store with versioned rows and per-entity locks.

Every write goes through a :class:`UnitOfWork`. Staged rows are checked
against the stored version and applied together on :meth:`UnitOfWork.commit`;
nothing is visible to readers until then.
"""
from __future__ import annotations

import asyncio
import logging
import random
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from .errors import ConcurrentStateConflict
from .models import (
    CollateralLock,
    CreditCategory,
    HealthSample,
    LiquidationRecord,
    Loan,
    LoanStatus,
    LpPosition,
    Pool,
    RepaymentEvent,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def loan_key(loan_id: str) -> str:
    return f"loan:{loan_id}"


def pool_key(asset: str) -> str:
    return f"pool:{asset}"


@dataclass
class _Tables:
    pools: dict[str, Pool] = field(default_factory=dict)
    lp_positions: dict[tuple[str, str], LpPosition] = field(default_factory=dict)
    loans: dict[str, Loan] = field(default_factory=dict)
    collateral_locks: dict[str, CollateralLock] = field(default_factory=dict)
    liquidations: dict[str, LiquidationRecord] = field(default_factory=dict)
    repayments: dict[str, list[RepaymentEvent]] = field(
        default_factory=lambda: defaultdict(list)
    )
    health_history: dict[str, list[HealthSample]] = field(
        default_factory=lambda: defaultdict(list)
    )
    credit_history: dict[str, list[CreditCategory]] = field(
        default_factory=lambda: defaultdict(list)
    )


class LendingStore:
    """Owns all lending state for one process."""

    def __init__(self, tables: _Tables | None = None) -> None:
        self._tables = tables or _Tables()
        self._entity_locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_pool(self, asset: str) -> Pool | None:
        return self._tables.pools.get(asset)

    def pools(self) -> list[Pool]:
        return list(self._tables.pools.values())

    def get_lp_position(self, asset: str, provider: str) -> LpPosition | None:
        return self._tables.lp_positions.get((asset, provider))

    def lp_positions(self) -> list[LpPosition]:
        return list(self._tables.lp_positions.values())

    def get_loan(self, loan_id: str) -> Loan | None:
        return self._tables.loans.get(loan_id)

    def loans(self, status: LoanStatus | None = None) -> list[Loan]:
        loans = list(self._tables.loans.values())
        if status is not None:
            loans = [loan for loan in loans if loan.status is status]
        return loans

    def borrower_loans(self, borrower: str) -> list[Loan]:
        loans = [l for l in self._tables.loans.values() if l.borrower == borrower]
        return sorted(loans, key=lambda l: l.taken_at, reverse=True)

    def get_collateral_lock(self, loan_id: str) -> CollateralLock | None:
        return self._tables.collateral_locks.get(loan_id)

    def collateral_locks(self) -> list[CollateralLock]:
        return list(self._tables.collateral_locks.values())

    def get_liquidation(self, loan_id: str) -> LiquidationRecord | None:
        return self._tables.liquidations.get(loan_id)

    def liquidations(self) -> list[LiquidationRecord]:
        return sorted(self._tables.liquidations.values(), key=lambda r: r.liquidated_at)

    def repayments(self, loan_id: str) -> list[RepaymentEvent]:
        return list(self._tables.repayments.get(loan_id, ()))

    def health_history(self, loan_id: str) -> list[HealthSample]:
        return list(self._tables.health_history.get(loan_id, ()))

    def credit_history(self, borrower: str) -> list[CreditCategory]:
        return list(self._tables.credit_history.get(borrower, ()))

    def borrowers_with_history(self) -> list[str]:
        return list(self._tables.credit_history.keys())

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def locked(self, *keys: str) -> AsyncIterator[None]:
        """Hold the locks for *keys*, acquired in sorted order."""
        ordered = sorted(set(keys))
        locks = [self._entity_locks.setdefault(k, asyncio.Lock()) for k in ordered]
        acquired: list[asyncio.Lock] = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def transaction(self) -> UnitOfWork:
        return UnitOfWork(self)


class UnitOfWork:
    """Staged changes applied atomically on commit."""

    def __init__(self, store: LendingStore) -> None:
        self._store = store
        self._rows: list[tuple[str, Any, Any]] = []
        self._liquidations: list[LiquidationRecord] = []
        self._repayments: list[RepaymentEvent] = []
        self._health: list[HealthSample] = []
        self._credit: list[tuple[str, CreditCategory]] = []

    # Versioned rows are staged with the version they were read at.

    def put_pool(self, pool: Pool) -> None:
        self._rows.append(("pools", pool.asset, pool))

    def put_lp_position(self, position: LpPosition) -> None:
        self._rows.append(("lp_positions", (position.asset, position.provider), position))

    def put_loan(self, loan: Loan) -> None:
        self._rows.append(("loans", loan.loan_id, loan))

    def put_collateral_lock(self, lock: CollateralLock) -> None:
        self._rows.append(("collateral_locks", lock.loan_id, lock))

    def add_liquidation(self, record: LiquidationRecord) -> None:
        self._liquidations.append(record)

    def add_repayment(self, event: RepaymentEvent) -> None:
        self._repayments.append(event)

    def add_health_sample(self, sample: HealthSample) -> None:
        self._health.append(sample)

    def add_credit_category(self, borrower: str, category: CreditCategory) -> None:
        self._credit.append((borrower, category))

    def verify(self) -> None:
        """Raise ConcurrentStateConflict if any staged row is stale."""
        tables = self._store._tables
        for table_name, key, row in self._rows:
            current = getattr(tables, table_name).get(key)
            found = current.version if current is not None else 0
            if found != row.version:
                raise ConcurrentStateConflict(f"{table_name}[{key}]", row.version, found)
        for record in self._liquidations:
            if record.loan_id in tables.liquidations:
                raise ConcurrentStateConflict(f"liquidations[{record.loan_id}]", 0, 1)

    def commit(self) -> None:
        # No await between verify and apply.
        self.verify()
        tables = self._store._tables
        for table_name, key, row in self._rows:
            getattr(tables, table_name)[key] = replace(row, version=row.version + 1)
        for record in self._liquidations:
            tables.liquidations[record.loan_id] = record
        for event in self._repayments:
            tables.repayments[event.loan_id].append(event)
        for sample in self._health:
            tables.health_history[sample.loan_id].append(sample)
        for borrower, category in self._credit:
            tables.credit_history[borrower].append(category)
        logger.debug(
            "Committed %d rows, %d liquidations, %d repayments, %d health samples",
            len(self._rows), len(self._liquidations), len(self._repayments), len(self._health),
        )


# ---------------------------------------------------------------------------
# Conflict retry
# ---------------------------------------------------------------------------


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 0.01,
    max_delay: float = 0.5,
) -> T:
    """Run *operation*, retrying ConcurrentStateConflict with jittered backoff."""
    attempt = 1
    while True:
        try:
            return await operation()
        except ConcurrentStateConflict as e:
            if attempt >= max_attempts:
                logger.error("Giving up after %d attempts: %s", attempt, e)
                raise
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            delay *= 0.5 + random.random()
            logger.warning(
                "Conflict on attempt %d/%d (%s), retrying in %.3fs",
                attempt, max_attempts, e, delay,
            )
            await asyncio.sleep(delay)
            attempt += 1
