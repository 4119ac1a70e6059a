"""Unit tests for the versioned store, unit of work and conflict retry."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from grove_lending.errors import ConcurrentStateConflict
from grove_lending.models import LiquidationRecord, Pool
from grove_lending.store import LendingStore, loan_key, pool_key, retry_on_conflict

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _record(loan_id: str = "loan_1") -> LiquidationRecord:
    return LiquidationRecord(
        liquidation_id="liq_1",
        loan_id=loan_id,
        borrower="0xB",
        collateral_asset="GROVE",
        collateral_amount=1250,
        collateral_value_at_liquidation=Decimal("875"),
        usdc_recovered=831,
        liquidation_penalty=Decimal("0.05"),
        penalty_amount=43,
        liquidation_price=Decimal("0.70"),
        health_factor_at_liquidation=0.716,
        liquidated_at=T0,
    )


class TestUnitOfWork:
    def test_commit_bumps_version(self) -> None:
        store = LendingStore()
        uow = store.transaction()
        uow.put_pool(Pool(asset="USDC", total_liquidity=100, available_liquidity=100))
        uow.commit()
        assert store.get_pool("USDC").version == 1

    def test_nothing_visible_before_commit(self) -> None:
        store = LendingStore()
        uow = store.transaction()
        uow.put_pool(Pool(asset="USDC"))
        uow.verify()
        assert store.get_pool("USDC") is None

    def test_stale_row_conflicts(self) -> None:
        store = LendingStore()
        uow = store.transaction()
        uow.put_pool(Pool(asset="USDC"))
        uow.commit()

        stale = store.get_pool("USDC")
        first = store.transaction()
        first.put_pool(replace(stale, total_liquidity=10, available_liquidity=10))
        first.commit()

        second = store.transaction()
        second.put_pool(replace(stale, total_liquidity=20, available_liquidity=20))
        with pytest.raises(ConcurrentStateConflict):
            second.commit()
        assert store.get_pool("USDC").total_liquidity == 10

    def test_failed_commit_applies_nothing(self) -> None:
        store = LendingStore()
        seed = store.transaction()
        seed.put_pool(Pool(asset="USDC"))
        seed.commit()

        uow = store.transaction()
        uow.put_pool(Pool(asset="DAI"))
        uow.put_pool(Pool(asset="USDC"))  # version 0, stored is 1
        with pytest.raises(ConcurrentStateConflict):
            uow.commit()
        assert store.get_pool("DAI") is None

    def test_duplicate_liquidation_conflicts(self) -> None:
        store = LendingStore()
        uow = store.transaction()
        uow.add_liquidation(_record())
        uow.commit()

        again = store.transaction()
        again.add_liquidation(_record())
        with pytest.raises(ConcurrentStateConflict):
            again.commit()
        assert len(store.liquidations()) == 1


class TestLocked:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        store = LendingStore()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with store.locked(pool_key("USDC")):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_overlapping_keys_do_not_deadlock(self) -> None:
        store = LendingStore()

        async def worker(keys: tuple[str, ...]) -> None:
            async with store.locked(*keys):
                await asyncio.sleep(0)

        await asyncio.wait_for(
            asyncio.gather(
                worker((loan_key("1"), pool_key("USDC"))),
                worker((pool_key("USDC"), loan_key("1"))),
            ),
            timeout=1,
        )


class TestRetryOnConflict:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        operation = AsyncMock(
            side_effect=[ConcurrentStateConflict("pools[USDC]", 1, 2), "ok"]
        )
        with patch("grove_lending.store.asyncio.sleep", new_callable=AsyncMock):
            assert await retry_on_conflict(operation, max_attempts=3) == "ok"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        operation = AsyncMock(side_effect=ConcurrentStateConflict("pools[USDC]", 1, 2))
        with patch("grove_lending.store.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ConcurrentStateConflict):
                await retry_on_conflict(operation, max_attempts=3)
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self) -> None:
        operation = AsyncMock(side_effect=ValueError("boom"))
        with pytest.raises(ValueError):
            await retry_on_conflict(operation, max_attempts=3)
        assert operation.await_count == 1
