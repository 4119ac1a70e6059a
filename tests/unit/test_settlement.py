"""Unit tests for settlement submission and event emission."""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from grove_lending.errors import SettlementFailed
from grove_lending.events import LoanRepaid, emit
from grove_lending.models import SettlementIntent, SettlementKind
from grove_lending.settlement import InstantSettlement, settle

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

INTENT = SettlementIntent(
    kind=SettlementKind.DISBURSE_PRINCIPAL,
    loan_id="loan_1",
    account="0xB",
    asset="USDC",
    amount=1000,
)


class TestSettlement:
    @pytest.mark.asyncio
    async def test_instant_settlement_records_and_references(self) -> None:
        ledger = InstantSettlement()

        first = await settle(ledger, INTENT)
        second = await settle(ledger, INTENT)

        assert first.startswith("0x")
        assert first != second
        assert ledger.submitted == [INTENT, INTENT]

    @pytest.mark.asyncio
    async def test_rejection_raises(self, rejecting_settlement) -> None:
        with pytest.raises(SettlementFailed) as exc_info:
            await settle(rejecting_settlement, INTENT)

        assert exc_info.value.kind == "disburse_principal"
        assert exc_info.value.reason == "insufficient gas"


class TestEmit:
    EVENT = LoanRepaid(
        loan_id="loan_1", borrower="0xB", amount_repaid=1100, timing="on_time", repaid_at=T0
    )

    @pytest.mark.asyncio
    async def test_publishes_to_sink(self, sink) -> None:
        await emit(sink, self.EVENT)
        assert sink.events == [self.EVENT]

    @pytest.mark.asyncio
    async def test_no_sink_is_noop(self) -> None:
        await emit(None, self.EVENT)

    @pytest.mark.asyncio
    async def test_failing_sink_is_swallowed(self) -> None:
        sink = AsyncMock()
        sink.publish.side_effect = RuntimeError("sink down")

        await emit(sink, self.EVENT)

        sink.publish.assert_awaited_once_with(self.EVENT)
