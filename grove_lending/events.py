"""Typed lending events emitted to the notification sink."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Union

from .models import RiskTier

if TYPE_CHECKING:
    from .interfaces.event_sink import EventSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthTierChanged:
    loan_id: str
    borrower: str
    previous_tier: RiskTier | None
    tier: RiskTier
    health_factor: float
    collateral_asset: str
    checked_at: datetime


@dataclass(frozen=True)
class LoanLiquidated:
    loan_id: str
    borrower: str
    collateral_asset: str
    collateral_amount: int
    health_factor: float
    usdc_recovered: int
    penalty_amount: int
    liquidated_at: datetime
    liquidator: str | None = None


@dataclass(frozen=True)
class LoanRepaid:
    loan_id: str
    borrower: str
    amount_repaid: int
    timing: str
    repaid_at: datetime


LendingEvent = Union[HealthTierChanged, LoanLiquidated, LoanRepaid]


async def emit(sink: EventSink | None, event: LendingEvent) -> None:
    """Publish *event*; a failing sink never fails the lending operation."""
    if sink is None:
        return
    try:
        await sink.publish(event)
    except Exception as e:
        logger.error("Event sink failed for %s: %s", type(event).__name__, e)
