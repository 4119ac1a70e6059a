"""Data models — all frozen (immutable).

Monetary amounts are ``int`` minor units of the pool currency. Prices, rates
and ratios are ``Decimal``. Rows that are mutated over their lifetime carry a
``version`` which the store checks on commit.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from enum import Enum

ZERO = Decimal("0")
ONE = Decimal("1")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_minor_units(value: Decimal, rounding: str = ROUND_DOWN) -> int:
    """Convert a Decimal amount into whole minor units."""
    return int(value.quantize(ONE, rounding=rounding))


def repayment_obligation(principal: int, interest_rate: Decimal) -> int:
    return to_minor_units(Decimal(principal) * (ONE + interest_rate), ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class LoanStatus(str, Enum):
    ACTIVE = "active"
    REPAID = "repaid"
    LIQUIDATED = "liquidated"
    DEFAULTED = "defaulted"


class PaymentType(str, Enum):
    PARTIAL = "partial"
    FULL = "full"
    INTEREST_ONLY = "interest_only"
    PRINCIPAL = "principal"


class RiskTier(str, Enum):
    HEALTHY = "healthy"
    MONITOR = "monitor"
    AT_RISK = "at_risk"


class TimingCategory(str, Enum):
    EARLY = "early"
    ON_TIME = "on_time"
    LATE = "late"


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceQuote:
    """Price of one collateral unit, in pool minor units."""

    asset: str
    price: Decimal
    as_of: datetime


# ---------------------------------------------------------------------------
# Versioned rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Pool:
    """Aggregate liquidity accounting for one asset."""

    asset: str
    total_liquidity: int = 0
    available_liquidity: int = 0
    total_borrowed: int = 0
    total_lp_units: int = 0
    utilization_rate: Decimal = ZERO
    current_apy: Decimal = ZERO
    total_interest_earned: int = 0
    total_loans_originated: int = 0
    total_loans_repaid: int = 0
    total_liquidations: int = 0
    updated_at: datetime | None = None
    version: int = 0


@dataclass(frozen=True)
class LpPosition:
    asset: str
    provider: str
    lp_units: int = 0
    version: int = 0


@dataclass(frozen=True)
class Loan:
    loan_id: str
    borrower: str
    pool_asset: str
    principal: int
    collateral_asset: str
    collateral_amount: int
    interest_rate: Decimal
    collateralization_ratio: Decimal
    liquidation_threshold: Decimal
    repayment_amount: int
    health_factor: float
    liquidation_price: Decimal
    taken_at: datetime
    due_date: datetime
    status: LoanStatus = LoanStatus.ACTIVE
    amount_repaid: int = 0
    principal_repaid: int = 0
    interest_repaid: int = 0
    repaid_at: datetime | None = None
    liquidated_at: datetime | None = None
    settlement_ref: str | None = None
    version: int = 0

    @property
    def remaining_balance(self) -> int:
        return self.repayment_amount - self.amount_repaid

    @property
    def outstanding_principal(self) -> int:
        return self.principal - self.principal_repaid

    @property
    def interest_amount(self) -> int:
        return self.repayment_amount - self.principal

    @property
    def is_active(self) -> bool:
        return self.status is LoanStatus.ACTIVE


@dataclass(frozen=True)
class CollateralLock:
    loan_id: str
    token: str
    amount: int
    initial_price: Decimal
    locked_at: datetime
    current_price: Decimal | None = None
    unlocked_at: datetime | None = None
    unlock_ref: str | None = None
    version: int = 0

    @property
    def is_locked(self) -> bool:
        return self.unlocked_at is None


# ---------------------------------------------------------------------------
# Append-only records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LiquidationRecord:
    liquidation_id: str
    loan_id: str
    borrower: str
    collateral_asset: str
    collateral_amount: int
    collateral_value_at_liquidation: Decimal
    usdc_recovered: int
    liquidation_penalty: Decimal
    penalty_amount: int
    liquidation_price: Decimal
    health_factor_at_liquidation: float
    liquidated_at: datetime
    liquidator: str | None = None
    liquidator_reward: int | None = None
    borrower_surplus: int = 0
    settlement_ref: str | None = None


@dataclass(frozen=True)
class RepaymentEvent:
    payment_id: str
    loan_id: str
    borrower: str
    payment_amount: int
    payment_type: PaymentType
    principal_portion: int
    interest_portion: int
    remaining_balance: int
    paid_at: datetime
    settlement_ref: str | None = None


@dataclass(frozen=True)
class HealthSample:
    loan_id: str
    health_factor: float
    collateral_price: Decimal
    collateral_value: Decimal
    tier: RiskTier
    checked_at: datetime


@dataclass(frozen=True)
class CreditCategory:
    """Timing of one repayment relative to its due date."""

    category: TimingCategory
    days: float
    loan_duration: float
    seasonally_adjusted: bool = False
    loan_id: str = ""


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


class SettlementKind(str, Enum):
    DISBURSE_PRINCIPAL = "disburse_principal"
    COLLECT_REPAYMENT = "collect_repayment"
    SEIZE_COLLATERAL = "seize_collateral"
    RELEASE_COLLATERAL = "release_collateral"


@dataclass(frozen=True)
class SettlementIntent:
    kind: SettlementKind
    loan_id: str
    account: str
    asset: str
    amount: int


@dataclass(frozen=True)
class SettlementResult:
    success: bool
    reference: str | None = None
    error: str | None = None
