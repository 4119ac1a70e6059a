"""Credit risk: repayment timing, harvest-season policy and credit scores.

The seasonal policies are plain functions of a timestamp. Main harvest runs
October to December. The collateral-ratio table and the loan-duration table
are kept separate on purpose: their month boundaries differ.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

from ..config import LendingConfig
from ..models import CreditCategory, Loan, TimingCategory
from ..store import LendingStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

HARVEST_MONTHS = (10, 11, 12)

# (first month, last month, days), first match wins
LOAN_DURATION_TABLE = (
    (8, 10, 60),   # harvest approaching
    (10, 12, 30),  # during harvest
)
OFF_SEASON_DURATION_DAYS = 90


# ---------------------------------------------------------------------------
# Seasonal policy
# ---------------------------------------------------------------------------


def is_harvest_season(when: datetime) -> bool:
    return when.month in HARVEST_MONTHS


def seasonal_collateral_ratio(
    when: datetime,
    harvest_ratio: Decimal = Decimal("1.10"),
    off_season_ratio: Decimal = Decimal("1.25"),
) -> Decimal:
    """Trees are worth more during harvest, so less collateral is required."""
    return harvest_ratio if is_harvest_season(when) else off_season_ratio


def recommended_loan_duration(when: datetime) -> int:
    """Loan duration in days for a loan taken at *when*."""
    for first, last, days in LOAN_DURATION_TABLE:
        if first <= when.month <= last:
            return days
    return OFF_SEASON_DURATION_DAYS


# ---------------------------------------------------------------------------
# Repayment timing
# ---------------------------------------------------------------------------


def _days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_DAY


def categorize(due_date: datetime, repaid_at: datetime, started_at: datetime) -> CreditCategory:
    """Classify a repayment as early (>= 1 day before due), late (>= 1 day after) or on time."""
    diff_days = _days_between(due_date, repaid_at)
    loan_duration = max(1.0, _days_between(started_at, due_date))

    if diff_days <= -1:
        return CreditCategory(TimingCategory.EARLY, abs(diff_days), loan_duration)
    if diff_days >= 1:
        return CreditCategory(TimingCategory.LATE, diff_days, loan_duration)
    return CreditCategory(TimingCategory.ON_TIME, abs(diff_days), loan_duration)


def adjust_for_harvest_season(category: CreditCategory, repaid_at: datetime) -> CreditCategory:
    """Soften late-payment penalties for repayments made off-season."""
    if is_harvest_season(repaid_at) or category.category is not TimingCategory.LATE:
        return category
    if category.days <= 7:
        return replace(category, category=TimingCategory.ON_TIME, seasonally_adjusted=True)
    if category.days <= 14:
        return replace(category, days=category.days * 0.5, seasonally_adjusted=True)
    return category


# ---------------------------------------------------------------------------
# Credit score
# ---------------------------------------------------------------------------

BASE_SCORE = 500
MIN_SCORE = 300
MAX_SCORE = 850


@dataclass(frozen=True)
class CreditProfile:
    score: int
    tier: str
    max_loan_amount: int


def _early_score(days_early: float, loan_duration: float) -> int:
    # Any payment at least a quarter of the term ahead of the due date is "very early".
    if days_early >= loan_duration * 0.25:
        return 100
    return 50


def _on_time_score(days_before_deadline: float, loan_duration: float) -> int:
    if days_before_deadline >= loan_duration * 0.75:
        return 50
    if days_before_deadline > 5:
        return 35
    if days_before_deadline >= 1:
        return 15
    return 0


def _late_score(days_late: float) -> int:
    # Days are fractional; a partial second day still counts as one day late.
    if days_late < 2:
        return -5
    if days_late <= 5:
        return -30
    return -50


def calculate_credit_score(history: list[CreditCategory]) -> int:
    """Score 300-850 from a borrower's categorized repayments."""
    if not history:
        return BASE_SCORE

    score = BASE_SCORE
    total = len(history)
    if total >= 10:
        score += 50
    elif total >= 5:
        score += 25
    elif total >= 2:
        score += 10

    for entry in history:
        if entry.category is TimingCategory.EARLY:
            score += _early_score(entry.days, entry.loan_duration)
        elif entry.category is TimingCategory.ON_TIME:
            score += _on_time_score(entry.days, entry.loan_duration)
        else:
            score += _late_score(entry.days)

    return max(MIN_SCORE, min(MAX_SCORE, score))


def credit_tier(score: int) -> CreditProfile:
    if score >= 750:
        return CreditProfile(score, "excellent", 10_000)
    if score >= 650:
        return CreditProfile(score, "good", 5_000)
    if score >= 550:
        return CreditProfile(score, "fair", 2_000)
    return CreditProfile(score, "poor", 500)


# ---------------------------------------------------------------------------
# Adjuster
# ---------------------------------------------------------------------------


class CreditRiskAdjuster:
    """Applies the seasonal credit policy and keeps per-borrower history."""

    def __init__(self, store: LendingStore, config: LendingConfig) -> None:
        self._store = store
        self._config = config

    def collateral_ratio(self, when: datetime) -> Decimal:
        if not self._config.seasonal_terms:
            return self._config.collateralization_ratio
        return seasonal_collateral_ratio(
            when,
            harvest_ratio=self._config.harvest_collateralization_ratio,
            off_season_ratio=self._config.collateralization_ratio,
        )

    def loan_duration_days(self, when: datetime) -> int:
        if not self._config.seasonal_terms:
            return self._config.default_duration_days
        return recommended_loan_duration(when)

    def categorize_repayment(self, loan: Loan, repaid_at: datetime) -> CreditCategory:
        """Timing category for a repaid loan, seasonally adjusted."""
        raw = categorize(loan.due_date, repaid_at, loan.taken_at)
        adjusted = adjust_for_harvest_season(raw, repaid_at)
        if adjusted.seasonally_adjusted:
            logger.info(
                "Loan %s: off-season adjustment %s (%.1f days) -> %s (%.1f days)",
                loan.loan_id, raw.category.value, raw.days,
                adjusted.category.value, adjusted.days,
            )
        return replace(adjusted, loan_id=loan.loan_id)

    def credit_profile(self, borrower: str) -> CreditProfile:
        return credit_tier(calculate_credit_score(self._store.credit_history(borrower)))
