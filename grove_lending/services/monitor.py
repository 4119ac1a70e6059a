"""Market monitoring loop: health sweeps, auto-liquidation and daily reports."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..models import Loan, LoanStatus, Pool, RiskTier
from ..notifications.dispatcher import NotificationDispatcher, format_account, tier_label
from .health_monitor import SweepResult
from .market import LendingMarket

logger = logging.getLogger(__name__)


class MarketMonitor:
    """Runs the health sweep on a schedule and reports on the market."""

    def __init__(
        self,
        market: LendingMarket,
        dispatcher: NotificationDispatcher,
        after_check: Callable[[], None] | None = None,
    ) -> None:
        self._market = market
        self._dispatcher = dispatcher
        self._after_check = after_check

    def _now_str(self) -> str:
        return self._market.clock().strftime("%Y-%m-%d %H:%M:%S")

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _pool_section(pool: Pool) -> str:
        return (
            f"━━ {pool.asset} pool ━━\n"
            f"  Liquidity: {pool.total_liquidity:,} · Available: {pool.available_liquidity:,}\n"
            f"  Borrowed: {pool.total_borrowed:,} · Utilization: {pool.utilization_rate * 100:.2f}%\n"
            f"  APY: {pool.current_apy * 100:.2f}% · Interest earned: {pool.total_interest_earned:,}\n"
            f"  Loans: {pool.total_loans_originated} originated · "
            f"{pool.total_loans_repaid} repaid · {pool.total_liquidations} liquidated"
        )

    @staticmethod
    def _loan_line(loan: Loan) -> str:
        return (
            f"  {loan.loan_id} · {format_account(loan.borrower)} · "
            f"{loan.remaining_balance:,} owed · HF {loan.health_factor:.2f} · "
            f"due {loan.due_date:%Y-%m-%d}"
        )

    def _sweep_summary(self, result: SweepResult) -> str:
        lines = [
            "📊 Health sweep",
            "",
            f"Checked: {result.checked} · Deferred: {result.deferred}",
            f"At risk: {len(result.at_risk)} · Liquidated: {len(result.liquidated)}",
        ]
        for loan_id in result.liquidated:
            lines.append(f"  🚨 {loan_id}")
        if result.failed:
            lines.append(f"Liquidation failed: {len(result.failed)}")
            lines += [f"  ⚠️ {loan_id}" for loan_id in result.failed]
        lines += ["", f"{self._now_str()} UTC"]
        return "\n".join(lines)

    def build_daily_report(self) -> str:
        sections = [self._pool_section(pool) for pool in self._market.store.pools()]

        by_tier: dict[RiskTier, list[Loan]] = {tier: [] for tier in RiskTier}
        for loan in self._market.store.loans(LoanStatus.ACTIVE):
            by_tier[self._market.health.classify(loan.health_factor)].append(loan)

        for tier in (RiskTier.AT_RISK, RiskTier.MONITOR, RiskTier.HEALTHY):
            loans = sorted(by_tier[tier], key=lambda loan: loan.health_factor)
            if not loans:
                continue
            sections.append(
                f"{tier_label(tier)} ({len(loans)})\n"
                + "\n".join(self._loan_line(loan) for loan in loans)
            )

        body = "\n\n".join(sections) if sections else "No pools or active loans."
        return (
            f"📋 Daily Lending Report\n"
            f"\n"
            f"{body}\n"
            f"\n"
            f"{self._now_str()} UTC"
        )

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def check_and_liquidate(self) -> SweepResult:
        """One sweep over every active loan; breaches are liquidated if enabled."""
        result = await self._market.health.sweep()
        await self._dispatcher.send_log(
            self._sweep_summary(result), silent=not (result.liquidated or result.failed)
        )
        if self._after_check is not None:
            self._after_check()
        return result

    async def generate_daily_report(self) -> str:
        """Send the pool and loan-tier report as an alert and return it."""
        report = self.build_daily_report()
        await self._dispatcher.send_alert(report, subject="📋 Daily Lending Report")
        logger.info("Daily report sent")
        return report

    async def run_continuous(self, check_interval_minutes: int | None = None) -> None:
        interval = check_interval_minutes or self._market.config.monitor.check_interval_minutes
        logger.info("Starting continuous monitoring (checking every %d minutes)", interval)

        while True:
            try:
                await self.check_and_liquidate()
                await asyncio.sleep(interval * 60)
            except Exception as e:
                logger.error("Error in monitoring loop: %s", e, exc_info=True)
                await asyncio.sleep(60)
