"""Event sink that formats lending events and fans them out to notifiers."""
from __future__ import annotations

import logging
from datetime import datetime

from ..config import NotificationsConfig
from ..events import HealthTierChanged, LendingEvent, LoanLiquidated, LoanRepaid
from ..interfaces.notifier import Notifier
from ..models import RiskTier
from .email import EmailNotifier
from .telegram import TelegramNotifier

logger = logging.getLogger(__name__)

_TIER_LABELS = {
    RiskTier.HEALTHY: "✅ Healthy",
    RiskTier.MONITOR: "⚠️ Monitor",
    RiskTier.AT_RISK: "🚨 At Risk",
}


def format_account(address: str) -> str:
    if len(address) > 16:
        return f"{address[:10]}...{address[-6:]}"
    return address


def format_amount(minor_units: int) -> str:
    return f"{minor_units:,}"


def _ts(when: datetime) -> str:
    return when.strftime("%Y-%m-%d %H:%M:%S")


def tier_label(tier: RiskTier | None) -> str:
    return _TIER_LABELS.get(tier, "—") if tier is not None else "—"


class NotificationDispatcher:
    """Deliver lending events through every enabled notifier.

    Tier escalations and liquidations go out as alerts; everything else is
    sent to the log channel.
    """

    def __init__(self, notifiers: list[Notifier]) -> None:
        self._notifiers = notifiers

    @classmethod
    def from_config(cls, config: NotificationsConfig) -> NotificationDispatcher:
        notifiers: list[Notifier] = []
        if config.telegram.enabled:
            notifiers.append(TelegramNotifier(config.telegram))
        if config.email.enabled:
            notifiers.append(EmailNotifier(config.email))
        return cls(notifiers)

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    @staticmethod
    def format_tier_change(event: HealthTierChanged) -> str:
        return (
            f"{tier_label(event.tier)} · Loan {event.loan_id}\n"
            f"\n"
            f"Tier: {tier_label(event.previous_tier)} → {tier_label(event.tier)}\n"
            f"Health Factor: {event.health_factor:.4f}\n"
            f"Collateral: {event.collateral_asset}\n"
            f"\n"
            f"Borrower: {format_account(event.borrower)}\n"
            f"{_ts(event.checked_at)} UTC"
        )

    @staticmethod
    def format_liquidation(event: LoanLiquidated) -> str:
        lines = [
            f"🚨 LIQUIDATED — Loan {event.loan_id}",
            "",
            f"Collateral seized: {format_amount(event.collateral_amount)} {event.collateral_asset}",
            f"Recovered: {format_amount(event.usdc_recovered)}",
            f"Penalty: {format_amount(event.penalty_amount)}",
            f"Health Factor: {event.health_factor:.4f}",
            "",
            f"Borrower: {format_account(event.borrower)}",
        ]
        if event.liquidator:
            lines.append(f"Liquidator: {format_account(event.liquidator)}")
        lines.append(f"{_ts(event.liquidated_at)} UTC")
        return "\n".join(lines)

    @staticmethod
    def format_repayment(event: LoanRepaid) -> str:
        timing = event.timing.replace("_", " ") if event.timing else "uncategorized"
        return (
            f"💰 Loan {event.loan_id} repaid ({timing})\n"
            f"\n"
            f"Total paid: {format_amount(event.amount_repaid)}\n"
            f"Borrower: {format_account(event.borrower)}\n"
            f"{_ts(event.repaid_at)} UTC"
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def send_log(self, message: str, silent: bool = False) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    async def publish(self, event: LendingEvent) -> None:
        if isinstance(event, HealthTierChanged):
            message = self.format_tier_change(event)
            if event.tier is RiskTier.AT_RISK:
                await self.send_alert(message, subject=f"🚨 Loan {event.loan_id} at risk")
            else:
                await self.send_log(message, silent=True)
        elif isinstance(event, LoanLiquidated):
            await self.send_alert(
                self.format_liquidation(event), subject=f"🚨 Loan {event.loan_id} liquidated"
            )
        elif isinstance(event, LoanRepaid):
            await self.send_log(self.format_repayment(event), silent=True)
        else:
            logger.warning("No formatter for event %s", type(event).__name__)
