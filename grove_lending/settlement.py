"""Settlement ledger implementations and submission helper."""
from __future__ import annotations

import logging
import uuid

from .errors import SettlementFailed
from .interfaces.settlement import SettlementLedger
from .models import SettlementIntent, SettlementResult

logger = logging.getLogger(__name__)


class InstantSettlement:
    """Approve every intent immediately with a generated reference."""

    def __init__(self) -> None:
        self.submitted: list[SettlementIntent] = []

    async def submit(self, intent: SettlementIntent) -> SettlementResult:
        self.submitted.append(intent)
        reference = f"0x{uuid.uuid4().hex}"
        logger.debug(
            "Settled %s for loan %s (%s %d): %s",
            intent.kind.value, intent.loan_id, intent.asset, intent.amount, reference,
        )
        return SettlementResult(success=True, reference=reference)


async def settle(ledger: SettlementLedger, intent: SettlementIntent) -> str | None:
    """Submit *intent* and return its reference, raising SettlementFailed on rejection."""
    result = await ledger.submit(intent)
    if not result.success:
        logger.error(
            "Settlement %s for loan %s rejected: %s",
            intent.kind.value, intent.loan_id, result.error,
        )
        raise SettlementFailed(intent.kind.value, result.error or "rejected")
    return result.reference
