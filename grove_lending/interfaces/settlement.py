"""Settlement ledger protocol — execution of value transfers."""
from typing import Protocol

from ..models import SettlementIntent, SettlementResult


class SettlementLedger(Protocol):
    """Abstract interface for executing settlement intents on a ledger."""

    async def submit(self, intent: SettlementIntent) -> SettlementResult: ...
