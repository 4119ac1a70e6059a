"""Price oracle protocol — price feed abstraction."""
from typing import Protocol

from ..models import PriceQuote


class PriceOracle(Protocol):
    """Abstract interface for fetching collateral prices."""

    async def fetch_prices(
        self, symbols: list[str] | None = None
    ) -> dict[str, PriceQuote]: ...
