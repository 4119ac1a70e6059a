"""Config-driven price oracle for fixed or manually pushed prices."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable

from ..config import StaticPricesConfig
from ..models import PriceQuote, utcnow


class StaticPriceOracle:
    """Serve prices from configuration; every quote is stamped at fetch time."""

    def __init__(
        self,
        config: StaticPricesConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._prices: dict[str, Decimal] = dict(config.prices)
        self._clock = clock

    def set_price(self, asset: str, price: Decimal) -> None:
        self._prices[asset] = price

    async def fetch_prices(
        self, symbols: list[str] | None = None
    ) -> dict[str, PriceQuote]:
        now = self._clock()
        return {
            asset: PriceQuote(asset=asset, price=price, as_of=now)
            for asset, price in self._prices.items()
            if symbols is None or asset in symbols
        }
