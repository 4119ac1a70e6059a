"""Collateral price service: caching and staleness guard over an oracle."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from ..config import PriceFeedConfig
from ..errors import PriceUnavailable
from ..interfaces.price_oracle import PriceOracle
from ..models import PriceQuote, utcnow

logger = logging.getLogger(__name__)


class PriceService:
    """Serve collateral prices, refusing quotes older than ``max_age_seconds``."""

    def __init__(
        self,
        oracle: PriceOracle,
        config: PriceFeedConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._oracle = oracle
        self._max_age = timedelta(seconds=config.max_age_seconds)
        self._cache_ttl = timedelta(seconds=config.cache_ttl_seconds)
        self._clock = clock
        self._cache: dict[str, tuple[PriceQuote, datetime]] = {}

    def update(self, quote: PriceQuote) -> None:
        """Record a pushed quote (e.g. from a price-update event)."""
        self._cache[quote.asset] = (quote, self._clock())

    def clear_cache(self, asset: str | None = None) -> None:
        if asset is None:
            self._cache.clear()
        else:
            self._cache.pop(asset, None)

    def ensure_fresh(self, quote: PriceQuote) -> PriceQuote:
        """Return *quote* unchanged, or raise PriceUnavailable if it is stale or non-positive."""
        age = self._clock() - quote.as_of
        if age > self._max_age:
            raise PriceUnavailable(
                quote.asset, f"quote is {int(age.total_seconds())}s old"
            )
        if quote.price <= 0:
            raise PriceUnavailable(quote.asset, f"non-positive price {quote.price}")
        return quote

    async def get_price(self, asset: str) -> PriceQuote:
        """Return a fresh quote for *asset* or raise PriceUnavailable.

        A cached quote that has aged past ``max_age_seconds`` is fetched again
        rather than refused.
        """
        cached = self._cache.get(asset)
        if cached is not None and self._clock() - cached[1] < self._cache_ttl:
            try:
                quote = self.ensure_fresh(cached[0])
            except PriceUnavailable as e:
                logger.debug("Cached price for %s unusable (%s), refetching", asset, e.reason)
            else:
                logger.debug("Using cached price for %s: %s", asset, quote.price)
                return quote

        quotes = await self._oracle.fetch_prices([asset])
        quote = quotes.get(asset)
        if quote is None:
            raise PriceUnavailable(asset, "oracle returned no quote")

        self._cache[asset] = (quote, self._clock())
        return self.ensure_fresh(quote)

    async def get_prices(self, assets: list[str]) -> dict[str, PriceQuote]:
        """Fresh quotes for every asset that has one; unavailable assets are omitted."""
        quotes: dict[str, PriceQuote] = {}
        for asset in assets:
            try:
                quotes[asset] = await self.get_price(asset)
            except PriceUnavailable as e:
                logger.warning("%s", e)
        return quotes
