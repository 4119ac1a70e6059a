"""Pyth Network (Hermes) price oracle for collateral assets."""
import asyncio
import logging
import ssl
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import aiohttp
import certifi

from ..config import PythConfig
from ..models import PriceQuote

logger = logging.getLogger(__name__)


def normalize_feed_id(feed_id: str) -> str:
    """Hermes reports feed ids as bare lowercase hex."""
    feed_id = feed_id.lower()
    return feed_id[2:] if feed_id.startswith("0x") else feed_id


def parse_hermes_response(
    parsed: list[dict[str, Any]], feeds: dict[str, str]
) -> dict[str, PriceQuote]:
    """Turn the ``parsed`` section of a Hermes response into quotes per asset.

    ``price`` is an integer mantissa scaled by ``10**expo``; ``publish_time``
    (unix seconds) becomes the quote's ``as_of``.
    """
    assets_by_feed: dict[str, list[str]] = {}
    for asset, feed_id in feeds.items():
        assets_by_feed.setdefault(normalize_feed_id(feed_id), []).append(asset)

    quotes: dict[str, PriceQuote] = {}
    for item in parsed:
        assets = assets_by_feed.get(normalize_feed_id(item.get("id", "")))
        if not assets:
            continue

        price_data = item.get("price") or {}
        mantissa = int(price_data.get("price", 0))
        if mantissa <= 0:
            logger.warning("Ignoring non-positive Pyth price for %s", ", ".join(assets))
            continue
        price = Decimal(mantissa).scaleb(int(price_data.get("expo", 0)))
        as_of = datetime.fromtimestamp(int(price_data.get("publish_time", 0)), tz=timezone.utc)

        for asset in assets:
            quotes[asset] = PriceQuote(asset=asset, price=price, as_of=as_of)
    return quotes


class PythOracle:
    """Fetch collateral prices from the Hermes ``/v2/updates/price/latest`` endpoint."""

    def __init__(self, config: PythConfig, timeout_seconds: float = 10.0) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def fetch_prices(
        self, symbols: list[str] | None = None
    ) -> dict[str, PriceQuote]:
        """Latest quotes for *symbols* (all configured feeds when None).

        Assets missing from the response are simply absent from the result;
        the price service turns that into ``PriceUnavailable``.
        """
        feeds = {
            asset: feed_id
            for asset, feed_id in self.price_feeds.items()
            if symbols is None or asset in symbols
        }
        if not feeds:
            return {}

        params = [("ids[]", feed_id) for feed_id in sorted(set(feeds.values()))]
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(
                connector=connector, timeout=self._timeout
            ) as session:
                async with session.get(self.hermes_url, params=params) as response:
                    if response.status != 200:
                        logger.error("Error fetching prices from Pyth: HTTP %s", response.status)
                        return {}
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return {}

        quotes = parse_hermes_response(data.get("parsed", []), feeds)
        for asset, quote in sorted(quotes.items()):
            logger.info("Pyth %s: %s (published %s)", asset, quote.price, quote.as_of)
        return quotes
