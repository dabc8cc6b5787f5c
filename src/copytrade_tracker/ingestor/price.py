"""Spot price lookup via the CoinGecko simple-price API."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

import httpx

from copytrade_tracker.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.coingecko.com/api/v3/simple/price"
DEFAULT_TIMEOUT_SECONDS = 5.0
SOL_ASSET_ID = "solana"


class CoinGeckoPriceSource:
    """Fetches USD spot prices for one asset per call.

    The source never substitutes a value itself: failures raise
    UpstreamUnavailableError and the caller decides on a fallback.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._api_url = api_url
        self._timeout = timeout_seconds

    async def get_spot_price_usd(self, asset: str = SOL_ASSET_ID) -> Decimal:
        """Return the current USD price of `asset`.

        Raises:
            UpstreamUnavailableError: On transport errors, timeouts, non-2xx
                responses, or a payload without a usable price.
        """
        try:
            response = await self._client.get(
                self._api_url,
                params={"ids": asset, "vs_currencies": "usd"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamUnavailableError(f"Price lookup for {asset} failed: {e}", service="price") from e

        try:
            price = Decimal(str(data[asset]["usd"]))
        except (KeyError, TypeError, InvalidOperation) as e:
            raise UpstreamUnavailableError(
                f"Price payload for {asset} has no usd field", service="price"
            ) from e
        if not price.is_finite() or price <= 0:
            raise UpstreamUnavailableError(f"Price for {asset} is not positive: {price}", service="price")

        logger.debug("Spot price %s/USD = %s", asset, price)
        return price
