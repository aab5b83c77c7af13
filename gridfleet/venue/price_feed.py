"""
USD reference prices from the Sushi price API.

GET {price_api_url}/{chain_id}/{token_address} returns a bare JSON number.
USDC is pinned to 1.0 and natives are priced through their wrapped token.
Fetches go through PRICE_POLICY; when retries are exhausted the static
fallback table is used, and a token with no fallback raises VenueUnavailable.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional, Tuple

import httpx

from gridfleet.config.tokens import QUOTE_SYMBOL, TOKENS, TokenRegistry
from gridfleet.core.errors import VenueUnavailable
from gridfleet.core.json_utils import dumps
from gridfleet.core.retry import PRICE_POLICY, RetryPolicy

log = logging.getLogger("gridfleet")

FALLBACK_PRICES: Dict[str, float] = {
    "ETH": 3000.0,
    "WETH": 3000.0,
    "USDC": 1.0,
    "JitoSOL": 150.0,
    "LBTC": 95000.0,
}


class HttpPriceFeed:
    def __init__(
        self,
        base_url: str,
        chain_id: int,
        timeout: float = 10.0,
        cache_ttl: float = 30.0,
        policy: RetryPolicy = PRICE_POLICY,
        registry: TokenRegistry = TOKENS,
        client: Optional[httpx.AsyncClient] = None,
        fallbacks: Optional[Dict[str, float]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id
        self._cache_ttl = cache_ttl
        self._policy = policy
        self._registry = registry
        self._fallbacks = {k.upper(): v for k, v in (fallbacks or FALLBACK_PRICES).items()}
        # symbol -> (price, fetched_at)
        self._cache: Dict[str, Tuple[float, float]] = {}
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def get_price(self, symbol: str) -> float:
        key = symbol.upper()
        if key == QUOTE_SYMBOL:
            return 1.0

        cached = self._cache.get(key)
        if cached and time.time() - cached[1] < self._cache_ttl:
            return cached[0]

        token = self._registry.wrapped(self._registry.get(key))
        try:
            price = await self._policy.run(self._fetch, token.address, op=f"price.{key}")
        except Exception as exc:
            fallback = self._fallbacks.get(key)
            log.warning(dumps({
                "event": "price_fallback",
                "symbol": key,
                "fallback": fallback,
                "err": str(exc) or type(exc).__name__,
            }))
            if fallback is None:
                raise VenueUnavailable(f"No price available for {symbol}") from exc
            return fallback

        self._cache[key] = (price, time.time())
        return price

    async def _fetch(self, address: str) -> float:
        resp = await self.client.get(f"/{self.chain_id}/{address.lower()}")
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, dict):
            data = data.get("price", data.get("data"))
        try:
            price = float(data)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid price payload: {data!r}")
        if price <= 0:
            raise ValueError(f"Invalid price received: {price}")
        return price

    def invalidate(self, symbol: Optional[str] = None) -> None:
        if symbol is None:
            self._cache.clear()
        else:
            self._cache.pop(symbol.upper(), None)
