"""
price_feed.py
- JupiterPriceClient: live USD price lookups with bounded retries
- InMemoryPriceCache / RedisPriceCache: TTL caches for price quotes
- PriceFeed: cache-wrapped ``price_at`` used by the proposal law and the tracker

There is no historical price history. Quotes for transactions older than the
recency window are the current price, flagged ``approximated`` and stamped
``as_of`` the block time. A failed live fetch degrades to a zero price flagged
``degraded`` instead of raising.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional
import httpx
from redis.exceptions import RedisError
from spare_change.config import WRAPPED_SOL_MINT
from spare_change.errors import PriceUnavailable

logger = logging.getLogger(__name__)

PRICE_SOURCE = "jupiter"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PriceQuote:
    asset_key: str
    price_usd: Decimal
    fetched_at: datetime
    source: str
    as_of: datetime
    degraded: bool = False
    approximated: bool = False
    cached: bool = False

    def to_dict(self) -> dict:
        return {
            "asset_key": self.asset_key,
            "price_usd": str(self.price_usd),
            "fetched_at": self.fetched_at.isoformat(),
            "as_of": self.as_of.isoformat(),
            "source": self.source,
            "degraded": self.degraded,
            "approximated": self.approximated,
            "cached": self.cached,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PriceQuote":
        return cls(
            asset_key=data["asset_key"],
            price_usd=Decimal(data["price_usd"]),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
            as_of=datetime.fromisoformat(data["as_of"]),
            source=data["source"],
            degraded=data.get("degraded", False),
            approximated=data.get("approximated", False),
            cached=data.get("cached", False),
        )


# ──────────────────────────────────────────────
# Live price client
# ──────────────────────────────────────────────

class JupiterPriceClient:
    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds

    async def fetch_price(self, mint: str) -> Decimal:
        backoff = self.backoff_seconds
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await self.client.get(self.base_url, params={"ids": mint})
                if resp.status_code != 200:
                    raise PriceUnavailable(f"Jupiter API error: HTTP {resp.status_code}")
                try:
                    payload = resp.json()
                except ValueError as e:
                    raise PriceUnavailable(f"Jupiter API returned a non-JSON body: {e}") from e
                return self._parse_price(payload, mint)
            except (httpx.HTTPError, PriceUnavailable) as e:
                if attempt >= self.max_retries:
                    raise PriceUnavailable(f"Price for {mint} unavailable: {e}") from e
                logger.debug("Jupiter fetch for %s failed (attempt %d): %s", mint, attempt, e)
                await asyncio.sleep(backoff)
                backoff *= 2
        raise PriceUnavailable(f"Price for {mint} unavailable")

    @staticmethod
    def _parse_price(payload, mint: str) -> Decimal:
        data = payload.get("data") if isinstance(payload, dict) else None
        entry = data.get(mint) if isinstance(data, dict) else None
        if not isinstance(entry, dict) or entry.get("price") in (None, ""):
            raise PriceUnavailable("Price data not available")
        try:
            price = Decimal(str(entry["price"]))
        except InvalidOperation:
            raise PriceUnavailable(f"Malformed price for {mint}: {entry['price']!r}")
        if price <= 0:
            raise PriceUnavailable(f"Non-positive price for {mint}: {price}")
        return price


# ──────────────────────────────────────────────
# Caches
# ──────────────────────────────────────────────

class InMemoryPriceCache:
    """Process-local TTL cache of quotes keyed by asset."""

    def __init__(self, ttl_seconds: int = 60, clock: Clock = utcnow):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, PriceQuote] = {}

    async def get(self, key: str) -> Optional[PriceQuote]:
        quote = self._entries.get(key)
        if quote is None:
            return None
        if (self.clock() - quote.fetched_at).total_seconds() >= self.ttl_seconds:
            del self._entries[key]
            return None
        return quote

    async def set(self, key: str, quote: PriceQuote) -> None:
        self._entries[key] = quote


class RedisPriceCache:
    """Redis-backed quote cache; expiry is delegated to ``SET ... EX``."""

    def __init__(self, redis, ttl_seconds: int = 60, prefix: str = "price"):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}:current"

    async def get(self, key: str) -> Optional[PriceQuote]:
        try:
            raw = await self.redis.get(self._key(key))
            return PriceQuote.from_dict(json.loads(raw)) if raw else None
        except (RedisError, ValueError, KeyError, InvalidOperation) as e:
            raise PriceUnavailable(f"Price cache read for {key} failed: {e}") from e

    async def set(self, key: str, quote: PriceQuote) -> None:
        try:
            await self.redis.set(self._key(key), json.dumps(quote.to_dict()), ex=self.ttl_seconds)
        except RedisError as e:
            raise PriceUnavailable(f"Price cache write for {key} failed: {e}") from e


# ──────────────────────────────────────────────
# Price feed
# ──────────────────────────────────────────────

class PriceFeed:
    def __init__(
        self,
        client: JupiterPriceClient,
        cache,
        recency_seconds: int = 300,
        native_key: str = WRAPPED_SOL_MINT,
        clock: Clock = utcnow,
    ):
        self.client = client
        self.cache = cache
        self.recency_seconds = recency_seconds
        self.native_key = native_key
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    async def price_at(self, asset_key: Optional[str], block_time: int) -> PriceQuote:
        """Price ``asset_key`` (native asset when ``None``) for a transaction at ``block_time``.

        Recent transactions get the current quote as-is. Older ones get the
        current quote re-stamped ``as_of`` the block time and flagged
        ``approximated``.
        """
        key = asset_key or self.native_key
        quote = await self.current_price(key)
        age = self.clock().timestamp() - block_time
        if age < self.recency_seconds:
            return quote
        return replace(
            quote,
            as_of=datetime.fromtimestamp(block_time, tz=timezone.utc),
            approximated=True,
        )

    async def current_price(self, asset_key: Optional[str] = None) -> PriceQuote:
        key = asset_key or self.native_key
        cached = await self._cached(key)
        if cached is not None:
            return replace(cached, cached=True)

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another waiter may have refilled the key while we queued.
            cached = await self._cached(key)
            if cached is not None:
                return replace(cached, cached=True)

            now = self.clock()
            try:
                price = await self.client.fetch_price(key)
            except PriceUnavailable as e:
                logger.error("Price fetch for %s failed, degrading to zero: %s", key, e)
                return PriceQuote(
                    asset_key=key,
                    price_usd=Decimal("0"),
                    fetched_at=now,
                    as_of=now,
                    source=PRICE_SOURCE,
                    degraded=True,
                )

            quote = PriceQuote(
                asset_key=key,
                price_usd=price,
                fetched_at=now,
                as_of=now,
                source=PRICE_SOURCE,
            )
            await self._store(key, quote)
            return quote

    async def _cached(self, key: str) -> Optional[PriceQuote]:
        # An unreachable cache is a miss; the live fetch still decides degradation
        try:
            return await self.cache.get(key)
        except PriceUnavailable as e:
            logger.warning("%s", e)
            return None

    async def _store(self, key: str, quote: PriceQuote) -> None:
        try:
            await self.cache.set(key, quote)
        except PriceUnavailable as e:
            logger.warning("%s", e)

    async def current_prices(self, asset_keys: dict[str, str]) -> dict[str, PriceQuote]:
        """Current quotes for a ``{label: asset_key}`` mapping."""
        return {label: await self.current_price(key) for label, key in asset_keys.items()}
