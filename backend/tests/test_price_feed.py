import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError
from spare_change.config import WRAPPED_SOL_MINT
from spare_change.errors import PriceUnavailable
from spare_change.services.price_feed import (
    InMemoryPriceCache,
    JupiterPriceClient,
    PriceFeed,
    PriceQuote,
    RedisPriceCache,
)
from conftest import make_price_client

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


class Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def _feed(price="150", ttl=60):
    clock = Clock()
    client = make_price_client(price)
    feed = PriceFeed(client, InMemoryPriceCache(ttl_seconds=ttl, clock=clock), clock=clock)
    return feed, client, clock


def _response(status_code=200, payload=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    return resp


@pytest.mark.asyncio
async def test_recent_block_time_gets_fresh_quote():
    feed, client, clock = _feed()
    quote = await feed.price_at(None, int(clock().timestamp()) - 30)

    assert quote.price_usd == Decimal("150")
    assert quote.asset_key == WRAPPED_SOL_MINT
    assert quote.source == "jupiter"
    assert quote.approximated is False
    assert quote.as_of == clock()
    client.fetch_price.assert_awaited_once_with(WRAPPED_SOL_MINT)


@pytest.mark.asyncio
async def test_old_block_time_is_flagged_approximated():
    feed, _, clock = _feed()
    block_time = int(clock().timestamp()) - 3600
    quote = await feed.price_at(USDC, block_time)

    assert quote.approximated is True
    assert quote.as_of == datetime.fromtimestamp(block_time, tz=timezone.utc)
    assert quote.fetched_at == clock()


@pytest.mark.asyncio
async def test_cache_serves_within_ttl_and_refetches_once_after_expiry():
    feed, client, clock = _feed(ttl=60)

    await feed.current_price(USDC)
    cached = await feed.current_price(USDC)
    assert cached.cached is True
    assert client.fetch_price.await_count == 1

    clock.advance(61)
    await feed.current_price(USDC)
    await feed.current_price(USDC)
    assert client.fetch_price.await_count == 2


@pytest.mark.asyncio
async def test_concurrent_misses_issue_one_fetch():
    feed, client, _ = _feed()

    async def slow_fetch(mint):
        await asyncio.sleep(0.01)
        return Decimal("150")

    client.fetch_price.side_effect = slow_fetch
    quotes = await asyncio.gather(*(feed.current_price(USDC) for _ in range(5)))

    assert client.fetch_price.await_count == 1
    assert {q.price_usd for q in quotes} == {Decimal("150")}


@pytest.mark.asyncio
async def test_failed_fetch_degrades_to_zero_and_is_not_cached():
    feed, client, _ = _feed()
    client.fetch_price.side_effect = PriceUnavailable("Jupiter API error: HTTP 503")

    quote = await feed.current_price(USDC)
    assert quote.degraded is True
    assert quote.price_usd == 0
    assert quote.source == "jupiter"

    client.fetch_price.side_effect = None
    client.fetch_price.return_value = Decimal("1.0001")
    quote = await feed.current_price(USDC)
    assert quote.degraded is False
    assert quote.price_usd == Decimal("1.0001")


@pytest.mark.asyncio
async def test_current_prices_by_label():
    feed, _, _ = _feed("2")
    quotes = await feed.current_prices({"sol": WRAPPED_SOL_MINT, "usdc": USDC})
    assert set(quotes) == {"sol", "usdc"}
    assert quotes["usdc"].asset_key == USDC


@pytest.mark.asyncio
async def test_jupiter_client_parses_price():
    http = AsyncMock()
    http.get = AsyncMock(return_value=_response(200, {"data": {USDC: {"id": USDC, "price": "0.9998"}}}))
    client = JupiterPriceClient("https://api.jup.ag/price/v2/", http, max_retries=1)

    price = await client.fetch_price(USDC)

    assert price == Decimal("0.9998")
    http.get.assert_awaited_once_with("https://api.jup.ag/price/v2", params={"ids": USDC})


@pytest.mark.asyncio
async def test_jupiter_client_retries_then_raises():
    http = AsyncMock()
    http.get = AsyncMock(side_effect=httpx.ConnectError("boom"))
    client = JupiterPriceClient("https://api.jup.ag/price/v2", http, max_retries=3, backoff_seconds=0)

    with pytest.raises(PriceUnavailable):
        await client.fetch_price(USDC)
    assert http.get.await_count == 3


@pytest.mark.asyncio
async def test_jupiter_client_recovers_after_transient_error():
    http = AsyncMock()
    http.get = AsyncMock(side_effect=[
        _response(503, None),
        _response(200, {"data": {USDC: {"price": "1.0"}}}),
    ])
    client = JupiterPriceClient("https://api.jup.ag/price/v2", http, max_retries=3, backoff_seconds=0)
    assert await client.fetch_price(USDC) == Decimal("1.0")


@pytest.mark.asyncio
async def test_jupiter_client_missing_price():
    http = AsyncMock()
    http.get = AsyncMock(return_value=_response(200, {"data": {USDC: None}}))
    client = JupiterPriceClient("https://api.jup.ag/price/v2", http, max_retries=1)
    with pytest.raises(PriceUnavailable):
        await client.fetch_price(USDC)


@pytest.mark.asyncio
async def test_redis_cache_roundtrip_with_ttl():
    redis = AsyncMock()
    cache = RedisPriceCache(redis, ttl_seconds=60)
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    quote = PriceQuote(asset_key=USDC, price_usd=Decimal("1.0"), fetched_at=now, source="jupiter", as_of=now)

    await cache.set(USDC, quote)
    key, value = redis.set.await_args.args
    assert key == f"price:{USDC}:current"
    assert redis.set.await_args.kwargs == {"ex": 60}

    redis.get = AsyncMock(return_value=value)
    assert await cache.get(USDC) == quote
    assert json.loads(value)["price_usd"] == "1.0"


@pytest.mark.asyncio
async def test_redis_cache_miss():
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    assert await RedisPriceCache(redis).get(USDC) is None


@pytest.mark.asyncio
async def test_non_json_body_degrades_instead_of_raising():
    resp = _response(200, None)
    resp.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
    http = AsyncMock()
    http.get = AsyncMock(return_value=resp)
    clock = Clock()
    client = JupiterPriceClient("https://api.jup.ag/price/v2", http, max_retries=2, backoff_seconds=0)
    feed = PriceFeed(client, InMemoryPriceCache(clock=clock), clock=clock)

    quote = await feed.price_at(None, int(clock().timestamp()))

    assert quote.degraded is True
    assert quote.price_usd == 0
    assert http.get.await_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [[{"price": "1.0"}], {"data": [USDC]}, {"data": {USDC: "1.0"}}, "oops"])
async def test_unexpected_payload_shape_is_unavailable(payload):
    http = AsyncMock()
    http.get = AsyncMock(return_value=_response(200, payload))
    client = JupiterPriceClient("https://api.jup.ag/price/v2", http, max_retries=1)
    with pytest.raises(PriceUnavailable):
        await client.fetch_price(USDC)


@pytest.mark.asyncio
async def test_redis_outage_falls_back_to_live_price():
    redis = AsyncMock()
    redis.get = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
    redis.set = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
    client = make_price_client("150")
    feed = PriceFeed(client, RedisPriceCache(redis, ttl_seconds=60))

    quote = await feed.current_price(USDC)

    assert quote.price_usd == Decimal("150")
    assert quote.degraded is False
    client.fetch_price.assert_awaited_once_with(USDC)


@pytest.mark.asyncio
async def test_redis_outage_and_failed_fetch_degrade():
    redis = AsyncMock()
    redis.get = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
    client = make_price_client()
    client.fetch_price.side_effect = PriceUnavailable("down")
    feed = PriceFeed(client, RedisPriceCache(redis))

    quote = await feed.current_price(USDC)
    assert quote.degraded is True
    assert quote.price_usd == 0
