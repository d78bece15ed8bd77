"""Explicit wiring of settings, infrastructure and services, built once at startup."""
from dataclasses import dataclass
from typing import Optional
import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from spare_change.config import Settings
from spare_change.core.redis import build_redis
from spare_change.database import build_engine, build_sessionmaker
from spare_change.services.payout_batcher import PayoutBatcher
from spare_change.services.price_feed import InMemoryPriceCache, JupiterPriceClient, PriceFeed, RedisPriceCache
from spare_change.services.proposal_engine import ProposalEngine
from spare_change.services.transaction_source import SolanaTransactionSource
from spare_change.services.transaction_tracker import TransactionTracker
from spare_change.services.wallet_service import WalletService


@dataclass
class Container:
    settings: Settings
    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]
    http_client: httpx.AsyncClient
    price_feed: PriceFeed
    source: SolanaTransactionSource
    proposal_engine: ProposalEngine
    batcher: PayoutBatcher
    tracker: TransactionTracker
    wallets: WalletService
    redis: Optional[object] = None

    async def close(self) -> None:
        await self.http_client.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        await self.engine.dispose()


def build_container(
    settings: Settings,
    engine: Optional[AsyncEngine] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    source=None,
    price_feed: Optional[PriceFeed] = None,
) -> Container:
    engine = engine or build_engine(settings.DATABASE_URL)
    sessionmaker = build_sessionmaker(engine)
    http_client = http_client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

    redis = None
    if price_feed is None:
        if settings.REDIS_URL:
            redis = build_redis(settings.REDIS_URL)
            cache = RedisPriceCache(redis, ttl_seconds=settings.PRICE_CACHE_TTL_SECONDS)
        else:
            cache = InMemoryPriceCache(ttl_seconds=settings.PRICE_CACHE_TTL_SECONDS)
        price_feed = PriceFeed(
            client=JupiterPriceClient(
                settings.JUPITER_API_URL,
                http_client,
                max_retries=settings.FETCH_MAX_RETRIES,
                backoff_seconds=settings.FETCH_BACKOFF_SECONDS,
            ),
            cache=cache,
            recency_seconds=settings.PRICE_RECENCY_SECONDS,
        )

    if source is None:
        source = SolanaTransactionSource(
            settings.rpc_url,
            http_client,
            request_delay=settings.RPC_REQUEST_DELAY_SECONDS,
            max_retries=settings.FETCH_MAX_RETRIES,
            backoff_seconds=settings.FETCH_BACKOFF_SECONDS,
        )

    batcher = PayoutBatcher(sessionmaker, threshold_usd=settings.PAYOUT_THRESHOLD_USD)
    tracker = TransactionTracker(
        sessionmaker,
        source,
        price_feed,
        batcher,
        lookback_days=settings.LOOKBACK_DAYS,
        fetch_limit=settings.SYNC_FETCH_LIMIT,
    )
    return Container(
        settings=settings,
        engine=engine,
        sessionmaker=sessionmaker,
        http_client=http_client,
        price_feed=price_feed,
        source=source,
        proposal_engine=ProposalEngine(price_feed),
        batcher=batcher,
        tracker=tracker,
        wallets=WalletService(sessionmaker, source, threshold_usd=settings.PAYOUT_THRESHOLD_USD),
        redis=redis,
    )
