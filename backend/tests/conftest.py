import time
from decimal import Decimal
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from spare_change.database import build_engine, build_sessionmaker, create_all
from spare_change.errors import UpstreamFetchFailure
from spare_change.services.payout_batcher import PayoutBatcher
from spare_change.services.price_feed import InMemoryPriceCache, PriceFeed
from spare_change.services.transaction_source import SourceTransaction
from spare_change.services.transaction_tracker import TransactionTracker
from spare_change.services.wallet_service import WalletService

WALLET = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
OTHER_WALLET = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"


def make_tx(signature, amount, direction="sent", success=True, block_time=None, token_mint=None):
    return SourceTransaction(
        signature=signature,
        slot=1000,
        block_time=block_time or int(time.time()) - 60,
        success=success,
        direction=direction,
        amount=Decimal(str(amount)) if amount is not None else None,
        token_mint=token_mint,
        fee=5000,
    )


class FakeSource:
    """In-memory transaction source; ``transactions`` is newest-first."""

    def __init__(self, transactions=None):
        self.transactions = list(transactions or [])
        self.calls = []
        self.error = None

    def push(self, *txs):
        # New transactions land at the head of the newest-first window
        self.transactions = list(txs) + self.transactions

    async def fetch(self, address, lookback_days=30, limit=1000):
        self.calls.append((address, lookback_days, limit))
        if self.error:
            raise self.error
        return self.transactions[:limit]


def make_price_client(price="1.00"):
    client = MagicMock()
    client.fetch_price = AsyncMock(return_value=Decimal(price))
    return client


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def price_client():
    return make_price_client("1.00")


@pytest.fixture
def price_feed(price_client):
    return PriceFeed(price_client, InMemoryPriceCache(ttl_seconds=60))


@pytest.fixture
def batcher(sessionmaker):
    return PayoutBatcher(sessionmaker, threshold_usd=Decimal("1.00"))


@pytest.fixture
def tracker(sessionmaker, source, price_feed, batcher):
    return TransactionTracker(sessionmaker, source, price_feed, batcher, lookback_days=30, fetch_limit=100)


@pytest.fixture
def wallets(sessionmaker, source):
    return WalletService(sessionmaker, source, threshold_usd=Decimal("1.00"))


@pytest.fixture
def failing_fetch():
    return UpstreamFetchFailure("Failed to fetch transactions: RPC unavailable")
