"""
transaction_tracker.py
Incremental sync of a wallet's outgoing transactions into the spare-change ledger.

One sync:
  1. load the wallet
  2. fetch a bounded newest-first window from the transaction source
  3. keep the prefix newer than ``last_seen_signature`` (the whole window if
     the pointer is not in it; the ledger's unique key absorbs repeats)
  4. record a round-up ledger row per outgoing payment, bumping the accumulator
     in the same database transaction
  5. move the pointer once
  6. hand off to the batcher if the accumulator reached the payout threshold

Syncs of the same wallet are serialized by a per-wallet asyncio lock; every
accumulator write also locks the wallet row.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from spare_change.errors import PersistenceFailure, SpareChangeError, WalletNotFound
from spare_change.models import WalletAccount, LedgerTransaction, PayoutBatch
from spare_change.services.address import validate_address
from spare_change.services.payout_batcher import PayoutBatcher
from spare_change.services.price_feed import PriceFeed
from spare_change.services.proposal_engine import round_up_spare_change, to_usd
from spare_change.services.transaction_source import SourceTransaction

logger = logging.getLogger(__name__)


class WalletLocks:
    """Registry of one asyncio lock per wallet address."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, address: str):
        lock = self._locks.setdefault(address, asyncio.Lock())
        async with lock:
            yield

    def is_locked(self, address: str) -> bool:
        lock = self._locks.get(address)
        return lock is not None and lock.locked()


@dataclass
class SyncResult:
    new_transactions: list[LedgerTransaction] = field(default_factory=list)
    batches_created: list[PayoutBatch] = field(default_factory=list)
    failed_signatures: list[str] = field(default_factory=list)
    pointer_found: bool = True

    @property
    def new_transaction_count(self) -> int:
        return len(self.new_transactions)

    @property
    def payout_triggered(self) -> bool:
        return bool(self.batches_created)


def filter_new_transactions(
    transactions: Sequence[SourceTransaction],
    last_signature: Optional[str],
) -> tuple[list[SourceTransaction], bool]:
    """Return the transactions newer than ``last_signature`` and whether it was found.

    ``transactions`` is newest-first, so the new ones are the prefix before the
    pointer. A missing pointer yields the whole window.
    """
    if not last_signature:
        return list(transactions), True
    for i, tx in enumerate(transactions):
        if tx.signature == last_signature:
            return list(transactions[:i]), True
    return list(transactions), False


def next_pointer(new: Sequence[SourceTransaction], failed: set[str]) -> Optional[SourceTransaction]:
    """Newest transaction the pointer may move to without skipping a failed row.

    With failures the pointer stops just below the oldest failed transaction
    so the next sync retries it; ``None`` keeps the current pointer.
    """
    if not new:
        return None
    if not failed:
        return new[0]
    oldest_failed = max(i for i, tx in enumerate(new) if tx.signature in failed)
    if oldest_failed + 1 < len(new):
        return new[oldest_failed + 1]
    return None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TransactionTracker:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        source,
        price_feed: PriceFeed,
        batcher: PayoutBatcher,
        lookback_days: int = 30,
        fetch_limit: int = 100,
        locks: Optional[WalletLocks] = None,
    ):
        self.sessionmaker = sessionmaker
        self.source = source
        self.price_feed = price_feed
        self.batcher = batcher
        self.lookback_days = lookback_days
        self.fetch_limit = fetch_limit
        self.locks = locks or WalletLocks()

    async def sync_transactions(self, wallet_address: str) -> SyncResult:
        validate_address(wallet_address)

        async with self.locks.hold(wallet_address):
            wallet = await self._load_wallet(wallet_address)
            transactions = await self.source.fetch(wallet_address, self.lookback_days, self.fetch_limit)

            new, found = filter_new_transactions(transactions, wallet.last_seen_signature)
            result = SyncResult(pointer_found=found)
            if not found:
                logger.warning(
                    "Pointer %s for %s not in the fetched window of %d; reprocessing the whole window",
                    wallet.last_seen_signature, wallet_address, len(transactions),
                )

            if new:
                await self._record_all(wallet_address, new, result)
                pointer = next_pointer(new, set(result.failed_signatures))
                if pointer is not None:
                    await self._advance_pointer(wallet_address, pointer)

            batch = await self.batcher.create_batch_if_due(wallet_address)
            if batch is not None:
                result.batches_created.append(batch)
                # The batch consumed every unprocessed row, including this sync's
                for row in result.new_transactions:
                    row.is_processed = True
                    row.batch_id = batch.id

        logger.info(
            "Synced %s: %d new ledger rows, %d failed, payout=%s",
            wallet_address, result.new_transaction_count, len(result.failed_signatures), result.payout_triggered,
        )
        return result

    async def sync_all(self) -> dict[str, int]:
        """Sync every registered wallet; one wallet's failure does not stop the rest."""
        async with self.sessionmaker() as db:
            addresses = list(await db.scalars(select(WalletAccount.address).order_by(WalletAccount.id)))

        summary = {"wallets": len(addresses), "synced": 0, "failed": 0, "new_transactions": 0, "batches": 0}
        for address in addresses:
            try:
                result = await self.sync_transactions(address)
            except SpareChangeError as e:
                logger.error("Scheduled sync for %s failed (%s): %s", address, e.kind, e.message)
                summary["failed"] += 1
                continue
            summary["synced"] += 1
            summary["new_transactions"] += result.new_transaction_count
            summary["batches"] += len(result.batches_created)
        return summary

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _load_wallet(self, wallet_address: str) -> WalletAccount:
        async with self.sessionmaker() as db:
            wallet = await db.scalar(select(WalletAccount).where(WalletAccount.address == wallet_address))
        if not wallet:
            raise WalletNotFound(f"Wallet {wallet_address} not found. Please connect wallet first.")
        return wallet

    async def _record_all(self, wallet_address: str, new: list[SourceTransaction], result: SyncResult) -> None:
        payments = [tx for tx in new if tx.is_outgoing_payment]
        if not payments:
            return
        known = await self._known_signatures(wallet_address, [tx.signature for tx in payments])

        for tx in payments:
            if tx.signature in known:
                logger.debug("Transaction %s already recorded for %s", tx.signature, wallet_address)
                continue
            try:
                row = await self._record(wallet_address, tx)
            except PersistenceFailure as e:
                logger.error("Skipping transaction %s for %s: %s", tx.signature, wallet_address, e.message)
                result.failed_signatures.append(tx.signature)
                continue
            if row is not None:
                result.new_transactions.append(row)

    async def _known_signatures(self, wallet_address: str, signatures: list[str]) -> set[str]:
        async with self.sessionmaker() as db:
            rows = await db.scalars(
                select(LedgerTransaction.signature).where(
                    LedgerTransaction.wallet_address == wallet_address,
                    LedgerTransaction.signature.in_(signatures),
                )
            )
            return set(rows)

    async def _record(self, wallet_address: str, tx: SourceTransaction) -> Optional[LedgerTransaction]:
        """Persist one ledger row and bump the accumulator; ``None`` if already recorded."""
        quote = await self.price_feed.price_at(tx.token_mint, tx.block_time)
        spare_native = round_up_spare_change(tx.amount)
        spare_usd = to_usd(spare_native, quote.price_usd)
        if quote.degraded:
            logger.warning("Recording %s with a degraded zero price", tx.signature)

        try:
            async with self.sessionmaker() as db:
                async with db.begin():
                    wallet = await db.scalar(
                        select(WalletAccount).where(WalletAccount.address == wallet_address).with_for_update()
                    )
                    if not wallet:
                        raise WalletNotFound(f"Wallet {wallet_address} not found")
                    exists = await db.scalar(
                        select(LedgerTransaction.id).where(
                            LedgerTransaction.wallet_address == wallet_address,
                            LedgerTransaction.signature == tx.signature,
                        )
                    )
                    if exists:
                        return None

                    row = LedgerTransaction(
                        wallet_address=wallet_address,
                        signature=tx.signature,
                        timestamp=tx.timestamp,
                        slot=tx.slot,
                        token_mint=tx.token_mint,
                        original_amount_native=tx.amount,
                        original_amount_usd=to_usd(tx.amount, quote.price_usd),
                        spare_change_native=spare_native,
                        spare_change_usd=spare_usd,
                        price_used=quote.price_usd,
                        price_source=quote.source,
                        price_degraded=quote.degraded,
                        is_processed=False,
                    )
                    db.add(row)
                    await db.flush()

                    wallet.current_accumulated_usd = Decimal(wallet.current_accumulated_usd) + spare_usd
                    wallet.current_accumulated_native = Decimal(wallet.current_accumulated_native) + spare_native
                    wallet.lifetime_accumulated_usd = Decimal(wallet.lifetime_accumulated_usd) + spare_usd
                    wallet.lifetime_accumulated_native = Decimal(wallet.lifetime_accumulated_native) + spare_native
                    await db.flush()
                    await db.refresh(row)
        except IntegrityError:
            # A concurrent writer recorded the same signature first
            logger.info("Transaction %s already recorded for %s", tx.signature, wallet_address)
            return None
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Error storing transaction {tx.signature}: {e}") from e
        return row

    async def _advance_pointer(self, wallet_address: str, tx: SourceTransaction) -> None:
        try:
            async with self.sessionmaker() as db:
                async with db.begin():
                    wallet = await db.scalar(
                        select(WalletAccount).where(WalletAccount.address == wallet_address).with_for_update()
                    )
                    if not wallet or wallet.last_seen_signature == tx.signature:
                        return
                    last_seen_at = _as_utc(wallet.last_seen_at)
                    if last_seen_at is not None and tx.timestamp < last_seen_at:
                        logger.warning(
                            "Not moving pointer for %s back from %s to %s",
                            wallet_address, wallet.last_seen_signature, tx.signature,
                        )
                        return
                    wallet.last_seen_signature = tx.signature
                    wallet.last_seen_at = tx.timestamp
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Error updating last transaction for {wallet_address}: {e}") from e
