import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from spare_change.errors import (
    BatchNotFound,
    InvalidBatchTransition,
    NoUnprocessedTransactions,
    PersistenceFailure,
    WalletNotFound,
)
from spare_change.models import WalletAccount, LedgerTransaction, PayoutBatch, BatchStatus, BATCH_TRANSITIONS

logger = logging.getLogger(__name__)


class PayoutBatcher:
    """Groups a wallet's unprocessed ledger rows into a payout batch.

    Batch insert, row marking and accumulator reset happen in one database
    transaction with the wallet row locked, so no reader sees a batch without
    its members or a reset accumulator without a batch.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], threshold_usd: Decimal = Decimal("1.00")):
        self.sessionmaker = sessionmaker
        self.threshold_usd = Decimal(threshold_usd)

    async def create_batch(self, wallet_address: str) -> PayoutBatch:
        return await self._create(wallet_address, threshold_usd=None)

    async def create_batch_if_due(self, wallet_address: str) -> Optional[PayoutBatch]:
        """Create a batch only if the accumulator is at or above the threshold."""
        return await self._create(wallet_address, threshold_usd=self.threshold_usd)

    async def _create(self, wallet_address: str, threshold_usd: Optional[Decimal]) -> Optional[PayoutBatch]:
        try:
            async with self.sessionmaker() as db:
                async with db.begin():
                    wallet = await db.scalar(
                        select(WalletAccount).where(WalletAccount.address == wallet_address).with_for_update()
                    )
                    if not wallet:
                        raise WalletNotFound(f"Wallet {wallet_address} is not registered")
                    if threshold_usd is not None and Decimal(wallet.current_accumulated_usd) < threshold_usd:
                        return None

                    rows = list(await db.scalars(
                        select(LedgerTransaction)
                        .where(
                            LedgerTransaction.wallet_address == wallet_address,
                            LedgerTransaction.is_processed == False,  # noqa: E712
                        )
                        .order_by(LedgerTransaction.timestamp, LedgerTransaction.id)
                        .with_for_update()
                    ))
                    if not rows:
                        raise NoUnprocessedTransactions(
                            f"Accumulator for {wallet_address} is {wallet.current_accumulated_usd} USD "
                            "but no unprocessed transactions were found"
                        )

                    total_usd = sum((Decimal(r.spare_change_usd) for r in rows), Decimal("0"))
                    total_native = sum((Decimal(r.spare_change_native) for r in rows), Decimal("0"))
                    batch = PayoutBatch(
                        wallet_address=wallet_address,
                        total_spare_change_usd=total_usd,
                        total_spare_change_native=total_native,
                        transaction_count=len(rows),
                        status=BatchStatus.pending.value,
                    )
                    db.add(batch)
                    await db.flush()

                    for row in rows:
                        row.is_processed = True
                        row.batch_id = batch.id

                    wallet.current_accumulated_usd = Decimal("0")
                    wallet.current_accumulated_native = Decimal("0")
                    wallet.total_payouts = (wallet.total_payouts or 0) + 1
                    await db.flush()
                    await db.refresh(batch)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Error creating payout batch for {wallet_address}: {e}") from e

        logger.info(
            "Payout batch %s created for %s: %d transactions, %s USD",
            batch.id, wallet_address, batch.transaction_count, batch.total_spare_change_usd,
        )
        return batch

    async def transition(
        self,
        batch_id: int,
        status: str,
        execution_signature: Optional[str] = None,
        error: Optional[str] = None,
    ) -> PayoutBatch:
        """Move a batch along pending -> processing -> completed | failed."""
        try:
            target = BatchStatus(status)
        except ValueError:
            raise InvalidBatchTransition(f"Unknown batch status: {status}")

        try:
            async with self.sessionmaker() as db:
                async with db.begin():
                    batch = await db.get(PayoutBatch, batch_id, with_for_update=True)
                    if not batch:
                        raise BatchNotFound(f"Payout batch {batch_id} not found")
                    current = BatchStatus(batch.status)
                    if target not in BATCH_TRANSITIONS[current]:
                        raise InvalidBatchTransition(
                            f"Batch {batch_id} cannot move from {current.value} to {target.value}"
                        )
                    batch.status = target.value
                    if execution_signature:
                        batch.execution_signature = execution_signature
                    if error:
                        batch.execution_error = error[:500]
                    if target in (BatchStatus.completed, BatchStatus.failed):
                        batch.processed_at = datetime.now(timezone.utc)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Error updating payout batch {batch_id}: {e}") from e

        logger.info("Payout batch %s moved %s -> %s", batch_id, current.value, target.value)
        return batch

    async def list_batches(self, wallet_address: str, limit: int = 50) -> list[PayoutBatch]:
        async with self.sessionmaker() as db:
            return list(await db.scalars(
                select(PayoutBatch)
                .where(PayoutBatch.wallet_address == wallet_address)
                .order_by(PayoutBatch.created_at.desc(), PayoutBatch.id.desc())
                .limit(limit)
            ))

    async def batch_members(self, batch_id: int) -> list[LedgerTransaction]:
        async with self.sessionmaker() as db:
            return list(await db.scalars(
                select(LedgerTransaction)
                .where(LedgerTransaction.batch_id == batch_id)
                .order_by(LedgerTransaction.timestamp, LedgerTransaction.id)
            ))
