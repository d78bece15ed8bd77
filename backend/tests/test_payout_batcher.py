from datetime import datetime, timezone
from decimal import Decimal
import pytest
from sqlalchemy import select
from spare_change.errors import BatchNotFound, InvalidBatchTransition, NoUnprocessedTransactions, WalletNotFound
from spare_change.models import WalletAccount, LedgerTransaction
from conftest import WALLET


async def _seed(sessionmaker, spares, accumulated=None):
    """Wallet with one unprocessed ledger row per USD spare amount."""
    total = sum((Decimal(s) for s in spares), Decimal("0"))
    async with sessionmaker() as db:
        async with db.begin():
            db.add(WalletAccount(
                address=WALLET,
                current_accumulated_usd=total if accumulated is None else Decimal(accumulated),
                current_accumulated_native=total,
                lifetime_accumulated_usd=total,
                lifetime_accumulated_native=total,
                total_payouts=0,
            ))
            for i, spare in enumerate(spares):
                db.add(LedgerTransaction(
                    wallet_address=WALLET,
                    signature=f"sig{i}",
                    timestamp=datetime(2026, 1, 1, 12, i, tzinfo=timezone.utc),
                    slot=i,
                    original_amount_native=Decimal("1") - Decimal(spare),
                    original_amount_usd=Decimal("1") - Decimal(spare),
                    spare_change_native=Decimal(spare),
                    spare_change_usd=Decimal(spare),
                    price_used=Decimal("1"),
                    price_source="jupiter",
                    price_degraded=False,
                    is_processed=False,
                ))


@pytest.mark.asyncio
async def test_batch_totals_match_member_rows(batcher, sessionmaker):
    await _seed(sessionmaker, ["0.25", "0.5", "0.375"])

    batch = await batcher.create_batch(WALLET)

    assert batch.status == "pending"
    assert batch.transaction_count == 3
    assert batch.total_spare_change_usd == Decimal("1.125")
    members = await batcher.batch_members(batch.id)
    assert len(members) == batch.transaction_count
    assert sum(Decimal(m.spare_change_usd) for m in members) == batch.total_spare_change_usd

    async with sessionmaker() as db:
        wallet = await db.scalar(select(WalletAccount).where(WalletAccount.address == WALLET))
    assert wallet.current_accumulated_usd == 0
    assert wallet.total_payouts == 1


@pytest.mark.asyncio
async def test_below_threshold_creates_nothing(batcher, sessionmaker):
    await _seed(sessionmaker, ["0.25"])
    assert await batcher.create_batch_if_due(WALLET) is None
    assert await batcher.list_batches(WALLET) == []


@pytest.mark.asyncio
async def test_rows_belong_to_one_batch_only(batcher, sessionmaker):
    await _seed(sessionmaker, ["0.6", "0.6"])
    first = await batcher.create_batch(WALLET)

    async with sessionmaker() as db:
        async with db.begin():
            wallet = await db.scalar(select(WalletAccount).where(WalletAccount.address == WALLET))
            wallet.current_accumulated_usd = Decimal("0.9")
            db.add(LedgerTransaction(
                wallet_address=WALLET,
                signature="late",
                timestamp=datetime(2026, 1, 2, tzinfo=timezone.utc),
                original_amount_native=Decimal("0.1"),
                original_amount_usd=Decimal("0.1"),
                spare_change_native=Decimal("0.9"),
                spare_change_usd=Decimal("0.9"),
                price_used=Decimal("1"),
                price_source="jupiter",
            ))
    second = await batcher.create_batch(WALLET)

    first_members = {m.signature for m in await batcher.batch_members(first.id)}
    second_members = {m.signature for m in await batcher.batch_members(second.id)}
    assert first_members == {"sig0", "sig1"}
    assert second_members == {"late"}
    assert [b.id for b in await batcher.list_batches(WALLET)] == [second.id, first.id]


@pytest.mark.asyncio
async def test_drift_without_rows_is_an_error(batcher, sessionmaker):
    await _seed(sessionmaker, [], accumulated="5")
    with pytest.raises(NoUnprocessedTransactions):
        await batcher.create_batch_if_due(WALLET)

    async with sessionmaker() as db:
        wallet = await db.scalar(select(WalletAccount).where(WalletAccount.address == WALLET))
    assert wallet.current_accumulated_usd == Decimal("5")


@pytest.mark.asyncio
async def test_unknown_wallet(batcher):
    with pytest.raises(WalletNotFound):
        await batcher.create_batch(WALLET)


@pytest.mark.asyncio
async def test_status_lifecycle(batcher, sessionmaker):
    await _seed(sessionmaker, ["1.5"])
    batch = await batcher.create_batch(WALLET)

    processing = await batcher.transition(batch.id, "processing")
    assert processing.status == "processing"
    assert processing.processed_at is None

    done = await batcher.transition(batch.id, "completed", execution_signature="5xPayout")
    assert done.status == "completed"
    assert done.execution_signature == "5xPayout"
    assert done.processed_at is not None


@pytest.mark.asyncio
async def test_failed_execution_records_error(batcher, sessionmaker):
    await _seed(sessionmaker, ["1.5"])
    batch = await batcher.create_batch(WALLET)
    await batcher.transition(batch.id, "processing")

    failed = await batcher.transition(batch.id, "failed", error="insufficient funds")
    assert failed.status == "failed"
    assert failed.execution_error == "insufficient funds"


@pytest.mark.asyncio
@pytest.mark.parametrize("path", [
    ["completed"],
    ["failed"],
    ["processing", "pending"],
    ["processing", "completed", "failed"],
    ["bogus"],
])
async def test_invalid_transitions(batcher, sessionmaker, path):
    await _seed(sessionmaker, ["1.5"])
    batch = await batcher.create_batch(WALLET)

    with pytest.raises(InvalidBatchTransition):
        for status in path:
            await batcher.transition(batch.id, status)


@pytest.mark.asyncio
async def test_transition_unknown_batch(batcher):
    with pytest.raises(BatchNotFound):
        await batcher.transition(999, "processing")
