from fastapi import APIRouter, Depends, Query
from spare_change.core.deps import get_batcher, get_wallet_service
from spare_change.schemas.batch import BatchStatusRequest
from spare_change.schemas.common import ok, dump, dump_all
from spare_change.schemas.wallet import PayoutBatchOut, LedgerTransactionOut
from spare_change.services.payout_batcher import PayoutBatcher
from spare_change.services.wallet_service import WalletService

router = APIRouter(prefix="/api/batches", tags=["batches"])


@router.get("")
async def list_batches(
    address: str = Query(..., min_length=1),
    limit: int = Query(50, gt=0, le=200),
    batcher: PayoutBatcher = Depends(get_batcher),
    wallets: WalletService = Depends(get_wallet_service),
):
    await wallets.require_wallet(address)
    batches = await batcher.list_batches(address, limit=limit)
    return ok(dump_all(PayoutBatchOut, batches))


@router.get("/{batch_id}/transactions")
async def batch_transactions(batch_id: int, batcher: PayoutBatcher = Depends(get_batcher)):
    rows = await batcher.batch_members(batch_id)
    return ok(dump_all(LedgerTransactionOut, rows))


@router.post("/{batch_id}/status")
async def update_batch_status(
    batch_id: int,
    body: BatchStatusRequest,
    batcher: PayoutBatcher = Depends(get_batcher),
):
    """Record progress of the external payout execution for a batch."""
    batch = await batcher.transition(
        batch_id,
        body.status.value,
        execution_signature=body.execution_signature,
        error=body.error,
    )
    return ok(dump(PayoutBatchOut, batch))
