from fastapi import APIRouter, Depends, Query
from spare_change.core.deps import get_tracker, get_wallet_service
from spare_change.schemas.common import ok, dump, dump_all
from spare_change.schemas.wallet import (
    WalletAddressRequest,
    PreferencesUpdateRequest,
    WalletOut,
    PreferencesOut,
    LedgerTransactionOut,
    PayoutBatchOut,
)
from spare_change.services.transaction_tracker import TransactionTracker
from spare_change.services.wallet_service import WalletService

router = APIRouter(prefix="/api/wallet", tags=["wallet"])


def _summary(status: dict) -> dict:
    return {
        "current_accumulated": {
            "usd": str(status["current_accumulated_usd"]),
            "native": str(status["current_accumulated_native"]),
        },
        "lifetime_total": {
            "usd": str(status["lifetime_accumulated_usd"]),
            "native": str(status["lifetime_accumulated_native"]),
        },
        "pending_transaction_count": status["pending_transaction_count"],
        "ready_for_payout": status["ready_for_payout"],
        "next_payout_at": str(status["next_payout_at"]),
    }


@router.post("/connect")
async def connect_wallet(
    body: WalletAddressRequest,
    wallets: WalletService = Depends(get_wallet_service),
):
    result = await wallets.connect_wallet(body.wallet_address)
    wallet = result.wallet
    return ok({
        "wallet": dump(WalletOut, wallet),
        "is_first_time": result.is_first_time,
        "last_transaction": {
            "signature": wallet.last_seen_signature,
            "timestamp": wallet.last_seen_at.isoformat() if wallet.last_seen_at else None,
        } if wallet.last_seen_signature else None,
        "message": "Welcome! Your wallet has been connected and tracking has started."
        if result.is_first_time else "Welcome back! Your wallet is connected.",
    })


@router.post("/sync")
async def sync_wallet(
    body: WalletAddressRequest,
    tracker: TransactionTracker = Depends(get_tracker),
    wallets: WalletService = Depends(get_wallet_service),
):
    """Pull new outgoing transactions into the ledger and batch if the threshold is reached."""
    result = await tracker.sync_transactions(body.wallet_address)
    status = await wallets.wallet_status(body.wallet_address)

    if result.payout_triggered:
        total = sum(b.total_spare_change_usd for b in result.batches_created)
        message = (
            f"Processed {result.new_transaction_count} new transaction(s). "
            f"Payout batch created for ${total:.2f}!"
        )
    elif result.new_transaction_count == 0:
        message = "No new transactions found."
    else:
        message = f"Processed {result.new_transaction_count} new transaction(s)."

    return ok({
        "new_transaction_count": result.new_transaction_count,
        "new_transactions": dump_all(LedgerTransactionOut, result.new_transactions),
        "payout_triggered": result.payout_triggered,
        "batches_created": dump_all(PayoutBatchOut, result.batches_created),
        "failed_signatures": result.failed_signatures,
        "user": _summary(status),
        "message": message,
    })


@router.get("/status")
async def wallet_status(
    address: str = Query(..., min_length=1),
    wallets: WalletService = Depends(get_wallet_service),
):
    status = await wallets.wallet_status(address)
    return ok({
        "wallet": dump(WalletOut, status["wallet"]),
        "summary": _summary(status),
        "recent_transactions": dump_all(LedgerTransactionOut, status["recent_transactions"]),
        "recent_batches": dump_all(PayoutBatchOut, status["recent_batches"]),
    })


@router.get("/transactions")
async def wallet_transactions(
    address: str = Query(..., min_length=1),
    limit: int = Query(50, gt=0, le=200),
    offset: int = Query(0, ge=0),
    wallets: WalletService = Depends(get_wallet_service),
):
    rows = await wallets.list_transactions(address, limit=limit, offset=offset)
    return ok(dump_all(LedgerTransactionOut, rows))


@router.get("/preferences")
async def get_preferences(
    address: str = Query(..., min_length=1),
    wallets: WalletService = Depends(get_wallet_service),
):
    await wallets.require_wallet(address)
    prefs = await wallets.get_preferences(address)
    if prefs is None:
        return ok({
            "wallet_address": address,
            "roundup_enabled": True,
            "percentage_enabled": False,
            "percentage_rate": "1.00",
        })
    return ok(dump(PreferencesOut, prefs))


@router.put("/preferences")
async def update_preferences(
    body: PreferencesUpdateRequest,
    wallets: WalletService = Depends(get_wallet_service),
):
    prefs = await wallets.update_preferences(
        body.wallet_address,
        roundup_enabled=body.roundup_enabled,
        percentage_enabled=body.percentage_enabled,
        percentage_rate=body.percentage_rate,
    )
    return ok(dump(PreferencesOut, prefs))
