from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, Query
from spare_change.config import Settings
from spare_change.core.deps import get_settings, get_source
from spare_change.schemas.common import ok
from spare_change.services.address import validate_address

router = APIRouter(prefix="/api/txns", tags=["transactions"])


@router.get("")
async def list_transactions(
    address: str = Query(..., min_length=1),
    lookback_days: Optional[int] = Query(None, alias="lookbackDays", gt=0, le=365),
    limit: Optional[int] = Query(None, gt=0, le=1000),
    settings: Settings = Depends(get_settings),
    source=Depends(get_source),
):
    """Raw transaction window for a wallet, as the tracker would see it."""
    validate_address(address)
    lookback = lookback_days or settings.LOOKBACK_DAYS
    transactions = await source.fetch(address, lookback, limit or settings.SYNC_FETCH_LIMIT)

    sent = [tx for tx in transactions if tx.direction == "sent"]
    received = [tx for tx in transactions if tx.direction == "received"]
    total_sent = sum((tx.amount for tx in sent if tx.amount), Decimal("0"))
    return ok({
        "address": address,
        "transactions": [tx.to_dict() for tx in transactions],
        "summary": {
            "total": len(transactions),
            "sent": len(sent),
            "received": len(received),
            "total_sent": str(total_sent),
            "lookback_days": lookback,
        },
    })
