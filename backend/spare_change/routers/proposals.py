from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from spare_change.config import Settings
from spare_change.core.deps import get_proposal_engine, get_settings, get_source, get_wallet_service
from spare_change.schemas.common import ok
from spare_change.schemas.proposal import ProposalRequest
from spare_change.services.address import validate_address
from spare_change.services.proposal_engine import ProposalEngine
from spare_change.services.wallet_service import WalletService

router = APIRouter(prefix="/api/proposals", tags=["proposals"])


async def _config_and_window(body: ProposalRequest, settings: Settings, wallets: WalletService, source):
    validate_address(body.address)
    try:
        config = await wallets.proposal_config(
            body.address,
            default_rate=settings.DEFAULT_PERCENTAGE_RATE,
            min_amount=settings.MIN_PROPOSAL_AMOUNT,
            max_amount=settings.MAX_PROPOSAL_AMOUNT,
            roundup_enabled=body.roundup_enabled,
            percentage_enabled=body.percentage_enabled,
            percentage_rate=body.percentage_rate,
            min_proposal_amount=body.min_proposal_amount,
            max_proposal_amount=body.max_proposal_amount,
        )
    except ValueError as e:
        raise HTTPException(422, str(e))

    transactions = await source.fetch(
        body.address,
        body.lookback_days or settings.LOOKBACK_DAYS,
        settings.SYNC_FETCH_LIMIT,
    )
    return config, transactions


async def _preview(
    body: ProposalRequest,
    settings: Settings,
    engine: ProposalEngine,
    wallets: WalletService,
    source,
) -> dict:
    config, transactions = await _config_and_window(body, settings, wallets, source)
    result = await engine.generate(transactions, config, wallet_address=body.address)
    return ok({
        "address": body.address,
        "config": config.to_dict(),
        "proposals": [p.to_dict() for p in result.proposals],
        "summary": result.summary(),
    })


@router.get("")
async def preview_proposals(
    address: str = Query(..., min_length=1),
    lookback_days: Optional[int] = Query(None, alias="lookbackDays", gt=0, le=365),
    roundup_enabled: Optional[bool] = Query(None, alias="roundupEnabled"),
    percentage_enabled: Optional[bool] = Query(None, alias="percentageEnabled"),
    percentage_rate: Optional[Decimal] = Query(None, alias="percentageRate", ge=0, le=100),
    settings: Settings = Depends(get_settings),
    engine: ProposalEngine = Depends(get_proposal_engine),
    wallets: WalletService = Depends(get_wallet_service),
    source=Depends(get_source),
):
    """Preview spare-change proposals for a wallet's recent transactions. Nothing is saved."""
    body = ProposalRequest(
        address=address,
        lookback_days=lookback_days,
        roundup_enabled=roundup_enabled,
        percentage_enabled=percentage_enabled,
        percentage_rate=percentage_rate,
    )
    return await _preview(body, settings, engine, wallets, source)


@router.post("")
async def preview_proposals_with_limits(
    body: ProposalRequest,
    settings: Settings = Depends(get_settings),
    engine: ProposalEngine = Depends(get_proposal_engine),
    wallets: WalletService = Depends(get_wallet_service),
    source=Depends(get_source),
):
    return await _preview(body, settings, engine, wallets, source)


@router.post("/summary")
async def spare_change_summary(
    body: ProposalRequest,
    settings: Settings = Depends(get_settings),
    engine: ProposalEngine = Depends(get_proposal_engine),
    wallets: WalletService = Depends(get_wallet_service),
    source=Depends(get_source),
):
    """Native-unit totals per law, without pricing."""
    config, transactions = await _config_and_window(body, settings, wallets, source)
    summary = engine.summarize(transactions, config)
    return ok({k: str(v) if isinstance(v, Decimal) else v for k, v in summary.items()})
