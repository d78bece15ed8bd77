from fastapi import APIRouter, Depends
from spare_change.config import Settings, WRAPPED_SOL_MINT
from spare_change.core.deps import get_price_feed, get_settings
from spare_change.schemas.common import ok
from spare_change.services.price_feed import PriceFeed

router = APIRouter(prefix="/api/prices", tags=["prices"])


@router.get("")
async def current_prices(
    settings: Settings = Depends(get_settings),
    price_feed: PriceFeed = Depends(get_price_feed),
):
    quotes = await price_feed.current_prices({"sol": WRAPPED_SOL_MINT, "usdc": settings.usdc_mint})
    return ok({
        "network": settings.network_display_name,
        **{label: quote.to_dict() for label, quote in quotes.items()},
    })
