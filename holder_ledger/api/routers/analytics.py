import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from holder_ledger.api.serialize import level_dict, summary_dict, to_decimal, zones_dict
from holder_ledger.core.config import BREAK_EVEN_TOLERANCE, PRICE_BAND_PERCENT

router = APIRouter(prefix="/analytics", tags=["analytics"])
logger = logging.getLogger("api.analytics")


@router.get("/{token_address}/zones")
async def get_zones(request: Request, token_address: str, price: float, tolerance: Optional[float] = None):
    """Holder counts and position value in profit, loss and break-even at `price`."""
    current_price = to_decimal(price, "price")
    tol = to_decimal(tolerance, "tolerance") if tolerance is not None else BREAK_EVEN_TOLERANCE
    zones = await request.app.state.analytics.calculate_profit_loss_zones(token_address, current_price, tol)
    return {"token_address": token_address, "current_price": price, **zones_dict(zones)}


@router.get("/{token_address}/price-levels")
async def get_price_levels(request: Request, token_address: str, band: Optional[float] = None):
    """Open lot inventory clustered into price bands of `band` percent."""
    band_percent = to_decimal(band, "band") if band is not None else PRICE_BAND_PERCENT
    if band_percent <= 0:
        raise HTTPException(status_code=400, detail="band must be positive")
    levels = await request.app.state.analytics.get_holder_price_levels(token_address, band_percent)
    return {"token_address": token_address, "levels": [level_dict(l) for l in levels]}


@router.get("/{token_address}/summary")
async def get_summary(request: Request, token_address: str, price: float):
    current_price = to_decimal(price, "price")
    summary = await request.app.state.analytics.get_analytics_summary(token_address, current_price)
    return {"token_address": token_address, "current_price": price, **summary_dict(summary)}
