"""
Holder Ledger Router
====================
Per-holder position and FIFO cost basis queries.

Endpoints:
- /holders/{token}/{wallet} - position totals
- /holders/{token}/{wallet}/cost-basis - cost of open lots
- /holders/{token}/{wallet}/weighted-average - open-lot weighted average price
- /holders/{token}/{wallet}/unrealized?price= - mark-to-market PnL
- /holders/{token}/{wallet}/breakdown - open lots in consumption order
"""
import logging

from fastapi import APIRouter, HTTPException, Request

from holder_ledger.api.serialize import holder_dict, lot_dict, to_decimal, unrealized_dict

router = APIRouter(prefix="/holders", tags=["holders"])
logger = logging.getLogger("api.holders")


async def _get_holder(request: Request, token_address: str, wallet_address: str):
    store = request.app.state.store
    async with store.session() as session:
        token = await session.get_token(token_address)
        holder = await session.get_holder(token.id, wallet_address) if token else None
    if holder is None:
        raise HTTPException(status_code=404, detail="holder not found")
    return holder


@router.get("/{token_address}/{wallet_address}")
async def get_position(request: Request, token_address: str, wallet_address: str):
    holder = await _get_holder(request, token_address, wallet_address)
    return holder_dict(token_address, holder)


@router.get("/{token_address}/{wallet_address}/cost-basis")
async def get_cost_basis(request: Request, token_address: str, wallet_address: str):
    holder = await _get_holder(request, token_address, wallet_address)
    total = await request.app.state.ledger.total_cost_basis(holder.id)
    return {"wallet_address": wallet_address, "total_cost_basis": float(total)}


@router.get("/{token_address}/{wallet_address}/weighted-average")
async def get_weighted_average(request: Request, token_address: str, wallet_address: str):
    holder = await _get_holder(request, token_address, wallet_address)
    average = await request.app.state.ledger.weighted_average_cost_basis(holder.id)
    return {"wallet_address": wallet_address, "weighted_average_cost_basis": float(average)}


@router.get("/{token_address}/{wallet_address}/unrealized")
async def get_unrealized(request: Request, token_address: str, wallet_address: str, price: float):
    current_price = to_decimal(price, "price")
    holder = await _get_holder(request, token_address, wallet_address)
    pnl = await request.app.state.ledger.unrealized_pnl(holder.id, current_price)
    return {"wallet_address": wallet_address, "current_price": price, **unrealized_dict(pnl)}


@router.get("/{token_address}/{wallet_address}/breakdown")
async def get_breakdown(request: Request, token_address: str, wallet_address: str):
    holder = await _get_holder(request, token_address, wallet_address)
    lots = await request.app.state.ledger.cost_basis_breakdown(holder.id)
    return {"wallet_address": wallet_address, "lots": [lot_dict(l) for l in lots]}
