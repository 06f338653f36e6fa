"""
JSON shaping for API responses. Ledger values are Decimal internally and
leave the service as floats.
"""
from decimal import Decimal, InvalidOperation

from fastapi import HTTPException

from holder_ledger.analytics.holders import AnalyticsSummary, PriceLevel, ProfitLossZones
from holder_ledger.ingestion.models import CostBasisLot, Holder, Token, UnrealizedPnL


def to_decimal(value, name: str) -> Decimal:
    """Query number -> Decimal, 400 on anything negative or non-finite."""
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise HTTPException(status_code=400, detail=f"{name} must be a number")
    if not result.is_finite() or result < 0:
        raise HTTPException(status_code=400, detail=f"{name} must be a non-negative number")
    return result


def _iso(ts):
    return ts.isoformat() if ts else None


def token_dict(token: Token) -> dict:
    return {
        "address": token.address,
        "symbol": token.symbol,
        "name": token.name,
        "decimals": token.decimals,
        "status": token.status.value,
        "total_supply": float(token.total_supply) if token.total_supply is not None else None,
        "launch_timestamp": _iso(token.launch_timestamp),
        "graduation_timestamp": _iso(token.graduation_timestamp),
    }


def holder_dict(token_address: str, holder: Holder) -> dict:
    return {
        "token_address": token_address,
        "wallet_address": holder.wallet_address,
        "current_balance": float(holder.current_balance),
        "total_bought": float(holder.total_bought),
        "total_sold": float(holder.total_sold),
        "average_buy_price": float(holder.average_buy_price),
        "realized_pnl": float(holder.realized_pnl),
        "first_buy_timestamp": _iso(holder.first_buy_timestamp),
        "last_transaction_timestamp": _iso(holder.last_transaction_timestamp),
        "is_active": holder.is_active,
    }


def lot_dict(lot: CostBasisLot) -> dict:
    return {
        "id": lot.id,
        "original_amount": float(lot.original_amount),
        "remaining_amount": float(lot.remaining_amount),
        "price_per_token": float(lot.price_per_token),
        "purchase_timestamp": _iso(lot.purchase_timestamp),
    }


def unrealized_dict(pnl: UnrealizedPnL) -> dict:
    return {
        "unrealized_pnl": float(pnl.unrealized_pnl),
        "total_amount": float(pnl.total_amount),
        "average_cost_basis": float(pnl.average_cost_basis),
    }


def zones_dict(zones: ProfitLossZones) -> dict:
    return {
        "profit_holders": zones.profit_holders,
        "loss_holders": zones.loss_holders,
        "break_even_holders": zones.break_even_holders,
        "total_holders": zones.total_holders,
        "profit_amount_usd": float(zones.profit_amount_usd),
        "loss_amount_usd": float(zones.loss_amount_usd),
        "break_even_amount_usd": float(zones.break_even_amount_usd),
    }


def level_dict(level: PriceLevel) -> dict:
    return {
        "price_level": float(level.price_level),
        "holder_count": level.holder_count,
        "total_amount": float(level.total_amount),
        "percentage_of_supply": float(level.percentage_of_supply),
    }


def summary_dict(summary: AnalyticsSummary) -> dict:
    return {
        "total_holders": summary.total_holders,
        "profit_loss_breakdown": zones_dict(summary.profit_loss_breakdown),
        "top_price_levels": [level_dict(l) for l in summary.top_price_levels],
        "average_holder_cost_basis": float(summary.average_holder_cost_basis),
        "median_holder_cost_basis": float(summary.median_holder_cost_basis),
    }
