"""
FIFO Cost Basis Ledger
======================

Tracks purchase lots per holder and matches sales against them oldest-first.

Key Invariants:
- Lots are consumed in (purchase_timestamp, id) order; id is creation order.
- 0 <= remaining_amount <= original_amount for every lot.
- All amounts, prices and PnL are Decimal; nothing is rounded here.
- A sale larger than the open lots (oversell) realizes PnL for the matched
  part only. The unmatched part is logged and reported, never raised.
- Metrics over an empty inventory are zero, never a division error.

The matching step (`match_sale`) and the metric helpers are pure functions
over lot lists. `FIFOLedger` persists through a store session so a sale's lot
mutations land in the caller's atomic unit.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from holder_ledger.ingestion.models import ZERO, CostBasisLot, Holder, SaleResult, UnrealizedPnL
from holder_ledger.store.base import LedgerSession, LedgerStore

logger = logging.getLogger("ledger.fifo")


# ==============================================================================
# PURE LOT ARITHMETIC
# ==============================================================================

def fifo_order(lots: Iterable[CostBasisLot]) -> List[CostBasisLot]:
    return sorted(lots, key=lambda l: (l.purchase_timestamp, l.id if l.id is not None else 0))


def match_sale(lots: List[CostBasisLot], sale_amount: Decimal, sale_price: Decimal) -> SaleResult:
    """
    Consume `sale_amount` from `lots` (already in FIFO order), mutating each
    touched lot's remaining_amount in place.

    realized_pnl = sum(used * (sale_price - lot.price_per_token)) over the
    consumed portions. Whatever cannot be matched is left in unmatched_amount.
    """
    if sale_amount <= 0:
        raise ValueError(f"sale amount must be positive, got {sale_amount}")

    result = SaleResult()
    outstanding = sale_amount

    for lot in lots:
        if outstanding <= 0:
            break
        if lot.remaining_amount <= 0:
            continue

        used = min(outstanding, lot.remaining_amount)
        result.realized_pnl += used * (sale_price - lot.price_per_token)
        result.matched_amount += used
        lot.remaining_amount -= used
        outstanding -= used
        result.consumed.append(lot)

    result.unmatched_amount = outstanding
    return result


def open_amount(lots: Iterable[CostBasisLot]) -> Decimal:
    return sum((l.remaining_amount for l in lots if l.remaining_amount > 0), ZERO)


def total_cost_basis(lots: Iterable[CostBasisLot]) -> Decimal:
    return sum((l.open_cost for l in lots if l.remaining_amount > 0), ZERO)


def weighted_average_cost_basis(lots: Iterable[CostBasisLot]) -> Decimal:
    lots = list(lots)
    amount = open_amount(lots)
    if amount == 0:
        return ZERO
    return total_cost_basis(lots) / amount


def unrealized_pnl(lots: Iterable[CostBasisLot], current_price: Decimal) -> UnrealizedPnL:
    lots = list(lots)
    amount = open_amount(lots)
    if amount == 0:
        return UnrealizedPnL()

    cost = total_cost_basis(lots)
    return UnrealizedPnL(
        unrealized_pnl=amount * current_price - cost,
        total_amount=amount,
        average_cost_basis=cost / amount,
    )


# ==============================================================================
# PERSISTENT LEDGER
# ==============================================================================

class FIFOLedger:
    """
    FIFO cost basis engine over a LedgerStore.

    Mutating calls take the caller's session (they are always part of a
    transaction's atomic unit). Query calls accept an optional session and
    open their own when none is given.
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    @asynccontextmanager
    async def _using(self, session: Optional[LedgerSession]):
        if session is not None:
            yield session
        else:
            async with self.store.session() as own:
                yield own

    async def add_purchase(
        self,
        session: LedgerSession,
        holder: Holder,
        amount: Decimal,
        price_per_token: Decimal,
        purchase_timestamp: datetime,
        transaction_id: Optional[int] = None,
    ) -> CostBasisLot:
        if amount <= 0:
            raise ValueError(f"purchase amount must be positive, got {amount}")

        lot = await session.insert_lot(CostBasisLot(
            holder_id=holder.id,
            transaction_id=transaction_id,
            original_amount=amount,
            remaining_amount=amount,
            price_per_token=price_per_token,
            purchase_timestamp=purchase_timestamp,
        ))
        logger.debug(f"Added purchase to cost basis: {amount} at {price_per_token}", extra={"holder_id": holder.id})
        return lot

    async def consume_sale(
        self,
        session: LedgerSession,
        holder: Holder,
        sale_amount: Decimal,
        sale_price: Decimal,
        signature: Optional[str] = None,
    ) -> SaleResult:
        log_ctx = {"holder_id": holder.id, "wallet": holder.wallet_address}
        if signature:
            log_ctx["signature"] = signature

        lots = fifo_order(await session.open_lots(holder.id, for_update=True))
        if not lots:
            logger.warning(
                f"No cost basis lots for holder {holder.id}; sale of {sale_amount} realizes no PnL",
                extra=log_ctx,
            )

        result = match_sale(lots, sale_amount, sale_price)
        for lot in result.consumed:
            await session.update_lot_remaining(lot)

        if lots and result.oversold:
            logger.warning(
                f"Sale amount {sale_amount} exceeds available cost basis. "
                f"Remaining unmatched: {result.unmatched_amount}",
                extra=log_ctx,
            )

        logger.debug(f"Total realized P&L from sale: {result.realized_pnl}", extra=log_ctx)
        return result

    async def total_cost_basis(self, holder_id: int, session: Optional[LedgerSession] = None) -> Decimal:
        async with self._using(session) as s:
            return total_cost_basis(await s.open_lots(holder_id))

    async def weighted_average_cost_basis(self, holder_id: int, session: Optional[LedgerSession] = None) -> Decimal:
        async with self._using(session) as s:
            return weighted_average_cost_basis(await s.open_lots(holder_id))

    async def unrealized_pnl(self, holder_id: int, current_price: Decimal,
                             session: Optional[LedgerSession] = None) -> UnrealizedPnL:
        async with self._using(session) as s:
            return unrealized_pnl(await s.open_lots(holder_id), current_price)

    async def cost_basis_breakdown(self, holder_id: int, session: Optional[LedgerSession] = None) -> List[CostBasisLot]:
        """Open lots in the order the next sale would consume them."""
        async with self._using(session) as s:
            return await s.open_lots(holder_id)

    async def cleanup(self, holder_id: Optional[int] = None, session: Optional[LedgerSession] = None) -> int:
        """Delete exhausted lots. Metrics are unaffected since they only read open lots."""
        async with self._using(session) as s:
            removed = await s.delete_exhausted_lots(holder_id)
        logger.info(f"Cleaned up {removed} zero-amount cost basis lots")
        return removed
