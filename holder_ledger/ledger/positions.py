import logging
from decimal import Decimal

from holder_ledger.ingestion.models import ZERO, Holder, TransactionEvent, TransactionType
from holder_ledger.ledger.fifo import FIFOLedger
from holder_ledger.store.base import LedgerSession

logger = logging.getLogger("ledger.positions")


def average_buy_price(holder: Holder) -> Decimal:
    """All-time average price paid: total cost of every buy over total bought."""
    if holder.total_bought <= 0:
        return ZERO
    return holder.total_bought_cost / holder.total_bought


class PositionUpdater:
    """
    Applies one transaction's net effect to a holder row.

    buy      -> balance += amount, total_bought += amount, new FIFO lot
    sell     -> balance -= amount, total_sold += amount, realized_pnl += FIFO match
    transfer -> balance += signed amount, no lot created or consumed
    """

    def __init__(self, ledger: FIFOLedger):
        self.ledger = ledger

    async def apply(self, session: LedgerSession, holder: Holder, event: TransactionEvent,
                    transaction_id: int) -> Holder:
        amount = event.amount
        block_time = event.block_datetime

        if event.transaction_type is TransactionType.BUY:
            holder.current_balance += amount
            holder.total_bought += amount
            holder.total_bought_cost += amount * event.price_per_token
            await self.ledger.add_purchase(
                session, holder, amount, event.price_per_token, block_time, transaction_id
            )
            if holder.first_buy_timestamp is None:
                holder.first_buy_timestamp = block_time

        elif event.transaction_type is TransactionType.SELL:
            holder.current_balance -= amount
            holder.total_sold += amount
            sale = await self.ledger.consume_sale(
                session, holder, amount, event.price_per_token, signature=event.signature
            )
            holder.realized_pnl += sale.realized_pnl

        else:
            # Positive for incoming, negative for outgoing
            holder.current_balance += amount

        holder.average_buy_price = average_buy_price(holder)
        if holder.last_transaction_timestamp is None or block_time > holder.last_transaction_timestamp:
            holder.last_transaction_timestamp = block_time
        holder.is_active = holder.current_balance > 0

        await session.save_holder(holder)
        logger.debug(
            f"Updated holder position: {event.transaction_type.value} {amount}",
            extra={"wallet": holder.wallet_address, "signature": event.signature},
        )
        return holder
