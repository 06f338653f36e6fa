#!/usr/bin/env python3
"""
Test FIFO cost basis matching and the ledger metrics.

Tests:
1. Oldest lot consumed first, ties broken by creation order
2. Partial lot consumption, younger lots left untouched
3. Oversell: matched part realizes PnL, remainder reported
4. Division safety on empty inventories
5. End-to-end buy/buy/sell through the processor
6. Cleanup of exhausted lots
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from holder_ledger.ingestion.models import CostBasisLot
from holder_ledger.ledger.fifo import (
    fifo_order,
    match_sale,
    total_cost_basis,
    unrealized_pnl,
    weighted_average_cost_basis,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def lot(lot_id, amount, price, offset=0, remaining=None):
    return CostBasisLot(
        holder_id=1,
        id=lot_id,
        original_amount=Decimal(amount),
        remaining_amount=Decimal(remaining if remaining is not None else amount),
        price_per_token=Decimal(price),
        purchase_timestamp=T0 + timedelta(seconds=offset),
    )


def test_sale_consumes_oldest_lot_first():
    """100@1 then 100@2, sell 150@3: realized 2*100 + 1*50 = 250."""
    lots = [lot(1, "100", "1", 0), lot(2, "100", "2", 60)]
    result = match_sale(lots, Decimal("150"), Decimal("3"))

    assert result.realized_pnl == Decimal("250")
    assert result.matched_amount == Decimal("150")
    assert result.unmatched_amount == 0
    assert not result.oversold
    assert lots[0].remaining_amount == 0
    assert lots[1].remaining_amount == Decimal("50")


def test_fifo_order_breaks_timestamp_ties_by_id():
    later_created = lot(7, "10", "5", 0)
    earlier_created = lot(3, "10", "1", 0)
    older = lot(9, "10", "2", -1)
    ordered = fifo_order([later_created, earlier_created, older])
    assert [l.id for l in ordered] == [9, 3, 7]


def test_partial_consumption_leaves_remainder():
    lots = [lot(1, "100", "1")]
    result = match_sale(lots, Decimal("30"), Decimal("2"))
    assert result.realized_pnl == Decimal("30")
    assert lots[0].remaining_amount == Decimal("70")
    assert lots[0].original_amount == Decimal("100")


def test_partial_sale_across_lots_leaves_younger_lots_untouched():
    """Selling less than the oldest lot touches only that lot."""
    lots = [lot(1, "100", "1", 0), lot(2, "50", "2", 60), lot(3, "25", "3", 120)]
    result = match_sale(lots, Decimal("40"), Decimal("4"))

    assert result.realized_pnl == Decimal("120")
    assert [l.id for l in result.consumed] == [1]
    assert lots[0].remaining_amount == Decimal("60")
    assert lots[1].remaining_amount == Decimal("50")
    assert lots[2].remaining_amount == Decimal("25")


def test_persisted_partial_sale_spanning_two_lots(stack, make_tx, read_holder):
    """Sell 120 of 100@1, 50@2, 25@3: first lot exhausted, second split, third intact."""
    async def run():
        await stack.processor.process(make_tx("pb-1", "buy", "100", "1", 1000))
        await stack.processor.process(make_tx("pb-2", "buy", "50", "2", 2000))
        await stack.processor.process(make_tx("pb-3", "buy", "25", "3", 3000))
        holder = await read_holder(stack.store)
        async with stack.store.session() as session:
            before = session.all_lots(holder.id)
        await stack.processor.process(make_tx("ps-1", "sell", "120", "4", 4000))
        async with stack.store.session() as session:
            after = session.all_lots(holder.id)
        return await read_holder(stack.store), before, after

    holder, before, after = asyncio.run(run())

    assert [l.id for l in after] == [l.id for l in before]
    assert [l.remaining_amount for l in after] == [Decimal("0"), Decimal("30"), Decimal("25")]
    assert [l.original_amount for l in after] == [Decimal("100"), Decimal("50"), Decimal("25")]
    assert after[2] == before[2]
    # 100 * (4 - 1) + 20 * (4 - 2)
    assert holder.realized_pnl == Decimal("340")


def test_oversell_realizes_matched_part_only():
    lots = [lot(1, "50", "1")]
    result = match_sale(lots, Decimal("80"), Decimal("2"))
    assert result.realized_pnl == Decimal("50")
    assert result.matched_amount == Decimal("50")
    assert result.unmatched_amount == Decimal("30")
    assert result.oversold


def test_sale_amount_must_be_positive():
    with pytest.raises(ValueError):
        match_sale([lot(1, "10", "1")], Decimal("0"), Decimal("1"))


def test_metrics_on_empty_inventory_are_zero():
    assert weighted_average_cost_basis([]) == 0
    assert total_cost_basis([]) == 0
    pnl = unrealized_pnl([], Decimal("5"))
    assert pnl.unrealized_pnl == 0
    assert pnl.total_amount == 0
    assert pnl.average_cost_basis == 0

    # exhausted lots only
    exhausted = [lot(1, "10", "3", remaining="0")]
    assert weighted_average_cost_basis(exhausted) == 0


def test_weighted_average_uses_remaining_amounts():
    lots = [lot(1, "100", "1"), lot(2, "100", "4", 60, remaining="50")]
    # (100*1 + 50*4) / 150
    assert weighted_average_cost_basis(lots) == Decimal("2")
    assert total_cost_basis(lots) == Decimal("300")

    pnl = unrealized_pnl(lots, Decimal("3"))
    assert pnl.total_amount == Decimal("150")
    assert pnl.unrealized_pnl == Decimal("150")


def test_buy_buy_sell_scenario(stack, make_tx, read_holder):
    """Ledger state after 100@1, 100@2, sell 150@3."""
    async def run():
        await stack.processor.process(make_tx("buy-a", "buy", "100", "1", 1000))
        await stack.processor.process(make_tx("buy-b", "buy", "100", "2", 2000))
        await stack.processor.process(make_tx("sell-c", "sell", "150", "3", 3000))

        holder = await read_holder(stack.store)
        breakdown = await stack.ledger.cost_basis_breakdown(holder.id)
        cost = await stack.ledger.total_cost_basis(holder.id)
        average = await stack.ledger.weighted_average_cost_basis(holder.id)
        pnl = await stack.ledger.unrealized_pnl(holder.id, Decimal("3"))
        return holder, breakdown, cost, average, pnl

    holder, breakdown, cost, average, pnl = asyncio.run(run())

    assert holder.realized_pnl == Decimal("250")
    assert holder.current_balance == Decimal("50")
    assert holder.total_bought == Decimal("200")
    assert holder.total_sold == Decimal("150")
    assert holder.average_buy_price == Decimal("1.5")
    assert holder.is_active

    assert len(breakdown) == 1
    assert breakdown[0].remaining_amount == Decimal("50")
    assert breakdown[0].price_per_token == Decimal("2")
    assert cost == Decimal("100")
    assert average == Decimal("2")
    assert pnl.unrealized_pnl == Decimal("50")


def test_sell_without_history_is_logged_not_raised(stack, make_tx, read_holder, caplog):
    """A sell with no lots realizes nothing, still records the transaction."""
    async def run():
        await stack.processor.process(make_tx("sell-only", "sell", "10", "5"))
        return await read_holder(stack.store)

    with caplog.at_level(logging.WARNING, logger="ledger.fifo"):
        holder = asyncio.run(run())

    assert holder.realized_pnl == 0
    assert holder.current_balance == Decimal("-10")
    assert not holder.is_active
    assert stack.store.transaction_count == 1
    assert any("No cost basis lots" in r.getMessage() for r in caplog.records)


def test_oversell_against_existing_lots_warns(stack, make_tx, read_holder, caplog):
    async def run():
        await stack.processor.process(make_tx("b1", "buy", "50", "1", 1000))
        await stack.processor.process(make_tx("s1", "sell", "80", "2", 2000))
        return await read_holder(stack.store)

    with caplog.at_level(logging.WARNING, logger="ledger.fifo"):
        holder = asyncio.run(run())

    assert holder.realized_pnl == Decimal("50")
    assert any("exceeds available cost basis" in r.getMessage() for r in caplog.records)


def test_cleanup_removes_only_exhausted_lots(stack, make_tx, read_holder):
    async def run():
        await stack.processor.process(make_tx("b1", "buy", "100", "1", 1000))
        await stack.processor.process(make_tx("b2", "buy", "40", "2", 2000))
        await stack.processor.process(make_tx("s1", "sell", "100", "3", 3000))
        holder = await read_holder(stack.store)
        average_before = await stack.ledger.weighted_average_cost_basis(holder.id)

        removed = await stack.ledger.cleanup()
        async with stack.store.session() as session:
            remaining = session.all_lots(holder.id)
        average_after = await stack.ledger.weighted_average_cost_basis(holder.id)
        return removed, remaining, average_before, average_after

    removed, remaining, average_before, average_after = asyncio.run(run())

    assert removed == 1
    assert len(remaining) == 1
    assert remaining[0].remaining_amount == Decimal("40")
    assert average_before == average_after == Decimal("2")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
