#!/usr/bin/env python3
"""
Test atomic transaction application.

Tests:
1. Same signature applied twice is a no-op the second time
2. Balance conservation across buys, sells and transfers
3. A failure mid-unit rolls back every write of that transaction, id allocation included
4. Open lot amounts equal bought minus sold after every step
5. Replays leave lots and totals unchanged
6. Transfers move the balance without touching lots
"""
import asyncio
from decimal import Decimal

import pytest

from holder_ledger.ingestion.processor import ProcessOutcome
from holder_ledger.store.memory import MemorySession

TOKEN = "TokenMint1111111111111111111111111111111111"


def test_duplicate_signature_is_noop(stack, make_tx, read_holder):
    async def run():
        first = await stack.processor.process(make_tx("dup-1", "buy", "100", "1"))
        second = await stack.processor.process(make_tx("dup-1", "buy", "100", "1"))
        holder = await read_holder(stack.store)
        return first, second, holder

    first, second, holder = asyncio.run(run())

    assert first is ProcessOutcome.APPLIED
    assert second is ProcessOutcome.DUPLICATE
    assert holder.current_balance == Decimal("100")
    assert holder.total_bought == Decimal("100")
    assert stack.store.transaction_count == 1


def test_balance_conservation(stack, make_tx, read_holder):
    """balance == bought - sold + net transfers."""
    events = [
        make_tx("c1", "buy", "100", "1", 1000),
        make_tx("c2", "transfer", "25", "0", 1100),
        make_tx("c3", "sell", "60", "2", 1200),
        make_tx("c4", "transfer", "-15", "0", 1300),
        make_tx("c5", "buy", "10", "3", 1400),
    ]

    async def run():
        for event in events:
            await stack.processor.process(event)
        return await read_holder(stack.store)

    holder = asyncio.run(run())

    assert holder.total_bought == Decimal("110")
    assert holder.total_sold == Decimal("60")
    assert holder.current_balance == holder.total_bought - holder.total_sold + Decimal("25") - Decimal("15")
    assert holder.current_balance == Decimal("60")


def test_failure_rolls_back_whole_unit(stack, make_tx, read_holder, monkeypatch):
    async def broken_insert_lot(self, lot):
        raise RuntimeError("disk full")

    async def run():
        await stack.processor.process(make_tx("ok-1", "buy", "100", "1", 1000))
        monkeypatch.setattr(MemorySession, "insert_lot", broken_insert_lot)
        with pytest.raises(RuntimeError):
            await stack.processor.process(make_tx("bad-2", "buy", "50", "2", 2000))
        monkeypatch.undo()

        committed = await stack.processor.is_committed("bad-2")
        holder = await read_holder(stack.store)
        async with stack.store.session() as session:
            lots = session.all_lots(holder.id)
        return committed, holder, lots

    committed, holder, lots = asyncio.run(run())

    assert not committed
    assert holder.current_balance == Decimal("100")
    assert holder.total_bought == Decimal("100")
    assert len(lots) == 1
    assert stack.store.transaction_count == 1


def test_retry_after_failure_applies_once(stack, make_tx, read_holder, monkeypatch):
    async def broken_save_holder(self, holder):
        raise RuntimeError("connection reset")

    async def run():
        event = make_tx("retry-1", "buy", "100", "1")
        monkeypatch.setattr(MemorySession, "save_holder", broken_save_holder)
        with pytest.raises(RuntimeError):
            await stack.processor.process(event)
        monkeypatch.undo()

        outcome = await stack.processor.process(event)
        return outcome, await read_holder(stack.store)

    outcome, holder = asyncio.run(run())

    assert outcome is ProcessOutcome.APPLIED
    assert holder.current_balance == Decimal("100")


def test_open_lots_track_bought_minus_sold_at_every_step(stack, make_tx, read_holder):
    """Without transfers, the sum of remaining lot amounts is total_bought - total_sold."""
    events = [
        make_tx("s-1", "buy", "100", "1", 1000),
        make_tx("s-2", "buy", "40", "2", 1100),
        make_tx("s-3", "sell", "30", "3", 1200),
        make_tx("s-4", "buy", "15.5", "1.5", 1300),
        make_tx("s-5", "sell", "85", "2", 1400),
        make_tx("s-6", "sell", "0.5", "2", 1500),
    ]

    async def run():
        steps = []
        for event in events:
            await stack.processor.process(event)
            holder = await read_holder(stack.store)
            async with stack.store.session() as session:
                remaining = sum(l.remaining_amount for l in session.all_lots(holder.id))
            steps.append((holder, remaining))
        return steps

    steps = asyncio.run(run())

    assert len(steps) == len(events)
    for holder, remaining in steps:
        assert remaining == holder.total_bought - holder.total_sold
        assert remaining == holder.current_balance
    assert steps[-1][1] == Decimal("40")


def test_replay_leaves_lots_unchanged(stack, make_tx, read_holder):
    """Replaying applied signatures changes neither lots nor holder totals."""
    events = [
        make_tx("r-1", "buy", "100", "1", 1000),
        make_tx("r-2", "buy", "50", "2", 1100),
        make_tx("r-3", "sell", "120", "3", 1200),
    ]

    async def run():
        for event in events:
            await stack.processor.process(event)
        holder_before = await read_holder(stack.store)
        async with stack.store.session() as session:
            lots_before = session.all_lots()

        outcomes = [await stack.processor.process(event) for event in events]
        holder_after = await read_holder(stack.store)
        async with stack.store.session() as session:
            lots_after = session.all_lots()
        return outcomes, holder_before, holder_after, lots_before, lots_after

    outcomes, holder_before, holder_after, lots_before, lots_after = asyncio.run(run())

    assert outcomes == [ProcessOutcome.DUPLICATE] * 3
    assert lots_after == lots_before
    assert holder_after == holder_before
    assert stack.store.transaction_count == 3


def test_failed_session_leaves_no_rows_or_ids(stack, make_tx, read_holder, monkeypatch):
    """A unit that fails after creating the token, holder and lot leaves nothing, ids included."""
    async def broken_save_holder(self, holder):
        raise RuntimeError("connection reset")

    async def run():
        monkeypatch.setattr(MemorySession, "save_holder", broken_save_holder)
        with pytest.raises(RuntimeError):
            await stack.processor.process(make_tx("gone-1", "buy", "100", "1", 1000))
        monkeypatch.undo()

        async with stack.store.session() as session:
            token = await session.get_token(TOKEN)
            lots = session.all_lots()

        await stack.processor.process(make_tx("kept-1", "buy", "10", "1", 2000))
        holder = await read_holder(stack.store)
        async with stack.store.session() as session:
            kept_token = await session.get_token(TOKEN)
            kept_lots = session.all_lots()
        return token, lots, holder, kept_token, kept_lots

    token, lots, holder, kept_token, kept_lots = asyncio.run(run())

    assert token is None
    assert lots == []
    assert stack.store.transaction_count == 1
    assert kept_token.id == 1
    assert holder.id == 1
    assert [l.id for l in kept_lots] == [1]
    assert kept_lots[0].transaction_id == 1


def test_transfer_touches_balance_only(stack, make_tx, read_holder):
    async def run():
        await stack.processor.process(make_tx("t1", "transfer", "40", "0", 1000))
        holder = await read_holder(stack.store)
        lots = await stack.ledger.cost_basis_breakdown(holder.id)
        return holder, lots

    holder, lots = asyncio.run(run())

    assert holder.current_balance == Decimal("40")
    assert holder.total_bought == 0
    assert holder.average_buy_price == 0
    assert holder.first_buy_timestamp is None
    assert holder.last_transaction_timestamp is not None
    assert holder.is_active
    assert lots == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
