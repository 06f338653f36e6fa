#!/usr/bin/env python3
"""
Test feed dispatch by event kind.
"""
import asyncio
from decimal import Decimal

import pytest

from holder_ledger.core import config
from holder_ledger.ingestion.feed import FeedDispatcher
from holder_ledger.ingestion.models import ConnectionStateEvent, GraduationEvent, LaunchEvent, TokenStatus
from holder_ledger.ledger.registry import TokenRegistry


def test_events_routed_by_kind(stack, make_tx, read_holder):
    registry = TokenRegistry(stack.store)
    dispatcher = FeedDispatcher(stack.queue, registry)

    async def run():
        task = asyncio.create_task(dispatcher.run())
        await dispatcher.publish(ConnectionStateEvent(state="connected"))
        await dispatcher.publish(LaunchEvent(token_address=make_tx("x").token_address, symbol="TKN"))
        await dispatcher.publish(make_tx("feed-buy", "buy", "10", "2"))
        await dispatcher.publish(GraduationEvent(token_address=make_tx("x").token_address, graduation_timestamp=5))
        await dispatcher.join()
        await stack.queue.wait_idle()
        await dispatcher.stop()
        await task
        token = await registry.get_token(make_tx("x").token_address)
        return token, await read_holder(stack.store)

    token, holder = asyncio.run(run())

    assert dispatcher.connection_state == "connected"
    assert token.symbol == "TKN"
    assert token.status is TokenStatus.GRADUATED
    assert holder.current_balance == Decimal("10")


def test_handler_error_does_not_stop_dispatcher(stack, make_tx, read_holder):
    registry = TokenRegistry(stack.store)
    dispatcher = FeedDispatcher(stack.queue, registry)

    async def broken_launch(launch):
        raise RuntimeError("registry unavailable")

    registry.record_launch = broken_launch

    async def run():
        task = asyncio.create_task(dispatcher.run())
        await dispatcher.publish(LaunchEvent(token_address="MintX"))
        await dispatcher.publish(make_tx("after-error", "buy", "7", "1"))
        await dispatcher.join()
        await stack.queue.wait_idle()
        await dispatcher.stop()
        await task
        return await read_holder(stack.store)

    holder = asyncio.run(run())
    assert holder.current_balance == Decimal("7")


def test_untracked_tokens_ignored(stack, make_tx, monkeypatch):
    monkeypatch.setattr(config, "TRACKED_TOKENS", {"OnlyThisMint"})
    dispatcher = FeedDispatcher(stack.queue, TokenRegistry(stack.store))

    async def run():
        await dispatcher.dispatch(make_tx("untracked", "buy", "10", "1"))
        await stack.queue.wait_idle()

    asyncio.run(run())

    assert dispatcher.ignored_untracked == 1
    assert stack.store.transaction_count == 0


def test_disconnect_recorded(stack):
    dispatcher = FeedDispatcher(stack.queue, TokenRegistry(stack.store))
    asyncio.run(dispatcher.dispatch(ConnectionStateEvent(state="disconnected", detail="socket closed")))
    assert dispatcher.connection_state == "disconnected"


def test_publish_future_resolves_after_dispatch(stack):
    """The returned future completes once that event was handled, failing handlers included."""
    registry = TokenRegistry(stack.store)
    dispatcher = FeedDispatcher(stack.queue, registry)
    handled = []

    async def broken_launch(launch):
        handled.append(launch.token_address)
        raise RuntimeError("registry unavailable")

    registry.record_launch = broken_launch

    async def run():
        done = await dispatcher.publish(LaunchEvent(token_address="MintY"))
        pending_before_run = done.done()
        task = asyncio.create_task(dispatcher.run())
        await asyncio.wait_for(done, timeout=5)
        await dispatcher.stop()
        await task
        return pending_before_run

    pending_before_run = asyncio.run(run())

    assert not pending_before_run
    assert handled == ["MintY"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
