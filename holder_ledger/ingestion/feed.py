"""
Feed Dispatcher
===============
Consumes feed events from an in-process channel and routes them by their
`kind` tag:

    transaction -> IngestionQueue.submit
    launch      -> TokenRegistry.record_launch
    graduation  -> TokenRegistry.record_graduation
    connection  -> logged, kept as connection_state

A failing handler is logged; the dispatcher keeps consuming.
"""
import asyncio
import logging
from typing import Optional

from holder_ledger.core.config import is_tracked
from holder_ledger.ingestion.models import (
    ConnectionStateEvent,
    FeedEvent,
    GraduationEvent,
    LaunchEvent,
    TransactionEvent,
)
from holder_ledger.ingestion.queue import IngestionQueue
from holder_ledger.ledger.registry import TokenRegistry

logger = logging.getLogger("ingestion.feed")

_STOP = object()


class FeedDispatcher:

    def __init__(self, queue: IngestionQueue, registry: TokenRegistry,
                 channel: Optional[asyncio.Queue] = None):
        self.queue = queue
        self.registry = registry
        self.channel = channel if channel is not None else asyncio.Queue()
        self.connection_state = "unknown"
        self.ignored_untracked = 0
        self._handlers = {
            TransactionEvent.kind: self._on_transaction,
            LaunchEvent.kind: self._on_launch,
            GraduationEvent.kind: self._on_graduation,
            ConnectionStateEvent.kind: self._on_connection,
        }

    async def publish(self, event: FeedEvent) -> asyncio.Future:
        """Queue an event; the returned future resolves once it has been dispatched."""
        done = asyncio.get_running_loop().create_future()
        await self.channel.put((event, done))
        return done

    async def run(self):
        logger.info("Feed dispatcher running. Waiting for events...")
        while True:
            item = await self.channel.get()
            try:
                if item is _STOP:
                    break
                event, done = item
                try:
                    await self.dispatch(event)
                finally:
                    if not done.done():
                        done.set_result(None)
            finally:
                self.channel.task_done()
        logger.info("Feed dispatcher stopped.")

    async def stop(self):
        await self.channel.put(_STOP)

    async def join(self):
        """Wait until every published event has been dispatched."""
        await self.channel.join()

    async def dispatch(self, event: FeedEvent):
        handler = self._handlers.get(getattr(event, "kind", None))
        if handler is None:
            logger.warning(f"Unknown feed event: {event!r}")
            return
        try:
            await handler(event)
        except Exception as e:
            logger.error(f"Error handling {event.kind} event: {e}")

    async def _on_transaction(self, event: TransactionEvent):
        if not is_tracked(event.token_address):
            self.ignored_untracked += 1
            return
        await self.queue.submit(event)

    async def _on_launch(self, event: LaunchEvent):
        await self.registry.record_launch(event)

    async def _on_graduation(self, event: GraduationEvent):
        await self.registry.record_graduation(event)

    async def _on_connection(self, event: ConnectionStateEvent):
        self.connection_state = event.state
        if event.state == "connected":
            logger.info("Feed connected")
        else:
            detail = f": {event.detail}" if event.detail else ""
            logger.warning(f"Feed {event.state}{detail}")
