"""
Sequential Ingestion Queue
==========================

Live transactions are deduplicated on arrival and applied strictly in arrival
order by a single drain task.

State machine:
    IDLE --submit--> DRAINING --buffer empty--> IDLE

The IDLE -> DRAINING transition happens with no await in between the check
and the set, so at most one drain task exists. Items submitted while a drain
is running are appended and picked up by that same drain.

A failure applying one item is logged and counted; the drain moves on to the
next item.

Tokens can be paused (during their backfill). Paused tokens' items are parked
in arrival order and put back at the head of the buffer on resume.

`wait_settled(signatures)` returns once none of the given signatures is
buffered or being applied. Parked items count as settled until resumed.
"""
import asyncio
import logging
from collections import Counter, deque
from enum import Enum
from typing import Deque, Dict, List, Optional, Set

from holder_ledger.ingestion.models import TransactionEvent
from holder_ledger.ingestion.processor import ProcessOutcome, TransactionProcessor

logger = logging.getLogger("ingestion.queue")


class QueueState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"


class IngestionQueue:

    def __init__(self, processor: TransactionProcessor):
        self.processor = processor
        self.state = QueueState.IDLE
        self._buffer: Deque[TransactionEvent] = deque()
        self._paused: Set[str] = set()
        self._parked: Dict[str, List[TransactionEvent]] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_task: Optional[asyncio.Task] = None
        # signature -> buffered or in-flight occurrences
        self._outstanding: Counter = Counter()
        self._settled = asyncio.Condition()

        self.processed = 0
        self.duplicates = 0
        self.failed = 0

    async def submit(self, event: TransactionEvent) -> bool:
        """
        Enqueue a live transaction. Returns False (and drops it) when the
        signature is already committed.
        """
        if await self.processor.is_committed(event.signature):
            self.duplicates += 1
            logger.debug(f"Dropping already committed transaction {event.signature}",
                         extra={"signature": event.signature})
            return False

        self._buffer.append(event)
        self._outstanding[event.signature] += 1
        self._start_drain()
        return True

    def _start_drain(self):
        if self.state is QueueState.DRAINING:
            return
        self.state = QueueState.DRAINING
        self._idle.clear()
        self._drain_task = asyncio.create_task(self._drain())

    async def _drain(self):
        try:
            while self._buffer:
                event = self._buffer.popleft()

                if event.token_address in self._paused:
                    self._parked.setdefault(event.token_address, []).append(event)
                    await self._settle(event.signature)
                    continue

                try:
                    outcome = await self.processor.process(event)
                except Exception as e:
                    self.failed += 1
                    logger.error(
                        f"Failed to apply transaction {event.signature}, continuing: {e}",
                        extra={"signature": event.signature, "token": event.token_address},
                    )
                    await self._settle(event.signature)
                    continue

                if outcome is ProcessOutcome.DUPLICATE:
                    self.duplicates += 1
                else:
                    self.processed += 1
                await self._settle(event.signature)
        finally:
            self.state = QueueState.IDLE
            self._idle.set()

    async def _settle(self, signature: str):
        self._outstanding[signature] -= 1
        if self._outstanding[signature] <= 0:
            del self._outstanding[signature]
        async with self._settled:
            self._settled.notify_all()

    async def wait_idle(self):
        await self._idle.wait()

    async def wait_settled(self, signatures):
        """Wait until none of `signatures` is buffered or in flight."""
        wanted = set(signatures)
        if not wanted:
            return
        async with self._settled:
            await self._settled.wait_for(lambda: not (wanted & self._outstanding.keys()))

    # --- per-token pause (backfill) ------------------------------------------

    def pause_token(self, token_address: str):
        self._paused.add(token_address)
        logger.info(f"Live ingestion paused for {token_address}", extra={"token": token_address})

    def resume_token(self, token_address: str):
        self._paused.discard(token_address)
        parked = self._parked.pop(token_address, [])
        logger.info(f"Live ingestion resumed for {token_address} ({len(parked)} parked)",
                    extra={"token": token_address})
        if parked:
            self._buffer.extendleft(reversed(parked))
            self._outstanding.update(e.signature for e in parked)
            self._start_drain()

    def is_paused(self, token_address: str) -> bool:
        return token_address in self._paused

    def stats(self) -> dict:
        return {
            "state": self.state.value,
            "queue_length": len(self._buffer),
            "processed": self.processed,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "parked": sum(len(v) for v in self._parked.values()),
            "paused_tokens": sorted(self._paused),
        }
