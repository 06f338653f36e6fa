"""
Historical Backfill
===================

Applies a token's history synchronously, oldest first, before live events
for that token are allowed through.

Procedure:
1. Normalize; malformed items are dropped and logged.
2. Pause live ingestion for the token (live items are parked, not lost).
3. Sort by (block_time, slot) ascending.
4. Apply one at a time through the processor (same single-flight lock as
   the live queue; already committed signatures are no-ops).
5. Resume the token, whether or not step 4 succeeded.

A failing item aborts the backfill and propagates; everything applied before
it stays committed, so a rerun picks up where it stopped.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Union

from holder_ledger.errors import EventValidationError
from holder_ledger.ingestion.history import HistoryClient
from holder_ledger.ingestion.models import TransactionEvent
from holder_ledger.ingestion.normalize import parse_transaction
from holder_ledger.ingestion.processor import ProcessOutcome, TransactionProcessor
from holder_ledger.ingestion.queue import IngestionQueue

logger = logging.getLogger("ingestion.backfill")


@dataclass
class BackfillReport:
    token_address: str
    received: int = 0
    applied: int = 0
    duplicates: int = 0
    invalid: int = 0


class Backfiller:

    def __init__(self, processor: TransactionProcessor, queue: IngestionQueue,
                 history: Optional[HistoryClient] = None):
        self.processor = processor
        self.queue = queue
        self.history = history or HistoryClient()
        self.backfilled: Set[str] = set()

    def _normalize(self, token_address: str, items, report: BackfillReport) -> List[TransactionEvent]:
        events = []
        for item in items:
            report.received += 1
            try:
                event = item if isinstance(item, TransactionEvent) else parse_transaction(item)
            except EventValidationError as e:
                report.invalid += 1
                logger.warning(f"Dropping invalid historical transaction: {e}",
                               extra={"signature": e.signature, "token": token_address})
                continue
            if event.token_address != token_address:
                report.invalid += 1
                logger.warning(f"Dropping historical transaction for other token {event.token_address}",
                               extra={"signature": event.signature, "token": token_address})
                continue
            events.append(event)
        return events

    async def run(self, token_address: str,
                  items: Iterable[Union[TransactionEvent, dict]]) -> BackfillReport:
        report = BackfillReport(token_address=token_address)
        events = self._normalize(token_address, items, report)
        events.sort(key=lambda e: (e.block_time, e.slot))

        logger.info(f"Starting historical data processing for {token_address} ({len(events)} transactions)",
                    extra={"token": token_address})

        self.queue.pause_token(token_address)
        try:
            for event in events:
                outcome = await self.processor.process(event)
                if outcome is ProcessOutcome.DUPLICATE:
                    report.duplicates += 1
                else:
                    report.applied += 1
        except Exception as e:
            logger.error(f"Error processing historical data for {token_address}: {e}",
                         extra={"token": token_address})
            raise
        finally:
            self.queue.resume_token(token_address)

        self.backfilled.add(token_address)
        logger.info(
            f"Completed historical data processing for {token_address}: "
            f"{report.applied} applied, {report.duplicates} duplicates, {report.invalid} invalid",
            extra={"token": token_address},
        )
        return report

    async def fetch_and_run(self, token_address: str, from_timestamp: Optional[int] = None) -> BackfillReport:
        items = await self.history.get_historical_transactions(token_address, from_timestamp)
        return await self.run(token_address, items)
