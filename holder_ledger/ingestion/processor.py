import asyncio
import logging
from enum import Enum

from holder_ledger.errors import DuplicateTransaction
from holder_ledger.ingestion.models import TransactionEvent
from holder_ledger.ledger.positions import PositionUpdater
from holder_ledger.ledger.registry import ensure_holder, ensure_token
from holder_ledger.store.base import LedgerStore

logger = logging.getLogger("ingestion.processor")


class ProcessOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"


class TransactionProcessor:
    """
    Applies one transaction as one atomic unit: existence check, token and
    holder get-or-create, transaction row, position update and lot mutations
    all commit together or not at all.

    `apply_lock` makes application single-flight across every token and
    holder. The live queue and backfill both go through `process`.
    """

    def __init__(self, store: LedgerStore, updater: PositionUpdater):
        self.store = store
        self.updater = updater
        self.apply_lock = asyncio.Lock()

    async def is_committed(self, signature: str) -> bool:
        async with self.store.session() as session:
            return await session.transaction_exists(signature)

    async def process(self, event: TransactionEvent) -> ProcessOutcome:
        ctx = {"signature": event.signature, "token": event.token_address, "wallet": event.wallet_address}
        async with self.apply_lock:
            try:
                async with self.store.session() as session:
                    if await session.transaction_exists(event.signature):
                        logger.debug(f"Transaction {event.signature} already processed", extra=ctx)
                        return ProcessOutcome.DUPLICATE

                    token = await ensure_token(session, event.token_address)
                    holder = await ensure_holder(session, token.id, event.wallet_address)
                    transaction_id = await session.insert_transaction(event, token.id, holder.id)
                    await self.updater.apply(session, holder, event, transaction_id)
            except DuplicateTransaction:
                # Committed by someone else between the check and the insert
                logger.debug(f"Transaction {event.signature} already processed", extra=ctx)
                return ProcessOutcome.DUPLICATE
            except Exception as e:
                logger.error(f"Error processing transaction {event.signature}: {e}", extra=ctx)
                raise

        logger.debug(f"Successfully processed transaction: {event.signature}", extra=ctx)
        return ProcessOutcome.APPLIED
