"""
Backfill one or more tokens from the history API (or a local JSON file of
feed transactions) straight into the configured store.

    python scripts/backfill_token.py <mint> [<mint> ...] [--from TS] [--file history.json]
"""
import argparse
import asyncio
import json
import logging

from holder_ledger.core.config import LOG_LEVEL
from holder_ledger.core.logger import configure_logging
from holder_ledger.ingestion.backfill import Backfiller
from holder_ledger.ingestion.processor import TransactionProcessor
from holder_ledger.ingestion.queue import IngestionQueue
from holder_ledger.ledger import FIFOLedger, PositionUpdater
from holder_ledger.store import create_store

logger = logging.getLogger("scripts.backfill_token")


async def main(args):
    store = create_store()
    await store.open()
    try:
        processor = TransactionProcessor(store, PositionUpdater(FIFOLedger(store)))
        backfiller = Backfiller(processor, IngestionQueue(processor))

        file_items = None
        if args.file:
            with open(args.file, "r") as f:
                data = json.load(f)
            file_items = data.get("transactions", []) if isinstance(data, dict) else data

        for token in args.tokens:
            if file_items is not None:
                report = await backfiller.run(token, file_items)
            else:
                report = await backfiller.fetch_and_run(token, args.from_timestamp)
            logger.info(
                f"{token}: {report.applied} applied, {report.duplicates} duplicates, "
                f"{report.invalid} invalid of {report.received}",
                extra={"token": token},
            )
    finally:
        await store.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Backfill token transaction history")
    parser.add_argument("tokens", nargs="+", help="token mint addresses")
    parser.add_argument("--from", dest="from_timestamp", type=int, default=None,
                        help="only fetch transactions at or after this unix timestamp")
    parser.add_argument("--file", default=None, help="read transactions from a JSON file instead of the API")
    configure_logging(LOG_LEVEL)
    asyncio.run(main(parser.parse_args()))
