import asyncio
import sys

from holder_ledger.core.config import LOG_LEVEL
from holder_ledger.core.logger import configure_logging
from holder_ledger.store.postgres import PostgresStore

DEFAULT_SCHEMA = "schema/001_holder_ledger.sql"


async def apply(path):
    store = PostgresStore()
    await store.open()
    try:
        await store.apply_schema(path)
    finally:
        await store.close()


if __name__ == "__main__":
    configure_logging(LOG_LEVEL)
    asyncio.run(apply(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_SCHEMA))
