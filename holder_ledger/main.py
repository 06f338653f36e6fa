"""
Holder Ledger API
=================
Application entry point. Wires the store, ledger engine, ingestion pipeline
and analytics into app.state and mounts the routers.

    uvicorn holder_ledger.main:app
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

from holder_ledger import __version__
from holder_ledger.analytics.holders import HolderAnalytics
from holder_ledger.api.routers import analytics, holders, ingestion, webhooks
from holder_ledger.api.serialize import token_dict
from holder_ledger.core.config import INGESTION_ENABLED, LOG_LEVEL, TRACKED_TOKENS
from holder_ledger.core.logger import configure_logging
from holder_ledger.ingestion.backfill import Backfiller
from holder_ledger.ingestion.feed import FeedDispatcher
from holder_ledger.ingestion.history import HistoryClient
from holder_ledger.ingestion.processor import TransactionProcessor
from holder_ledger.ingestion.queue import IngestionQueue
from holder_ledger.ledger import FIFOLedger, PositionUpdater, TokenRegistry
from holder_ledger.store import LedgerStore, create_store

logger = logging.getLogger("app.main")


def create_app(store: Optional[LedgerStore] = None, history: Optional[HistoryClient] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(LOG_LEVEL)
        logger.info(f"[BOOT] INGESTION_ENABLED = {INGESTION_ENABLED}")
        logger.info(f"[BOOT] TRACKED_TOKENS = {sorted(TRACKED_TOKENS) or 'all'}")

        ledger_store = store or create_store()
        await ledger_store.open()

        ledger = FIFOLedger(ledger_store)
        processor = TransactionProcessor(ledger_store, PositionUpdater(ledger))
        queue = IngestionQueue(processor)
        registry = TokenRegistry(ledger_store)
        dispatcher = FeedDispatcher(queue, registry)

        app.state.store = ledger_store
        app.state.ledger = ledger
        app.state.processor = processor
        app.state.queue = queue
        app.state.registry = registry
        app.state.dispatcher = dispatcher
        app.state.backfiller = Backfiller(processor, queue, history)
        app.state.analytics = HolderAnalytics(ledger_store)

        dispatcher_task = asyncio.create_task(dispatcher.run())
        logger.info("Application startup complete.")
        try:
            yield
        finally:
            await dispatcher.stop()
            await dispatcher_task
            await queue.wait_idle()
            await ledger_store.close()
            logger.info("Application shutdown complete.")

    app = FastAPI(title="Holder Ledger", version=__version__, lifespan=lifespan)

    # ----- Mount Routers -----
    app.include_router(webhooks.router)
    app.include_router(holders.router)
    app.include_router(analytics.router)
    app.include_router(ingestion.router)

    @app.get("/tokens/{token_address}")
    async def get_token(token_address: str):
        token = await app.state.registry.get_token(token_address)
        if token is None:
            raise HTTPException(status_code=404, detail="token not found")
        return token_dict(token)

    # ----- Health Check -----
    @app.get("/health")
    async def health():
        health_status = {"status": "ok", "store": "disconnected"}
        try:
            if await app.state.store.ping():
                health_status["store"] = "connected"
        except Exception as e:
            logger.error(f"Health check store failed: {e}")
            health_status["status"] = "error"
            health_status["error"] = str(e)
        return health_status

    return app


app = create_app()
