"""
Ingestion Router
================
Operational endpoints: queue stats, historical backfill and lot cleanup.
"""
import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Body, HTTPException, Request

logger = logging.getLogger("api.ingestion")
router = APIRouter(prefix="/ingestion", tags=["ingestion"])


@router.get("/stats")
async def get_ingestion_stats(request: Request):
    state = request.app.state
    return {
        "queue": state.queue.stats(),
        "feed": {
            "connection_state": state.dispatcher.connection_state,
            "ignored_untracked": state.dispatcher.ignored_untracked,
        },
        "backfilled_tokens": sorted(state.backfiller.backfilled),
    }


@router.post("/backfill/{token_address}")
async def backfill_token(
    request: Request,
    token_address: str,
    from_timestamp: Optional[int] = None,
    transactions: Optional[List[Dict[str, Any]]] = Body(default=None),
):
    """
    Backfill a token's history. With a JSON list body those transactions are
    applied; otherwise history is pulled from the configured history API.
    """
    backfiller = request.app.state.backfiller
    try:
        if transactions is not None:
            report = await backfiller.run(token_address, transactions)
        else:
            report = await backfiller.fetch_and_run(token_address, from_timestamp)
    except httpx.HTTPError as e:
        raise HTTPException(status_code=502, detail=f"history fetch failed: {e}")
    except Exception as e:
        logger.error(f"Backfill failed for {token_address}: {e}", extra={"token": token_address})
        raise HTTPException(status_code=500, detail="backfill failed")

    return {"status": "ok", **asdict(report)}


@router.post("/cleanup")
async def cleanup_lots(request: Request):
    removed = await request.app.state.ledger.cleanup()
    return {"status": "ok", "removed_lots": removed}
