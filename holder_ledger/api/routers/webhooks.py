import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException, Request

from holder_ledger.core.config import FEED_WEBHOOK_SECRET, INGESTION_ENABLED
from holder_ledger.core.logger import log_event
from holder_ledger.errors import EventValidationError
from holder_ledger.ingestion.models import TransactionEvent
from holder_ledger.ingestion.normalize import parse_feed_message

logger = logging.getLogger("api.webhooks")
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _check_auth(request: Request):
    if not FEED_WEBHOOK_SECRET:
        return

    auth_header = request.headers.get("authorization")
    if not auth_header:
        logger.warning("Webhook received without authorization header")
        raise HTTPException(status_code=401, detail="missing authorization header")

    prefix = "bearer "
    if not auth_header.lower().startswith(prefix):
        logger.warning(f"Invalid auth header format: {auth_header[:20]}...")
        raise HTTPException(status_code=401, detail="invalid authorization format")

    if auth_header[len(prefix):].strip() != FEED_WEBHOOK_SECRET:
        logger.error("Unauthorized webhook secret")
        raise HTTPException(status_code=401, detail="unauthorized")


@router.post("/feed")
async def feed_webhook(request: Request):
    """
    Accepts a JSON list of feed messages, either envelopes
    {"type": ..., "payload": {...}} or bare transaction objects.

    Malformed messages are counted and dropped. Valid ones go through the
    feed dispatcher; the response is sent once this batch has been
    dispatched and its transactions are no longer queued or in flight.
    """
    _check_auth(request)

    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        logger.error(f"Failed to parse webhook JSON: {e}")
        return {"status": "ignored", "reason": "invalid_json"}

    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        logger.warning("Webhook payload is not a list")
        return {"status": "ignored", "reason": "not_a_list"}

    events_received = len(payload)

    # ====================
    # SAFE MODE
    # ====================
    if not INGESTION_ENABLED:
        logger.info(f"Ingestion disabled, ignoring {events_received} events")
        return {
            "status": "ok",
            "ingestion": "disabled",
            "events_received": events_received,
        }

    dispatcher = request.app.state.dispatcher
    queue = request.app.state.queue

    ignored_invalid = 0
    dispatched = []
    signatures = []
    for message in payload:
        try:
            event = parse_feed_message(message)
        except EventValidationError as e:
            ignored_invalid += 1
            logger.warning(f"Dropping invalid feed message: {e}", extra={"signature": e.signature})
            continue
        dispatched.append(await dispatcher.publish(event))
        if isinstance(event, TransactionEvent):
            signatures.append(event.signature)

    # this batch only, not the whole queue
    await asyncio.gather(*dispatched)
    await queue.wait_settled(signatures)
    accepted = len(dispatched)

    stats = {
        "events_received": events_received,
        "accepted": accepted,
        "ignored_invalid": ignored_invalid,
    }
    log_event(logger, "webhook_batch", stats)
    return {"status": "ok", **stats}
