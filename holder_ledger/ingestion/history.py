"""
Historical Transactions Client
==============================
Fetches a token's past transactions from the feed provider's REST API for
backfill. Returns raw feed objects; normalization happens in the backfill.
"""
import logging
from typing import List, Optional

import httpx

from holder_ledger.core.config import HISTORY_API_KEY, HISTORY_API_URL, HISTORY_PAGE_LIMIT

logger = logging.getLogger("ingestion.history")


class HistoryClient:

    def __init__(self, base_url: str = HISTORY_API_URL, api_key: str = HISTORY_API_KEY,
                 timeout: float = 15, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def get_historical_transactions(self, token_address: str, from_timestamp: Optional[int] = None,
                                          limit: int = HISTORY_PAGE_LIMIT) -> List[dict]:
        params = {"tokenAddress": token_address, "limit": limit}
        if from_timestamp:
            params["from"] = from_timestamp

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(f"{self.base_url}/transactions", params=params, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            logger.error(f"Error fetching historical transactions for {token_address}: {e}",
                         extra={"token": token_address})
            raise

        transactions = data.get("transactions", []) if isinstance(data, dict) else []
        logger.info(f"Retrieved {len(transactions)} historical transactions for {token_address}",
                    extra={"token": token_address})
        return transactions
