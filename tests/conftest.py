from decimal import Decimal
from types import SimpleNamespace

import pytest

from holder_ledger.ingestion.models import TransactionEvent, TransactionType
from holder_ledger.ingestion.processor import TransactionProcessor
from holder_ledger.ingestion.queue import IngestionQueue
from holder_ledger.ledger import FIFOLedger, PositionUpdater
from holder_ledger.store.memory import MemoryStore

TOKEN = "TokenMint1111111111111111111111111111111111"
WALLET = "Wallet11111111111111111111111111111111111111"
BASE_TIME = 1_700_000_000


@pytest.fixture
def make_tx():
    """Factory for TransactionEvent with sensible defaults."""
    def _make(signature, tx_type="buy", amount="100", price="1", block_time=BASE_TIME,
              slot=None, token=TOKEN, wallet=WALLET):
        amount = Decimal(str(amount))
        price = Decimal(str(price))
        return TransactionEvent(
            signature=signature,
            token_address=token,
            wallet_address=wallet,
            transaction_type=TransactionType(tx_type),
            amount=amount,
            price_per_token=price,
            total_value=abs(amount) * price,
            block_time=block_time,
            slot=slot if slot is not None else block_time,
        )
    return _make


@pytest.fixture
def raw_tx():
    """Factory for inbound camelCase transaction objects."""
    def _make(signature, tx_type="buy", amount=100, price=1, block_time=BASE_TIME,
              slot=None, token=TOKEN, wallet=WALLET):
        return {
            "signature": signature,
            "tokenAddress": token,
            "walletAddress": wallet,
            "type": tx_type,
            "amount": amount,
            "pricePerToken": price,
            "totalValue": abs(amount) * price,
            "blockTime": block_time,
            "slot": slot if slot is not None else block_time,
        }
    return _make


@pytest.fixture
def stack():
    """Memory store wired to ledger, processor and live queue."""
    store = MemoryStore()
    ledger = FIFOLedger(store)
    processor = TransactionProcessor(store, PositionUpdater(ledger))
    queue = IngestionQueue(processor)
    return SimpleNamespace(store=store, ledger=ledger, processor=processor, queue=queue)


@pytest.fixture
def read_holder():
    async def _read(store, wallet=WALLET, token=TOKEN):
        async with store.session() as session:
            t = await session.get_token(token)
            if t is None:
                return None
            return await session.get_holder(t.id, wallet)
    return _read
