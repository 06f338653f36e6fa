"""
In-memory ledger store.

Sessions write straight into the committed state and journal the previous
value of every key they touch. A session that exits with an exception
replays the journal backwards, so a failing unit leaves nothing behind.
Cost is proportional to the writes of a unit, not to the size of the state.

Stored rows are never mutated in place; every write puts a fresh copy.
Sessions are serialized, the way a single connection would be; do not open
one session while holding another. Used by the test suite and for local runs
without Postgres (STORE_BACKEND=memory).
"""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from holder_ledger.errors import DuplicateTransaction
from holder_ledger.ingestion.models import CostBasisLot, Holder, Token, TransactionEvent
from holder_ledger.store.base import LedgerSession, LedgerStore

_MISSING = object()


@dataclass
class _State:
    tokens: Dict[str, Token] = field(default_factory=dict)
    holders: Dict[Tuple[int, str], Holder] = field(default_factory=dict)
    transactions: Dict[str, dict] = field(default_factory=dict)
    lots: Dict[int, CostBasisLot] = field(default_factory=dict)
    next_id: Dict[str, int] = field(default_factory=lambda: {"token": 1, "holder": 1, "transaction": 1, "lot": 1})


class MemorySession(LedgerSession):

    def __init__(self, state: _State):
        self.state = state
        self._undo: List[Tuple[dict, Any, Any]] = []

    # --- journal -------------------------------------------------------------

    def _put(self, table: dict, key, value):
        self._undo.append((table, key, table.get(key, _MISSING)))
        table[key] = value

    def _delete(self, table: dict, key):
        self._undo.append((table, key, table[key]))
        del table[key]

    def _allocate(self, kind: str) -> int:
        value = self.state.next_id[kind]
        self._put(self.state.next_id, kind, value + 1)
        return value

    def rollback(self):
        for table, key, previous in reversed(self._undo):
            if previous is _MISSING:
                table.pop(key, None)
            else:
                table[key] = previous
        self._undo.clear()

    # --- transactions --------------------------------------------------------

    async def transaction_exists(self, signature):
        return signature in self.state.transactions

    async def insert_transaction(self, event: TransactionEvent, token_id, holder_id):
        if event.signature in self.state.transactions:
            raise DuplicateTransaction(event.signature)
        tx_id = self._allocate("transaction")
        self._put(self.state.transactions, event.signature, {
            "id": tx_id,
            "token_id": token_id,
            "holder_id": holder_id,
            "event": event,
        })
        return tx_id

    # --- tokens --------------------------------------------------------------

    async def get_token(self, address):
        token = self.state.tokens.get(address)
        return replace(token) if token else None

    async def insert_token(self, token):
        existing = self.state.tokens.get(token.address)
        if existing:
            return replace(existing), False
        stored = replace(token, id=self._allocate("token"))
        self._put(self.state.tokens, stored.address, stored)
        return replace(stored), True

    async def update_token(self, token):
        self._put(self.state.tokens, token.address, replace(token))

    # --- holders -------------------------------------------------------------

    async def get_holder(self, token_id, wallet_address, for_update=False):
        holder = self.state.holders.get((token_id, wallet_address))
        return replace(holder) if holder else None

    async def insert_holder(self, holder):
        key = (holder.token_id, holder.wallet_address)
        existing = self.state.holders.get(key)
        if existing:
            return replace(existing), False
        stored = replace(holder, id=self._allocate("holder"))
        self._put(self.state.holders, key, stored)
        return replace(stored), True

    async def save_holder(self, holder):
        self._put(self.state.holders, (holder.token_id, holder.wallet_address), replace(holder))

    async def active_holders(self, token_id):
        return [
            replace(h) for h in self.state.holders.values()
            if h.token_id == token_id and h.is_active and h.current_balance > 0
        ]

    # --- lots ----------------------------------------------------------------

    async def insert_lot(self, lot):
        stored = replace(lot, id=self._allocate("lot"))
        self._put(self.state.lots, stored.id, stored)
        return replace(stored)

    async def open_lots(self, holder_id, for_update=False):
        lots = [l for l in self.state.lots.values() if l.holder_id == holder_id and l.remaining_amount > 0]
        lots.sort(key=lambda l: (l.purchase_timestamp, l.id))
        return [replace(l) for l in lots]

    async def update_lot_remaining(self, lot):
        stored = self.state.lots[lot.id]
        self._put(self.state.lots, lot.id, replace(stored, remaining_amount=lot.remaining_amount))

    async def delete_exhausted_lots(self, holder_id=None):
        doomed = [
            lot_id for lot_id, l in self.state.lots.items()
            if l.remaining_amount == 0 and (holder_id is None or l.holder_id == holder_id)
        ]
        for lot_id in doomed:
            self._delete(self.state.lots, lot_id)
        return len(doomed)

    async def open_lots_for_token(self, token_id):
        holder_ids = {h.id for h in self.state.holders.values() if h.token_id == token_id}
        lots = [l for l in self.state.lots.values() if l.holder_id in holder_ids and l.remaining_amount > 0]
        lots.sort(key=lambda l: (l.purchase_timestamp, l.id))
        return [replace(l) for l in lots]

    # Test/inspection helper: every lot including exhausted ones
    def all_lots(self, holder_id: Optional[int] = None) -> List[CostBasisLot]:
        return [
            replace(l) for l in sorted(self.state.lots.values(), key=lambda l: l.id)
            if holder_id is None or l.holder_id == holder_id
        ]


class MemoryStore(LedgerStore):

    def __init__(self):
        self._state = _State()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def session(self):
        async with self._lock:
            session = MemorySession(self._state)
            try:
                yield session
            except BaseException:
                session.rollback()
                raise

    @property
    def transaction_count(self) -> int:
        return len(self._state.transactions)
