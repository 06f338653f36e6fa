"""
PostgreSQL ledger store (psycopg 3 + psycopg_pool).

A session is one pooled connection inside one transaction block: it commits
when the block exits cleanly and rolls back otherwise. Driver errors leave the
session as PersistenceError.
"""
import logging
from contextlib import asynccontextmanager

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from holder_ledger.core.config import (
    DATABASE_URL,
    DB_CONNECT_TIMEOUT,
    DB_POOL_MAX_SIZE,
    DB_POOL_MIN_SIZE,
)
from holder_ledger.errors import DuplicateTransaction, PersistenceError
from holder_ledger.ingestion.models import CostBasisLot, Holder, Token, TokenStatus
from holder_ledger.store.base import LedgerSession, LedgerStore

logger = logging.getLogger("store.postgres")

TOKEN_COLUMNS = """
    id, address, symbol, name, decimals, mint_authority, total_supply,
    launch_timestamp, graduation_timestamp, status, metadata
"""

HOLDER_COLUMNS = """
    id, token_id, wallet_address, current_balance, total_bought, total_sold,
    total_bought_cost, average_buy_price, realized_pnl, first_buy_timestamp,
    last_transaction_timestamp, is_active
"""

LOT_COLUMNS = """
    id, holder_id, transaction_id, original_amount, remaining_amount,
    price_per_token, purchase_timestamp
"""


def _token(row) -> Token:
    return Token(
        id=row["id"],
        address=row["address"],
        symbol=row["symbol"],
        name=row["name"],
        decimals=row["decimals"],
        mint_authority=row["mint_authority"],
        total_supply=row["total_supply"],
        launch_timestamp=row["launch_timestamp"],
        graduation_timestamp=row["graduation_timestamp"],
        status=TokenStatus(row["status"]),
        metadata=row["metadata"],
    )


def _holder(row) -> Holder:
    return Holder(**row)


def _lot(row) -> CostBasisLot:
    return CostBasisLot(**row)


class PostgresSession(LedgerSession):

    def __init__(self, cur: psycopg.AsyncCursor):
        self.cur = cur

    async def _one(self, sql, params=()):
        await self.cur.execute(sql, params)
        return await self.cur.fetchone()

    async def _all(self, sql, params=()):
        await self.cur.execute(sql, params)
        return await self.cur.fetchall()

    # --- transactions -------------------------------------------------------

    async def transaction_exists(self, signature):
        row = await self._one("SELECT 1 AS hit FROM transactions WHERE signature = %s", (signature,))
        return row is not None

    async def insert_transaction(self, event, token_id, holder_id):
        row = await self._one(
            """
            INSERT INTO transactions (
                token_id, holder_id, signature, wallet_address, transaction_type,
                amount, price_per_token, total_value, block_time, slot,
                block_hash, instruction_index, inner_instruction_index
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (signature) DO NOTHING
            RETURNING id
            """,
            (
                token_id, holder_id, event.signature, event.wallet_address,
                event.transaction_type.value, event.amount, event.price_per_token,
                event.total_value, event.block_datetime, event.slot,
                event.block_hash, event.instruction_index, event.inner_instruction_index,
            ),
        )
        if row is None:
            raise DuplicateTransaction(event.signature)
        return row["id"]

    # --- tokens ---------------------------------------------------------------

    async def get_token(self, address):
        row = await self._one(f"SELECT {TOKEN_COLUMNS} FROM tokens WHERE address = %s", (address,))
        return _token(row) if row else None

    async def insert_token(self, token):
        row = await self._one(
            f"""
            INSERT INTO tokens (
                address, symbol, name, decimals, mint_authority, total_supply,
                launch_timestamp, graduation_timestamp, status, metadata
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (address) DO NOTHING
            RETURNING {TOKEN_COLUMNS}
            """,
            (
                token.address, token.symbol, token.name, token.decimals,
                token.mint_authority, token.total_supply, token.launch_timestamp,
                token.graduation_timestamp, token.status.value,
                Jsonb(token.metadata) if token.metadata is not None else None,
            ),
        )
        if row:
            return _token(row), True
        # Lost the race (or already present): fetch the winner
        return await self.get_token(token.address), False

    async def update_token(self, token):
        await self.cur.execute(
            """
            UPDATE tokens SET
                symbol = %s,
                name = %s,
                decimals = %s,
                mint_authority = %s,
                total_supply = %s,
                launch_timestamp = %s,
                graduation_timestamp = %s,
                status = %s,
                metadata = %s,
                updated_at = NOW()
            WHERE address = %s
            """,
            (
                token.symbol, token.name, token.decimals, token.mint_authority,
                token.total_supply, token.launch_timestamp, token.graduation_timestamp,
                token.status.value,
                Jsonb(token.metadata) if token.metadata is not None else None,
                token.address,
            ),
        )

    # --- holders --------------------------------------------------------------

    async def get_holder(self, token_id, wallet_address, for_update=False):
        lock = " FOR UPDATE" if for_update else ""
        row = await self._one(
            f"SELECT {HOLDER_COLUMNS} FROM holders WHERE token_id = %s AND wallet_address = %s{lock}",
            (token_id, wallet_address),
        )
        return _holder(row) if row else None

    async def insert_holder(self, holder):
        row = await self._one(
            f"""
            INSERT INTO holders (token_id, wallet_address)
            VALUES (%s, %s)
            ON CONFLICT (token_id, wallet_address) DO NOTHING
            RETURNING {HOLDER_COLUMNS}
            """,
            (holder.token_id, holder.wallet_address),
        )
        if row:
            return _holder(row), True
        return await self.get_holder(holder.token_id, holder.wallet_address, for_update=True), False

    async def save_holder(self, holder):
        await self.cur.execute(
            """
            UPDATE holders SET
                current_balance = %s,
                total_bought = %s,
                total_sold = %s,
                total_bought_cost = %s,
                average_buy_price = %s,
                realized_pnl = %s,
                first_buy_timestamp = COALESCE(first_buy_timestamp, %s),
                last_transaction_timestamp = %s,
                is_active = %s,
                updated_at = NOW()
            WHERE id = %s
            """,
            (
                holder.current_balance, holder.total_bought, holder.total_sold,
                holder.total_bought_cost, holder.average_buy_price, holder.realized_pnl,
                holder.first_buy_timestamp, holder.last_transaction_timestamp,
                holder.is_active, holder.id,
            ),
        )

    async def active_holders(self, token_id):
        rows = await self._all(
            f"""
            SELECT {HOLDER_COLUMNS} FROM holders
            WHERE token_id = %s AND is_active = true AND current_balance > 0
            ORDER BY id
            """,
            (token_id,),
        )
        return [_holder(r) for r in rows]

    # --- cost basis lots ------------------------------------------------------

    async def insert_lot(self, lot):
        row = await self._one(
            f"""
            INSERT INTO cost_basis_lots (
                holder_id, transaction_id, original_amount, remaining_amount,
                price_per_token, purchase_timestamp
            )
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {LOT_COLUMNS}
            """,
            (
                lot.holder_id, lot.transaction_id, lot.original_amount,
                lot.remaining_amount, lot.price_per_token, lot.purchase_timestamp,
            ),
        )
        return _lot(row)

    async def open_lots(self, holder_id, for_update=False):
        lock = " FOR UPDATE" if for_update else ""
        rows = await self._all(
            f"""
            SELECT {LOT_COLUMNS} FROM cost_basis_lots
            WHERE holder_id = %s AND remaining_amount > 0
            ORDER BY purchase_timestamp ASC, id ASC{lock}
            """,
            (holder_id,),
        )
        return [_lot(r) for r in rows]

    async def update_lot_remaining(self, lot):
        await self.cur.execute(
            """
            UPDATE cost_basis_lots SET
                remaining_amount = %s,
                updated_at = NOW()
            WHERE id = %s
            """,
            (lot.remaining_amount, lot.id),
        )

    async def delete_exhausted_lots(self, holder_id=None):
        if holder_id is None:
            await self.cur.execute("DELETE FROM cost_basis_lots WHERE remaining_amount = 0")
        else:
            await self.cur.execute(
                "DELETE FROM cost_basis_lots WHERE remaining_amount = 0 AND holder_id = %s",
                (holder_id,),
            )
        return self.cur.rowcount

    async def open_lots_for_token(self, token_id):
        rows = await self._all(
            """
            SELECT cb.id, cb.holder_id, cb.transaction_id, cb.original_amount,
                   cb.remaining_amount, cb.price_per_token, cb.purchase_timestamp
            FROM cost_basis_lots cb
            JOIN holders h ON cb.holder_id = h.id
            WHERE h.token_id = %s AND cb.remaining_amount > 0
            ORDER BY cb.purchase_timestamp ASC, cb.id ASC
            """,
            (token_id,),
        )
        return [_lot(r) for r in rows]


class PostgresStore(LedgerStore):

    def __init__(self, conninfo=DATABASE_URL, min_size=DB_POOL_MIN_SIZE,
                 max_size=DB_POOL_MAX_SIZE, timeout=DB_CONNECT_TIMEOUT):
        self.conninfo = conninfo
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.pool: AsyncConnectionPool = None

    async def open(self):
        logger.info("Initializing async connection pool...")
        self.pool = AsyncConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            open=False,
        )
        await self.pool.open()
        logger.info("Async pool initialized.")

    async def close(self):
        if self.pool:
            logger.info("Closing async pool...")
            await self.pool.close()
            self.pool = None
            logger.info("Async pool closed.")

    @asynccontextmanager
    async def session(self):
        if not self.pool:
            raise RuntimeError("Database pool not initialized")
        try:
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor(row_factory=dict_row) as cur:
                        yield PostgresSession(cur)
        except psycopg.Error as e:
            logger.error(f"Store session rolled back: {e}")
            raise PersistenceError(str(e)) from e

    async def ping(self):
        try:
            async with self.session() as s:
                await s.cur.execute("SELECT 1")
            return True
        except PersistenceError:
            return False

    async def apply_schema(self, path):
        """Run a schema file in one transaction."""
        with open(path, "r") as f:
            sql = f.read()
        async with self.pool.connection() as conn:
            async with conn.cursor() as cur:
                logger.info(f"Applying schema {path}...")
                await cur.execute(sql)
            await conn.commit()
        logger.info("Applied.")
