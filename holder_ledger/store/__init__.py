from holder_ledger.core.config import STORE_BACKEND
from holder_ledger.store.base import LedgerSession, LedgerStore
from holder_ledger.store.memory import MemoryStore


def create_store(backend: str = STORE_BACKEND) -> LedgerStore:
    """Build the configured store backend."""
    if backend == "memory":
        return MemoryStore()
    if backend == "postgres":
        from holder_ledger.store.postgres import PostgresStore
        return PostgresStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


__all__ = ["LedgerSession", "LedgerStore", "MemoryStore", "create_store"]
