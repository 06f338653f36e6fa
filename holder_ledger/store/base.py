from abc import ABC, abstractmethod
from typing import AsyncContextManager, List, Optional, Tuple

from holder_ledger.ingestion.models import CostBasisLot, Holder, Token, TransactionEvent


class LedgerSession(ABC):
    """
    One atomic unit of work against the ledger store.
    Everything done through a session commits together when the session
    context exits cleanly, and is rolled back if it exits with an exception.
    """

    # --- transactions -------------------------------------------------------

    @abstractmethod
    async def transaction_exists(self, signature: str) -> bool:
        pass

    @abstractmethod
    async def insert_transaction(self, event: TransactionEvent, token_id: int, holder_id: int) -> int:
        """Insert the committed form of an event. Raises DuplicateTransaction on signature conflict."""
        pass

    # --- tokens ---------------------------------------------------------------

    @abstractmethod
    async def get_token(self, address: str) -> Optional[Token]:
        pass

    @abstractmethod
    async def insert_token(self, token: Token) -> Tuple[Token, bool]:
        """Insert if absent. Returns (stored token, created)."""
        pass

    @abstractmethod
    async def update_token(self, token: Token) -> None:
        pass

    # --- holders --------------------------------------------------------------

    @abstractmethod
    async def get_holder(self, token_id: int, wallet_address: str, for_update: bool = False) -> Optional[Holder]:
        pass

    @abstractmethod
    async def insert_holder(self, holder: Holder) -> Tuple[Holder, bool]:
        """Insert if absent. Returns (stored holder, created)."""
        pass

    @abstractmethod
    async def save_holder(self, holder: Holder) -> None:
        pass

    @abstractmethod
    async def active_holders(self, token_id: int) -> List[Holder]:
        """Holders of the token with is_active and a positive balance."""
        pass

    # --- cost basis lots ------------------------------------------------------

    @abstractmethod
    async def insert_lot(self, lot: CostBasisLot) -> CostBasisLot:
        pass

    @abstractmethod
    async def open_lots(self, holder_id: int, for_update: bool = False) -> List[CostBasisLot]:
        """Lots with remaining_amount > 0 ordered by (purchase_timestamp, id)."""
        pass

    @abstractmethod
    async def update_lot_remaining(self, lot: CostBasisLot) -> None:
        pass

    @abstractmethod
    async def delete_exhausted_lots(self, holder_id: Optional[int] = None) -> int:
        pass

    @abstractmethod
    async def open_lots_for_token(self, token_id: int) -> List[CostBasisLot]:
        pass


class LedgerStore(ABC):
    """Persistence collaborator. Owns connections; hands out sessions."""

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    def session(self) -> AsyncContextManager[LedgerSession]:
        pass

    async def ping(self) -> bool:
        return True
