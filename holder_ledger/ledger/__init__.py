from holder_ledger.ledger.fifo import FIFOLedger
from holder_ledger.ledger.positions import PositionUpdater
from holder_ledger.ledger.registry import TokenRegistry, ensure_holder, ensure_token

__all__ = ["FIFOLedger", "PositionUpdater", "TokenRegistry", "ensure_holder", "ensure_token"]
