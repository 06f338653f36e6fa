from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional, List, Dict, Any, Union

ZERO = Decimal(0)


class TransactionType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    TRANSFER = "transfer"


class TokenStatus(str, Enum):
    TRACKING = "tracking"
    GRADUATED = "graduated"


def to_datetime(unix_seconds: Optional[int]) -> Optional[datetime]:
    if unix_seconds is None:
        return None
    return datetime.fromtimestamp(unix_seconds, tz=timezone.utc)


# ==============================================================================
# PERSISTED ENTITIES
# ==============================================================================

@dataclass
class Token:
    address: str
    id: Optional[int] = None
    symbol: Optional[str] = None
    name: Optional[str] = None
    decimals: Optional[int] = None
    mint_authority: Optional[str] = None
    total_supply: Optional[Decimal] = None
    launch_timestamp: Optional[datetime] = None
    graduation_timestamp: Optional[datetime] = None
    status: TokenStatus = TokenStatus.TRACKING
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class Holder:
    token_id: int
    wallet_address: str
    id: Optional[int] = None
    current_balance: Decimal = ZERO
    total_bought: Decimal = ZERO
    total_sold: Decimal = ZERO
    total_bought_cost: Decimal = ZERO
    average_buy_price: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    first_buy_timestamp: Optional[datetime] = None
    last_transaction_timestamp: Optional[datetime] = None
    is_active: bool = False


@dataclass
class CostBasisLot:
    """A purchase still (partially) available for FIFO consumption."""
    holder_id: int
    original_amount: Decimal
    remaining_amount: Decimal
    price_per_token: Decimal
    purchase_timestamp: datetime
    transaction_id: Optional[int] = None
    id: Optional[int] = None

    @property
    def open_cost(self) -> Decimal:
        return self.remaining_amount * self.price_per_token


# ==============================================================================
# FEED EVENTS (tagged by `kind`)
# ==============================================================================

@dataclass(frozen=True)
class TransactionEvent:
    kind: ClassVar[str] = "transaction"

    signature: str
    token_address: str
    wallet_address: str
    transaction_type: TransactionType
    amount: Decimal  # signed for transfers
    price_per_token: Decimal
    total_value: Decimal
    block_time: int  # unix seconds
    slot: int
    block_hash: Optional[str] = None
    instruction_index: Optional[int] = None
    inner_instruction_index: Optional[int] = None

    @property
    def block_datetime(self) -> datetime:
        return to_datetime(self.block_time)


@dataclass(frozen=True)
class LaunchEvent:
    kind: ClassVar[str] = "launch"

    token_address: str
    symbol: Optional[str] = None
    name: Optional[str] = None
    decimals: Optional[int] = None
    mint_authority: Optional[str] = None
    launch_timestamp: Optional[int] = None
    total_supply: Optional[Decimal] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class GraduationEvent:
    kind: ClassVar[str] = "graduation"

    token_address: str
    graduation_timestamp: int
    final_price: Optional[Decimal] = None
    total_raised: Optional[Decimal] = None
    pool_address: Optional[str] = None


@dataclass(frozen=True)
class ConnectionStateEvent:
    kind: ClassVar[str] = "connection"

    state: str  # connected | disconnected | error
    detail: Optional[str] = None


FeedEvent = Union[TransactionEvent, LaunchEvent, GraduationEvent, ConnectionStateEvent]


# ==============================================================================
# LEDGER RESULTS
# ==============================================================================

@dataclass
class SaleResult:
    realized_pnl: Decimal = ZERO
    matched_amount: Decimal = ZERO
    unmatched_amount: Decimal = ZERO
    consumed: List[CostBasisLot] = field(default_factory=list)

    @property
    def oversold(self) -> bool:
        return self.unmatched_amount > 0


@dataclass
class UnrealizedPnL:
    unrealized_pnl: Decimal = ZERO
    total_amount: Decimal = ZERO
    average_cost_basis: Decimal = ZERO
