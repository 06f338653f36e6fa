"""
Feed Payload Normalization
==========================
Validates raw feed messages (camelCase JSON) and converts them into the
frozen event dataclasses in `models`. Anything malformed raises
EventValidationError; callers drop and log it.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from holder_ledger.errors import EventValidationError
from holder_ledger.ingestion.models import (
    ConnectionStateEvent,
    FeedEvent,
    GraduationEvent,
    LaunchEvent,
    TransactionEvent,
    TransactionType,
)

logger = logging.getLogger("ingestion.normalize")

# 9999-12-31T23:59:59Z, the last second a datetime can hold. Rejects millisecond timestamps.
MAX_BLOCK_TIME = 253_402_300_799


def _decimal_from_number(value):
    # floats go through str() so 0.1 stays 0.1 instead of its binary expansion
    if isinstance(value, float):
        return str(value)
    return value


class _FeedModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class TransactionPayload(_FeedModel):
    signature: str = Field(min_length=1)
    token_address: str = Field(alias="tokenAddress", min_length=1)
    wallet_address: str = Field(alias="walletAddress", min_length=1)
    type: TransactionType
    amount: Decimal
    price_per_token: Decimal = Field(alias="pricePerToken", ge=0)
    total_value: Decimal = Field(default=Decimal(0), alias="totalValue")
    block_time: int = Field(alias="blockTime", ge=0, le=MAX_BLOCK_TIME)
    slot: int = Field(ge=0)
    block_hash: Optional[str] = Field(default=None, alias="blockHash")
    instruction_index: Optional[int] = Field(default=None, alias="instructionIndex")
    inner_instruction_index: Optional[int] = Field(default=None, alias="innerInstructionIndex")

    @field_validator("amount", "price_per_token", "total_value", mode="before")
    @classmethod
    def parse_numbers(cls, value):
        return _decimal_from_number(value)

    @model_validator(mode="after")
    def check_amount_sign(self):
        if self.type is TransactionType.TRANSFER:
            if self.amount == 0:
                raise ValueError("transfer amount must be non-zero")
        elif self.amount <= 0:
            raise ValueError(f"{self.type.value} amount must be positive")
        return self

    def to_event(self) -> TransactionEvent:
        return TransactionEvent(
            signature=self.signature,
            token_address=self.token_address,
            wallet_address=self.wallet_address,
            transaction_type=self.type,
            amount=self.amount,
            price_per_token=self.price_per_token,
            total_value=self.total_value,
            block_time=self.block_time,
            slot=self.slot,
            block_hash=self.block_hash,
            instruction_index=self.instruction_index,
            inner_instruction_index=self.inner_instruction_index,
        )


class LaunchPayload(_FeedModel):
    token_address: str = Field(alias="tokenAddress", min_length=1)
    symbol: Optional[str] = None
    name: Optional[str] = None
    decimals: Optional[int] = Field(default=None, ge=0)
    mint_authority: Optional[str] = Field(default=None, alias="mintAuthority")
    launch_timestamp: Optional[int] = Field(default=None, alias="launchTimestamp", ge=0, le=MAX_BLOCK_TIME)
    total_supply: Optional[Decimal] = Field(default=None, alias="totalSupply")
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("total_supply", mode="before")
    @classmethod
    def parse_numbers(cls, value):
        return _decimal_from_number(value)

    def to_event(self) -> LaunchEvent:
        return LaunchEvent(
            token_address=self.token_address,
            symbol=self.symbol,
            name=self.name,
            decimals=self.decimals,
            mint_authority=self.mint_authority,
            launch_timestamp=self.launch_timestamp,
            total_supply=self.total_supply,
            metadata=self.metadata,
        )


class GraduationPayload(_FeedModel):
    token_address: str = Field(alias="tokenAddress", min_length=1)
    timestamp: int = Field(ge=0, le=MAX_BLOCK_TIME)
    final_price: Optional[Decimal] = Field(default=None, alias="finalPrice")
    total_raised: Optional[Decimal] = Field(default=None, alias="totalRaised")
    pool_address: Optional[str] = Field(default=None, alias="poolAddress")

    @field_validator("final_price", "total_raised", mode="before")
    @classmethod
    def parse_numbers(cls, value):
        return _decimal_from_number(value)

    def to_event(self) -> GraduationEvent:
        return GraduationEvent(
            token_address=self.token_address,
            graduation_timestamp=self.timestamp,
            final_price=self.final_price,
            total_raised=self.total_raised,
            pool_address=self.pool_address,
        )


class ConnectionPayload(_FeedModel):
    state: str = Field(min_length=1)
    detail: Optional[str] = None

    def to_event(self) -> ConnectionStateEvent:
        return ConnectionStateEvent(state=self.state, detail=self.detail)


MESSAGE_TYPES = {
    "transaction": TransactionPayload,
    "token_launch": LaunchPayload,
    "launch": LaunchPayload,
    "token_graduation": GraduationPayload,
    "graduation": GraduationPayload,
    "connection": ConnectionPayload,
}


def _describe(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e.get("loc", ()))
        parts.append(f"{loc}: {e.get('msg')}" if loc else e.get("msg", ""))
    return "; ".join(parts)


def parse_transaction(raw: Any) -> TransactionEvent:
    """Validate one inbound transaction object against the feed contract."""
    signature = raw.get("signature") if isinstance(raw, dict) else None
    try:
        return TransactionPayload.model_validate(raw).to_event()
    except ValidationError as e:
        raise EventValidationError(f"invalid transaction: {_describe(e)}", signature=signature) from e


def parse_feed_message(message: Any) -> FeedEvent:
    """
    Accepts either an envelope {"type": ..., "payload": {...}} or a bare
    transaction object, and returns the matching feed event variant.
    """
    if not isinstance(message, dict):
        raise EventValidationError("feed message is not an object")

    if "payload" not in message:
        return parse_transaction(message)

    msg_type = message.get("type")
    model = MESSAGE_TYPES.get(msg_type)
    if model is None:
        raise EventValidationError(f"unknown feed message type: {msg_type!r}")

    if model is TransactionPayload:
        return parse_transaction(message["payload"])

    try:
        return model.model_validate(message["payload"]).to_event()
    except ValidationError as e:
        raise EventValidationError(f"invalid {msg_type} message: {_describe(e)}") from e
