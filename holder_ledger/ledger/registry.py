"""
Token / Holder registry: get-or-create keyed by the store's uniqueness
constraints, plus the token lifecycle updates carried by launch and
graduation feed events.
"""
import logging
from dataclasses import replace

from holder_ledger.ingestion.models import (
    GraduationEvent,
    Holder,
    LaunchEvent,
    Token,
    TokenStatus,
    to_datetime,
)
from holder_ledger.store.base import LedgerSession, LedgerStore

logger = logging.getLogger("ledger.registry")


async def ensure_token(session: LedgerSession, address: str) -> Token:
    token = await session.get_token(address)
    if token:
        return token

    token, created = await session.insert_token(Token(address=address))
    if created:
        logger.info(f"Created new token record: {address}", extra={"token": address})
    return token


async def ensure_holder(session: LedgerSession, token_id: int, wallet_address: str) -> Holder:
    holder = await session.get_holder(token_id, wallet_address, for_update=True)
    if holder:
        return holder

    holder, created = await session.insert_holder(Holder(token_id=token_id, wallet_address=wallet_address))
    if created:
        logger.debug(f"Created holder {wallet_address} for token_id={token_id}", extra={"wallet": wallet_address})
    return holder


class TokenRegistry:
    """Applies launch and graduation events to token records."""

    def __init__(self, store: LedgerStore):
        self.store = store

    async def record_launch(self, launch: LaunchEvent) -> Token:
        logger.info(f"Processing token launch: {launch.symbol or launch.token_address}", extra={"token": launch.token_address})
        async with self.store.session() as session:
            token = await ensure_token(session, launch.token_address)
            updated = replace(
                token,
                symbol=launch.symbol if launch.symbol is not None else token.symbol,
                name=launch.name if launch.name is not None else token.name,
                decimals=launch.decimals if launch.decimals is not None else token.decimals,
                mint_authority=launch.mint_authority if launch.mint_authority is not None else token.mint_authority,
                total_supply=launch.total_supply if launch.total_supply is not None else token.total_supply,
                launch_timestamp=to_datetime(launch.launch_timestamp) or token.launch_timestamp,
                metadata=launch.metadata if launch.metadata is not None else token.metadata,
            )
            await session.update_token(updated)
        return updated

    async def record_graduation(self, graduation: GraduationEvent) -> Token:
        logger.info(f"Processing token graduation: {graduation.token_address}", extra={"token": graduation.token_address})
        async with self.store.session() as session:
            token = await ensure_token(session, graduation.token_address)
            if token.status is TokenStatus.GRADUATED:
                logger.info(f"Token {token.address} already graduated", extra={"token": token.address})
                return token
            updated = replace(
                token,
                status=TokenStatus.GRADUATED,
                graduation_timestamp=to_datetime(graduation.graduation_timestamp),
            )
            await session.update_token(updated)
        return updated

    async def get_token(self, address: str):
        async with self.store.session() as session:
            return await session.get_token(address)
