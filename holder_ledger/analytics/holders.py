"""
Holder Psychology Analytics
===========================

Cross-holder aggregates computed on demand from committed ledger state.

Profit/Loss Zones:
    pct = (current_price - avg_cost_basis) / avg_cost_basis
    pct >  tolerance  -> profit
    pct < -tolerance  -> loss
    otherwise         -> break-even (boundary inclusive)
    avg_cost_basis is the open-lot weighted average; holders with no open
    lots (transfer-only, airdrop) have 0 and count as break-even.

Price-Level Clustering:
    One greedy pass over distinct open-lot prices, ascending. A price joins
    the first existing bucket whose representative (first) price is within
    band_percent of it, otherwise it opens a new bucket. Buckets carry total
    remaining amount and distinct holder count, sorted by amount descending.

Unknown tokens and empty inventories give zero-valued results.
"""
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Set, Tuple

from holder_ledger.core.config import BREAK_EVEN_TOLERANCE, PRICE_BAND_PERCENT, TOP_PRICE_LEVELS
from holder_ledger.ingestion.models import ZERO, CostBasisLot, Holder
from holder_ledger.ledger.fifo import weighted_average_cost_basis
from holder_ledger.store.base import LedgerStore

logger = logging.getLogger("analytics.holders")

HUNDRED = Decimal(100)

PROFIT = "profit"
LOSS = "loss"
BREAK_EVEN = "break_even"


@dataclass
class ProfitLossZones:
    profit_holders: int = 0
    loss_holders: int = 0
    break_even_holders: int = 0
    total_holders: int = 0
    profit_amount_usd: Decimal = ZERO
    loss_amount_usd: Decimal = ZERO
    break_even_amount_usd: Decimal = ZERO


@dataclass
class PriceLevel:
    price_level: Decimal
    holder_count: int
    total_amount: Decimal
    percentage_of_supply: Decimal = ZERO


@dataclass
class AnalyticsSummary:
    total_holders: int = 0
    profit_loss_breakdown: ProfitLossZones = field(default_factory=ProfitLossZones)
    top_price_levels: List[PriceLevel] = field(default_factory=list)
    average_holder_cost_basis: Decimal = ZERO
    median_holder_cost_basis: Decimal = ZERO


# ==============================================================================
# PURE AGGREGATION
# ==============================================================================

def classify_zone(average_cost_basis: Decimal, current_price: Decimal,
                  tolerance: Decimal = BREAK_EVEN_TOLERANCE) -> str:
    if average_cost_basis == 0:
        return BREAK_EVEN
    pct = (current_price - average_cost_basis) / average_cost_basis
    if pct > tolerance:
        return PROFIT
    if pct < -tolerance:
        return LOSS
    return BREAK_EVEN


def profit_loss_zones(holders: Iterable[Tuple[Holder, Decimal]], current_price: Decimal,
                      tolerance: Decimal = BREAK_EVEN_TOLERANCE) -> ProfitLossZones:
    """`holders` yields (holder, open-lot average cost basis) pairs."""
    zones = ProfitLossZones()
    for holder, avg_cost in holders:
        value = holder.current_balance * current_price
        zone = classify_zone(avg_cost, current_price, tolerance)
        if zone == PROFIT:
            zones.profit_holders += 1
            zones.profit_amount_usd += value
        elif zone == LOSS:
            zones.loss_holders += 1
            zones.loss_amount_usd += value
        else:
            zones.break_even_holders += 1
            zones.break_even_amount_usd += value
        zones.total_holders += 1
    return zones


def _within_band(price: Decimal, representative: Decimal, band_percent: Decimal) -> bool:
    if representative == 0:
        return price == 0
    return abs(price - representative) / representative * HUNDRED <= band_percent


def cluster_price_levels(lots: Iterable[CostBasisLot], band_percent: Decimal = PRICE_BAND_PERCENT,
                         circulating_supply: Decimal = ZERO) -> List[PriceLevel]:
    amount_by_price: Dict[Decimal, Decimal] = defaultdict(lambda: ZERO)
    holders_by_price: Dict[Decimal, Set[int]] = defaultdict(set)
    for lot in lots:
        if lot.remaining_amount <= 0:
            continue
        amount_by_price[lot.price_per_token] += lot.remaining_amount
        holders_by_price[lot.price_per_token].add(lot.holder_id)

    # [representative price, total amount, holder ids]
    buckets: List[list] = []
    for price in sorted(amount_by_price):
        for bucket in buckets:
            if _within_band(price, bucket[0], band_percent):
                bucket[1] += amount_by_price[price]
                bucket[2] |= holders_by_price[price]
                break
        else:
            buckets.append([price, amount_by_price[price], set(holders_by_price[price])])

    levels = [
        PriceLevel(
            price_level=price,
            holder_count=len(holder_ids),
            total_amount=amount,
            percentage_of_supply=amount / circulating_supply * HUNDRED if circulating_supply > 0 else ZERO,
        )
        for price, amount, holder_ids in buckets
    ]
    levels.sort(key=lambda l: l.total_amount, reverse=True)
    return levels


def mean_and_median_cost_basis(holders: Iterable[Holder]) -> Tuple[Decimal, Decimal]:
    """Mean of average_buy_price over all given holders; median over those with a price."""
    prices = [h.average_buy_price for h in holders]
    if not prices:
        return ZERO, ZERO
    mean = sum(prices, ZERO) / len(prices)
    priced = [p for p in prices if p > 0]
    median = Decimal(statistics.median(priced)) if priced else ZERO
    return mean, median


# ==============================================================================
# STORE-BACKED QUERIES
# ==============================================================================

class HolderAnalytics:

    def __init__(self, store: LedgerStore):
        self.store = store

    async def _load(self, token_address: str):
        """Active holders and open lots of a token in one read."""
        async with self.store.session() as session:
            token = await session.get_token(token_address)
            if token is None:
                return [], []
            holders = await session.active_holders(token.id)
            lots = await session.open_lots_for_token(token.id)
        return holders, lots

    @staticmethod
    def _with_cost_basis(holders: List[Holder], lots: List[CostBasisLot]):
        lots_by_holder: Dict[int, List[CostBasisLot]] = defaultdict(list)
        for lot in lots:
            lots_by_holder[lot.holder_id].append(lot)
        return [(h, weighted_average_cost_basis(lots_by_holder.get(h.id, []))) for h in holders]

    async def calculate_profit_loss_zones(self, token_address: str, current_price: Decimal,
                                          tolerance: Decimal = BREAK_EVEN_TOLERANCE) -> ProfitLossZones:
        holders, lots = await self._load(token_address)
        return profit_loss_zones(self._with_cost_basis(holders, lots), current_price, tolerance)

    async def get_holder_price_levels(self, token_address: str,
                                      band_percent: Decimal = PRICE_BAND_PERCENT) -> List[PriceLevel]:
        holders, lots = await self._load(token_address)
        supply = sum((h.current_balance for h in holders), ZERO)
        return cluster_price_levels(lots, band_percent, supply)

    async def get_analytics_summary(self, token_address: str, current_price: Decimal) -> AnalyticsSummary:
        holders, lots = await self._load(token_address)
        zones = profit_loss_zones(self._with_cost_basis(holders, lots), current_price)
        supply = sum((h.current_balance for h in holders), ZERO)
        levels = cluster_price_levels(lots, PRICE_BAND_PERCENT, supply)
        mean, median = mean_and_median_cost_basis(holders)

        logger.debug(f"Analytics summary for {token_address}: {zones.total_holders} holders",
                     extra={"token": token_address})
        return AnalyticsSummary(
            total_holders=zones.total_holders,
            profit_loss_breakdown=zones,
            top_price_levels=levels[:TOP_PRICE_LEVELS],
            average_holder_cost_basis=mean,
            median_holder_cost_basis=median,
        )
