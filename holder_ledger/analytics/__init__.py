from holder_ledger.analytics.holders import (
    AnalyticsSummary,
    HolderAnalytics,
    PriceLevel,
    ProfitLossZones,
)

__all__ = ["AnalyticsSummary", "HolderAnalytics", "PriceLevel", "ProfitLossZones"]
