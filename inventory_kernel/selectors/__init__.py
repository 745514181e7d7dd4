"""Selectors for the inventory kernel (read side)."""

from inventory_kernel.selectors.link_selector import (
    CreditRisk,
    LinkedInstrument,
    LinkSelector,
    OwnerInstrumentStatistics,
)
from inventory_kernel.selectors.ownership_selector import (
    Availability,
    CapitalCheck,
    Holding,
    LowStockAlert,
    OwnershipPartition,
    OwnershipSelector,
)
from inventory_kernel.selectors.party_selector import (
    OwnerDirectory,
    PartySelector,
    StaticOwnerDirectory,
)
from inventory_kernel.selectors.stock_selector import PairStock, StockSelector

__all__ = [
    "Availability",
    "CapitalCheck",
    "CreditRisk",
    "Holding",
    "LinkedInstrument",
    "LinkSelector",
    "LowStockAlert",
    "OwnerDirectory",
    "OwnerInstrumentStatistics",
    "OwnershipPartition",
    "OwnershipSelector",
    "PairStock",
    "PartySelector",
    "StaticOwnerDirectory",
    "StockSelector",
]
