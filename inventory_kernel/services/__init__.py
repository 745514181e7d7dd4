"""Services for the inventory kernel (write side)."""

from inventory_kernel.services.catalog_service import CatalogService, InvestorInfo, ProductInfo
from inventory_kernel.services.entity_link_service import (
    EntityLinkService,
    LinkWriteOutcome,
    LinkWriteStatus,
)
from inventory_kernel.services.instrument_registry import InstrumentRegistry
from inventory_kernel.services.movement_ledger import (
    AppendResult,
    AppendStatus,
    MovementLedger,
    ProjectionAudit,
)
from inventory_kernel.services.party_service import PartyInfo, PartyService
from inventory_kernel.services.retry_executor import (
    RetryExecutor,
    RetryPolicy,
    RetryResult,
    is_transient_error,
    with_retry,
)

__all__ = [
    "AppendResult",
    "AppendStatus",
    "CatalogService",
    "EntityLinkService",
    "InstrumentRegistry",
    "InvestorInfo",
    "LinkWriteOutcome",
    "LinkWriteStatus",
    "MovementLedger",
    "PartyInfo",
    "PartyService",
    "ProductInfo",
    "ProjectionAudit",
    "RetryExecutor",
    "RetryPolicy",
    "RetryResult",
    "is_transient_error",
    "with_retry",
]
