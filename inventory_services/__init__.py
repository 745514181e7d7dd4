"""
inventory_services -- Package init and public API.

Responsibility:
    Orchestration over the kernel and engines: the integration orchestrator
    that turns business events into movements, the reconciliation service
    that links checks and installments to owners, the pending-operation
    queue, and the cash-flow sink seam.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_import_boundaries.py):
        inventory_services/ -> inventory_engines/  (allowed)
        inventory_services/ -> inventory_kernel/   (allowed)
        inventory_services/ -> inventory_config/   (allowed)
        inventory_engines/  -> inventory_services/ (FORBIDDEN)
        inventory_kernel/   -> inventory_services/ (FORBIDDEN)

Invariants enforced:
    - DI transparency: service wiring is centralised in
      IntegrationOrchestrator.from_config; no service self-constructs
      its collaborators.
"""

from inventory_kernel.logging_config import get_logger

logger = get_logger("services")

from inventory_services.cash_flow import CashFlowSink, CollectingCashFlowSink
from inventory_services.integration_orchestrator import (
    IntegrationOrchestrator,
    OperationResult,
    OperationStatus,
    OperationType,
)
from inventory_services.pending_queue import PendingOperationQueue, QueuedOperation
from inventory_services.reconciliation_service import (
    DatabaseOwnerDirectory,
    LinkingError,
    LinkResult,
    ReconciliationAmbiguous,
    ReconciliationService,
    ReviewReason,
    SmartLinkingResult,
)

__all__ = [
    "CashFlowSink",
    "CollectingCashFlowSink",
    "DatabaseOwnerDirectory",
    "IntegrationOrchestrator",
    "LinkResult",
    "LinkingError",
    "OperationResult",
    "OperationStatus",
    "OperationType",
    "PendingOperationQueue",
    "QueuedOperation",
    "ReconciliationAmbiguous",
    "ReconciliationService",
    "ReviewReason",
    "SmartLinkingResult",
]
