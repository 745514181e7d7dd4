"""
inventory_services.integration_orchestrator -- Entry point for business events.

Responsibility:
    Turns sales, purchases, investor transactions, returns, transfers and
    admin adjustments into ledger movements, cash-flow entries and
    instrument links.  This is the only component external collaborators
    call.  Every outcome is reported as an OperationResult; callers never
    have to interpret kernel exceptions.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Also the composition root: ``from_config`` constructs the ledger, link
    store, instrument registry, reconciliation service, pending queue and
    retry executor exactly once and wires them together.

Invariants enforced:
    - All-or-nothing validation: an event is validated, and availability is
      checked for every outbound line (lines on the same product summed),
      before the first movement is appended.
    - Idempotent lines: every movement is keyed ``<type>:<id>:<line>``, so
      a retried, replayed or resubmitted event never double-applies.
    - No blind retry of refusals: an InsufficientStockError during append
      triggers re-validation of the remaining lines, never a retry of the
      same append.
    - Append-only correction: when a partially applied operation must be
      rejected, the applied lines are reversed with adjustment movements
      that point at them.

Failure modes (OperationStatus):
    - REJECTED: invalid event, unknown product or investor, insufficient
      stock or capital, idempotency conflict.  Nothing stays applied.
    - FAILED: retries exhausted on a transient error, cancellation, or an
      unexpected error.  Lines appended before the failure stay applied;
      resubmitting the same event completes the operation.
    - QUEUED: as FAILED for transient exhaustion, with the event stored in
      the pending queue because ``queue_on_exhaustion`` is on.

Usage:
    orchestrator = IntegrationOrchestrator.from_config(db, get_active_config())
    result = orchestrator.process_sale(SaleEvent.from_dict(payload))
    if result.status is OperationStatus.COMPLETED:
        ...
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from inventory_config.bridges import (
    auto_link_floor,
    build_ledger_options,
    build_match_policy,
    build_retry_policy,
)
from inventory_config.schema import InventoryConfiguration
from inventory_kernel.db.engine import LedgerDatabase
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.events import (
    CashFlowDirection,
    CashFlowEntry,
    InvestorTransaction,
    InvestorTransactionKind,
    PaymentStatus,
    PurchaseEvent,
    ReturnEvent,
    SaleEvent,
    TransferEvent,
)
from inventory_kernel.domain.linking import LinkableEntity
from inventory_kernel.domain.values import Movement, MovementDraft, MovementKind, OwnerRef, OwnerType
from inventory_kernel.exceptions import (
    ConflictError,
    DomainRefusalError,
    ImmutabilityError,
    InsufficientCapitalError,
    InsufficientStockError,
    InvalidEventError,
    InvestorNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.pending_operation import PendingStatus
from inventory_kernel.selectors.ownership_selector import Availability, OwnershipSelector
from inventory_kernel.selectors.party_selector import OwnerDirectory
from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.entity_link_service import EntityLinkService
from inventory_kernel.services.instrument_registry import InstrumentRegistry
from inventory_kernel.services.movement_ledger import MovementLedger
from inventory_kernel.services.retry_executor import (
    RetryExecutor,
    RetryPolicy,
    RetryResult,
    is_transient_error,
)
from inventory_kernel.utils.idempotency import line_idempotency_key
from inventory_services.cash_flow import CashFlowSink, CollectingCashFlowSink
from inventory_services.pending_queue import PendingOperationQueue
from inventory_services.reconciliation_service import ReconciliationService, SmartLinkingResult

logger = get_logger("services.integration")

_ZERO = Decimal("0")
_REFUSALS = (ValidationError, DomainRefusalError, ConflictError, ImmutabilityError)


class OperationType(str, Enum):
    SALE = "sale"
    PURCHASE = "purchase"
    INVESTOR_PURCHASE = "investor_purchase"
    INVESTOR_SALE = "investor_sale"
    RETURN = "return"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class OperationStatus(str, Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"
    QUEUED = "queued"


@dataclass(frozen=True)
class OperationResult:
    """What happened to one business event."""

    status: OperationStatus
    operation_type: OperationType
    reference_id: str
    movements: tuple[Movement, ...] = ()
    newly_appended: int = 0
    compensations: tuple[Movement, ...] = ()
    error: BaseException | None = None
    cash_flow: CashFlowEntry | None = None
    linking: SmartLinkingResult | None = None
    queued_id: UUID | None = None

    @property
    def success(self) -> bool:
        return self.status == OperationStatus.COMPLETED

    @property
    def already_applied(self) -> bool:
        return self.success and self.newly_appended == 0 and bool(self.movements)

    @property
    def error_code(self) -> str | None:
        if self.error is None:
            return None
        return getattr(self.error, "code", type(self.error).__name__)

    @property
    def message(self) -> str:
        return str(self.error) if self.error is not None else ""


class _OperationFailed(Exception):
    """Internal: carries a terminal result out of the append loop."""

    def __init__(self, result: OperationResult):
        self.result = result
        super().__init__(result.status.value)


class IntegrationOrchestrator:
    """
    Business-event orchestrator.

    Contract:
        Every ``process_*`` method returns an OperationResult and raises only
        for programming errors in the caller (wrong argument types).
    Guarantees:
        - Ledger writes go through the RetryExecutor; refusals are never
          retried.
        - Reconciliation runs after the movements are in place and never
          changes the operation's status.
    Non-goals:
        - Does NOT hold a transaction across lines.  Atomicity of a
          multi-line operation comes from up-front validation plus
          compensation, not from one database transaction.
    """

    def __init__(
        self,
        db: LedgerDatabase,
        *,
        ledger: MovementLedger,
        reconciliation: ReconciliationService,
        instruments: InstrumentRegistry,
        queue: PendingOperationQueue,
        cash_flow: CashFlowSink,
        executor: RetryExecutor,
        retry_policy: RetryPolicy | None = None,
        clock: Clock | None = None,
        revalidation_attempts: int = 2,
        queue_on_exhaustion: bool = False,
        enforce_investor_capital: bool = True,
    ):
        if revalidation_attempts < 0:
            raise ValueError("revalidation_attempts must be >= 0")
        self._db = db
        self._clock = clock or SystemClock()
        self.ledger = ledger
        self.reconciliation = reconciliation
        self.instruments = instruments
        self.queue = queue
        self.cash_flow = cash_flow
        self.executor = executor
        self._retry_policy = retry_policy
        self._revalidation_attempts = revalidation_attempts
        self._queue_on_exhaustion = queue_on_exhaustion
        self._enforce_investor_capital = enforce_investor_capital

    @classmethod
    def from_config(
        cls,
        db: LedgerDatabase,
        config: InventoryConfiguration,
        *,
        clock: Clock | None = None,
        cash_flow: CashFlowSink | None = None,
        directory: OwnerDirectory | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> IntegrationOrchestrator:
        """Build and wire every service from one configuration."""
        clock = clock or SystemClock()
        ledger = MovementLedger(db, clock, **build_ledger_options(config.ledger))
        links = EntityLinkService(db, clock)
        instruments = InstrumentRegistry(db, clock)
        reconciliation = ReconciliationService(
            db,
            links=links,
            instruments=instruments,
            auto_link_floor=auto_link_floor(config.linking),
            directory=directory,
            policy=build_match_policy(config.linking),
            parallelism=config.linking.parallelism,
        )
        retry_policy = build_retry_policy(config.retry)
        return cls(
            db,
            ledger=ledger,
            reconciliation=reconciliation,
            instruments=instruments,
            queue=PendingOperationQueue(db, clock),
            cash_flow=cash_flow if cash_flow is not None else CollectingCashFlowSink(),
            executor=RetryExecutor(retry_policy, sleep=sleep),
            retry_policy=retry_policy,
            clock=clock,
            revalidation_attempts=config.orchestrator.revalidation_attempts,
            queue_on_exhaustion=config.orchestrator.queue_on_exhaustion,
            enforce_investor_capital=config.orchestrator.enforce_investor_capital,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def process_sale(
        self, event: SaleEvent, cancel: threading.Event | None = None
    ) -> OperationResult:
        def plan() -> list[MovementDraft]:
            return [
                MovementDraft(
                    product_id=line.product_id,
                    quantity=-line.quantity,
                    kind=MovementKind.SALE,
                    owner=OwnerRef.company(),
                    value_amount=line.line_value,
                    reference_id=event.id,
                    reference_type=OperationType.SALE.value,
                    idempotency_key=line_idempotency_key(OperationType.SALE.value, event.id, i),
                )
                for i, line in enumerate(event.lines)
            ]

        return self._run(
            OperationType.SALE,
            event.id,
            event.validate,
            plan,
            payload=event.to_dict(),
            cancel=cancel,
            after=lambda result: self._after_trade(
                result, event, CashFlowDirection.INFLOW, "sales"
            ),
        )

    def process_purchase(
        self, event: PurchaseEvent, cancel: threading.Event | None = None
    ) -> OperationResult:
        def plan() -> list[MovementDraft]:
            return [
                MovementDraft(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    kind=MovementKind.PURCHASE,
                    owner=OwnerRef.company(),
                    value_amount=line.line_value,
                    reference_id=event.id,
                    reference_type=OperationType.PURCHASE.value,
                    idempotency_key=line_idempotency_key(OperationType.PURCHASE.value, event.id, i),
                )
                for i, line in enumerate(event.lines)
            ]

        return self._run(
            OperationType.PURCHASE,
            event.id,
            event.validate,
            plan,
            payload=event.to_dict(),
            cancel=cancel,
            after=lambda result: self._after_trade(
                result, event, CashFlowDirection.OUTFLOW, "purchases"
            ),
        )

    def process_investor_purchase(
        self, tx: InvestorTransaction, cancel: threading.Event | None = None
    ) -> OperationResult:
        return self._process_investor(tx, InvestorTransactionKind.PURCHASE, cancel)

    def process_investor_sale(
        self, tx: InvestorTransaction, cancel: threading.Event | None = None
    ) -> OperationResult:
        return self._process_investor(tx, InvestorTransactionKind.SALE, cancel)

    def _process_investor(
        self,
        tx: InvestorTransaction,
        expected: InvestorTransactionKind,
        cancel: threading.Event | None,
    ) -> OperationResult:
        purchase = expected == InvestorTransactionKind.PURCHASE
        op = OperationType.INVESTOR_PURCHASE if purchase else OperationType.INVESTOR_SALE

        def validate() -> None:
            tx.validate()
            if tx.kind != expected:
                raise InvalidEventError(
                    tx.event_type, tx.transaction_id, f"expected a {expected.value} transaction"
                )

        def plan() -> list[MovementDraft]:
            return [
                MovementDraft(
                    product_id=tx.product_id,
                    quantity=tx.quantity if purchase else -tx.quantity,
                    kind=MovementKind.INVESTOR_PURCHASE if purchase else MovementKind.INVESTOR_SALE,
                    owner=OwnerRef.investor(tx.investor_id),
                    value_amount=tx.value,
                    reference_id=tx.transaction_id,
                    reference_type=op.value,
                    idempotency_key=line_idempotency_key(op.value, tx.transaction_id, 0),
                )
            ]

        return self._run(
            op,
            tx.transaction_id,
            validate,
            plan,
            payload=tx.to_dict(),
            cancel=cancel,
            investor_id=tx.investor_id,
            capital_required=tx.value if purchase else None,
        )

    def process_return(
        self, event: ReturnEvent, cancel: threading.Event | None = None
    ) -> OperationResult:
        """Customer return: inbound company stock at the returned value."""

        def plan() -> list[MovementDraft]:
            note = f"Return of sale {event.original_sale_id}" if event.original_sale_id else None
            return [
                MovementDraft(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    kind=MovementKind.RETURN,
                    owner=OwnerRef.company(),
                    value_amount=line.line_value,
                    reference_id=event.id,
                    reference_type=OperationType.RETURN.value,
                    idempotency_key=line_idempotency_key(OperationType.RETURN.value, event.id, i),
                    notes=note,
                )
                for i, line in enumerate(event.lines)
            ]

        return self._run(
            OperationType.RETURN,
            event.id,
            event.validate,
            plan,
            payload=event.to_dict(),
            cancel=cancel,
        )

    def process_stock_transfer(
        self, event: TransferEvent, cancel: threading.Event | None = None
    ) -> OperationResult:
        """Move units between owners: outbound from source, then inbound to target."""
        owners: dict[str, OwnerRef] = {}

        def validate() -> None:
            event.validate()
            try:
                owners["from"] = OwnerRef(*event.from_owner)
                owners["to"] = OwnerRef(*event.to_owner)
            except ValueError as exc:
                raise InvalidEventError(event.event_type, event.id, str(exc)) from exc

        def plan() -> list[MovementDraft]:
            key = OperationType.TRANSFER.value
            return [
                MovementDraft(
                    product_id=event.product_id,
                    quantity=-event.quantity,
                    kind=MovementKind.TRANSFER,
                    owner=owners["from"],
                    value_amount=event.value,
                    reference_id=event.id,
                    reference_type=key,
                    idempotency_key=line_idempotency_key(key, event.id, "out"),
                    notes=event.notes,
                ),
                MovementDraft(
                    product_id=event.product_id,
                    quantity=event.quantity,
                    kind=MovementKind.TRANSFER,
                    owner=owners["to"],
                    value_amount=event.value,
                    reference_id=event.id,
                    reference_type=key,
                    idempotency_key=line_idempotency_key(key, event.id, "in"),
                    notes=event.notes,
                ),
            ]

        return self._run(
            OperationType.TRANSFER,
            event.id,
            validate,
            plan,
            payload=event.to_dict(),
            cancel=cancel,
        )

    def record_adjustment(
        self,
        product_id: str,
        quantity: int,
        notes: str,
        *,
        reference_id: str,
        owner: OwnerRef | None = None,
        value_amount: Decimal = _ZERO,
        corrects_movement_id: UUID | None = None,
        actor_id: str | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationResult:
        """
        Admin correction.  Positive quantities add stock, negative remove it;
        ``notes`` must say what is being corrected.  Never queued.
        """
        owner = owner or OwnerRef.company()

        def plan() -> list[MovementDraft]:
            key = OperationType.ADJUSTMENT.value
            return [
                MovementDraft(
                    product_id=product_id,
                    quantity=quantity,
                    kind=MovementKind.ADJUSTMENT,
                    owner=owner,
                    value_amount=value_amount,
                    reference_id=reference_id,
                    reference_type=key,
                    idempotency_key=line_idempotency_key(key, reference_id, 0),
                    notes=notes,
                    corrects_movement_id=corrects_movement_id,
                )
            ]

        with LogContext.bind(actor_id=actor_id):
            return self._run(
                OperationType.ADJUSTMENT,
                reference_id,
                lambda: None,
                plan,
                payload=None,
                cancel=cancel,
            )

    def replay_pending(self, limit: int | None = None) -> list[OperationResult]:
        """
        Re-run queued operations, oldest first.

        COMPLETED and REJECTED resolve the queue entry; anything else leaves
        it queued with its attempt count bumped.
        """
        results: list[OperationResult] = []
        for queued in self.queue.queued(limit):
            try:
                op = OperationType(queued.operation_type)
            except ValueError:
                logger.error(
                    "pending_operation_unknown_type",
                    extra={
                        "queued_id": str(queued.id),
                        "operation_type": queued.operation_type,
                    },
                )
                self.queue.mark(
                    queued.id,
                    PendingStatus.REJECTED,
                    f"unknown operation type {queued.operation_type!r}",
                )
                continue

            try:
                result = self._replay_one(op, queued.payload)
            except InvalidEventError as exc:
                self.queue.mark(queued.id, PendingStatus.REJECTED, str(exc))
                results.append(
                    OperationResult(OperationStatus.REJECTED, op, queued.reference_id, error=exc)
                )
                continue

            if result.status == OperationStatus.COMPLETED:
                self.queue.mark(queued.id, PendingStatus.COMPLETED)
            elif result.status == OperationStatus.REJECTED:
                self.queue.mark(queued.id, PendingStatus.REJECTED, result.message)
            elif result.status == OperationStatus.FAILED:
                self.queue.record_attempt(queued.id, result.message)
            results.append(result)

        logger.info(
            "pending_replay_completed",
            extra={
                "replayed": len(results),
                "completed": sum(1 for r in results if r.status == OperationStatus.COMPLETED),
                "rejected": sum(1 for r in results if r.status == OperationStatus.REJECTED),
            },
        )
        return results

    def _replay_one(self, op: OperationType, payload: dict[str, Any]) -> OperationResult:
        if op == OperationType.SALE:
            return self.process_sale(SaleEvent.from_dict(payload))
        if op == OperationType.PURCHASE:
            return self.process_purchase(PurchaseEvent.from_dict(payload))
        if op == OperationType.INVESTOR_PURCHASE:
            return self.process_investor_purchase(InvestorTransaction.from_dict(payload))
        if op == OperationType.INVESTOR_SALE:
            return self.process_investor_sale(InvestorTransaction.from_dict(payload))
        if op == OperationType.RETURN:
            return self.process_return(ReturnEvent.from_dict(payload))
        if op == OperationType.TRANSFER:
            return self.process_stock_transfer(TransferEvent.from_dict(payload))
        raise InvalidEventError(op.value, None, "operation type cannot be replayed")

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _run(
        self,
        op: OperationType,
        reference_id: str,
        validate: Callable[[], None],
        plan: Callable[[], list[MovementDraft]],
        *,
        payload: dict[str, Any] | None,
        cancel: threading.Event | None,
        after: Callable[[OperationResult], OperationResult] | None = None,
        investor_id: str | None = None,
        capital_required: Decimal | None = None,
    ) -> OperationResult:
        with LogContext.bind(reference_id=reference_id, operation=op.value):
            logger.info("operation_started", extra={"operation_type": op.value})
            try:
                validate()
                drafts = plan()
                for draft in drafts:
                    draft.validate()
                self._precheck(op, reference_id, drafts, investor_id, capital_required)
                result = self._apply(op, reference_id, drafts, payload, cancel)
            except _OperationFailed as failed:
                return self._log_outcome(failed.result)
            except _REFUSALS as exc:
                return self._log_outcome(
                    OperationResult(OperationStatus.REJECTED, op, reference_id, error=exc)
                )
            except Exception as exc:
                # Read-side failure before any write; nothing to compensate.
                return self._log_outcome(
                    self._handle_failure(op, reference_id, [], exc, payload, cancel)
                )

            if after is not None:
                result = after(result)
            return self._log_outcome(result)

    def _precheck(
        self,
        op: OperationType,
        reference_id: str,
        drafts: Sequence[MovementDraft],
        investor_id: str | None,
        capital_required: Decimal | None,
    ) -> None:
        """Existence, availability and capital checks before any write."""
        if self.ledger.movements_for_reference(_COMPENSATION, _compensation_ref(op, reference_id)):
            raise InvalidEventError(
                op.value,
                reference_id,
                "operation was rejected and reversed earlier; resubmit under a new id",
            )

        pending = self._pending_drafts(drafts)
        with self._db.session_scope() as session:
            catalog = CatalogService(session, self._clock)
            for product_id in sorted({d.product_id for d in drafts}):
                product = catalog.find_product(product_id)
                if product is None or not product.is_active:
                    raise ProductNotFoundError(product_id)

            investors = {d.owner.owner_id for d in drafts if d.owner.owner_type == OwnerType.INVESTOR}
            if investor_id is not None:
                investors.add(investor_id)
            for inv in sorted(i for i in investors if i):
                if catalog.find_investor(inv) is None:
                    raise InvestorNotFoundError(inv)

            ownership = OwnershipSelector(session)
            shortfall = self._first_shortfall(ownership, pending)
            if shortfall is not None:
                raise _insufficient(shortfall)

            if (
                capital_required is not None
                and investor_id is not None
                and self._enforce_investor_capital
                and pending
            ):
                check = ownership.investor_capital_check(investor_id, capital_required)
                if not check.sufficient:
                    logger.info(
                        "operation_rejected_insufficient_capital",
                        extra={
                            "investor_id": investor_id,
                            "remaining_capital": check.remaining_capital,
                            "requested": capital_required,
                        },
                    )
                    raise InsufficientCapitalError(
                        investor_id, check.remaining_capital, capital_required
                    )

    def _pending_drafts(self, drafts: Sequence[MovementDraft]) -> list[MovementDraft]:
        """Drafts whose idempotency key has not been applied yet."""
        return [d for d in drafts if self.ledger.get_by_idempotency_key(d.idempotency_key) is None]

    @staticmethod
    def _first_shortfall(
        ownership: OwnershipSelector, drafts: Sequence[MovementDraft]
    ) -> Availability | None:
        required: dict[tuple[str, OwnerRef], int] = {}
        for draft in drafts:
            if draft.is_outbound:
                key = (draft.product_id, draft.owner)
                required[key] = required.get(key, 0) - draft.quantity
        for (product_id, owner), qty in sorted(required.items(), key=lambda kv: (kv[0][0], kv[0][1].key)):
            availability = ownership.validate_availability(product_id, owner, qty)
            if not availability.available:
                return availability
        return None

    def _revalidate(self, drafts: Sequence[MovementDraft]) -> Availability | None:
        pending = self._pending_drafts(drafts)
        with self._db.session_scope() as session:
            return self._first_shortfall(OwnershipSelector(session), pending)

    def _append(self, draft: MovementDraft, cancel: threading.Event | None) -> RetryResult:
        return self.executor.execute(
            lambda: self.ledger.append(draft),
            self._retry_policy,
            cancel=cancel,
            operation_name=f"append:{draft.idempotency_key}",
        )

    def _apply(
        self,
        op: OperationType,
        reference_id: str,
        drafts: Sequence[MovementDraft],
        payload: dict[str, Any] | None,
        cancel: threading.Event | None,
    ) -> OperationResult:
        movements: list[Movement] = []
        newly_appended = 0

        for index, draft in enumerate(drafts):
            revalidations = 0
            while True:
                outcome = self._append(draft, cancel)
                if outcome.success:
                    append_result = outcome.value
                    movements.append(append_result.movement)
                    newly_appended += int(append_result.is_new)
                    break

                error = outcome.error
                if (
                    isinstance(error, InsufficientStockError)
                    and revalidations < self._revalidation_attempts
                ):
                    revalidations += 1
                    shortfall = self._revalidate(drafts[index:])
                    logger.info(
                        "operation_revalidated",
                        extra={
                            "attempt": revalidations,
                            "idempotency_key": draft.idempotency_key,
                            "available": shortfall is None,
                        },
                    )
                    if shortfall is None:
                        continue
                    error = _insufficient(shortfall)

                raise _OperationFailed(
                    self._handle_failure(op, reference_id, movements, error, payload, cancel)
                )

        return OperationResult(
            OperationStatus.COMPLETED,
            op,
            reference_id,
            movements=tuple(movements),
            newly_appended=newly_appended,
        )

    def _handle_failure(
        self,
        op: OperationType,
        reference_id: str,
        applied: list[Movement],
        error: BaseException | None,
        payload: dict[str, Any] | None,
        cancel: threading.Event | None,
    ) -> OperationResult:
        if isinstance(error, _REFUSALS):
            try:
                compensations = self._compensate(op, reference_id, applied, cancel)
            except _OperationFailed as failed:
                return failed.result
            return OperationResult(
                OperationStatus.REJECTED,
                op,
                reference_id,
                movements=tuple(applied),
                compensations=compensations,
                error=error,
            )

        if (
            self._queue_on_exhaustion
            and payload is not None
            and error is not None
            and is_transient_error(error)
        ):
            queued = self.queue.enqueue(op.value, reference_id, payload, str(error))
            return OperationResult(
                OperationStatus.QUEUED,
                op,
                reference_id,
                movements=tuple(applied),
                error=error,
                queued_id=queued.id,
            )

        return OperationResult(
            OperationStatus.FAILED, op, reference_id, movements=tuple(applied), error=error
        )

    def _compensate(
        self,
        op: OperationType,
        reference_id: str,
        applied: Sequence[Movement],
        cancel: threading.Event | None,
    ) -> tuple[Movement, ...]:
        """Reverse applied lines with adjustments, last line first."""
        compensations: list[Movement] = []
        comp_ref = _compensation_ref(op, reference_id)
        for movement in reversed(applied):
            draft = MovementDraft(
                product_id=movement.product_id,
                quantity=-movement.quantity,
                kind=MovementKind.ADJUSTMENT,
                owner=movement.owner,
                value_amount=movement.value_amount,
                reference_id=comp_ref,
                reference_type=_COMPENSATION,
                idempotency_key=line_idempotency_key(_COMPENSATION, comp_ref, movement.idempotency_key),
                notes=f"Reverses {movement.idempotency_key}: {op.value} {reference_id} rejected",
                corrects_movement_id=movement.id,
            )
            outcome = self._append(draft, cancel)
            if not outcome.success:
                logger.error(
                    "operation_compensation_failed",
                    extra={
                        "idempotency_key": movement.idempotency_key,
                        "error": str(outcome.error),
                    },
                )
                raise _OperationFailed(
                    OperationResult(
                        OperationStatus.FAILED,
                        op,
                        reference_id,
                        movements=tuple(applied),
                        compensations=tuple(compensations),
                        error=outcome.error,
                    )
                )
            compensations.append(outcome.value.movement)
        if compensations:
            logger.warning(
                "operation_compensated",
                extra={"compensated_lines": len(compensations)},
            )
        return tuple(compensations)

    # ------------------------------------------------------------------
    # After-success effects
    # ------------------------------------------------------------------

    def _after_trade(
        self,
        result: OperationResult,
        event: SaleEvent | PurchaseEvent,
        direction: CashFlowDirection,
        category: str,
    ) -> OperationResult:
        cash_flow = None
        if event.payment_status == PaymentStatus.PAID and result.newly_appended > 0:
            cash_flow = CashFlowEntry(
                amount=event.total_value,
                direction=direction,
                reference_id=event.id,
                reference_type=event.event_type,
                category=category,
                payment_method=event.payment_method,
                description=f"{event.event_type} {event.id}",
                metadata={"counterparty_ref": event.counterparty_ref},
            )
            self.cash_flow.emit(cash_flow)
            logger.info(
                "cash_flow_emitted",
                extra={"direction": direction.value, "amount": cash_flow.amount},
            )

        linking = self._link_instruments(event) if event.instruments else None
        return OperationResult(
            result.status,
            result.operation_type,
            result.reference_id,
            movements=result.movements,
            newly_appended=result.newly_appended,
            cash_flow=cash_flow,
            linking=linking,
        )

    def _link_instruments(self, event: SaleEvent | PurchaseEvent) -> SmartLinkingResult | None:
        """Register the event's instruments and try to link them. Never fails the event."""
        try:
            stored: list[LinkableEntity] = []
            for instrument in event.instruments:
                entity, _ = self.instruments.register(
                    LinkableEntity(
                        entity_id=instrument.entity_id,
                        entity_type=instrument.entity_type,
                        amount=instrument.amount,
                        counterparty_name=instrument.counterparty_name,
                        counterparty_phone=instrument.counterparty_phone,
                        due_date=instrument.due_date,
                        reference_id=event.id,
                    )
                )
                stored.append(entity)
            return self.reconciliation.auto_link(stored)
        except Exception as exc:  # linking never blocks the sale
            logger.warning(
                "instrument_linking_failed",
                extra={
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "instrument_count": len(event.instruments),
                },
            )
            return None

    @staticmethod
    def _log_outcome(result: OperationResult) -> OperationResult:
        extra = {
            "operation_type": result.operation_type.value,
            "status": result.status.value,
            "movements": len(result.movements),
            "newly_appended": result.newly_appended,
            "compensations": len(result.compensations),
            "error_code": result.error_code,
        }
        if result.status == OperationStatus.COMPLETED:
            logger.info("operation_completed", extra=extra)
        elif result.status == OperationStatus.REJECTED:
            logger.info("operation_rejected", extra={**extra, "error": result.message})
        elif result.status == OperationStatus.QUEUED:
            logger.warning("operation_deferred", extra={**extra, "error": result.message})
        else:
            logger.error("operation_failed", extra={**extra, "error": result.message})
        return result


_COMPENSATION = "compensation"


def _compensation_ref(op: OperationType, reference_id: str) -> str:
    return f"{op.value}:{reference_id}"


def _insufficient(availability: Availability) -> InsufficientStockError:
    return InsufficientStockError(
        availability.product_id,
        availability.owner.owner_type.value,
        availability.owner.owner_id,
        available=availability.current_stock,
        requested=availability.requested,
    )


__all__ = [
    "IntegrationOrchestrator",
    "OperationResult",
    "OperationStatus",
    "OperationType",
]
